# src/rowgate/core/logging.py
"""Structured logging configuration for rowgate.

structlog and stdlib logging share one processor chain through
ProcessorFormatter, so ``logging.getLogger(__name__)`` records from httpx or
google-auth render the same way as rowgate's own structlog events.

Logical operations of the CRUD engine bind ``operation`` and ``range`` into
structlog's contextvars; every retry or admission event emitted underneath
carries them.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING, Any, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

if TYPE_CHECKING:
    from rowgate.core.config import LoggingSettings

# Loggers that emit a line per HTTP request at DEBUG/INFO
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "google.auth",
    "urllib3",
)

_SECRET_KEYS = frozenset({"token", "access_token", "authorization", "credentials", "private_key"})
_BEARER = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")


def _redact_credentials(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask credential fields and bearer tokens embedded in messages."""
    for key, value in event_dict.items():
        if key.lower() in _SECRET_KEYS and value is not None:
            event_dict[key] = "***"
        elif isinstance(value, str) and "Bearer" in value:
            event_dict[key] = _BEARER.sub(r"\1***", value)
    return event_dict


def _drop_formatter_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    # ProcessorFormatter always adds both keys
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: Emit one JSON object per line instead of console output.
        level: Root log level (DEBUG, INFO, WARNING, ERROR).
        stream: Output stream, stdout when omitted. The CLI passes stderr so
            command output on stdout stays machine-readable.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"invalid log level: {level!r}")

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        _redact_credentials,
    ]

    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    final_processors: list[Any] = [_drop_formatter_fields]
    if json_output:
        final_processors.append(structlog.processors.format_exc_info)
    final_processors.append(renderer)

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # reconfigured per CLI invocation and per test
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    noisy_level = max(log_level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def configure_from_settings(settings: LoggingSettings, *, stream: TextIO | None = None) -> None:
    """Apply the ``logging`` section of the settings file."""
    configure_logging(json_output=settings.json_output, level=settings.level, stream=stream)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
