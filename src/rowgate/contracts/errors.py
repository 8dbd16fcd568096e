# src/rowgate/contracts/errors.py
"""Error taxonomy for the row store access layer.

Every error that leaves the access layer is a RowStoreError carrying:
- kind: the ErrorKind callers branch on
- attempts: the attempt history of the physical call that failed
- context: which logical operation, which range, how many attempts

Raw transport and HTTP failures are chained via ``raise ... from exc``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from rowgate.contracts.calls import AttemptRecord
from rowgate.contracts.enums import ErrorKind


class RowStoreError(Exception):
    """Base class for all access-layer failures."""

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        *,
        attempts: tuple[AttemptRecord, ...] = (),
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.attempts = attempts
        self.context: dict[str, Any] = dict(context or {})

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def add_context(self, **context: Any) -> RowStoreError:
        """Attach operation context without overwriting what is already known.

        The innermost layer knows the most precise range, so earlier values
        win over later ones.
        """
        for key, value in context.items():
            self.context.setdefault(key, value)
        self.context.setdefault("attempts", self.attempt_count)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class TransientError(RowStoreError):
    """Transient failures outlasted the retry budget (or were unsafe to retry)."""

    kind = ErrorKind.TRANSIENT


class QuotaExhaustedError(RowStoreError):
    """The store kept reporting its own quota as exceeded.

    Distinct from TransientError: it signals systemic overload rather than a
    one-off blip, so callers may want to shed load instead of retrying.
    """

    kind = ErrorKind.QUOTA


class FatalError(RowStoreError):
    """Non-retryable failure: malformed request, auth, not-found-by-design."""

    kind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        attempts: tuple[AttemptRecord, ...] = (),
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, attempts=attempts, context=context)
        self.status_code = status_code


class SchemaError(FatalError):
    """A column referenced by the caller is not in the sheet's header."""


class SheetNotFoundError(FatalError):
    """The addressed sheet does not exist in the spreadsheet."""


class RowStoreTimeout(RowStoreError):
    """A deadline elapsed.

    Raised when the overall deadline of a logical call expires (even
    mid-attempt) or when the final allowed attempt timed out. Kept apart from
    TransientError so callers can decide not to retry at a higher level.
    """

    kind = ErrorKind.TIMEOUT


class StaleLayoutError(RowStoreError):
    """The store rejected a positional write computed from an earlier read.

    Known limitation of positional addressing: a concurrent writer changed
    the sheet between the read and the batched mutation. Not resolved
    automatically.
    """

    kind = ErrorKind.RACE


class StoreResponseError(Exception):
    """Raw error response from the row store API.

    Raised by the HTTP client for non-2xx responses and for 2xx responses
    whose JSON body embeds an ``error`` object. Never leaves the access
    layer: the retry controller classifies it and converts it into a
    RowStoreError.
    """

    def __init__(self, status_code: int, body: str, *, payload: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        self.payload = payload
        super().__init__(f"HTTP {status_code}: {_summarize_body(body)}")


def _summarize_body(body: str, limit: int = 200) -> str:
    text = " ".join(body.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


_TERMINAL_ERRORS: dict[ErrorKind, type[RowStoreError]] = {
    ErrorKind.TRANSIENT: TransientError,
    ErrorKind.QUOTA: QuotaExhaustedError,
    ErrorKind.FATAL: FatalError,
    ErrorKind.TIMEOUT: RowStoreTimeout,
    ErrorKind.RACE: StaleLayoutError,
}


def error_for_kind(kind: ErrorKind) -> type[RowStoreError]:
    """Map an error kind to the exception class raised for it."""
    return _TERMINAL_ERRORS[kind]
