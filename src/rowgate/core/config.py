# src/rowgate/core/config.py
"""
Configuration schema and loading for rowgate.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from rowgate.contracts.enums import ResourceClass

# Quota errors reset on a slower cadence than generic transient errors, so
# unless configured explicitly their backoff is scaled from the transient one.
QUOTA_BASE_MULTIPLIER = 3.0
QUOTA_CAP_MULTIPLIER = 2.0


class StoreSettings(BaseModel):
    """Row store endpoint and credentials.

    Example YAML:
        store:
          spreadsheet_id: ${SHEET_ID}
          credentials_file: ./service_account.json
    """

    model_config = {"frozen": True, "extra": "forbid"}

    spreadsheet_id: str = Field(min_length=1, description="Spreadsheet identifier")
    base_url: str = Field(default="https://sheets.googleapis.com", description="API root URL")
    credentials_file: Path | None = Field(default=None, description="Service account JSON file")
    token: str | None = Field(default=None, description="Static bearer token (alternative to credentials_file)")
    value_input_option: str = Field(default="RAW", description="RAW or USER_ENTERED")

    @field_validator("value_input_option")
    @classmethod
    def validate_value_input_option(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in ("RAW", "USER_ENTERED"):
            raise ValueError(f"value_input_option must be RAW or USER_ENTERED, got {v!r}")
        return normalized

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RetrySettings(BaseModel):
    """Retry behavior configuration.

    Quota delays default to 3x the transient base and 2x the transient cap.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    max_attempts: int = Field(default=3, gt=0, description="Total attempts per physical call")
    transient_base_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff for transient errors")
    transient_max_delay_seconds: float = Field(default=20.0, gt=0, description="Backoff cap for transient errors")
    quota_base_delay_seconds: float | None = Field(default=None, gt=0, description="Initial backoff for quota errors")
    quota_max_delay_seconds: float | None = Field(default=None, gt=0, description="Backoff cap for quota errors")
    jitter_ratio: float = Field(default=0.3, ge=0, le=1, description="Jitter upper bound as a fraction of the delay")

    @model_validator(mode="after")
    def validate_delays(self) -> "RetrySettings":
        if self.transient_base_delay_seconds > self.transient_max_delay_seconds:
            raise ValueError("transient_base_delay_seconds must be <= transient_max_delay_seconds")
        if self.effective_quota_base > self.effective_quota_cap:
            raise ValueError("quota base delay must be <= quota max delay")
        return self

    @property
    def effective_quota_base(self) -> float:
        if self.quota_base_delay_seconds is not None:
            return self.quota_base_delay_seconds
        return self.transient_base_delay_seconds * QUOTA_BASE_MULTIPLIER

    @property
    def effective_quota_cap(self) -> float:
        if self.quota_max_delay_seconds is not None:
            return self.quota_max_delay_seconds
        return self.transient_max_delay_seconds * QUOTA_CAP_MULTIPLIER


class TimeoutSettings(BaseModel):
    """Per-attempt and per-call time limits."""

    model_config = {"frozen": True, "extra": "forbid"}

    request_timeout_seconds: float = Field(default=10.0, gt=0, description="Limit for a single attempt")
    deadline_seconds: float = Field(default=30.0, gt=0, description="Limit for a whole logical call, retries included")


class RateLimitSettings(BaseModel):
    """Local fixed-window budget mirroring the store's request quota.

    Example YAML:
        rate_limit:
          enabled: true
          ceiling: 60
          window_seconds: 60
    """

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = Field(default=True, description="Enable the local rate budget")
    ceiling: int = Field(default=60, gt=0, description="Maximum cost admitted per window")
    window_seconds: float = Field(default=60.0, gt=0, description="Window length")


def _default_resource_ttls() -> dict[str, float]:
    return {
        ResourceClass.VALUES: 30.0,
        ResourceClass.HEADER: 300.0,
        ResourceClass.METADATA: 600.0,
        ResourceClass.RAW: 30.0,
    }


class CacheSettings(BaseModel):
    """Read cache configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    enabled: bool = Field(default=True, description="Enable the read cache")
    max_entries: int = Field(default=200, gt=0, description="Entries kept before oldest-first eviction")
    default_ttl_seconds: float = Field(default=300.0, gt=0, description="TTL for resources without an override")
    ttl_seconds: dict[str, float] = Field(
        default_factory=_default_resource_ttls,
        description="TTL per resource class (values, header, metadata, raw)",
    )

    @field_validator("ttl_seconds")
    @classmethod
    def validate_ttls(cls, v: dict[str, float]) -> dict[str, float]:
        known = {str(resource) for resource in ResourceClass}
        unknown = sorted(set(v) - known)
        if unknown:
            raise ValueError(f"unknown cache resource classes: {unknown}; expected {sorted(known)}")
        for name, ttl in v.items():
            if ttl <= 0:
                raise ValueError(f"ttl for {name!r} must be positive, got {ttl}")
        return {**_default_resource_ttls(), **v}


class LoggingSettings(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    json_output: bool = Field(default=False, description="Emit JSON lines instead of console output")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {v!r}")
        return normalized


class RowGateSettings(BaseModel):
    """Top-level rowgate configuration.

    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    store: StoreSettings
    retry: RetrySettings = Field(default_factory=RetrySettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    schemas: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Expected header per sheet, confirmed before every logical operation",
    )

    @field_validator("schemas")
    @classmethod
    def validate_schemas(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        for sheet, header in v.items():
            if not header:
                raise ValueError(f"schema for sheet {sheet!r} must list at least one column")
            if any(not column.strip() for column in header):
                raise ValueError(f"schema for sheet {sheet!r} contains a blank column name")
            if len(set(header)) != len(header):
                raise ValueError(f"schema for sheet {sheet!r} has duplicate columns")
        return v


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """
    import os

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default = match.group(2)  # None if no default specified
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # No env var and no default - keep original (will likely cause error)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lowercase_keys(value: Any, *, keep_case: bool = False) -> Any:
    """Lowercase setting keys; sheet names under ``schemas`` keep their case."""
    if isinstance(value, dict):
        return {
            (k if keep_case else k.lower()): _lowercase_keys(v, keep_case=(not keep_case and k.lower() == "schemas"))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_lowercase_keys(item) for item in value]
    return value


def load_settings(config_path: Path) -> RowGateSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (ROWGATE_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: ROWGATE_RETRY__MAX_ATTEMPTS for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated RowGateSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="ROWGATE",
        settings_files=[str(config_path)],
        environments=False,  # No [default]/[production] sections
        load_dotenv=False,  # Don't auto-load .env
        merge_enabled=True,  # Deep merge nested dicts
    )

    # Dynaconf returns uppercase top-level keys; filter out its internal settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lowercase_keys(raw_config)

    raw_config = _expand_env_vars(raw_config)

    return RowGateSettings(**raw_config)


# Setting names whose values never appear in resolved output
_SECRET_FIELD_NAMES = frozenset({"token", "password", "secret", "private_key"})


def resolve_config(settings: RowGateSettings) -> dict[str, Any]:
    """Convert validated settings to a plain dict with secrets redacted.

    Used by ``rowgate check-config`` to show what will actually be used.
    """

    def _redact(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: ("***" if k in _SECRET_FIELD_NAMES and v is not None else _redact(v)) for k, v in value.items()}
        if isinstance(value, list):
            return [_redact(item) for item in value]
        return value

    resolved: dict[str, Any] = _redact(settings.model_dump(mode="json"))
    return resolved
