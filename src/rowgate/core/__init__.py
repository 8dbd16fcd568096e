# src/rowgate/core/__init__.py
"""Core infrastructure: configuration, logging, cache, rate budget, A1 notation."""

from rowgate.core.cache import CacheEntry, RangeKeys, RowCache
from rowgate.core.config import (
    CacheSettings,
    LoggingSettings,
    RateLimitSettings,
    RetrySettings,
    RowGateSettings,
    StoreSettings,
    TimeoutSettings,
    load_settings,
    resolve_config,
)
from rowgate.core.logging import configure_from_settings, configure_logging, get_logger
from rowgate.core.rate_limit import NoOpBudget, RateBudget

__all__ = [
    "CacheEntry",
    "CacheSettings",
    "LoggingSettings",
    "NoOpBudget",
    "RangeKeys",
    "RateBudget",
    "RateLimitSettings",
    "RetrySettings",
    "RowCache",
    "RowGateSettings",
    "StoreSettings",
    "TimeoutSettings",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "load_settings",
    "resolve_config",
]
