"""Execution engine: failure classification, retries, rate-limited execution, CRUD."""

from rowgate.engine.classify import AttemptTimeout, Classification, classify_failure
from rowgate.engine.crud import RowStoreEngine, delete_dimension_requests
from rowgate.engine.executor import RateLimitedExecutor
from rowgate.engine.retry import Deadline, RetryController, RetryPolicy, backoff_delay

__all__ = [
    "AttemptTimeout",
    "Classification",
    "Deadline",
    "RateLimitedExecutor",
    "RetryController",
    "RetryPolicy",
    "RowStoreEngine",
    "backoff_delay",
    "classify_failure",
    "delete_dimension_requests",
]
