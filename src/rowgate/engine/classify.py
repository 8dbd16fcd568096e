# src/rowgate/engine/classify.py
"""Failure classification for row store calls.

Every failure maps to exactly one of TRANSIENT, QUOTA or FATAL. The store
sometimes reports its own quota as exceeded inside the response body of a
200/429/500 response, so classification reads the body, not just the status.

Classification also answers a second question for non-idempotent calls:
could the failed request have been applied? Only failures that prove it was
not (quota, 408/429, connect-phase errors) make a blind replay safe.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from rowgate.contracts.enums import ErrorKind
from rowgate.contracts.errors import StoreResponseError

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
# Statuses on which the store embeds its quota errors
QUOTA_STATUS_CODES = frozenset({200, 429, 500})
# Statuses that guarantee the request was rejected before being applied
NOT_APPLIED_STATUS_CODES = frozenset({408, 429})

QUOTA_STATUS_MARKERS = frozenset({"RESOURCE_EXHAUSTED"})
QUOTA_REASON_MARKERS = frozenset({"ratelimitexceeded", "userratelimitexceeded", "quotaexceeded", "rate_limit_exceeded"})
QUOTA_MESSAGE_MARKERS = ("quota exceeded", "resource_exhausted", "ratelimitexceeded")

_NOT_APPLIED_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.PoolTimeout,
)


class AttemptTimeout(Exception):
    """A single attempt exceeded its per-attempt timeout."""

    def __init__(self, target: str, timeout: float) -> None:
        self.target = target
        self.timeout = timeout
        super().__init__(f"attempt on {target} exceeded {timeout:.2f}s")


@dataclass(frozen=True, slots=True)
class Classification:
    """Result of classifying one failure.

    Attributes:
        kind: TRANSIENT, QUOTA or FATAL
        applied_unknown: True when the request may have reached the store
            and been applied before failing
    """

    kind: ErrorKind
    applied_unknown: bool

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.TRANSIENT, ErrorKind.QUOTA)


def _error_object(payload: Any) -> Mapping[str, Any] | None:
    if isinstance(payload, Mapping):
        error = payload.get("error")
        if isinstance(error, Mapping):
            return error
    return None


def _payload_from_body(body: str) -> Any:
    try:
        return json.loads(body)
    except (ValueError, TypeError):
        return None


def body_signals_quota(body: str, payload: Any = None) -> bool:
    """Whether a response body reports the store's own quota as exceeded."""
    if payload is None:
        payload = _payload_from_body(body)
    error = _error_object(payload)
    if error is not None:
        if str(error.get("status", "")).upper() in QUOTA_STATUS_MARKERS:
            return True
        reasons: list[str] = []
        for detail_key in ("errors", "details"):
            details = error.get(detail_key)
            if isinstance(details, list):
                reasons.extend(str(item.get("reason", "")) for item in details if isinstance(item, Mapping))
        if any(reason.lower() in QUOTA_REASON_MARKERS for reason in reasons):
            return True
        message = str(error.get("message", "")).lower()
        if any(marker in message for marker in QUOTA_MESSAGE_MARKERS):
            return True
        return False
    lowered = body.lower()
    return any(marker in lowered for marker in QUOTA_MESSAGE_MARKERS)


def classify_response(error: StoreResponseError) -> Classification:
    status = error.status_code
    if status in QUOTA_STATUS_CODES and body_signals_quota(error.body, error.payload):
        # the store refused the request outright
        return Classification(ErrorKind.QUOTA, applied_unknown=False)
    if status in TRANSIENT_STATUS_CODES:
        return Classification(ErrorKind.TRANSIENT, applied_unknown=status not in NOT_APPLIED_STATUS_CODES)
    return Classification(ErrorKind.FATAL, applied_unknown=False)


def classify_failure(error: BaseException) -> Classification:
    """Classify a failure raised by one attempt.

    Args:
        error: Exception raised by the attempt

    Returns:
        Classification with kind and whether the request may have applied
    """
    if isinstance(error, StoreResponseError):
        return classify_response(error)
    if isinstance(error, AttemptTimeout):
        return Classification(ErrorKind.TRANSIENT, applied_unknown=True)
    if isinstance(error, _NOT_APPLIED_TRANSPORT_ERRORS):
        return Classification(ErrorKind.TRANSIENT, applied_unknown=False)
    if isinstance(error, httpx.UnsupportedProtocol):
        return Classification(ErrorKind.FATAL, applied_unknown=False)
    if isinstance(error, httpx.TransportError):
        return Classification(ErrorKind.TRANSIENT, applied_unknown=True)
    # Malformed requests, auth failures raised client-side, programming errors
    return Classification(ErrorKind.FATAL, applied_unknown=False)
