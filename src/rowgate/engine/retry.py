# src/rowgate/engine/retry.py
"""RetryController: retry logic with tenacity integration.

Wraps one physical call (a CallDescriptor) and re-executes it with
exponential backoff:

    backoff(n) = min(base * 2^(n-1), cap) + U(0, jitter_ratio * delay)

where n is the number of the attempt that just failed. Quota failures use
their own (larger) base and cap. Fatal failures are never retried.

Two time limits apply:
- request timeout: bounds each attempt; a timed-out attempt is transient
  and counts toward max_attempts
- deadline: bounds the whole call, retries and backoff included; when it
  elapses the in-flight attempt is cancelled and RowStoreTimeout is raised
  regardless of how many attempts remain. Waiting for rate-budget admission
  pauses it. A Deadline object lets the calls of one logical operation share
  a single limit.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from rowgate.contracts.calls import CallDescriptor, RetryState
from rowgate.contracts.enums import ErrorKind
from rowgate.contracts.errors import FatalError, RowStoreError, RowStoreTimeout, error_for_kind
from rowgate.engine.classify import AttemptTimeout, classify_failure

if TYPE_CHECKING:
    from rowgate.core.config import RetrySettings, TimeoutSettings

logger = structlog.get_logger(__name__)

AdmitHook = Callable[[int], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Runtime retry configuration.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    transient_base_delay: float = 1.0
    transient_max_delay: float = 20.0
    quota_base_delay: float = 3.0
    quota_max_delay: float = 40.0
    jitter_ratio: float = 0.3
    request_timeout: float = 10.0
    deadline: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        for name in ("transient_base_delay", "transient_max_delay", "quota_base_delay", "quota_max_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be within [0, 1]")
        if self.request_timeout <= 0 or self.deadline <= 0:
            raise ValueError("request_timeout and deadline must be positive")

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, retry: RetrySettings, timeouts: TimeoutSettings) -> RetryPolicy:
        """Factory from validated settings models."""
        return cls(
            max_attempts=retry.max_attempts,
            transient_base_delay=retry.transient_base_delay_seconds,
            transient_max_delay=retry.transient_max_delay_seconds,
            quota_base_delay=retry.effective_quota_base,
            quota_max_delay=retry.effective_quota_cap,
            jitter_ratio=retry.jitter_ratio,
            request_timeout=timeouts.request_timeout_seconds,
            deadline=timeouts.deadline_seconds,
        )

    def limits_for(self, kind: ErrorKind) -> tuple[float, float]:
        """(base, cap) backoff parameters for a failure kind."""
        if kind == ErrorKind.QUOTA:
            return self.quota_base_delay, self.quota_max_delay
        return self.transient_base_delay, self.transient_max_delay


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Un-jittered delay after the ``attempt``-th failure (1-based)."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    # cap before exponentiating far enough to overflow
    exponent = min(attempt - 1, 64)
    return min(base * (2**exponent), cap)


class Deadline:
    """Time limit shared by the physical calls of one logical operation.

    Waiting for rate-budget admission does not count against it: the retry
    controller extends the deadline by every admission wait.
    """

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if seconds <= 0:
            raise ValueError(f"deadline must be positive, got {seconds}")
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    @classmethod
    def coerce(cls, timeout: float | Deadline | None) -> Deadline | None:
        """Start a deadline from seconds; pass an existing one through."""
        if timeout is None or isinstance(timeout, Deadline):
            return timeout
        return cls(timeout)

    def remaining(self) -> float:
        return self._expires_at - self._clock()

    def extend(self, seconds: float) -> None:
        self._expires_at += seconds


class RetryController:
    """Executes call descriptors with classification-aware retries.

    Example:
        controller = RetryController(RetryPolicy(max_attempts=3))

        values = await controller.execute(descriptor)
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize with policy.

        Args:
            policy: Retry policy
            sleep: Async sleep used between attempts (injectable for tests)
            rng: Random source for jitter (injectable for tests)
        """
        self._policy = policy
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def backoff(self, attempt: int, kind: ErrorKind) -> float:
        """Jittered delay to wait after the ``attempt``-th failure."""
        base, cap = self._policy.limits_for(kind)
        delay = backoff_delay(attempt, base, cap)
        return delay + self._rng.uniform(0, self._policy.jitter_ratio * delay)

    def _should_retry(self, descriptor: CallDescriptor, error: BaseException) -> bool:
        classification = classify_failure(error)
        if not classification.retryable:
            return False
        # A replayed append or structural delete could duplicate its effect
        return bool(descriptor.idempotent) or not classification.applied_unknown

    async def execute(
        self,
        descriptor: CallDescriptor,
        *,
        deadline: float | Deadline | None = None,
        admit: AdmitHook | None = None,
    ) -> Any:
        """Execute a call with retries.

        Args:
            descriptor: Call to perform
            deadline: Caller deadline for the whole call, in seconds or as a
                Deadline shared with the other calls of a logical operation;
                the shorter of this and the policy deadline applies
            admit: Awaited with the descriptor's cost before every attempt
                (the executor passes its rate budget here). Time spent in it
                is not charged to either deadline.

        Returns:
            Result of the successful attempt

        Raises:
            TransientError: Transient failures outlasted max_attempts, or a
                non-idempotent call failed ambiguously
            QuotaExhaustedError: Quota failures outlasted max_attempts
            FatalError: Non-retryable failure (raised on first occurrence)
            RowStoreTimeout: Deadline elapsed, or the last attempt timed out
        """
        shared = Deadline.coerce(deadline)
        budget, limit = self._policy.deadline, self._policy.deadline
        if shared is not None and shared.remaining() < budget:
            budget, limit = shared.remaining(), shared.seconds
        state = RetryState(descriptor)
        if budget <= 0:
            raise self._deadline_error(state, limit)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=lambda retry_state: self._wait(state, retry_state),
            retry=retry_if_exception(lambda error: self._should_retry(descriptor, error)),
            sleep=self._sleep,
            before_sleep=lambda retry_state: self._log_retry(state, retry_state),
            reraise=True,
        )

        scope = asyncio.timeout(budget)
        try:
            async with scope:
                return await retrying(self._attempt, state, admit, scope, shared)
        except TimeoutError as exc:
            if scope.expired():
                raise self._deadline_error(state, limit) from exc
            raise self._terminal_error(state, exc) from exc
        except RowStoreError:
            raise
        except Exception as exc:
            raise self._terminal_error(state, exc) from exc

    async def _admit(self, admit: AdmitHook, cost: int, scope: asyncio.Timeout, shared: Deadline | None) -> None:
        # the deadline clock stops while the call queues for the budget
        loop = asyncio.get_running_loop()
        expires_at = scope.when()
        scope.reschedule(None)
        started = loop.time()
        try:
            await admit(cost)
        finally:
            waited = loop.time() - started
            if expires_at is not None:
                scope.reschedule(expires_at + waited)
            if shared is not None:
                shared.extend(waited)

    async def _attempt(
        self, state: RetryState, admit: AdmitHook | None, scope: asyncio.Timeout, shared: Deadline | None
    ) -> Any:
        descriptor = state.descriptor
        if admit is not None:
            await self._admit(admit, descriptor.cost, scope, shared)
        timeout = descriptor.timeout or self._policy.request_timeout
        started = time.monotonic()
        state.in_flight_since = started
        try:
            result = await asyncio.wait_for(descriptor.invoke(), timeout)
        except TimeoutError as exc:
            state.in_flight_since = None
            failure = AttemptTimeout(descriptor.target, timeout)
            state.record(ErrorKind.TRANSIENT, failure, time.monotonic() - started)
            raise failure from exc
        except Exception as exc:
            state.in_flight_since = None
            state.record(classify_failure(exc).kind, exc, time.monotonic() - started)
            raise
        # CancelledError leaves in_flight_since set so a deadline can account for it
        state.in_flight_since = None
        return result

    def _wait(self, state: RetryState, retry_state: RetryCallState) -> float:
        if retry_state.attempt_number >= self._policy.max_attempts:
            # no sleep follows the last attempt
            return 0.0
        kind = state.last_kind or ErrorKind.TRANSIENT
        delay = self.backoff(retry_state.attempt_number, kind)
        state.schedule(delay)
        return delay

    def _log_retry(self, state: RetryState, retry_state: RetryCallState) -> None:
        last = state.attempts[-1]
        logger.warning(
            "Retrying row store call",
            call=str(state.descriptor.kind),
            target=state.descriptor.target,
            attempt=retry_state.attempt_number,
            max_attempts=self._policy.max_attempts,
            kind=str(last.kind),
            delay=round(state.next_delay or 0.0, 3),
            error=last.error,
        )

    def _deadline_error(self, state: RetryState, limit: float) -> RowStoreTimeout:
        if state.in_flight_since is not None:
            elapsed = time.monotonic() - state.in_flight_since
            state.record(ErrorKind.TIMEOUT, AttemptTimeout(state.descriptor.target, elapsed), elapsed)
            state.in_flight_since = None
        descriptor = state.descriptor
        logger.error(
            "Row store call deadline exceeded",
            call=str(descriptor.kind),
            target=descriptor.target,
            deadline=limit,
            attempts=state.attempt_count,
        )
        return RowStoreTimeout(
            f"{descriptor.label} exceeded its {limit:.2f}s deadline after {state.attempt_count} attempt(s)",
            attempts=state.history(),
            context={"call": str(descriptor.kind), "target": descriptor.target},
        )

    def _terminal_error(self, state: RetryState, error: BaseException) -> RowStoreError:
        descriptor = state.descriptor
        classification = classify_failure(error)
        count = state.attempt_count
        message = f"{descriptor.label} failed after {count} attempt(s): {error}"
        context = {"call": str(descriptor.kind), "target": descriptor.target}
        exhausted = classification.retryable and count >= self._policy.max_attempts

        kind = classification.kind
        if isinstance(error, AttemptTimeout) and exhausted:
            kind = ErrorKind.TIMEOUT
        elif kind == ErrorKind.TRANSIENT and not exhausted:
            message = f"{message} (not retried: request may already have been applied)"

        terminal: RowStoreError
        if kind == ErrorKind.FATAL:
            status_code = getattr(error, "status_code", None)
            terminal = FatalError(message, status_code=status_code, attempts=state.history(), context=context)
        else:
            terminal = error_for_kind(kind)(message, attempts=state.history(), context=context)

        log = logger.warning if terminal.kind in (ErrorKind.QUOTA, ErrorKind.FATAL) else logger.error
        log(
            "Row store call failed",
            call=str(descriptor.kind),
            target=descriptor.target,
            kind=str(terminal.kind),
            attempts=count,
            error=f"{type(error).__name__}: {error}",
        )
        return terminal
