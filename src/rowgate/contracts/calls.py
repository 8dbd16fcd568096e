# src/rowgate/contracts/calls.py
"""Call descriptors and retry bookkeeping.

A CallDescriptor is one physical request to the row store, described as a
tagged value (kind + target + params) plus the coroutine factory that
performs it. The retry controller and executor only ever look at the tag,
the idempotency flag, the cost and the timeout - never at the params.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from rowgate.contracts.enums import CallKind, ErrorKind

@dataclass(frozen=True, slots=True)
class CallDescriptor:
    """One unit of retryable work against the row store.

    Attributes:
        kind: Which API endpoint the call hits
        target: Range or spreadsheet the call addresses (for logs and errors)
        invoke: Zero-argument coroutine factory; called once per attempt
        params: Request parameters, for diagnostics only
        idempotent: Safe to replay blindly. Defaults to the kind's property.
        cost: Units charged against the rate budget per attempt
        timeout: Per-attempt timeout in seconds (None = controller default)
    """

    kind: CallKind
    target: str
    invoke: Callable[[], Awaitable[Any]]
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    idempotent: bool | None = None
    cost: int = 1
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.cost < 1:
            raise ValueError(f"cost must be >= 1, got {self.cost}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.idempotent is None:
            # frozen dataclass: bypass __setattr__ to resolve the default
            object.__setattr__(self, "idempotent", self.kind.idempotent)

    @property
    def label(self) -> str:
        return f"{self.kind} {self.target}"


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """Outcome of one failed attempt, kept for diagnostics."""

    number: int  # 1-based
    kind: ErrorKind
    error: str
    elapsed: float
    delay: float | None = None  # backoff that followed, None if none did


@dataclass
class RetryState:
    """Per-call retry state.

    Created when a call begins, discarded when it succeeds or is abandoned.
    The attempt history outlives it by being attached to terminal errors.
    """

    descriptor: CallDescriptor
    attempts: list[AttemptRecord] = field(default_factory=list)
    last_kind: ErrorKind | None = None
    next_delay: float | None = None
    in_flight_since: float | None = None  # monotonic start of the running attempt

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def record(self, kind: ErrorKind, error: BaseException, elapsed: float) -> None:
        self.attempts.append(
            AttemptRecord(
                number=len(self.attempts) + 1,
                kind=kind,
                error=f"{type(error).__name__}: {error}",
                elapsed=elapsed,
            )
        )
        self.last_kind = kind

    def schedule(self, delay: float) -> None:
        """Note the backoff delay that follows the latest failed attempt."""
        self.next_delay = delay
        if self.attempts:
            last = self.attempts[-1]
            self.attempts[-1] = AttemptRecord(
                number=last.number,
                kind=last.kind,
                error=last.error,
                elapsed=last.elapsed,
                delay=delay,
            )

    def history(self) -> tuple[AttemptRecord, ...]:
        return tuple(self.attempts)
