# src/rowgate/core/rate_limit/budget.py
"""Fixed-window rate budget for calls to the row store.

The store enforces a hard per-minute request ceiling. The budget charges
each call's cost against the current window at admission time (not at
completion), so a burst of concurrent submissions cannot collectively
overshoot the ceiling before any of them resolves.

Admission is FIFO: waiters queue on an asyncio.Lock, which wakes waiters in
arrival order. A caller that does not fit in the current window sleeps until
the window boundary while holding the lock, so nobody behind it can jump
the queue.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class RateBudget:
    """Process-wide fixed-window call budget.

    Example:
        budget = RateBudget(ceiling=60, window_seconds=60.0)

        await budget.admit()          # waits for the next window if needed
        response = await call_store()
    """

    def __init__(
        self,
        ceiling: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the budget.

        Args:
            ceiling: Maximum total cost admitted per window. Must be > 0.
            window_seconds: Window length. Must be > 0.
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep used for the window wake-up (injectable)

        Raises:
            ValueError: If ceiling or window_seconds is not positive.
        """
        if ceiling <= 0:
            raise ValueError(f"ceiling must be positive, got {ceiling}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self.ceiling = ceiling
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._window_start = clock()
        self._used = 0
        self._lock = asyncio.Lock()
        self._total_admitted = 0
        self._total_waits = 0
        self._total_wait_time = 0.0

    @property
    def window_start(self) -> float:
        return self._window_start

    @property
    def used(self) -> int:
        """Cost charged in the current window (after rolling if elapsed)."""
        self._roll(self._clock())
        return self._used

    @property
    def available(self) -> int:
        return self.ceiling - self.used

    def _roll(self, now: float) -> None:
        """Start a new window if the current one elapsed.

        Windows are aligned to the original start so a long idle period does
        not shift boundaries.
        """
        elapsed = now - self._window_start
        if elapsed >= self.window_seconds:
            windows_passed = int(elapsed // self.window_seconds)
            self._window_start += windows_passed * self.window_seconds
            self._used = 0

    def _try_charge(self, cost: int) -> bool:
        self._roll(self._clock())
        if self._used + cost <= self.ceiling:
            self._used += cost
            self._total_admitted += 1
            return True
        return False

    async def admit(self, cost: int = 1) -> None:
        """Charge ``cost`` against the budget, waiting for a later window if needed.

        Check-and-increment happens inside one critical section. The charge
        is never refunded, even if the caller is cancelled afterwards.

        Raises:
            ValueError: If cost < 1 or cost exceeds the ceiling (it could
                never be admitted).
        """
        if cost < 1:
            raise ValueError(f"cost must be >= 1, got {cost}")
        if cost > self.ceiling:
            raise ValueError(f"cost {cost} exceeds window ceiling {self.ceiling}")

        async with self._lock:
            while not self._try_charge(cost):
                wait_time = max(0.0, self._window_start + self.window_seconds - self._clock())
                self._total_waits += 1
                self._total_wait_time += wait_time
                logger.debug(
                    "Rate budget exhausted, waiting for next window",
                    wait_seconds=round(wait_time, 3),
                    used=self._used,
                    ceiling=self.ceiling,
                )
                await self._sleep(wait_time)

    def try_admit(self, cost: int = 1) -> bool:
        """Charge without waiting. False if the current window is full or busy."""
        if cost < 1:
            raise ValueError(f"cost must be >= 1, got {cost}")
        if self._lock.locked():
            return False
        return self._try_charge(cost)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "ceiling": self.ceiling,
            "window_seconds": self.window_seconds,
            "used": self.used,
            "total_admitted": self._total_admitted,
            "total_waits": self._total_waits,
            "total_wait_time": round(self._total_wait_time, 3),
        }

    def reset(self) -> None:
        """Start a fresh window (for testing)."""
        self._window_start = self._clock()
        self._used = 0
        self._total_admitted = 0
        self._total_waits = 0
        self._total_wait_time = 0.0

    async def aclose(self) -> None:
        """Nothing to release; present for lifecycle symmetry."""

    async def __aenter__(self) -> RateBudget:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class NoOpBudget:
    """Budget used when rate limiting is disabled.

    Same interface as RateBudget; every admission succeeds instantly.
    """

    async def admit(self, cost: int = 1) -> None:
        """No-op admit."""

    def try_admit(self, cost: int = 1) -> bool:
        return True

    @property
    def stats(self) -> dict[str, Any]:
        return {"enabled": False}

    async def aclose(self) -> None:
        """No-op close."""

    async def __aenter__(self) -> NoOpBudget:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
