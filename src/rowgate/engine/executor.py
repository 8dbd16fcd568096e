# src/rowgate/engine/executor.py
"""Rate-limited executor for row store calls.

Every physical call passes through here. Each attempt of a call, retries
included, is admitted against the shared rate budget before it is sent, so
the local budget sees exactly the traffic the store's quota sees.

Admission is FIFO; completion order is not guaranteed.
"""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Any, Protocol

import structlog

from rowgate.contracts.calls import CallDescriptor
from rowgate.engine.retry import Deadline, RetryController

logger = structlog.get_logger(__name__)


class Budget(Protocol):
    """What the executor needs from a rate budget."""

    async def admit(self, cost: int = 1) -> None: ...

    async def aclose(self) -> None: ...


class RateLimitedExecutor:
    """Runs call descriptors through the rate budget and retry controller.

    Example:
        executor = RateLimitedExecutor(RateBudget(60), RetryController(policy))

        rows = await executor.run(descriptor)
        task = executor.submit(other_descriptor)
    """

    def __init__(self, budget: Budget, retry: RetryController) -> None:
        self._budget = budget
        self._retry = retry
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def budget(self) -> Budget:
        return self._budget

    @property
    def retry(self) -> RetryController:
        return self._retry

    @property
    def pending(self) -> int:
        """Number of submitted calls not yet finished."""
        return len(self._tasks)

    async def run(self, descriptor: CallDescriptor, *, timeout: float | Deadline | None = None) -> Any:
        """Admit, execute and retry one call; return its result.

        Args:
            descriptor: Call to perform
            timeout: Caller deadline for the whole call, in seconds or as a
                Deadline shared across the calls of one logical operation

        Raises:
            RuntimeError: If the executor has been closed
            RowStoreError: Terminal failure from the retry controller
        """
        if self._closed:
            raise RuntimeError("executor is closed")
        return await self._retry.execute(descriptor, deadline=timeout, admit=self._budget.admit)

    def submit(self, descriptor: CallDescriptor, *, timeout: float | Deadline | None = None) -> asyncio.Task[Any]:
        """Schedule a call and return the task that will carry its result.

        Must be called from within a running event loop.
        """
        if self._closed:
            raise RuntimeError("executor is closed")
        task = asyncio.get_running_loop().create_task(
            self.run(descriptor, timeout=timeout),
            name=f"rowgate:{descriptor.label}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def aclose(self) -> None:
        """Cancel outstanding calls and release the budget."""
        if self._closed:
            return
        self._closed = True
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            logger.info("Cancelling outstanding row store calls", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        await self._budget.aclose()

    async def __aenter__(self) -> RateLimitedExecutor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
