# tests/engine/test_rate_limited_executor.py
"""Tests for RateLimitedExecutor."""

import asyncio
import random

import pytest

from rowgate.contracts import CallDescriptor, CallKind, RowStoreTimeout, TransientError
from rowgate.contracts.errors import StoreResponseError
from rowgate.core.rate_limit import NoOpBudget, RateBudget
from rowgate.engine import RateLimitedExecutor, RetryController, RetryPolicy
from tests.helpers.fakes import FakeClock, RecordingSleep, ScriptedCall, error_body, hang

SERVER_ERROR = StoreResponseError(503, error_body(503, "The service is currently unavailable", "UNAVAILABLE"))


def descriptor(invoke, target: str = "'Users'") -> CallDescriptor:
    return CallDescriptor(kind=CallKind.VALUES_GET, target=target, invoke=invoke)


@pytest.fixture
def retry() -> RetryController:
    return RetryController(RetryPolicy(jitter_ratio=0.0), sleep=RecordingSleep(), rng=random.Random(3))


class TestRun:
    @pytest.mark.asyncio
    async def test_returns_result(self, retry: RetryController) -> None:
        async with RateLimitedExecutor(NoOpBudget(), retry) as executor:
            assert await executor.run(descriptor(ScriptedCall({"values": [["id"]]}))) == {"values": [["id"]]}

    @pytest.mark.asyncio
    async def test_every_attempt_is_charged(self, retry: RetryController, fake_clock: FakeClock) -> None:
        """Retries consume budget like first attempts do."""
        budget = RateBudget(10, 60.0, clock=fake_clock, sleep=fake_clock.sleep)
        executor = RateLimitedExecutor(budget, retry)

        await executor.run(descriptor(ScriptedCall(SERVER_ERROR, SERVER_ERROR, "ok")))

        assert budget.used == 3
        assert budget.stats["total_admitted"] == 3

    @pytest.mark.asyncio
    async def test_retries_wait_for_budget(self, retry: RetryController, fake_clock: FakeClock) -> None:
        budget = RateBudget(1, 60.0, clock=fake_clock, sleep=fake_clock.sleep)
        executor = RateLimitedExecutor(budget, retry)

        await executor.run(descriptor(ScriptedCall(SERVER_ERROR, "ok")))

        assert fake_clock.sleeps == [60.0]

    @pytest.mark.asyncio
    async def test_terminal_error_propagates(self, retry: RetryController) -> None:
        executor = RateLimitedExecutor(NoOpBudget(), retry)

        with pytest.raises(TransientError):
            await executor.run(descriptor(ScriptedCall(SERVER_ERROR)))

    @pytest.mark.asyncio
    async def test_exposes_components(self, retry: RetryController) -> None:
        budget = NoOpBudget()
        executor = RateLimitedExecutor(budget, retry)

        assert executor.budget is budget
        assert executor.retry is retry


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_returns_task(self, retry: RetryController) -> None:
        executor = RateLimitedExecutor(NoOpBudget(), retry)

        task = executor.submit(descriptor(ScriptedCall("ok")))

        assert isinstance(task, asyncio.Task)
        assert task.get_name() == "rowgate:values.get 'Users'"
        assert await task == "ok"
        await asyncio.sleep(0)
        assert executor.pending == 0

    @pytest.mark.asyncio
    async def test_admission_follows_submission_order(self, retry: RetryController, fake_clock: FakeClock) -> None:
        budget = RateBudget(2, 60.0, clock=fake_clock, sleep=fake_clock.sleep)
        executor = RateLimitedExecutor(budget, retry)
        started: list[str] = []

        def recording(name: str):
            async def invoke() -> str:
                started.append(name)
                return name

            return invoke

        tasks = [executor.submit(descriptor(recording(f"call-{index}"))) for index in range(5)]
        await asyncio.gather(*tasks)

        assert started == [f"call-{index}" for index in range(5)]
        assert fake_clock.sleeps == [60.0, 60.0]


class TestAdmissionAndDeadlines:
    """Calls deferred to a later window are admitted, not timed out.

    The budget runs on the real clock here, with the window twice the
    deadline (the default ratio is 60s to 30s).
    """

    @pytest.mark.asyncio
    async def test_burst_over_ceiling_is_deferred(self) -> None:
        retry = RetryController(RetryPolicy(deadline=0.1, request_timeout=0.05, jitter_ratio=0.0))
        budget = RateBudget(2, 0.2)
        executor = RateLimitedExecutor(budget, retry)

        results = await asyncio.gather(*(executor.run(descriptor(ScriptedCall(f"call-{i}"))) for i in range(5)))

        assert results == [f"call-{i}" for i in range(5)]
        assert budget.stats["total_admitted"] == 5
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_caller_timeout_excludes_admission_wait(self) -> None:
        retry = RetryController(RetryPolicy(jitter_ratio=0.0))
        executor = RateLimitedExecutor(RateBudget(1, 0.2), retry)

        first = executor.run(descriptor(ScriptedCall("first")), timeout=0.1)
        second = executor.run(descriptor(ScriptedCall("second")), timeout=0.1)

        assert await asyncio.gather(first, second) == ["first", "second"]
        await executor.aclose()

    @pytest.mark.asyncio
    async def test_deadline_still_bounds_the_attempt(self) -> None:
        retry = RetryController(RetryPolicy(deadline=0.05, request_timeout=5.0, jitter_ratio=0.0))
        executor = RateLimitedExecutor(RateBudget(1, 0.2), retry)

        assert await executor.run(descriptor(ScriptedCall("ok"))) == "ok"
        with pytest.raises(RowStoreTimeout, match="0.05s deadline"):
            await executor.run(descriptor(hang))
        await executor.aclose()


class TestClose:
    @pytest.mark.asyncio
    async def test_aclose_cancels_pending(self, retry: RetryController) -> None:
        executor = RateLimitedExecutor(NoOpBudget(), retry)
        task = executor.submit(descriptor(hang))
        await asyncio.sleep(0)

        assert executor.pending == 1
        await executor.aclose()

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_closed_executor_rejects_work(self, retry: RetryController) -> None:
        executor = RateLimitedExecutor(NoOpBudget(), retry)
        await executor.aclose()

        with pytest.raises(RuntimeError, match="closed"):
            await executor.run(descriptor(ScriptedCall("ok")))
        with pytest.raises(RuntimeError, match="closed"):
            executor.submit(descriptor(ScriptedCall("ok")))

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, retry: RetryController) -> None:
        executor = RateLimitedExecutor(NoOpBudget(), retry)

        await executor.aclose()
        await executor.aclose()
