# tests/property/core/test_rate_budget_properties.py
"""Property-based tests for the fixed-window rate budget.

Rate Budget Properties:
- No window ever admits more than the ceiling
- A full window admits again once its boundary passes
- Window boundaries stay aligned to the first window
"""

from __future__ import annotations

import asyncio

import pytest
from hypothesis import given
from hypothesis import strategies as st

from rowgate.core.rate_limit import RateBudget
from tests.helpers.fakes import FakeClock
from tests.property.settings import QUICK_SETTINGS, STANDARD_SETTINGS

ceilings = st.integers(min_value=1, max_value=20)
window_lengths = st.sampled_from([1.0, 10.0, 60.0])

# Each step either tries to spend some cost or lets time pass
steps = st.lists(
    st.one_of(
        st.tuples(st.just("admit"), st.integers(min_value=1, max_value=5)),
        st.tuples(st.just("wait"), st.floats(min_value=0.0, max_value=90.0, allow_nan=False)),
    ),
    max_size=60,
)


class TestWindowCeiling:
    @given(ceiling=ceilings, window=window_lengths, script=steps)
    @STANDARD_SETTINGS
    def test_no_window_exceeds_ceiling(self, ceiling: int, window: float, script: list[tuple[str, float]]) -> None:
        """Property: total cost admitted inside any one window is at most the ceiling."""
        clock = FakeClock(start=0.0)
        budget = RateBudget(ceiling, window, clock=clock)
        spent: dict[float, int] = {}

        for action, amount in script:
            if action == "wait":
                clock.advance(amount)
                continue
            cost = int(amount)
            if cost > ceiling:
                continue
            if budget.try_admit(cost):
                spent[budget.window_start] = spent.get(budget.window_start, 0) + cost

        assert all(total <= ceiling for total in spent.values())

    @given(ceiling=ceilings, window=window_lengths)
    @STANDARD_SETTINGS
    def test_full_window_reopens_at_boundary(self, ceiling: int, window: float) -> None:
        clock = FakeClock(start=0.0)
        budget = RateBudget(ceiling, window, clock=clock)
        assert all(budget.try_admit() for _ in range(ceiling))
        assert budget.try_admit() is False

        clock.advance(window)

        assert budget.try_admit() is True

    @given(window=window_lengths, idle=st.floats(min_value=0.0, max_value=10_000.0, allow_nan=False))
    @STANDARD_SETTINGS
    def test_windows_stay_aligned(self, window: float, idle: float) -> None:
        clock = FakeClock(start=0.0)
        budget = RateBudget(5, window, clock=clock)

        clock.advance(idle)
        budget.try_admit()

        assert budget.window_start % window == 0.0
        assert budget.window_start <= clock() < budget.window_start + window


class TestCostValidation:
    @given(ceiling=ceilings, excess=st.integers(min_value=1, max_value=100))
    @QUICK_SETTINGS
    def test_cost_above_ceiling_rejected(self, ceiling: int, excess: int) -> None:
        budget = RateBudget(ceiling, 60.0, clock=FakeClock())

        with pytest.raises(ValueError, match="exceeds window ceiling"):
            asyncio.run(budget.admit(ceiling + excess))
