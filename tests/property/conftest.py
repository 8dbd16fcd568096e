# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

Strategy Categories:
- Grids: sheets as lists of rows, header first
- Positions: 1-based data row positions within a grid
- Sheet titles: including quotes and spaces, as users name them

Usage:
    from tests.property.conftest import grids_with_positions

    @given(case=grids_with_positions())
    def test_delete_order(case) -> None:
        ...
"""

from __future__ import annotations

from hypothesis import strategies as st

from rowgate.contracts import FIRST_DATA_ROW

# Cell values as the values API returns them: short strings
cell_values = st.text(alphabet="abcdefghij0123456789 ", max_size=6)

# Sheet titles users actually create: spaces, quotes, punctuation
sheet_titles = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789 '-_()",
    min_size=1,
    max_size=20,
).filter(lambda title: title.strip() != "")


@st.composite
def grids_with_positions(draw: st.DrawFn, max_rows: int = 30) -> tuple[list[list[str]], list[int]]:
    """A grid with uniquely labelled rows plus a set of data positions in it.

    Row labels make every row distinguishable, so a test can tell exactly
    which rows a deletion removed.
    """
    data_rows = draw(st.integers(min_value=0, max_value=max_rows))
    grid = [["header"], *[[f"row-{index}"] for index in range(FIRST_DATA_ROW, FIRST_DATA_ROW + data_rows)]]
    positions = draw(
        st.lists(
            st.integers(min_value=FIRST_DATA_ROW, max_value=len(grid)),
            max_size=data_rows,
            unique=True,
        )
        if data_rows
        else st.just([])
    )
    return grid, positions
