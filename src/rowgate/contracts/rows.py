# src/rowgate/contracts/rows.py
"""Logical row view over a positional sheet."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

# Row 1 holds the header; data rows start here.
FIRST_DATA_ROW = 2


def normalize_cell(value: Any) -> str:
    """Normalize a cell for key comparison (string form, trimmed)."""
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class LogicalRow:
    """One record of a sheet plus where it currently sits.

    ``position`` is the 1-based physical row in the sheet at the time of the
    read that produced this object. It is not an identifier: any insert or
    delete above the row shifts it.
    """

    values: Mapping[str, str]
    position: int
    header: tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def from_cells(cls, header: Sequence[str], cells: Sequence[Any], position: int) -> LogicalRow:
        """Build a row from raw cells, padding short rows with empty strings.

        Cells beyond the header are dropped; the store returns ragged rows
        and trailing empty cells are omitted by the API.
        """
        padded = [("" if cell is None else str(cell)) for cell in cells[: len(header)]]
        padded.extend("" for _ in range(len(header) - len(padded)))
        return cls(
            values=MappingProxyType(dict(zip(header, padded, strict=True))),
            position=position,
            header=tuple(header),
        )

    def __getitem__(self, column: str) -> str:
        return self.values[column]

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def get(self, column: str, default: str | None = None) -> str | None:
        return self.values.get(column, default)

    def to_dict(self) -> dict[str, str]:
        return dict(self.values)

    def cells(self) -> list[str]:
        """Cell values in header order, ready for a positional write."""
        return [self.values[column] for column in self.header]


RowPredicate = Callable[[LogicalRow], bool]


def where(filters: Mapping[str, Any] | None = None, /, **columns: Any) -> RowPredicate:
    """Predicate matching rows whose columns equal the given values.

    Comparison is on normalized strings, so ``where(id=7)`` matches a cell
    holding ``" 7"``. Column names that are not identifiers go in the
    positional mapping: ``where({"Created At": "2024-01-01"})``.
    """
    merged = {**(filters or {}), **columns}
    expected = {column: normalize_cell(value) for column, value in merged.items()}

    def predicate(row: LogicalRow) -> bool:
        return all(normalize_cell(row.get(column)) == value for column, value in expected.items())

    return predicate
