# src/rowgate/core/a1.py
"""A1 notation helpers.

The row store addresses cells as ``'Sheet name'!A2:F2``. Columns past Z
continue as AA, AB, ...; rows and columns are 1-based.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_CELL_PATTERN = re.compile(r"^([A-Za-z]*)(\d*)$")


def column_letter(index: int) -> str:
    """Convert a 1-based column index to letters (1 -> A, 27 -> AA)."""
    if index < 1:
        raise ValueError(f"column index must be >= 1, got {index}")
    letters = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def column_index(letters: str) -> int:
    """Convert column letters to a 1-based index (A -> 1, AA -> 27)."""
    if not letters or not letters.isalpha():
        raise ValueError(f"invalid column letters: {letters!r}")
    index = 0
    for char in letters.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def quote_sheet(title: str) -> str:
    """Quote a sheet title for use in a range (embedded quotes doubled)."""
    if not title:
        raise ValueError("sheet title must not be empty")
    return "'" + title.replace("'", "''") + "'"


def sheet_range(title: str) -> str:
    """Range covering every populated cell of a sheet."""
    return quote_sheet(title)


def header_range(title: str) -> str:
    return f"{quote_sheet(title)}!1:1"


def row_range(title: str, row: int, width: int) -> str:
    """Range of one row, columns A through ``width``."""
    if row < 1:
        raise ValueError(f"row must be >= 1, got {row}")
    last = column_letter(max(width, 1))
    return f"{quote_sheet(title)}!A{row}:{last}{row}"


@dataclass(frozen=True, slots=True)
class A1Range:
    """Parsed range. Unbounded edges are None (e.g. ``A:C`` has no rows)."""

    sheet: str
    start_row: int | None = None
    start_col: int | None = None
    end_row: int | None = None
    end_col: int | None = None


def _split_sheet(text: str) -> tuple[str, str]:
    if text.startswith("'"):
        index = 1
        title_chars: list[str] = []
        while index < len(text):
            char = text[index]
            if char == "'":
                if index + 1 < len(text) and text[index + 1] == "'":
                    title_chars.append("'")
                    index += 2
                    continue
                rest = text[index + 1 :]
                if rest and not rest.startswith("!"):
                    raise ValueError(f"invalid range: {text!r}")
                return "".join(title_chars), rest[1:]
            title_chars.append(char)
            index += 1
        raise ValueError(f"unterminated sheet quote: {text!r}")
    title, _, cells = text.partition("!")
    return title, cells


def _parse_cell(cell: str) -> tuple[int | None, int | None]:
    match = _CELL_PATTERN.match(cell)
    if match is None or not cell:
        raise ValueError(f"invalid cell reference: {cell!r}")
    letters, digits = match.groups()
    col = column_index(letters) if letters else None
    row = int(digits) if digits else None
    return row, col


def parse_range(text: str) -> A1Range:
    """Parse ``Sheet``, ``'My sheet'!A1:C``, ``Sheet!1:1`` and similar."""
    title, cells = _split_sheet(text.strip())
    if not title:
        raise ValueError(f"range has no sheet: {text!r}")
    if not cells:
        return A1Range(sheet=title)
    start, _, end = cells.partition(":")
    start_row, start_col = _parse_cell(start)
    if end:
        end_row, end_col = _parse_cell(end)
    else:
        end_row, end_col = start_row, start_col
    return A1Range(sheet=title, start_row=start_row, start_col=start_col, end_row=end_row, end_col=end_col)
