# tests/contracts/test_rows.py
"""Tests for LogicalRow, key normalization and where() predicates."""

import pytest

from rowgate.contracts import CallDescriptor, CallKind, LogicalRow, normalize_cell, where

HEADER = ("id", "name", "Created At")


async def _noop() -> None:
    return None


class TestNormalizeCell:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(42, "42"), (" 42 ", "42"), ("42", "42"), (None, ""), (4.5, "4.5"), ("\tAda\n", "Ada")],
    )
    def test_normalization(self, value: object, expected: str) -> None:
        assert normalize_cell(value) == expected


class TestLogicalRow:
    def test_short_rows_are_padded(self) -> None:
        """The store omits trailing empty cells."""
        row = LogicalRow.from_cells(HEADER, ["7"], position=3)

        assert row.to_dict() == {"id": "7", "name": "", "Created At": ""}
        assert row.position == 3

    def test_extra_cells_are_dropped(self) -> None:
        row = LogicalRow.from_cells(HEADER, ["7", "Ada", "2024-01-01", "stray"], position=2)

        assert row.cells() == ["7", "Ada", "2024-01-01"]

    def test_cells_follow_header_order(self) -> None:
        row = LogicalRow.from_cells(HEADER, [1, None, "x"], position=2)

        assert row.cells() == ["1", "", "x"]
        assert list(row) == list(HEADER)

    def test_values_are_read_only(self) -> None:
        row = LogicalRow.from_cells(HEADER, ["1"], position=2)

        with pytest.raises(TypeError):
            row.values["id"] = "2"  # type: ignore[index]

    def test_equality_ignores_header(self) -> None:
        a = LogicalRow.from_cells(HEADER, ["1", "Ada", ""], position=2)
        b = LogicalRow(values=dict(a.values), position=2)

        assert a == b


class TestWhere:
    def test_matches_normalized_strings(self) -> None:
        row = LogicalRow.from_cells(HEADER, [" 7", "Ada", ""], position=2)

        assert where(id=7)(row)
        assert where(id="7", name="Ada")(row)
        assert not where(id=7, name="Grace")(row)

    def test_mapping_form_for_non_identifier_columns(self) -> None:
        row = LogicalRow.from_cells(HEADER, ["1", "Ada", "2024-01-01"], position=2)

        assert where({"Created At": "2024-01-01"})(row)

    def test_unknown_column_never_matches_a_value(self) -> None:
        row = LogicalRow.from_cells(HEADER, ["1"], position=2)

        assert not where(missing="x")(row)


class TestCallDescriptor:
    def test_idempotency_defaults_from_kind(self) -> None:
        read = CallDescriptor(kind=CallKind.VALUES_GET, target="'Users'", invoke=_noop)
        append = CallDescriptor(kind=CallKind.VALUES_APPEND, target="'Users'", invoke=_noop)
        batch = CallDescriptor(kind=CallKind.BATCH_UPDATE, target="sheet", invoke=_noop)

        assert read.idempotent is True
        assert append.idempotent is False
        assert batch.idempotent is False

    def test_explicit_idempotency_wins(self) -> None:
        descriptor = CallDescriptor(kind=CallKind.VALUES_APPEND, target="'Users'", invoke=_noop, idempotent=True)

        assert descriptor.idempotent is True

    def test_cost_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="cost"):
            CallDescriptor(kind=CallKind.VALUES_GET, target="'Users'", invoke=_noop, cost=0)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="timeout"):
            CallDescriptor(kind=CallKind.VALUES_GET, target="'Users'", invoke=_noop, timeout=0)

    def test_label(self) -> None:
        descriptor = CallDescriptor(kind=CallKind.VALUES_UPDATE, target="'Users'!A2:D2", invoke=_noop)

        assert descriptor.label == "values.update 'Users'!A2:D2"

    def test_default_params_are_empty_and_read_only(self) -> None:
        first = CallDescriptor(kind=CallKind.VALUES_GET, target="'Users'", invoke=_noop)
        second = CallDescriptor(kind=CallKind.SPREADSHEET_GET, target="sheet-123", invoke=_noop)

        assert dict(first.params) == {}
        assert second.params == {}
        with pytest.raises(TypeError):
            first.params["range"] = "'Users'"  # type: ignore[index]
