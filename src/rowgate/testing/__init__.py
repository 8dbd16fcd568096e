"""Test support: an in-memory row store with fault injection."""

from rowgate.testing.fake_store import FakeSheetsBackend, Fault, RecordedCall, delete_rows_in_order

__all__ = ["FakeSheetsBackend", "Fault", "RecordedCall", "delete_rows_in_order"]
