"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
rowgate.core.config.

Import patterns:
    from rowgate.contracts import CallDescriptor, ErrorKind, LogicalRow
    from rowgate.core.config import RowGateSettings
"""

from rowgate.contracts.calls import AttemptRecord, CallDescriptor, RetryState
from rowgate.contracts.enums import CallKind, ErrorKind, ResourceClass
from rowgate.contracts.errors import (
    FatalError,
    QuotaExhaustedError,
    RowStoreError,
    RowStoreTimeout,
    SchemaError,
    SheetNotFoundError,
    StaleLayoutError,
    StoreResponseError,
    TransientError,
    error_for_kind,
)
from rowgate.contracts.rows import FIRST_DATA_ROW, LogicalRow, RowPredicate, normalize_cell, where

__all__ = [
    "FIRST_DATA_ROW",
    "AttemptRecord",
    "CallDescriptor",
    "CallKind",
    "ErrorKind",
    "FatalError",
    "LogicalRow",
    "QuotaExhaustedError",
    "ResourceClass",
    "RetryState",
    "RowPredicate",
    "RowStoreError",
    "RowStoreTimeout",
    "SchemaError",
    "SheetNotFoundError",
    "StaleLayoutError",
    "StoreResponseError",
    "TransientError",
    "error_for_kind",
    "normalize_cell",
    "where",
]
