"""Kinds and classifications used across subsystem boundaries.

Every failure seen by the retry controller maps to exactly one ErrorKind.
There is no "unknown" kind - anything unrecognised is FATAL.
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Classification of a failed call against the row store.

    TRANSIENT and QUOTA are retried; FATAL is not. TIMEOUT and RACE are
    terminal kinds surfaced to callers, never produced by classification.
    """

    TRANSIENT = "transient"
    QUOTA = "quota"
    FATAL = "fatal"
    TIMEOUT = "timeout"
    RACE = "race"


class CallKind(StrEnum):
    """Physical request types issued to the row store API."""

    VALUES_GET = "values.get"
    VALUES_UPDATE = "values.update"
    VALUES_APPEND = "values.append"
    BATCH_UPDATE = "batchUpdate"
    SPREADSHEET_GET = "spreadsheets.get"

    @property
    def idempotent(self) -> bool:
        """Whether a request of this kind can be replayed blindly.

        Appends add a row per replay and structural batch updates delete or
        insert relative to current positions, so neither is safe to repeat
        after an ambiguous failure.
        """
        return self not in (CallKind.VALUES_APPEND, CallKind.BATCH_UPDATE)


class ResourceClass(StrEnum):
    """Cache resource classes, each with its own TTL."""

    VALUES = "values"
    HEADER = "header"
    METADATA = "metadata"
    RAW = "raw"
