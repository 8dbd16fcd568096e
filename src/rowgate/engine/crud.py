# src/rowgate/engine/crud.py
"""Row store CRUD engine.

Presents a keyed-record interface (find, upsert, delete, update by key or
predicate) over a sheet that is addressed purely by physical row position.
Row 1 of every sheet is its header; data rows start at row 2.

A row's position is derived afresh inside each operation and never kept
between operations. Writes that target positions (upsert of an existing
row, delete_rows, update_rows) compute them from a fresh read rather than
the cache, since a cached grid may predate another writer's insert or
delete. Plain reads (find_row, list_rows, get) go through the cache.

Every successful write invalidates the cache family of the sheet it
touched: ``rowstore:<spreadsheet_id>:<sheet>:``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from types import MappingProxyType
from typing import Any

import structlog

from rowgate.clients.sheets import SheetsClient
from rowgate.contracts.calls import CallDescriptor
from rowgate.contracts.enums import ResourceClass
from rowgate.contracts.errors import (
    FatalError,
    RowStoreError,
    SchemaError,
    SheetNotFoundError,
    StaleLayoutError,
)
from rowgate.contracts.rows import FIRST_DATA_ROW, LogicalRow, RowPredicate, normalize_cell, where
from rowgate.core.a1 import header_range, parse_range, row_range, sheet_range
from rowgate.core.cache import RangeKeys, RowCache
from rowgate.engine.executor import RateLimitedExecutor
from rowgate.engine.retry import Deadline

logger = structlog.get_logger(__name__)

Grid = tuple[tuple[Any, ...], ...]
RowFilter = RowPredicate | Mapping[str, Any]


def delete_dimension_requests(sheet_id: int, positions: Sequence[int]) -> list[dict[str, Any]]:
    """Build deleteDimension requests for 1-based row positions.

    Requests are ordered from the highest position to the lowest. Inside a
    batch each request sees the layout left by the previous one, so deleting
    bottom-up keeps every remaining position valid.
    """
    requests = []
    for position in sorted(set(positions), reverse=True):
        if position < FIRST_DATA_ROW:
            raise ValueError(f"refusing to delete row {position}: header rows are not data")
        requests.append(
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": position - 1,
                        "endIndex": position,
                    }
                }
            }
        )
    return requests


def _as_predicate(predicate: RowFilter) -> RowPredicate:
    if isinstance(predicate, Mapping):
        return where(predicate)
    return predicate


def _header_of(grid: Grid) -> tuple[str, ...]:
    if not grid:
        return ()
    return tuple(normalize_cell(cell) for cell in grid[0])


def _freeze(values: Any) -> Grid:
    if not values:
        return ()
    return tuple(tuple(row) for row in values)


def _write_cell(value: Any) -> Any:
    return "" if value is None else value


class RowStoreEngine:
    """Keyed record operations over positional sheets.

    Example:
        engine = RowStoreEngine(client, executor, cache, schemas={"Users": ["id", "name"]})

        row = await engine.find_row("Users", "id", 42)
        await engine.upsert_row("Users", "id", 42, {"name": "Ada"})
        deleted = await engine.delete_rows("Users", where(status="inactive"))
    """

    def __init__(
        self,
        client: SheetsClient,
        executor: RateLimitedExecutor,
        cache: RowCache,
        *,
        schemas: Mapping[str, Sequence[str]] | None = None,
        keys: RangeKeys | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            client: Endpoint client used to build call descriptors
            executor: Runs every physical call (rate budget + retries)
            cache: Read cache shared by all operations
            schemas: Expected header per sheet; a registered sheet's header
                is confirmed before every logical operation on it
            keys: Cache key builder (defaults to one for the client's
                spreadsheet)
        """
        self._client = client
        self._executor = executor
        self._cache = cache
        self._keys = keys or RangeKeys(client.spreadsheet_id)
        self._schemas: dict[str, tuple[str, ...]] = {
            sheet: tuple(column.strip() for column in header) for sheet, header in (schemas or {}).items()
        }
        self._schema_locks: dict[str, asyncio.Lock] = {}

    @property
    def cache(self) -> RowCache:
        return self._cache

    @property
    def keys(self) -> RangeKeys:
        return self._keys

    @property
    def schemas(self) -> Mapping[str, tuple[str, ...]]:
        return MappingProxyType(self._schemas)

    # -- plumbing --------------------------------------------------------

    @asynccontextmanager
    async def _operation(
        self, operation: str, range_: str, timeout: float | Deadline | None
    ) -> AsyncIterator[Deadline | None]:
        """Scope of one logical operation; yields the deadline its calls share."""
        deadline = Deadline.coerce(timeout)
        with structlog.contextvars.bound_contextvars(operation=operation, range=range_):
            try:
                yield deadline
            except RowStoreError as exc:
                exc.add_context(operation=operation, range=range_)
                raise

    def _invalidate_sheet(self, sheet: str, *, keep_header: bool = True) -> None:
        """Drop the sheet family after a write.

        Row writes never touch row 1, so a confirmed header survives unless
        the write was the header itself.
        """
        header_key = self._keys.key(sheet, ResourceClass.HEADER)
        header = self._cache.get(header_key) if keep_header else None
        self._cache.invalidate(self._keys.family(sheet))
        if header is not None:
            self._cache.set(header_key, header, self._cache.ttl_for(ResourceClass.HEADER))

    async def _cached_call(
        self, key: str, resource: ResourceClass, fetch: CallDescriptor, timeout: Deadline | None
    ) -> Any:
        """Read-through: return a cached payload or run ``fetch`` and cache it."""
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        epoch = self._cache.snapshot()
        payload = await self._executor.run(fetch, timeout=timeout)
        self._cache.set(key, payload, self._cache.ttl_for(resource), since=epoch)
        return payload

    async def _read_grid(self, sheet: str, *, fresh: bool, timeout: Deadline | None) -> Grid:
        key = self._keys.key(sheet, ResourceClass.VALUES)
        if not fresh:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
        epoch = self._cache.snapshot()
        try:
            payload = await self._executor.run(self._client.describe_values_get(sheet_range(sheet)), timeout=timeout)
        except FatalError as exc:
            if exc.status_code == 400 and not await self._sheet_exists(sheet, timeout=timeout):
                raise SheetNotFoundError(f"sheet {sheet!r} does not exist", status_code=400) from exc
            raise
        grid = _freeze(payload.get("values"))
        # cache even fresh reads; later plain reads benefit
        self._cache.set(key, grid, self._cache.ttl_for(ResourceClass.VALUES), since=epoch)
        return grid

    async def _rows(
        self, sheet: str, *, fresh: bool, timeout: Deadline | None
    ) -> tuple[tuple[str, ...], list[LogicalRow]]:
        grid = await self._read_grid(sheet, fresh=fresh, timeout=timeout)
        header = _header_of(grid)
        rows = [
            LogicalRow.from_cells(header, cells, position)
            for position, cells in enumerate(grid[1:], start=FIRST_DATA_ROW)
            # blank rows still occupy a position but hold no record
            if any(normalize_cell(cell) for cell in cells)
        ]
        return header, rows

    async def _prepare(self, sheet: str, timeout: Deadline | None) -> None:
        if sheet in self._schemas:
            await self.ensure_schema(sheet, timeout=timeout)

    @staticmethod
    def _require_columns(sheet: str, header: Sequence[str], columns: Sequence[str]) -> None:
        unknown = [column for column in columns if column not in header]
        if unknown:
            raise SchemaError(f"unknown column(s) {unknown} for sheet {sheet!r}; header is {list(header)}")

    # -- metadata --------------------------------------------------------

    async def _sheet_properties(
        self, *, fresh: bool = False, timeout: Deadline | None = None
    ) -> dict[str, dict[str, Any]]:
        key = self._keys.metadata()
        if fresh:
            self._cache.delete(key)
        payload = await self._cached_call(
            key, ResourceClass.METADATA, self._client.describe_get_metadata(), timeout
        )
        properties: dict[str, dict[str, Any]] = {}
        for entry in payload.get("sheets", []):
            props = entry.get("properties", {})
            if "title" in props:
                properties[props["title"]] = props
        return properties

    async def _sheet_exists(self, sheet: str, *, timeout: Deadline | None) -> bool:
        return sheet in await self._sheet_properties(fresh=True, timeout=timeout)

    async def sheet_id(self, sheet: str, *, timeout: float | Deadline | None = None) -> int:
        """Numeric id of a sheet, needed by structural requests.

        Raises:
            SheetNotFoundError: If the spreadsheet has no sheet of that title
        """
        deadline = Deadline.coerce(timeout)
        properties = await self._sheet_properties(timeout=deadline)
        if sheet not in properties:
            # the sheet may have been created after the metadata was cached
            properties = await self._sheet_properties(fresh=True, timeout=deadline)
        if sheet not in properties:
            raise SheetNotFoundError(f"sheet {sheet!r} does not exist")
        return int(properties[sheet].get("sheetId", 0))

    async def _create_sheet(self, sheet: str, timeout: Deadline | None) -> None:
        request = {"addSheet": {"properties": {"title": sheet}}}
        try:
            await self._executor.run(
                self._client.describe_batch_update([request], target=sheet_range(sheet)), timeout=timeout
            )
        except FatalError as exc:
            # created concurrently by another writer
            if exc.status_code == 400 and await self._sheet_exists(sheet, timeout=timeout):
                return
            raise
        finally:
            self._cache.delete(self._keys.metadata())
        logger.info("Sheet created", sheet=sheet)

    # -- logical operations ----------------------------------------------

    async def ensure_schema(
        self,
        sheet: str,
        expected_header: Sequence[str] | None = None,
        *,
        timeout: float | Deadline | None = None,
    ) -> tuple[str, ...]:
        """Make sure row 1 of ``sheet`` holds the expected header.

        Creates the sheet if it does not exist. Writes the header only when
        row 1 is empty or does not start with the expected columns, so a
        second call performs no write.

        Args:
            sheet: Sheet title
            expected_header: Columns to enforce; defaults to the registered
                schema of the sheet

        Returns:
            The header now in effect

        Raises:
            SchemaError: If no header is given and none is registered
        """
        if expected_header is None:
            if sheet not in self._schemas:
                raise SchemaError(f"no schema registered for sheet {sheet!r}")
            expected = self._schemas[sheet]
        else:
            expected = tuple(column.strip() for column in expected_header)
        if not expected:
            raise SchemaError(f"expected header for sheet {sheet!r} is empty")

        key = self._keys.key(sheet, ResourceClass.HEADER)
        cached = self._cache.get(key)
        if cached is not None and cached[: len(expected)] == expected:
            return cached

        lock = self._schema_locks.setdefault(sheet, asyncio.Lock())
        async with lock, self._operation("ensure_schema", header_range(sheet), timeout) as deadline:
            cached = self._cache.get(key)
            if cached is not None and cached[: len(expected)] == expected:
                return cached

            if sheet not in await self._sheet_properties(timeout=deadline) and not await self._sheet_exists(
                sheet, timeout=deadline
            ):
                await self._create_sheet(sheet, deadline)

            epoch = self._cache.snapshot()
            payload = await self._executor.run(
                self._client.describe_values_get(header_range(sheet)), timeout=deadline
            )
            values = payload.get("values") or [[]]
            current = tuple(normalize_cell(cell) for cell in values[0])
            if current[: len(expected)] == expected:
                self._cache.set(key, current, self._cache.ttl_for(ResourceClass.HEADER), since=epoch)
                return current

            if current:
                logger.warning("Sheet header mismatch, rewriting", sheet=sheet, found=list(current), expected=list(expected))
            await self._executor.run(
                self._client.describe_values_update(row_range(sheet, 1, len(expected)), [list(expected)]),
                timeout=deadline,
            )
            self._invalidate_sheet(sheet, keep_header=False)
            self._cache.set(key, expected, self._cache.ttl_for(ResourceClass.HEADER))
            logger.info("Sheet header written", sheet=sheet, columns=len(expected))
            return expected

    async def list_rows(self, sheet: str, *, timeout: float | None = None) -> list[LogicalRow]:
        """All records of a sheet in row order (cached read)."""
        async with self._operation("list_rows", sheet_range(sheet), timeout) as deadline:
            await self._prepare(sheet, deadline)
            _, rows = await self._rows(sheet, fresh=False, timeout=deadline)
            return rows

    async def find_row(
        self,
        sheet: str,
        key_column: str,
        key_value: Any,
        *,
        timeout: float | None = None,
    ) -> LogicalRow | None:
        """First record whose ``key_column`` equals ``key_value``.

        Both sides are compared as trimmed strings, so 42, "42" and " 42 "
        are the same key.

        Raises:
            SchemaError: If ``key_column`` is not in the header
        """
        async with self._operation("find_row", sheet_range(sheet), timeout) as deadline:
            await self._prepare(sheet, deadline)
            header, rows = await self._rows(sheet, fresh=False, timeout=deadline)
            self._require_columns(sheet, header, [key_column])
            target = normalize_cell(key_value)
            for row in rows:
                if normalize_cell(row[key_column]) == target:
                    return row
            return None

    async def upsert_row(
        self,
        sheet: str,
        key_column: str,
        key_value: Any,
        fields: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> LogicalRow:
        """Update the record with the given key, or append it if absent.

        An existing row is rewritten in full at its current position with
        ``fields`` merged over its values. A new row gets the key column
        filled from ``key_value``.

        Returns:
            The row as written, with its position

        Raises:
            SchemaError: If ``key_column`` or any field is not in the header
        """
        async with self._operation("upsert_row", sheet_range(sheet), timeout) as deadline:
            await self._prepare(sheet, deadline)
            header, rows = await self._rows(sheet, fresh=True, timeout=deadline)
            self._require_columns(sheet, header, [key_column, *fields])
            target = normalize_cell(key_value)
            existing = next((row for row in rows if normalize_cell(row[key_column]) == target), None)

            if existing is not None:
                cells = [_write_cell(fields[column]) if column in fields else existing[column] for column in header]
                range_ = row_range(sheet, existing.position, len(header))
                await self._executor.run(self._client.describe_values_update(range_, [cells]), timeout=deadline)
                position = existing.position
                logger.info("Row updated", sheet=sheet, position=position)
            else:
                merged = {column: "" for column in header}
                merged[key_column] = key_value
                merged.update(fields)
                cells = [_write_cell(merged[column]) for column in header]
                response = await self._executor.run(
                    self._client.describe_values_append(sheet_range(sheet), [cells]), timeout=deadline
                )
                position = self._appended_position(response, default=FIRST_DATA_ROW + len(rows))
                logger.info("Row appended", sheet=sheet, position=position)

            self._invalidate_sheet(sheet)
            return LogicalRow.from_cells(header, cells, position)

    @staticmethod
    def _appended_position(response: Mapping[str, Any], *, default: int) -> int:
        updated_range = response.get("updates", {}).get("updatedRange")
        if updated_range:
            try:
                start_row = parse_range(updated_range).start_row
            except ValueError:
                start_row = None
            if start_row is not None:
                return start_row
        return default

    async def delete_rows(
        self,
        sheet: str,
        predicate: RowFilter,
        *,
        timeout: float | None = None,
    ) -> list[LogicalRow]:
        """Delete every record matching ``predicate`` in one batched request.

        Positions come from a single fresh read and are deleted from the
        highest to the lowest. Nothing is written when no row matches.

        Returns:
            The deleted rows with their pre-delete positions, in sheet order

        Raises:
            StaleLayoutError: If the store rejects the batch, typically
                because another writer changed the sheet after the read
        """
        matches_row = _as_predicate(predicate)
        async with self._operation("delete_rows", sheet_range(sheet), timeout) as deadline:
            await self._prepare(sheet, deadline)
            _, rows = await self._rows(sheet, fresh=True, timeout=deadline)
            matches = [row for row in rows if matches_row(row)]
            if not matches:
                return []

            sheet_id = await self.sheet_id(sheet, timeout=deadline)
            requests = delete_dimension_requests(sheet_id, [row.position for row in matches])
            try:
                await self._executor.run(
                    self._client.describe_batch_update(requests, target=sheet_range(sheet)), timeout=deadline
                )
            except FatalError as exc:
                if exc.status_code == 400:
                    raise StaleLayoutError(
                        f"batched delete of {len(requests)} row(s) in {sheet!r} was rejected; "
                        "the sheet layout may have changed since it was read",
                        attempts=exc.attempts,
                        context=exc.context,
                    ) from exc
                raise
            finally:
                # layout is unknown after any batch attempt
                self._invalidate_sheet(sheet)

            logger.info("Rows deleted", sheet=sheet, count=len(matches))
            return matches

    async def update_rows(
        self,
        sheet: str,
        predicate: RowFilter,
        new_fields: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> list[LogicalRow]:
        """Merge ``new_fields`` into every record matching ``predicate``.

        One single-row write per match, issued concurrently. If some writes
        fail, the sheet's cache family is still invalidated before the first
        error is raised; rows written before the failure stay written.

        Returns:
            The rows as written

        Raises:
            SchemaError: If any field is not in the header
        """
        matches_row = _as_predicate(predicate)
        async with self._operation("update_rows", sheet_range(sheet), timeout) as deadline:
            await self._prepare(sheet, deadline)
            header, rows = await self._rows(sheet, fresh=True, timeout=deadline)
            self._require_columns(sheet, header, list(new_fields))
            matches = [row for row in rows if matches_row(row)]
            if not matches:
                return []

            updated: list[LogicalRow] = []
            calls = []
            for row in matches:
                cells = [_write_cell(new_fields[column]) if column in new_fields else row[column] for column in header]
                updated.append(LogicalRow.from_cells(header, cells, row.position))
                descriptor = self._client.describe_values_update(row_range(sheet, row.position, len(header)), [cells])
                calls.append(self._executor.run(descriptor, timeout=deadline))

            try:
                results = await asyncio.gather(*calls, return_exceptions=True)
            finally:
                self._invalidate_sheet(sheet)

            failures = [result for result in results if isinstance(result, BaseException)]
            if failures:
                logger.error(
                    "Row updates partially failed",
                    sheet=sheet,
                    failed=len(failures),
                    total=len(results),
                )
                first = failures[0]
                if isinstance(first, RowStoreError):
                    first.add_context(written=len(results) - len(failures), failed=len(failures))
                raise first

            logger.info("Rows updated", sheet=sheet, count=len(updated))
            return updated

    # -- raw escape hatch ------------------------------------------------

    async def get(self, range_: str, *, timeout: float | None = None) -> list[list[Any]]:
        """Read an arbitrary A1 range (cached as a raw resource)."""
        sheet = parse_range(range_).sheet
        async with self._operation("get", range_, timeout) as deadline:
            await self._prepare(sheet, deadline)
            key = self._keys.key(sheet, ResourceClass.RAW, range_)
            cached = self._cache.get(key)
            if cached is None:
                epoch = self._cache.snapshot()
                payload = await self._executor.run(self._client.describe_values_get(range_), timeout=deadline)
                cached = _freeze(payload.get("values"))
                self._cache.set(key, cached, self._cache.ttl_for(ResourceClass.RAW), since=epoch)
            return [list(row) for row in cached]

    async def append(
        self,
        range_: str,
        rows: Sequence[Sequence[Any]],
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Append raw rows after the table found at ``range_``.

        Returns:
            The store's ``updates`` summary (updatedRange, updatedRows, ...)
        """
        sheet = parse_range(range_).sheet
        async with self._operation("append", range_, timeout) as deadline:
            await self._prepare(sheet, deadline)
            if not rows:
                return {}
            response = await self._executor.run(
                self._client.describe_values_append(range_, [[_write_cell(cell) for cell in row] for row in rows]),
                timeout=deadline,
            )
            self._invalidate_sheet(sheet)
            logger.info("Rows appended", range=range_, count=len(rows))
            updates: dict[str, Any] = response.get("updates", {})
            return updates
