# src/rowgate/clients/sheets.py
"""Async HTTP client for the spreadsheet values API.

Thin wrapper over httpx.AsyncClient: one method per endpoint, JSON in and
out. It does not retry or rate limit; callers wrap its coroutines in
CallDescriptors (see the describe_* helpers) and run them through the
RateLimitedExecutor.

Endpoints (relative to ``{base_url}/v4/``):
- values.get     GET  spreadsheets/{id}/values/{range}
- values.update  PUT  spreadsheets/{id}/values/{range}?valueInputOption=...
- values.append  POST spreadsheets/{id}/values/{range}:append?valueInputOption=...&insertDataOption=INSERT_ROWS
- batchUpdate    POST spreadsheets/{id}:batchUpdate
- spreadsheets.get GET spreadsheets/{id}?fields=sheets.properties
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from functools import partial
from types import MappingProxyType, TracebackType
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from rowgate.contracts.calls import CallDescriptor
from rowgate.contracts.enums import CallKind
from rowgate.contracts.errors import StoreResponseError

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://sheets.googleapis.com"
METADATA_FIELDS = "sheets.properties"


def _encode_range(range_: str) -> str:
    return quote(range_, safe="")


class SheetsClient:
    """Endpoint-level client for one spreadsheet.

    Raises StoreResponseError for non-2xx responses AND for 2xx responses
    whose JSON body carries an ``error`` object; the store reports some
    quota failures that way.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        value_input_option: str = "RAW",
        timeout: float | None = 10.0,
    ) -> None:
        """Initialize the client.

        Args:
            spreadsheet_id: Spreadsheet to address
            base_url: API root (scheme and host)
            auth: httpx auth applied to every request
            transport: Custom transport (tests pass an httpx.MockTransport)
            value_input_option: RAW or USER_ENTERED for writes
            timeout: httpx-level timeout; the retry controller also bounds
                each attempt
        """
        if not spreadsheet_id:
            raise ValueError("spreadsheet_id must not be empty")
        self.spreadsheet_id = spreadsheet_id
        self.value_input_option = value_input_option
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/v4/",
            auth=auth,
            transport=transport,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    def _spreadsheet_path(self, suffix: str = "") -> str:
        # a bare "id:batchUpdate" would parse as scheme:path
        return f"spreadsheets/{quote(self.spreadsheet_id, safe='')}{suffix}"

    def _values_path(self, range_: str) -> str:
        return self._spreadsheet_path(f"/values/{_encode_range(range_)}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        body = response.text
        payload: Any = None
        if body:
            try:
                payload = json.loads(body)
            except ValueError:
                payload = None

        if not response.is_success:
            raise StoreResponseError(response.status_code, body, payload=payload)
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            # successful status with an embedded error, e.g. a quota refusal
            raise StoreResponseError(response.status_code, body, payload=payload)
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise StoreResponseError(response.status_code, body, payload=payload)
        return payload

    async def values_get(self, range_: str) -> dict[str, Any]:
        """Read a range. The ``values`` key is absent when the range is empty."""
        return await self._request("GET", self._values_path(range_), params={"majorDimension": "ROWS"})

    async def values_update(self, range_: str, rows: Sequence[Sequence[Any]]) -> dict[str, Any]:
        """Overwrite a range with rows."""
        return await self._request(
            "PUT",
            self._values_path(range_),
            params={"valueInputOption": self.value_input_option},
            json={"range": range_, "majorDimension": "ROWS", "values": [list(row) for row in rows]},
        )

    async def values_append(self, range_: str, rows: Sequence[Sequence[Any]]) -> dict[str, Any]:
        """Append rows after the last populated row of the range's table."""
        return await self._request(
            "POST",
            f"{self._values_path(range_)}:append",
            params={"valueInputOption": self.value_input_option, "insertDataOption": "INSERT_ROWS"},
            json={"range": range_, "majorDimension": "ROWS", "values": [list(row) for row in rows]},
        )

    async def batch_update(self, requests: Sequence[dict[str, Any]]) -> dict[str, Any]:
        """Apply structural requests (deleteDimension, addSheet) atomically."""
        return await self._request(
            "POST",
            self._spreadsheet_path(":batchUpdate"),
            json={"requests": list(requests)},
        )

    async def get_metadata(self) -> dict[str, Any]:
        """Sheet properties (title, sheetId, index) of the spreadsheet."""
        return await self._request(
            "GET",
            self._spreadsheet_path(),
            params={"fields": METADATA_FIELDS},
        )

    # Call descriptors

    def describe_values_get(self, range_: str, *, timeout: float | None = None) -> CallDescriptor:
        return CallDescriptor(
            kind=CallKind.VALUES_GET,
            target=range_,
            invoke=partial(self.values_get, range_),
            params=MappingProxyType({"range": range_}),
            timeout=timeout,
        )

    def describe_values_update(
        self,
        range_: str,
        rows: Sequence[Sequence[Any]],
        *,
        timeout: float | None = None,
    ) -> CallDescriptor:
        rows = [list(row) for row in rows]
        return CallDescriptor(
            kind=CallKind.VALUES_UPDATE,
            target=range_,
            invoke=partial(self.values_update, range_, rows),
            params=MappingProxyType({"range": range_, "rows": len(rows)}),
            timeout=timeout,
        )

    def describe_values_append(
        self,
        range_: str,
        rows: Sequence[Sequence[Any]],
        *,
        timeout: float | None = None,
    ) -> CallDescriptor:
        rows = [list(row) for row in rows]
        return CallDescriptor(
            kind=CallKind.VALUES_APPEND,
            target=range_,
            invoke=partial(self.values_append, range_, rows),
            params=MappingProxyType({"range": range_, "rows": len(rows)}),
            timeout=timeout,
        )

    def describe_batch_update(
        self,
        requests: Sequence[dict[str, Any]],
        *,
        target: str | None = None,
        timeout: float | None = None,
    ) -> CallDescriptor:
        requests = list(requests)
        return CallDescriptor(
            kind=CallKind.BATCH_UPDATE,
            target=target or self.spreadsheet_id,
            invoke=partial(self.batch_update, requests),
            params=MappingProxyType({"requests": len(requests)}),
            timeout=timeout,
        )

    def describe_get_metadata(self, *, timeout: float | None = None) -> CallDescriptor:
        return CallDescriptor(
            kind=CallKind.SPREADSHEET_GET,
            target=self.spreadsheet_id,
            invoke=self.get_metadata,
            params=MappingProxyType({"fields": METADATA_FIELDS}),
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> SheetsClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
