# src/rowgate/access.py
"""Composition root for the row store access layer.

AccessLayer wires the HTTP client, rate budget, retry controller, executor,
cache and CRUD engine together once, and owns their lifecycle:

    settings = load_settings(Path("settings.yaml"))
    async with AccessLayer.from_settings(settings) as access:
        row = await access.engine.find_row("Users", "id", 42)
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import httpx
import structlog

from rowgate.clients.auth import build_auth
from rowgate.clients.sheets import SheetsClient
from rowgate.core.cache import RangeKeys, RowCache
from rowgate.core.config import RowGateSettings
from rowgate.core.rate_limit import NoOpBudget, RateBudget
from rowgate.engine.crud import RowStoreEngine
from rowgate.engine.executor import RateLimitedExecutor
from rowgate.engine.retry import RetryController, RetryPolicy

logger = structlog.get_logger(__name__)


class AccessLayer:
    """Owns every service of the access layer for one spreadsheet."""

    def __init__(
        self,
        *,
        client: SheetsClient,
        budget: RateBudget | NoOpBudget,
        retry: RetryController,
        cache: RowCache,
        schemas: dict[str, list[str]] | None = None,
    ) -> None:
        self.client = client
        self.budget = budget
        self.retry = retry
        self.cache = cache
        self.executor = RateLimitedExecutor(budget, retry)
        self.engine = RowStoreEngine(
            client,
            self.executor,
            cache,
            schemas=schemas,
            keys=RangeKeys(client.spreadsheet_id),
        )
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: RowGateSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        auth: httpx.Auth | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> AccessLayer:
        """Build the access layer from validated settings.

        Args:
            settings: Validated configuration
            transport: httpx transport override (tests pass a MockTransport)
            auth: Auth override; by default derived from the store settings
            sleep: Sleep used for backoff and budget waits
            rng: Random source for backoff jitter
        """
        store = settings.store
        client = SheetsClient(
            store.spreadsheet_id,
            base_url=store.base_url,
            auth=auth if auth is not None else build_auth(store),
            transport=transport,
            value_input_option=store.value_input_option,
            timeout=settings.timeouts.request_timeout_seconds,
        )

        budget: RateBudget | NoOpBudget
        if settings.rate_limit.enabled:
            budget = RateBudget(settings.rate_limit.ceiling, settings.rate_limit.window_seconds, sleep=sleep)
        else:
            budget = NoOpBudget()

        cache = RowCache(
            default_ttl=settings.cache.default_ttl_seconds,
            max_entries=settings.cache.max_entries,
            ttl_by_resource=settings.cache.ttl_seconds,
            enabled=settings.cache.enabled,
        )
        retry = RetryController(RetryPolicy.from_settings(settings.retry, settings.timeouts), sleep=sleep, rng=rng)

        logger.debug(
            "Access layer configured",
            spreadsheet_id=store.spreadsheet_id,
            rate_limit=settings.rate_limit.enabled,
            cache=settings.cache.enabled,
            schemas=sorted(settings.schemas),
        )
        return cls(client=client, budget=budget, retry=retry, cache=cache, schemas=settings.schemas)

    async def aclose(self) -> None:
        """Cancel outstanding calls and close the HTTP client."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.executor.aclose()
        finally:
            await self.client.aclose()

    async def __aenter__(self) -> AccessLayer:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
