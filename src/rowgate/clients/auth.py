# src/rowgate/clients/auth.py
"""httpx authentication for the row store API.

Two flavours:
- StaticTokenAuth: a bearer token supplied by configuration
- CredentialsAuth: google-auth credentials (e.g. a service account),
  refreshed whenever they are no longer valid

google-auth is an optional dependency (``pip install rowgate[google]``) and
is only imported when a service account file is actually used.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable, Generator, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import structlog

if TYPE_CHECKING:
    from rowgate.core.config import StoreSettings

logger = structlog.get_logger(__name__)

SPREADSHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"


class StaticTokenAuth(httpx.Auth):
    """Attach a fixed bearer token to every request."""

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError("token must not be empty")
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


def _google_refresh_request() -> Any:
    from google.auth.transport.requests import Request

    return Request()


class CredentialsAuth(httpx.Auth):
    """Bearer auth backed by refreshable credentials.

    ``credentials`` follows the google-auth interface: ``valid``, ``token``
    and ``refresh(request)``. Refreshing is blocking, so the async flow runs
    it in a worker thread, one refresh at a time.
    """

    def __init__(
        self,
        credentials: Any,
        *,
        refresh_request: Callable[[], Any] = _google_refresh_request,
    ) -> None:
        self._credentials = credentials
        self._refresh_request = refresh_request
        self._lock = asyncio.Lock()

    @classmethod
    def from_service_account_file(
        cls,
        path: Path | str,
        scopes: Sequence[str] = (SPREADSHEETS_SCOPE,),
    ) -> CredentialsAuth:
        """Load service account credentials from a JSON key file.

        Raises:
            FileNotFoundError: If the key file does not exist
            ImportError: If google-auth is not installed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Credentials file not found: {path}")
        from google.oauth2 import service_account

        credentials = service_account.Credentials.from_service_account_file(str(path), scopes=list(scopes))
        return cls(credentials)

    def _refresh(self) -> None:
        logger.debug("Refreshing row store credentials")
        self._credentials.refresh(self._refresh_request())

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if not self._credentials.valid:
            self._refresh()
        request.headers["Authorization"] = f"Bearer {self._credentials.token}"
        yield request

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        async with self._lock:
            if not self._credentials.valid:
                await asyncio.to_thread(self._refresh)
        request.headers["Authorization"] = f"Bearer {self._credentials.token}"
        yield request


def build_auth(store: StoreSettings) -> httpx.Auth | None:
    """Pick the auth for configured store settings.

    A static token wins over a credentials file. With neither, requests go
    out unauthenticated (useful against a local emulator).
    """
    if store.token:
        return StaticTokenAuth(store.token)
    if store.credentials_file is not None:
        return CredentialsAuth.from_service_account_file(store.credentials_file)
    logger.warning("No row store credentials configured; requests are unauthenticated")
    return None
