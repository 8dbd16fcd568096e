"""HTTP clients for the row store API."""

from rowgate.clients.auth import CredentialsAuth, StaticTokenAuth, build_auth
from rowgate.clients.sheets import SheetsClient

__all__ = ["CredentialsAuth", "SheetsClient", "StaticTokenAuth", "build_auth"]
