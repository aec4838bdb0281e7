"""Shared plumbing for adapters that talk to a REST API over httpx."""

from __future__ import annotations

import asyncio
import secrets
import time
from typing import Any

import httpx
from loguru import logger

from commsync.application.ports.credential_vault import CredentialVault
from commsync.application.ports.provider_adapter import ProviderAdapter
from commsync.domain.entities.account import Account
from commsync.domain.errors import AuthError, ProviderConnectionError


def placeholder_id(prefix: str = "sent") -> str:
    """Collision resistant id for locally synthesized send records."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HttpProviderAdapter(ProviderAdapter):
    """Base for REST-backed adapters.

    Maps transport failures and HTTP status codes onto the error taxonomy:
    401/403 become AuthError, 429, 5xx and timeouts become
    ProviderConnectionError.
    """

    name = "http"

    def __init__(
        self,
        vault: CredentialVault,
        base_url: str,
        timeout: float = 30.0,
        connection_test_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.vault = vault
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.connection_test_timeout = connection_test_timeout
        self._transport = transport

    def _client(self, credentials: dict[str, Any]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._auth_headers(credentials),
            auth=self._auth(credentials),
            timeout=self.timeout,
            transport=self._transport,
        )

    def _auth_headers(self, credentials: dict[str, Any]) -> dict[str, str]:
        return {}

    def _auth(self, credentials: dict[str, Any]) -> httpx.Auth | None:
        return None

    def credentials(self, account: Account) -> dict[str, Any]:
        if not account.credentials:
            raise AuthError(f"Account {account.id} has no stored credentials")
        return self.vault.decrypt(account.credentials)

    async def request(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        missing_ok: bool = False,
        forbidden_ok: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Issue a request and return decoded JSON (or None for empty bodies)."""
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderConnectionError(f"{self.name} timeout on {method} {path}") from e
        except httpx.HTTPError as e:
            raise ProviderConnectionError(f"{self.name} transport error: {e}") from e

        if response.status_code == 403 and forbidden_ok:
            return None
        if response.status_code in (401, 403):
            raise AuthError(f"{self.name} rejected credentials ({response.status_code})")
        if response.status_code == 404 and missing_ok:
            return None
        if response.status_code == 429:
            raise ProviderConnectionError(
                f"{self.name} rate limited", retry_after=_retry_after(response)
            )
        if response.status_code >= 400:
            logger.error(f"{self.name} API error {response.status_code}: {response.text[:200]}")
            raise ProviderConnectionError(
                f"{self.name} HTTP {response.status_code}: {response.text[:200]}"
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def test_connection(self, account: Account) -> bool:
        try:
            return await asyncio.wait_for(self._check_connection(account), self.connection_test_timeout)
        except Exception as e:
            logger.warning(f"{self.name} connection test failed for {account.id}: {e}")
            return False

    async def _check_connection(self, account: Account) -> bool:
        raise NotImplementedError
