"""Bearer credentials for the sync transport."""

import logging
from typing import Protocol

import httpx

from ..errors import AuthFailure, TransportFailure

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """Supplies the bearer token and can obtain a fresh one."""

    @property
    def access_token(self) -> str | None:
        ...  # pragma: no cover

    async def refresh(self) -> str:
        """Obtain a new access token.

        Raises:
            AuthFailure: If the session cannot be renewed.
        """
        ...  # pragma: no cover


class StaticTokenProvider:
    """A fixed token that cannot be refreshed."""

    def __init__(self, token: str | None):
        self._token = token

    @property
    def access_token(self) -> str | None:
        return self._token

    async def refresh(self) -> str:
        raise AuthFailure("Access token rejected and no refresh token is configured")


class RefreshingTokenProvider:
    """Renews the access token through ``POST /v1/auth/refresh``."""

    def __init__(
        self,
        base_url: str,
        access_token: str | None,
        refresh_token: str | None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the provider.

        Args:
            base_url: Sync server base URL.
            access_token: Current access token, if any.
            refresh_token: Long-lived token exchanged for new access tokens.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url
        self._access_token = access_token
        self._refresh_token = refresh_token
        self.timeout = timeout
        self._transport = transport

    @property
    def access_token(self) -> str | None:
        return self._access_token

    async def refresh(self) -> str:
        if not self._refresh_token:
            raise AuthFailure("No refresh token available")

        url = f"{self.base_url.rstrip('/')}/v1/auth/refresh"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, json={"refresh_token": self._refresh_token})
            except httpx.TransportError as e:
                raise TransportFailure(f"Token refresh failed: {e}") from e

        if response.status_code != 200:
            raise AuthFailure(f"Token refresh rejected (HTTP {response.status_code})")

        try:
            token = response.json()["access_token"]
        except (ValueError, KeyError) as e:
            raise AuthFailure("Malformed token refresh response") from e

        self._access_token = token
        logger.info("Access token refreshed")
        return token
