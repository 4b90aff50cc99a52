"""HTTP transport for one sync round-trip with the server.

Handles bearer auth, retry with capped exponential backoff, and decoding
of the server's snapshot.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

import httpx

from ..errors import AuthFailure, ClientRequestError, TransportFailure
from ..models import Entity, EntityType, entity_class
from .auth import TokenProvider

logger = logging.getLogger(__name__)


@dataclass
class RemoteSnapshot:
    """Server state returned by a sync round-trip."""

    entities: list[Entity] = field(default_factory=list)
    timestamp: int = 0  # server watermark for the next delta request
    skipped: int = 0  # records that failed to decode


class SyncTransport:
    """Client for the sync endpoints.

    Retry policy:
    - Timeouts, connection errors and 5xx: retried with exponential
      backoff (``initial_backoff`` doubling up to ``max_backoff``), at
      most ``max_retries`` attempts in total.
    - 401: refresh the token once and retry; a second 401 is an
      ``AuthFailure``.
    - Other 4xx: ``ClientRequestError`` immediately.
    """

    def __init__(
        self,
        base_url: str | None,
        tokens: TokenProvider,
        max_retries: int = 5,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the transport.

        Args:
            base_url: Server base URL (e.g., "https://api.example.com").
            tokens: Bearer token source.
            max_retries: Maximum attempts per request.
            initial_backoff: First retry delay in seconds.
            max_backoff: Upper bound on the retry delay.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
            sleep: Awaitable sleep, replaceable in tests.
        """
        self.base_url = base_url
        self.tokens = tokens
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    def set_base_url(self, url: str) -> None:
        self.base_url = url
        logger.info(f"Sync server URL set to {url}")

    def backoff_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based)."""
        return min(self.initial_backoff * (2 ** retry), self.max_backoff)

    def _headers(self) -> dict[str, str]:
        token = self.tokens.access_token
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request_with_retry(self, path: str, json_data: Any) -> Any:
        """POST ``json_data`` to ``path`` and return the decoded JSON body.

        Raises:
            TransportFailure: Retries exhausted or malformed body.
            ClientRequestError: Non-retryable 4xx response.
            AuthFailure: Credentials rejected after a refresh.
        """
        if not self.base_url:
            raise TransportFailure("No server URL configured")

        url = f"{self.base_url.rstrip('/')}{path}"
        attempt = 0
        refreshed = False

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            while True:
                status_code: int | None = None
                try:
                    response = await client.post(url, json=json_data, headers=self._headers())
                except httpx.TimeoutException:
                    error = "Request timeout"
                except httpx.TransportError as e:
                    error = f"Connection failed: {e}"
                else:
                    status_code = response.status_code
                    if 200 <= status_code < 300:
                        try:
                            return response.json()
                        except ValueError as e:
                            raise TransportFailure(
                                "Malformed response body", status_code
                            ) from e

                    if status_code == 401:
                        if refreshed:
                            raise AuthFailure("Credentials rejected after token refresh")
                        logger.info("Access token rejected, refreshing")
                        await self.tokens.refresh()
                        refreshed = True
                        continue

                    if status_code < 500:
                        raise ClientRequestError(
                            f"HTTP {status_code}: {response.text}", status_code
                        )

                    error = f"Server error {status_code}"

                attempt += 1
                logger.warning(f"{error}, attempt {attempt}/{self.max_retries}")
                if attempt >= self.max_retries:
                    raise TransportFailure(
                        f"Max retries ({self.max_retries}) exceeded: {error}",
                        status_code,
                    )
                await self._sleep(self.backoff_delay(attempt - 1))

    def _decode_entities(
        self, entity_type: EntityType, records: Any
    ) -> tuple[list[Entity], int]:
        if not isinstance(records, list):
            raise TransportFailure("Malformed sync response: 'entities' is not a list")

        cls = entity_class(entity_type)
        entities = []
        skipped = 0
        for record in records:
            try:
                entities.append(cls.from_dict(record))
            except (ValueError, KeyError, TypeError) as e:
                skipped += 1
                logger.warning(f"Skipping malformed {entity_type.value} record: {e}")
        return entities, skipped

    async def sync_batch(
        self,
        entity_type: EntityType,
        local_snapshot: Iterable[Entity],
        last_sync: int | None,
    ) -> RemoteSnapshot:
        """Send the local snapshot and receive the server's delta.

        Args:
            entity_type: Entity type being synced.
            local_snapshot: Every local entity of that type, tombstones included.
            last_sync: Server watermark from the previous successful sync.

        Returns:
            RemoteSnapshot with the server's current versions.
        """
        payload = {
            "since": last_sync,
            "entities": [e.to_dict() for e in local_snapshot],
        }
        data = await self._request_with_retry(f"/v1/sync/{entity_type.value}", payload)
        if not isinstance(data, dict):
            raise TransportFailure("Malformed sync response")

        try:
            timestamp = int(data.get("timestamp") or 0)
        except (TypeError, ValueError) as e:
            raise TransportFailure(
                f"Malformed sync response: bad timestamp {data.get('timestamp')!r}"
            ) from e

        entities, skipped = self._decode_entities(entity_type, data.get("entities", []))
        return RemoteSnapshot(entities=entities, timestamp=timestamp, skipped=skipped)

    async def push(self, entity_type: EntityType, entities: Iterable[Entity]) -> int:
        """Upload entities that won locally. Returns the accepted count."""
        records = [e.to_dict() for e in entities]
        if not records:
            return 0

        data = await self._request_with_retry(
            f"/v1/sync/{entity_type.value}/push", {"entities": records}
        )
        if not isinstance(data, dict):
            raise TransportFailure("Malformed push response")
        return int(data.get("accepted", 0))
