"""Orchestrates sync rounds between the entity store and the server.

One round for an entity type:

1. Snapshot every local entity of the type (tombstones included).
2. Exchange it with the server via ``SyncTransport.sync_batch``.
3. Reconcile local and remote collections.
4. Push any local winners the server does not have yet.
5. Apply the merge to the local store and advance the watermark.

Step 5 starts only after the merge is fully computed and is shielded from
cancellation, so a caller cancelling mid-sync (e.g. the app going to the
background) leaves the store in its last consistent state.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from ..errors import AuthFailure, StorageFailure, TransportFailure
from ..models import Entity, EntityType, ModificationClock, wall_clock_ms
from ..storage import EntityStore, SyncStateStore
from .reconciler import (
    DAY_MS,
    ReconcileResult,
    is_expired_tombstone,
    reconcile,
    select_winner,
)
from .transport import SyncTransport

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "sync unavailable, will retry later"
AUTH_MESSAGE = "please sign in again"


class SyncState(Enum):
    """Per-type lifecycle: idle -> syncing -> synced | error."""

    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    SKIPPED = "skipped"  # Coalesced with a round already in flight
    FAILED = "failed"
    OFFLINE = "offline"  # Server unreachable
    AUTH_REQUIRED = "auth_required"


@dataclass
class SyncResult:
    """Result of one sync round for one entity type."""

    entity_type: EntityType
    status: SyncStatus
    uploaded: int = 0
    downloaded: int = 0
    collected: int = 0
    conflicts: int = 0
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "status": self.status.value,
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "collected": self.collected,
            "conflicts": self.conflicts,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class SyncManager:
    """Runs sync rounds per entity type.

    Rounds for different types may run concurrently; a second request for
    a type already syncing is coalesced (returns ``SKIPPED``) rather than
    queued.
    """

    def __init__(
        self,
        store: EntityStore,
        state: SyncStateStore,
        transport: SyncTransport,
        clock: ModificationClock | None = None,
        grace_period_days: int = 30,
        now_ms: Callable[[], int] = wall_clock_ms,
    ):
        """Initialize the manager.

        Args:
            store: Local entity store for the signed-in user.
            state: Watermark persistence for the same user.
            transport: Network client for the sync server.
            clock: Modification clock shared with feature code; advanced past
                every remote timestamp seen.
            grace_period_days: Tombstone retention before garbage collection.
            now_ms: Wall clock used for tombstone expiry.
        """
        self.store = store
        self.state = state
        self.transport = transport
        self.clock = clock or ModificationClock()
        self.grace_period_ms = grace_period_days * DAY_MS
        self._now_ms = now_ms
        self._states: dict[EntityType, SyncState] = {t: SyncState.IDLE for t in EntityType}
        self._last_results: dict[EntityType, SyncResult] = {}
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    def state_of(self, entity_type: EntityType) -> SyncState:
        return self._states[entity_type]

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last fully successful round."""
        return self._last_sync

    async def sync(self, entity_type: EntityType) -> SyncResult:
        """Run one sync round for an entity type.

        Failures of any kind are reported through the returned
        ``SyncResult`` and leave the type in ``error``, never stuck in
        ``syncing``. Only cancellation propagates.
        """
        if self._states[entity_type] is SyncState.SYNCING:
            logger.info(f"Sync for {entity_type.value} already in flight, coalescing")
            return SyncResult(entity_type=entity_type, status=SyncStatus.SKIPPED)

        self._states[entity_type] = SyncState.SYNCING
        try:
            result = await self._run_round(entity_type)
        except asyncio.CancelledError:
            self._states[entity_type] = SyncState.ERROR
            logger.info(f"Sync for {entity_type.value} cancelled")
            raise
        except AuthFailure as e:
            logger.warning(f"Sync for {entity_type.value} needs sign-in: {e}")
            result = SyncResult(
                entity_type=entity_type, status=SyncStatus.AUTH_REQUIRED, error=AUTH_MESSAGE
            )
        except TransportFailure as e:
            logger.warning(f"Sync for {entity_type.value} failed: {e}")
            status = SyncStatus.OFFLINE if e.status_code is None else SyncStatus.FAILED
            result = SyncResult(entity_type=entity_type, status=status, error=OFFLINE_MESSAGE)
        except StorageFailure as e:
            logger.error(f"Sync for {entity_type.value} hit a storage error: {e}")
            result = SyncResult(entity_type=entity_type, status=SyncStatus.FAILED, error=str(e))
        except Exception as e:
            logger.error(f"Sync for {entity_type.value} failed unexpectedly: {e}", exc_info=True)
            result = SyncResult(entity_type=entity_type, status=SyncStatus.FAILED, error=str(e))

        if result.status is SyncStatus.SUCCESS:
            self._states[entity_type] = SyncState.SYNCED
            self._last_sync = result.timestamp
        else:
            self._states[entity_type] = SyncState.ERROR
        self._last_results[entity_type] = result
        return result

    async def _run_round(self, entity_type: EntityType) -> SyncResult:
        local = await self.store.list_all(entity_type)
        watermark = await self.state.get_watermark(entity_type)

        remote = await self.transport.sync_batch(entity_type, local, watermark)
        for entity in remote.entities:
            self.clock.observe(entity.updated_at)

        merge = reconcile(local, remote.entities, self._now_ms(), self.grace_period_ms)

        uploaded = 0
        if merge.to_upload:
            uploaded = await self.transport.push(entity_type, merge.to_upload)

        stored, collected = await asyncio.shield(
            self._apply(entity_type, merge, remote.timestamp)
        )

        logger.info(
            f"Synced {entity_type.value}: uploaded={uploaded}, "
            f"downloaded={stored}, collected={collected}"
        )
        return SyncResult(
            entity_type=entity_type,
            status=SyncStatus.SUCCESS,
            uploaded=uploaded,
            downloaded=stored,
            collected=collected,
            conflicts=len(merge.conflicts),
        )

    async def _apply(
        self, entity_type: EntityType, merge: ReconcileResult, watermark: int
    ) -> tuple[int, int]:
        """Write a completed merge to storage, then advance the watermark.

        Each write re-checks the stored record under its lock, so an edit
        made while the round was in flight is never replaced by an older
        remote version, and a tombstone restored meanwhile is not collected.

        Returns:
            Tuple of (records written, records collected).
        """
        now_ms = self._now_ms()

        def remote_wins(incoming: Entity) -> Callable[[Entity | None], bool]:
            return lambda current: current is None or select_winner(current, incoming)[0] is incoming

        def still_expired(current: Entity) -> bool:
            return is_expired_tombstone(current, now_ms, self.grace_period_ms)

        written = await asyncio.gather(
            *(self.store.put_if(entity_type, e, remote_wins(e)) for e in merge.to_store)
        )
        removed = await asyncio.gather(
            *(self.store.delete_if(entity_type, i, still_expired) for i in merge.gc_candidates)
        )
        await self.state.set_watermark(entity_type, watermark)
        return sum(written), sum(removed)

    async def sync_all(
        self, entity_types: Iterable[EntityType] | None = None
    ) -> dict[EntityType, SyncResult]:
        """Sync several entity types concurrently."""
        types = list(entity_types) if entity_types is not None else list(EntityType)
        results = await asyncio.gather(*(self.sync(t) for t in types))

        if any(r.status in (SyncStatus.OFFLINE, SyncStatus.FAILED) for r in results):
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0
        return dict(zip(types, results))

    async def sync_loop(
        self,
        interval_seconds: int = 300,
        stop_event: asyncio.Event | None = None,
        entity_types: Iterable[EntityType] | None = None,
    ) -> None:
        """Run continuous sync loop.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
            entity_types: Types to sync (default: all).
        """
        types = list(entity_types) if entity_types is not None else None
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                results = await self.sync_all(types)
                summary = ", ".join(f"{t.value}={r.status.value}" for t, r in results.items())
                logger.info(f"Sync round: {summary}")
            except Exception as e:
                logger.error(f"Sync loop error: {e}")
                self._consecutive_failures += 1

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    3600,  # Max 1 hour
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with per-type state and last results.
        """
        return {
            "server_url": self.transport.base_url,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "types": {
                t.value: {
                    "state": self._states[t].value,
                    "last_result": (
                        self._last_results[t].to_dict() if t in self._last_results else None
                    ),
                }
                for t in EntityType
            },
        }
