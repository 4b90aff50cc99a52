"""Authoritative per-user entity state kept by the sync server.

Entities are stored with the same ``EntityStore`` layout the client uses.
Alongside each user's entity types, a change index records the server time
at which each entity last changed, which is what delta queries filter on.

Tombstones older than the grace period are purged from both the store and
the change index, so they are never returned to clients again and each
client can collect its own copy.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Iterable

from ..errors import EntityNotFound, StorageFailure
from ..models import Entity, EntityType, ModificationClock, wall_clock_ms
from ..storage import EntityStore, write_json_atomic
from ..sync.reconciler import DEFAULT_GRACE_PERIOD_MS, is_expired_tombstone, select_winner

logger = logging.getLogger(__name__)


class ServerRepository:
    """Server-side storage for all users."""

    def __init__(
        self,
        root_dir: str | Path,
        clock: ModificationClock | None = None,
        grace_period_ms: int = DEFAULT_GRACE_PERIOD_MS,
        now_ms: Callable[[], int] = wall_clock_ms,
    ):
        """Initialize the repository.

        Args:
            root_dir: Base directory holding every user's data.
            clock: Clock for change-index entries and watermarks.
            grace_period_ms: Tombstone retention before purging.
            now_ms: Wall clock used for tombstone expiry.
        """
        self.root_dir = Path(root_dir).expanduser()
        self.clock = clock or ModificationClock()
        self.grace_period_ms = grace_period_ms
        self._now_ms = now_ms
        self._stores: dict[str, EntityStore] = {}
        self._locks: dict[tuple[str, EntityType], asyncio.Lock] = {}

    def store_for(self, user_id: str) -> EntityStore:
        store = self._stores.get(user_id)
        if store is None:
            store = self._stores[user_id] = EntityStore(self.root_dir, user_id)
        return store

    def _lock_for(self, user_id: str, entity_type: EntityType) -> asyncio.Lock:
        key = (user_id, entity_type)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _index_path(self, user_id: str, entity_type: EntityType) -> Path:
        return self.store_for(user_id).user_dir / f"changes_{entity_type.value}.json"

    def _load_index(self, path: Path) -> dict[str, int]:
        try:
            with open(path, encoding="utf-8") as fh:
                return {str(k): int(v) for k, v in json.load(fh).items()}
        except FileNotFoundError:
            return {}
        except ValueError as e:
            raise StorageFailure(f"Corrupt change index {path}: {e}") from e
        except OSError as e:
            raise StorageFailure(f"Failed to read {path}: {e}") from e

    def _expired(self, entity: Entity, now_ms: int) -> bool:
        return is_expired_tombstone(entity, now_ms, self.grace_period_ms)

    async def _merge_locked(
        self,
        user_id: str,
        entity_type: EntityType,
        incoming: Iterable[Entity],
        index: dict[str, int],
    ) -> int:
        store = self.store_for(user_id)
        now_ms = self._now_ms()
        accepted = 0
        for entity in incoming:
            try:
                current = await store.get(entity_type, entity.id)
            except EntityNotFound:
                current = None

            if current is not None:
                winner, _ = select_winner(current, entity)
                if winner is current or winner.content_key() == current.content_key():
                    continue

            if self._expired(entity, now_ms):
                # An expired tombstone is applied by dropping the record
                if current is not None:
                    await store.delete(entity_type, entity.id)
                    index.pop(entity.id, None)
                    accepted += 1
                continue

            await store.put(entity_type, entity)
            index[entity.id] = self.clock.now()
            accepted += 1
        return accepted

    async def _purge_locked(
        self,
        user_id: str,
        entity_type: EntityType,
        entities: list[Entity],
        index: dict[str, int],
    ) -> list[Entity]:
        """Drop expired tombstones. Returns the entities that remain."""
        store = self.store_for(user_id)
        now_ms = self._now_ms()
        kept = []
        purged = 0
        for entity in entities:
            if self._expired(entity, now_ms):
                await store.delete(entity_type, entity.id)
                index.pop(entity.id, None)
                purged += 1
            else:
                kept.append(entity)
        if purged:
            logger.info(f"Purged {purged} expired {entity_type.value} tombstones for {user_id}")
        return kept

    async def merge(
        self, user_id: str, entity_type: EntityType, incoming: Iterable[Entity]
    ) -> int:
        """Apply client versions that win under last-write-wins.

        Returns:
            Number of entities that changed server state.
        """
        path = self._index_path(user_id, entity_type)
        async with self._lock_for(user_id, entity_type):
            index = await asyncio.to_thread(self._load_index, path)
            before = dict(index)
            accepted = await self._merge_locked(user_id, entity_type, incoming, index)
            if index != before:
                await asyncio.to_thread(write_json_atomic, path, index)
        return accepted

    async def sync(
        self,
        user_id: str,
        entity_type: EntityType,
        incoming: list[Entity],
        since: int | None,
    ) -> tuple[list[Entity], int, int]:
        """Merge a client snapshot and return the server's view.

        The response holds every entity changed after ``since`` plus the
        current server version of every id the client sent, so the client
        always sees the authoritative copy of what it uploaded. Expired
        tombstones are purged first and never returned.

        Returns:
            Tuple of (entities, watermark, accepted_count).
        """
        path = self._index_path(user_id, entity_type)
        store = self.store_for(user_id)
        async with self._lock_for(user_id, entity_type):
            index = await asyncio.to_thread(self._load_index, path)
            before = dict(index)
            accepted = await self._merge_locked(user_id, entity_type, incoming, index)
            current = await self._purge_locked(
                user_id, entity_type, await store.list_all(entity_type), index
            )
            if index != before:
                await asyncio.to_thread(write_json_atomic, path, index)

            sent_ids = {e.id for e in incoming}
            entities = [
                e for e in current
                if e.id in sent_ids or since is None or index.get(e.id, 0) > since
            ]
            watermark = self.clock.now()

        logger.info(
            f"Sync {user_id}/{entity_type.value}: received={len(incoming)}, "
            f"accepted={accepted}, returned={len(entities)}"
        )
        return entities, watermark, accepted
