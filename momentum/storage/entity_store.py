"""Durable per-user, per-type JSON storage for entities.

Each entity lives in its own file at
``<root>/<user_id>/<entity_type>/<entity_id>.json``. Writes go to a temp
file in the same directory followed by ``os.replace()`` so a crash never
leaves a half-written record behind. Blocking file I/O runs in a worker
thread so callers on the event loop are never blocked.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Iterable

from ..errors import EntityNotFound, StorageFailure
from ..models import Entity, EntityType, check_id, entity_class

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to *path* via temp file + ``os.replace()``.

    Raises:
        StorageFailure: On any OS-level error.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        raise StorageFailure(f"Failed to write {path}: {e}") from e


class EntityStore:
    """Local entity storage for one authenticated user."""

    def __init__(self, root_dir: str | Path, user_id: str):
        """Initialize the store.

        Args:
            root_dir: Base directory shared by all users on this device.
            user_id: Authenticated user; namespaces every record.
        """
        self.root_dir = Path(root_dir).expanduser()
        self.user_id = check_id(user_id)
        self._locks: dict[tuple[EntityType, str], asyncio.Lock] = {}

    @property
    def user_dir(self) -> Path:
        return self.root_dir / self.user_id

    def _type_dir(self, entity_type: EntityType) -> Path:
        return self.user_dir / entity_type.value

    def _entity_path(self, entity_type: EntityType, entity_id: str) -> Path:
        check_id(entity_id)
        return self._type_dir(entity_type) / f"{entity_id}.json"

    def _lock_for(self, entity_type: EntityType, entity_id: str) -> asyncio.Lock:
        key = (entity_type, entity_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _read_entity(self, entity_type: EntityType, path: Path) -> Entity | None:
        """Read one record. Missing or corrupt files yield ``None``."""
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFailure(f"Failed to read {path}: {e}") from e

        try:
            return entity_class(entity_type).from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring corrupt record {path}: {e}")
            return None

    def _list_paths(self, entity_type: EntityType) -> list[Path]:
        type_dir = self._type_dir(entity_type)
        try:
            return sorted(p for p in type_dir.glob("*.json") if not p.name.startswith("."))
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageFailure(f"Failed to list {type_dir}: {e}") from e

    def _read_all(self, entity_type: EntityType) -> list[Entity]:
        entities = []
        for path in self._list_paths(entity_type):
            try:
                entity = self._read_entity(entity_type, path)
            except StorageFailure as e:
                logger.warning(f"Skipping unreadable record: {e}")
                continue
            if entity is not None:
                entities.append(entity)
        return entities

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFailure(f"Failed to delete {path}: {e}") from e

    # ------------------------------------------------------------------
    # Public async API
    # ------------------------------------------------------------------

    async def put(self, entity_type: EntityType, entity: Entity) -> None:
        """Write or overwrite an entity by id.

        Raises:
            TypeError: If the entity does not belong to ``entity_type``.
            StorageFailure: If the write fails.
        """
        path = self._entity_path(entity_type, entity.id)
        if not isinstance(entity, entity_class(entity_type)):
            raise TypeError(
                f"{type(entity).__name__} cannot be stored as {entity_type.value}"
            )
        data = entity.to_dict()
        async with self._lock_for(entity_type, entity.id):
            await asyncio.to_thread(write_json_atomic, path, data)
        logger.debug(f"Stored {entity_type.value}/{entity.id} (updated_at={entity.updated_at})")

    async def get(self, entity_type: EntityType, entity_id: str) -> Entity:
        """Load an entity.

        Raises:
            EntityNotFound: If the record is missing or unreadable as JSON.
            StorageFailure: If the file exists but cannot be read.
        """
        path = self._entity_path(entity_type, entity_id)
        entity = await asyncio.to_thread(self._read_entity, entity_type, path)
        if entity is None:
            raise EntityNotFound(entity_type.value, entity_id)
        return entity

    async def list_all(self, entity_type: EntityType) -> list[Entity]:
        """Every stored entity of a type, tombstones included."""
        return await asyncio.to_thread(self._read_all, entity_type)

    async def list_active(self, entity_type: EntityType) -> list[Entity]:
        """Stored entities of a type excluding tombstones."""
        return [e for e in await self.list_all(entity_type) if not e.is_deleted]

    async def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        """Physically remove a record. Only for tombstone garbage collection.

        Returns:
            True if a record was removed, False if none existed.
        """
        path = self._entity_path(entity_type, entity_id)
        async with self._lock_for(entity_type, entity_id):
            removed = await asyncio.to_thread(self._unlink, path)
        if removed:
            logger.debug(f"Deleted {entity_type.value}/{entity_id}")
        return removed

    async def update(
        self,
        entity_type: EntityType,
        entity_id: str,
        mutate: Callable[[Entity], None],
    ) -> Entity:
        """Read-modify-write one entity under its lock.

        Two rapid mutations of the same entity (e.g. toggling a habit twice)
        are applied one after the other, never interleaved.

        Args:
            entity_type: Type of the entity.
            entity_id: Id of the entity to mutate.
            mutate: Callback that mutates the entity in place (and is
                expected to ``touch()`` it).

        Returns:
            The stored entity after mutation.
        """
        path = self._entity_path(entity_type, entity_id)
        async with self._lock_for(entity_type, entity_id):
            entity = await asyncio.to_thread(self._read_entity, entity_type, path)
            if entity is None:
                raise EntityNotFound(entity_type.value, entity_id)
            mutate(entity)
            await asyncio.to_thread(write_json_atomic, path, entity.to_dict())
        return entity

    async def put_if(
        self,
        entity_type: EntityType,
        entity: Entity,
        should_write: Callable[[Entity | None], bool],
    ) -> bool:
        """Write ``entity`` only if ``should_write(current)`` holds.

        ``current`` is re-read under the entity's lock, so a mutation that
        landed after the caller's snapshot is what gets compared.

        Returns:
            True if the entity was written.
        """
        path = self._entity_path(entity_type, entity.id)
        if not isinstance(entity, entity_class(entity_type)):
            raise TypeError(
                f"{type(entity).__name__} cannot be stored as {entity_type.value}"
            )
        async with self._lock_for(entity_type, entity.id):
            current = await asyncio.to_thread(self._read_entity, entity_type, path)
            if not should_write(current):
                return False
            await asyncio.to_thread(write_json_atomic, path, entity.to_dict())
        return True

    async def delete_if(
        self,
        entity_type: EntityType,
        entity_id: str,
        should_delete: Callable[[Entity], bool],
    ) -> bool:
        """Remove a record only if ``should_delete(current)`` holds."""
        path = self._entity_path(entity_type, entity_id)
        async with self._lock_for(entity_type, entity_id):
            current = await asyncio.to_thread(self._read_entity, entity_type, path)
            if current is None or not should_delete(current):
                return False
            return await asyncio.to_thread(self._unlink, path)

    async def put_many(self, entity_type: EntityType, entities: Iterable[Entity]) -> int:
        entities = list(entities)
        await asyncio.gather(*(self.put(entity_type, e) for e in entities))
        return len(entities)

    async def delete_many(self, entity_type: EntityType, entity_ids: Iterable[str]) -> int:
        results = await asyncio.gather(
            *(self.delete(entity_type, entity_id) for entity_id in entity_ids)
        )
        return sum(1 for removed in results if removed)

    async def get_stats(self) -> dict[str, Any]:
        """Per-type counts of active and tombstoned records."""
        stats: dict[str, Any] = {"user_id": self.user_id, "types": {}}
        for entity_type in EntityType:
            entities = await self.list_all(entity_type)
            deleted = sum(1 for e in entities if e.is_deleted)
            stats["types"][entity_type.value] = {
                "active": len(entities) - deleted,
                "tombstones": deleted,
            }
        return stats
