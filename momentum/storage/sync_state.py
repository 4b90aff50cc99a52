"""Per-user sync watermark persistence.

One JSON document per user (``<root>/<user_id>/sync_state.json``) holds
the last server timestamp each entity type synced up to, plus when that
happened. State is a plain dict so the sync manager can read it, update
one type and persist once.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import StorageFailure
from ..models import EntityType, check_id
from .entity_store import write_json_atomic

logger = logging.getLogger(__name__)

STATE_FILENAME = "sync_state.json"


def _empty_state() -> dict[str, Any]:
    return {"version": 1, "types": {}}


class SyncStateStore:
    """Load and save sync watermarks for one user."""

    def __init__(self, root_dir: str | Path, user_id: str):
        self.root_dir = Path(root_dir).expanduser()
        self.user_id = check_id(user_id)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self.root_dir / self.user_id / STATE_FILENAME

    def _load_sync(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as fh:
                state = json.load(fh)
        except FileNotFoundError:
            return _empty_state()
        except ValueError as e:
            # A corrupt state only costs a full resync
            logger.warning(f"Discarding corrupt sync state {self.path}: {e}")
            return _empty_state()
        except OSError as e:
            raise StorageFailure(f"Failed to read {self.path}: {e}") from e
        state.setdefault("types", {})
        return state

    async def load(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._load_sync)

    async def get_watermark(self, entity_type: EntityType) -> int | None:
        """Server timestamp of the last successful sync for a type."""
        state = await self.load()
        entry = state["types"].get(entity_type.value)
        return entry.get("watermark") if entry else None

    async def set_watermark(self, entity_type: EntityType, watermark: int) -> None:
        """Record a successful sync for a type."""
        async with self._lock:
            state = await self.load()
            state["types"][entity_type.value] = {
                "watermark": watermark,
                "synced_at": datetime.now(timezone.utc).isoformat(),
            }
            await asyncio.to_thread(write_json_atomic, self.path, state)

    async def reset(self, entity_type: EntityType | None = None) -> None:
        """Forget watermarks so the next sync is a full resync."""
        async with self._lock:
            state = await self.load()
            if entity_type is None:
                state["types"] = {}
            else:
                state["types"].pop(entity_type.value, None)
            await asyncio.to_thread(write_json_atomic, self.path, state)
