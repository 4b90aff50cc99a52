"""Local persistence for synced entities and sync watermarks."""

from .entity_store import EntityStore, write_json_atomic
from .sync_state import SyncStateStore

__all__ = ["EntityStore", "SyncStateStore", "write_json_atomic"]
