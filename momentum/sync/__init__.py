"""Sync infrastructure for local-first entity storage.

Reconciles the local entity store with the server using last-write-wins
per entity, with tombstones so deletions propagate instead of resurrecting.
"""

from .auth import RefreshingTokenProvider, StaticTokenProvider, TokenProvider
from .manager import SyncManager, SyncResult, SyncState, SyncStatus
from .reconciler import ConflictInfo, ReconcileResult, reconcile, select_winner
from .transport import RemoteSnapshot, SyncTransport

__all__ = [
    "ConflictInfo",
    "ReconcileResult",
    "RefreshingTokenProvider",
    "RemoteSnapshot",
    "StaticTokenProvider",
    "SyncManager",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "SyncTransport",
    "TokenProvider",
    "reconcile",
    "select_winner",
]
