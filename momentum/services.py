"""Explicit construction of the client-side services.

Feature code receives these instances rather than reaching for globals,
so each piece can be built and tested on its own.
"""

from dataclasses import dataclass

from .config import Config
from .models import ModificationClock
from .storage import EntityStore, SyncStateStore
from .sync import RefreshingTokenProvider, SyncManager, SyncTransport


@dataclass
class Services:
    clock: ModificationClock
    store: EntityStore
    state: SyncStateStore
    transport: SyncTransport
    sync: SyncManager


def build_services(config: Config) -> Services:
    """Wire the store, transport and sync manager for the configured user."""
    clock = ModificationClock()
    store = EntityStore(config.storage.data_dir, config.account.user_id)
    state = SyncStateStore(config.storage.data_dir, config.account.user_id)

    tokens = RefreshingTokenProvider(
        base_url=config.sync.server_url,
        access_token=config.sync.access_token,
        refresh_token=config.sync.refresh_token,
        timeout=config.sync.timeout_seconds,
    )
    transport = SyncTransport(
        base_url=config.sync.server_url or None,
        tokens=tokens,
        max_retries=config.sync.max_retries,
        initial_backoff=config.sync.initial_backoff_seconds,
        max_backoff=config.sync.max_backoff_seconds,
        timeout=config.sync.timeout_seconds,
    )
    manager = SyncManager(
        store=store,
        state=state,
        transport=transport,
        clock=clock,
        grace_period_days=config.storage.tombstone_grace_days,
    )
    return Services(clock=clock, store=store, state=state, transport=transport, sync=manager)
