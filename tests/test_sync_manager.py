"""Tests for the sync manager."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from momentum.errors import AuthFailure, ClientRequestError, EntityNotFound, StorageFailure, TransportFailure
from momentum.models import EntityType, Habit, ModificationClock
from momentum.storage import EntityStore, SyncStateStore
from momentum.sync import RemoteSnapshot, SyncManager, SyncState, SyncStatus
from momentum.sync.manager import AUTH_MESSAGE, OFFLINE_MESSAGE
from momentum.sync.reconciler import DAY_MS

NOW = 1_800_000_000_000


@pytest.fixture
def store(tmp_path):
    return EntityStore(tmp_path, "user-1")


@pytest.fixture
def state(tmp_path):
    return SyncStateStore(tmp_path, "user-1")


@pytest.fixture
def transport():
    transport = MagicMock()
    transport.base_url = "http://sync.test"
    transport.sync_batch = AsyncMock(return_value=RemoteSnapshot(timestamp=500))
    transport.push = AsyncMock(return_value=0)
    return transport


@pytest.fixture
def manager(store, state, transport):
    return SyncManager(store, state, transport, clock=ModificationClock(), now_ms=lambda: NOW)


def habit(entity_id: str, updated_at: int, name: str = "", deleted_at: int | None = None) -> Habit:
    return Habit(id=entity_id, updated_at=updated_at, name=name, deleted_at=deleted_at, created_at=None)


class TestSyncRound:
    """Tests for a single successful round."""

    @pytest.mark.asyncio
    async def test_remote_changes_applied(self, manager, store, state, transport):
        """Test remote winners are written locally and the watermark advances."""
        await store.put(EntityType.HABITS, habit("A", 100, "local A"))
        transport.sync_batch.return_value = RemoteSnapshot(
            entities=[habit("A", 200, "remote A"), habit("B", 50, "remote B")],
            timestamp=900,
        )

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.SUCCESS
        assert result.downloaded == 2
        assert result.uploaded == 0
        assert (await store.get(EntityType.HABITS, "A")).name == "remote A"
        assert (await store.get(EntityType.HABITS, "B")).name == "remote B"
        assert await state.get_watermark(EntityType.HABITS) == 900
        transport.push.assert_not_awaited()
        assert manager.state_of(EntityType.HABITS) == SyncState.SYNCED
        assert manager.last_sync == result.timestamp

    @pytest.mark.asyncio
    async def test_sends_snapshot_and_watermark(self, manager, store, state, transport):
        """Test the full local snapshot and stored watermark are sent."""
        await store.put(EntityType.HABITS, habit("A", 100))
        await state.set_watermark(EntityType.HABITS, 321)

        await manager.sync(EntityType.HABITS)

        entity_type, snapshot, since = transport.sync_batch.await_args.args
        assert entity_type == EntityType.HABITS
        assert [e.id for e in snapshot] == ["A"]
        assert since == 321

    @pytest.mark.asyncio
    async def test_local_winners_pushed(self, manager, store, transport):
        """Test local winners are pushed to the server."""
        await store.put(EntityType.HABITS, habit("A", 300, "mine"))
        transport.sync_batch.return_value = RemoteSnapshot(
            entities=[habit("A", 200, "theirs")], timestamp=900
        )
        transport.push.return_value = 1

        result = await manager.sync(EntityType.HABITS)

        assert result.uploaded == 1
        pushed = transport.push.await_args.args[1]
        assert [e.name for e in pushed] == ["mine"]
        assert (await store.get(EntityType.HABITS, "A")).name == "mine"

    @pytest.mark.asyncio
    async def test_expired_tombstones_collected(self, manager, store, transport):
        """Test expired tombstones the server dropped are deleted locally."""
        old = NOW - 31 * DAY_MS
        await store.put(EntityType.HABITS, habit("A", old, deleted_at=old))
        await store.put(EntityType.HABITS, habit("B", NOW - DAY_MS, deleted_at=NOW - DAY_MS))
        transport.sync_batch.return_value = RemoteSnapshot(
            entities=[habit("B", NOW - DAY_MS, deleted_at=NOW - DAY_MS)], timestamp=900
        )

        result = await manager.sync(EntityType.HABITS)

        assert result.collected == 1
        with pytest.raises(EntityNotFound):
            await store.get(EntityType.HABITS, "A")
        assert (await store.get(EntityType.HABITS, "B")).is_deleted

    @pytest.mark.asyncio
    async def test_clock_observes_remote_timestamps(self, manager, transport):
        """Test later local edits sort after everything seen from the server."""
        future = NOW * 2
        transport.sync_batch.return_value = RemoteSnapshot(
            entities=[habit("A", future)], timestamp=1
        )

        await manager.sync(EntityType.HABITS)

        assert manager.clock.now() > future


class TestFailures:
    """Tests for error mapping and state transitions."""

    @pytest.mark.asyncio
    async def test_offline(self, manager, store, transport):
        """Test network failures report offline and leave the store untouched."""
        await store.put(EntityType.HABITS, habit("A", 100))
        transport.sync_batch.side_effect = TransportFailure("Connection failed")

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.OFFLINE
        assert result.error == OFFLINE_MESSAGE
        assert manager.state_of(EntityType.HABITS) == SyncState.ERROR
        assert (await store.get(EntityType.HABITS, "A")).updated_at == 100

    @pytest.mark.asyncio
    async def test_server_error_is_failed(self, manager, transport):
        """Test HTTP failures report failed."""
        transport.sync_batch.side_effect = ClientRequestError("HTTP 400", 400)

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_auth_required(self, manager, state, transport):
        """Test auth failures ask the user to sign in and keep the watermark."""
        await state.set_watermark(EntityType.HABITS, 10)
        transport.sync_batch.side_effect = AuthFailure("rejected")

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.AUTH_REQUIRED
        assert result.error == AUTH_MESSAGE
        assert await state.get_watermark(EntityType.HABITS) == 10

    @pytest.mark.asyncio
    async def test_push_failure_applies_nothing(self, manager, store, state, transport):
        """Test a failed push leaves the store and watermark unchanged."""
        await store.put(EntityType.HABITS, habit("A", 300, "mine"))
        transport.sync_batch.return_value = RemoteSnapshot(
            entities=[habit("A", 200, "theirs"), habit("B", 10)], timestamp=900
        )
        transport.push.side_effect = TransportFailure("down")

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.OFFLINE
        with pytest.raises(EntityNotFound):
            await store.get(EntityType.HABITS, "B")
        assert await state.get_watermark(EntityType.HABITS) is None

    @pytest.mark.asyncio
    async def test_storage_failure(self, manager, store, transport):
        """Test local storage errors report failed."""
        store.list_all = AsyncMock(side_effect=StorageFailure("disk full"))

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.FAILED
        assert "disk full" in result.error
        transport.sync_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_after_failure(self, manager, transport):
        """Test a later successful round moves the state to synced."""
        transport.sync_batch.side_effect = [TransportFailure("down"), RemoteSnapshot(timestamp=5)]

        assert (await manager.sync(EntityType.HABITS)).status == SyncStatus.OFFLINE
        assert (await manager.sync(EntityType.HABITS)).status == SyncStatus.SUCCESS
        assert manager.state_of(EntityType.HABITS) == SyncState.SYNCED

    @pytest.mark.asyncio
    async def test_unexpected_error_leaves_error_state(self, manager, transport):
        """Test an unanticipated exception fails the round without wedging the type."""
        transport.sync_batch.side_effect = [ValueError("bad timestamp"), RemoteSnapshot(timestamp=5)]

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.FAILED
        assert "bad timestamp" in result.error
        assert manager.state_of(EntityType.HABITS) == SyncState.ERROR
        assert (await manager.sync(EntityType.HABITS)).status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_bad_remote_id_fails_round(self, manager, store, transport):
        """Test an entity that cannot be stored fails the round cleanly."""
        transport.sync_batch.return_value = RemoteSnapshot(
            entities=[habit("../escape", 100)], timestamp=5
        )

        result = await manager.sync(EntityType.HABITS)

        assert result.status == SyncStatus.FAILED
        assert manager.state_of(EntityType.HABITS) == SyncState.ERROR
        assert await store.list_all(EntityType.HABITS) == []


class TestConcurrency:
    """Tests for coalescing and cancellation."""

    @pytest.mark.asyncio
    async def test_concurrent_request_coalesced(self, manager, transport):
        """Test a second request while syncing is skipped, not queued."""
        release = asyncio.Event()

        async def slow_batch(*args):
            await release.wait()
            return RemoteSnapshot(timestamp=1)

        transport.sync_batch.side_effect = slow_batch

        first = asyncio.create_task(manager.sync(EntityType.HABITS))
        await asyncio.sleep(0.05)
        assert manager.state_of(EntityType.HABITS) == SyncState.SYNCING

        second = await manager.sync(EntityType.HABITS)
        release.set()
        first_result = await first

        assert second.status == SyncStatus.SKIPPED
        assert first_result.status == SyncStatus.SUCCESS
        assert transport.sync_batch.await_count == 1

    @pytest.mark.asyncio
    async def test_types_sync_independently(self, manager, transport):
        """Test sync_all runs one round per type."""
        results = await manager.sync_all([EntityType.HABITS, EntityType.MOODS])

        assert set(results) == {EntityType.HABITS, EntityType.MOODS}
        assert all(r.status == SyncStatus.SUCCESS for r in results.values())
        assert transport.sync_batch.await_count == 2

    @pytest.mark.asyncio
    async def test_cancel_before_apply(self, manager, store, state, transport):
        """Test cancelling mid-request leaves storage untouched."""
        await store.put(EntityType.HABITS, habit("A", 100, "local"))
        started = asyncio.Event()

        async def hanging_batch(*args):
            started.set()
            await asyncio.sleep(3600)

        transport.sync_batch.side_effect = hanging_batch

        task = asyncio.create_task(manager.sync(EntityType.HABITS))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert manager.state_of(EntityType.HABITS) == SyncState.ERROR
        assert (await store.get(EntityType.HABITS, "A")).name == "local"
        assert await state.get_watermark(EntityType.HABITS) is None

    @pytest.mark.asyncio
    async def test_edit_during_sync_not_overwritten(self, manager, store, transport):
        """Test a local edit made while the request is in flight survives the apply."""
        await store.put(EntityType.HABITS, habit("A", 100, "local"))
        in_flight = asyncio.Event()
        release = asyncio.Event()

        async def held_batch(*args):
            in_flight.set()
            await release.wait()
            return RemoteSnapshot(entities=[habit("A", 200, "remote")], timestamp=900)

        transport.sync_batch.side_effect = held_batch

        def edit(entity):
            entity.name = "user edit"
            entity.touch(manager.clock)

        task = asyncio.create_task(manager.sync(EntityType.HABITS))
        await in_flight.wait()
        await store.update(EntityType.HABITS, "A", edit)
        release.set()
        result = await task

        assert result.status == SyncStatus.SUCCESS
        assert result.downloaded == 0
        assert (await store.get(EntityType.HABITS, "A")).name == "user edit"

    @pytest.mark.asyncio
    async def test_restore_during_sync_not_collected(self, manager, store, transport):
        """Test a tombstone restored while the request is in flight is kept."""
        old = NOW - 31 * DAY_MS
        await store.put(EntityType.HABITS, habit("A", old, "Floss", deleted_at=old))
        in_flight = asyncio.Event()
        release = asyncio.Event()

        async def held_batch(*args):
            in_flight.set()
            await release.wait()
            return RemoteSnapshot(timestamp=900)

        transport.sync_batch.side_effect = held_batch

        task = asyncio.create_task(manager.sync(EntityType.HABITS))
        await in_flight.wait()
        await store.update(EntityType.HABITS, "A", lambda e: e.restore(manager.clock))
        release.set()
        result = await task

        assert result.collected == 0
        assert not (await store.get(EntityType.HABITS, "A")).is_deleted


class TestStatus:
    """Tests for status reporting and the sync loop."""

    @pytest.mark.asyncio
    async def test_get_sync_status(self, manager):
        """Test status reports per-type state and last result."""
        await manager.sync(EntityType.TASKS)

        status = manager.get_sync_status()

        assert status["server_url"] == "http://sync.test"
        assert status["types"]["tasks"]["state"] == "synced"
        assert status["types"]["tasks"]["last_result"]["status"] == "success"
        assert status["types"]["habits"]["last_result"] is None

    @pytest.mark.asyncio
    async def test_failures_counted(self, manager, transport):
        """Test consecutive failed rounds are counted and reset on success."""
        transport.sync_batch.side_effect = TransportFailure("down")
        await manager.sync_all([EntityType.HABITS])
        await manager.sync_all([EntityType.HABITS])
        assert manager.get_sync_status()["consecutive_failures"] == 2

        transport.sync_batch.side_effect = None
        await manager.sync_all([EntityType.HABITS])
        assert manager.get_sync_status()["consecutive_failures"] == 0

    @pytest.mark.asyncio
    async def test_sync_loop_stops(self, manager, transport):
        """Test the loop exits when the stop event is set."""
        stop = asyncio.Event()

        async def stop_after_first(*args):
            stop.set()
            return RemoteSnapshot(timestamp=1)

        transport.sync_batch.side_effect = stop_after_first

        await asyncio.wait_for(
            manager.sync_loop(interval_seconds=60, stop_event=stop, entity_types=[EntityType.HABITS]),
            timeout=5,
        )

        assert transport.sync_batch.await_count == 1

    @pytest.mark.asyncio
    async def test_sync_loop_survives_errors(self, manager):
        """Test an exception escaping a round is logged, counted and the loop continues."""
        stop = asyncio.Event()
        calls = []

        async def flaky_sync_all(types):
            calls.append(types)
            if len(calls) == 1:
                raise RuntimeError("boom")
            stop.set()
            return {}

        manager.sync_all = flaky_sync_all

        await asyncio.wait_for(
            manager.sync_loop(interval_seconds=0, stop_event=stop, entity_types=[EntityType.HABITS]),
            timeout=5,
        )

        assert len(calls) == 2
        assert manager.get_sync_status()["consecutive_failures"] == 1
