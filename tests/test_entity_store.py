"""Tests for local entity storage and sync state."""

import asyncio
import json

import pytest
from unittest.mock import patch

from momentum.errors import EntityNotFound, StorageFailure
from momentum.models import EntityType, Habit, ModificationClock, MoodEntry, Task
from momentum.storage import EntityStore, SyncStateStore, write_json_atomic


@pytest.fixture
def store(tmp_path):
    return EntityStore(tmp_path, "user-1")


@pytest.fixture
def clock():
    return ModificationClock()


class TestEntityStore:
    """Tests for EntityStore."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        """Test a stored entity reads back equal."""
        habit = Habit(id="h1", name="Read", updated_at=10)
        await store.put(EntityType.HABITS, habit)

        assert await store.get(EntityType.HABITS, "h1") == habit

    @pytest.mark.asyncio
    async def test_file_layout(self, store, tmp_path):
        """Test records live at <root>/<user>/<type>/<id>.json."""
        await store.put(EntityType.TASKS, Task(id="t1", title="x"))

        path = tmp_path / "user-1" / "tasks" / "t1.json"
        assert path.exists()
        assert json.loads(path.read_text())["title"] == "x"

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store):
        """Test a second put replaces the record."""
        await store.put(EntityType.HABITS, Habit(id="h1", name="v1", updated_at=1))
        await store.put(EntityType.HABITS, Habit(id="h1", name="v2", updated_at=2))

        assert (await store.get(EntityType.HABITS, "h1")).name == "v2"
        assert len(await store.list_all(EntityType.HABITS)) == 1

    @pytest.mark.asyncio
    async def test_put_wrong_type(self, store):
        """Test storing an entity under another type is rejected."""
        with pytest.raises(TypeError):
            await store.put(EntityType.HABITS, Task(id="t1"))

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        """Test a missing id raises EntityNotFound."""
        with pytest.raises(EntityNotFound) as exc_info:
            await store.get(EntityType.HABITS, "nope")
        assert exc_info.value.entity_id == "nope"

    @pytest.mark.asyncio
    async def test_invalid_id_rejected(self, store):
        """Test ids that would escape the type directory are rejected."""
        with pytest.raises(ValueError):
            await store.get(EntityType.HABITS, "../secrets")

    def test_invalid_user_rejected(self, tmp_path):
        """Test user ids that would escape the root are rejected."""
        with pytest.raises(ValueError):
            EntityStore(tmp_path, "../other")

    @pytest.mark.asyncio
    async def test_list_empty(self, store):
        """Test listing a type with no records returns an empty list."""
        assert await store.list_all(EntityType.MOODS) == []

    @pytest.mark.asyncio
    async def test_list_active_excludes_tombstones(self, store, clock):
        """Test tombstones are listed by list_all but not list_active."""
        keep = Task(id="t1", title="keep")
        gone = Task(id="t2", title="gone")
        gone.mark_deleted(clock)
        await store.put_many(EntityType.TASKS, [keep, gone])

        assert {e.id for e in await store.list_all(EntityType.TASKS)} == {"t1", "t2"}
        assert [e.id for e in await store.list_active(EntityType.TASKS)] == ["t1"]

    @pytest.mark.asyncio
    async def test_corrupt_record_skipped(self, store, tmp_path):
        """Test an unreadable record is skipped while the rest still load."""
        await store.put(EntityType.HABITS, Habit(id="h1", name="ok"))
        (tmp_path / "user-1" / "habits" / "h2.json").write_text("{not json")

        entities = await store.list_all(EntityType.HABITS)

        assert [e.id for e in entities] == ["h1"]
        with pytest.raises(EntityNotFound):
            await store.get(EntityType.HABITS, "h2")

    @pytest.mark.asyncio
    async def test_record_without_date_skipped(self, store, tmp_path):
        """Test a dated record with an empty date is treated as corrupt."""
        await store.put(EntityType.MOODS, MoodEntry(id="m1"))
        record = MoodEntry(id="m2").to_dict()
        record["date"] = ""
        (tmp_path / "user-1" / "moods" / "m2.json").write_text(json.dumps(record))

        entities = await store.list_all(EntityType.MOODS)

        assert [e.id for e in entities] == ["m1"]

    @pytest.mark.asyncio
    async def test_temp_files_ignored(self, store, tmp_path):
        """Test leftover temp files from interrupted writes are not listed."""
        await store.put(EntityType.HABITS, Habit(id="h1"))
        (tmp_path / "user-1" / "habits" / ".h1.abc.json").write_text("{}")

        assert len(await store.list_all(EntityType.HABITS)) == 1

    @pytest.mark.asyncio
    async def test_users_isolated(self, tmp_path):
        """Test one user never sees another user's records."""
        alice = EntityStore(tmp_path, "alice")
        bob = EntityStore(tmp_path, "bob")
        await alice.put(EntityType.MOODS, MoodEntry(id="m1"))

        assert await bob.list_all(EntityType.MOODS) == []
        with pytest.raises(EntityNotFound):
            await bob.get(EntityType.MOODS, "m1")

    @pytest.mark.asyncio
    async def test_concurrent_puts_lose_nothing(self, store):
        """Test interleaved puts on distinct ids keep the latest of each."""
        writes = []
        for version in range(3):
            for n in range(10):
                writes.append(Habit(id=f"h{n}", name=f"v{version}", updated_at=version))

        for version in range(3):
            batch = [w for w in writes if w.updated_at == version]
            await asyncio.gather(*(store.put(EntityType.HABITS, h) for h in batch))

        entities = await store.list_all(EntityType.HABITS)
        assert len(entities) == 10
        assert all(e.name == "v2" for e in entities)

    @pytest.mark.asyncio
    async def test_concurrent_updates_serialized(self, store, clock):
        """Test rapid toggles of one habit apply in sequence."""
        await store.put(EntityType.HABITS, Habit(id="h1", name="Run"))

        await asyncio.gather(*(
            store.update(EntityType.HABITS, "h1", lambda h: h.toggle_completion("2026-01-01", clock))
            for _ in range(5)
        ))

        habit = await store.get(EntityType.HABITS, "h1")
        assert len(habit.logs) == 1
        assert habit.logs[0].completed is True

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        """Test updating a missing entity raises EntityNotFound."""
        with pytest.raises(EntityNotFound):
            await store.update(EntityType.HABITS, "nope", lambda h: None)

    @pytest.mark.asyncio
    async def test_delete(self, store):
        """Test delete removes the record and reports whether it existed."""
        await store.put(EntityType.TASKS, Task(id="t1"))

        assert await store.delete(EntityType.TASKS, "t1") is True
        assert await store.delete(EntityType.TASKS, "t1") is False
        assert await store.delete_many(EntityType.TASKS, ["t1", "t2"]) == 0

    @pytest.mark.asyncio
    async def test_put_if_checks_current(self, store):
        """Test put_if sees the stored version and writes only when allowed."""
        await store.put(EntityType.HABITS, Habit(id="h1", name="stored", updated_at=10))
        seen = []

        def newer_only(current):
            seen.append(current)
            return current is None or current.updated_at < 5

        written = await store.put_if(
            EntityType.HABITS, Habit(id="h1", name="older", updated_at=5), newer_only
        )

        assert written is False
        assert seen[0].name == "stored"
        assert (await store.get(EntityType.HABITS, "h1")).name == "stored"

        assert await store.put_if(
            EntityType.HABITS, Habit(id="h2", name="fresh", updated_at=1), newer_only
        ) is True
        assert (await store.get(EntityType.HABITS, "h2")).name == "fresh"

    @pytest.mark.asyncio
    async def test_put_if_wrong_type(self, store):
        """Test put_if rejects an entity of another type."""
        with pytest.raises(TypeError):
            await store.put_if(EntityType.HABITS, Task(id="t1"), lambda current: True)

    @pytest.mark.asyncio
    async def test_delete_if(self, store):
        """Test delete_if removes only when the predicate holds for the stored record."""
        await store.put(EntityType.TASKS, Task(id="t1", title="keep"))

        assert await store.delete_if(EntityType.TASKS, "t1", lambda t: t.title == "drop") is False
        assert (await store.get(EntityType.TASKS, "t1")).title == "keep"
        assert await store.delete_if(EntityType.TASKS, "t1", lambda t: t.title == "keep") is True
        assert await store.delete_if(EntityType.TASKS, "t1", lambda t: True) is False

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, store):
        """Test OS errors on write surface as StorageFailure."""
        with patch("momentum.storage.entity_store.tempfile.mkstemp", side_effect=OSError("disk full")):
            with pytest.raises(StorageFailure):
                await store.put(EntityType.HABITS, Habit(id="h1"))

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_version(self, store):
        """Test a failed replace leaves the old record intact."""
        await store.put(EntityType.HABITS, Habit(id="h1", name="old"))

        with patch("momentum.storage.entity_store.os.replace", side_effect=OSError("boom")):
            with pytest.raises(StorageFailure):
                await store.put(EntityType.HABITS, Habit(id="h1", name="new"))

        assert (await store.get(EntityType.HABITS, "h1")).name == "old"
        assert len(list((store.user_dir / "habits").iterdir())) == 1

    @pytest.mark.asyncio
    async def test_get_stats(self, store, clock):
        """Test stats count active records and tombstones per type."""
        gone = Habit(id="h2")
        gone.mark_deleted(clock)
        await store.put_many(EntityType.HABITS, [Habit(id="h1"), gone])

        stats = await store.get_stats()

        assert stats["user_id"] == "user-1"
        assert stats["types"]["habits"] == {"active": 1, "tombstones": 1}
        assert stats["types"]["tasks"] == {"active": 0, "tombstones": 0}


class TestWriteJsonAtomic:
    """Tests for write_json_atomic."""

    def test_creates_parents(self, tmp_path):
        """Test missing parent directories are created."""
        path = tmp_path / "a" / "b" / "c.json"
        write_json_atomic(path, {"x": 1})
        assert json.loads(path.read_text()) == {"x": 1}


class TestSyncStateStore:
    """Tests for SyncStateStore."""

    @pytest.mark.asyncio
    async def test_watermark_roundtrip(self, tmp_path):
        """Test watermarks persist per type."""
        state = SyncStateStore(tmp_path, "user-1")
        assert await state.get_watermark(EntityType.HABITS) is None

        await state.set_watermark(EntityType.HABITS, 123)
        await state.set_watermark(EntityType.MOODS, 456)

        reopened = SyncStateStore(tmp_path, "user-1")
        assert await reopened.get_watermark(EntityType.HABITS) == 123
        assert await reopened.get_watermark(EntityType.MOODS) == 456
        loaded = await reopened.load()
        assert loaded["types"]["habits"]["synced_at"]

    @pytest.mark.asyncio
    async def test_corrupt_state_means_full_resync(self, tmp_path):
        """Test a corrupt state file is treated as never synced."""
        state = SyncStateStore(tmp_path, "user-1")
        state.path.parent.mkdir(parents=True)
        state.path.write_text("garbage")

        assert await state.get_watermark(EntityType.HABITS) is None

    @pytest.mark.asyncio
    async def test_reset(self, tmp_path):
        """Test reset forgets one type or all of them."""
        state = SyncStateStore(tmp_path, "user-1")
        await state.set_watermark(EntityType.HABITS, 1)
        await state.set_watermark(EntityType.TASKS, 2)

        await state.reset(EntityType.HABITS)
        assert await state.get_watermark(EntityType.HABITS) is None
        assert await state.get_watermark(EntityType.TASKS) == 2

        await state.reset()
        assert await state.get_watermark(EntityType.TASKS) is None
