"""Tests for sync engine."""

import asyncio
from pathlib import Path

import pytest

from taskflow.dashboard import Dashboard
from taskflow.sync import SyncEngine, SyncHealth, SyncSetupError, SyncState
from taskflow.utils import StorageManager
from tests.conftest import FakeClock, FakeRemoteStore

DOC_ID = "shared"


def _enabled_engine(dashboard: Dashboard, remote: FakeRemoteStore, **kwargs: float) -> SyncEngine:
    """Engine joined to a seeded remote document, without a running poll loop."""
    remote.documents[DOC_ID] = dashboard.snapshot().to_document()
    dashboard.storage.set_sync_id(DOC_ID)
    kwargs.setdefault("poll_interval", 60)
    kwargs.setdefault("debounce_interval", 0.05)
    return SyncEngine(dashboard, remote, **kwargs)


class TestSyncEngineState:
    """Test enabling, disabling and status reporting."""

    def test_starts_disabled_without_identifier(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that the engine starts disabled without an identifier."""
        engine = SyncEngine(dashboard, remote)

        assert engine.state == SyncState.DISABLED
        assert engine.health == SyncHealth.DISABLED
        assert engine.enabled is False

    def test_resumes_identifier_from_cache(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test resuming the cached sync identifier."""
        engine = _enabled_engine(dashboard, remote)

        assert engine.sync_id == DOC_ID
        assert engine.state == SyncState.IDLE
        assert engine.health == SyncHealth.UNKNOWN

    def test_changes_ignored_while_disabled(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that changes are not pushed while disabled."""
        async def scenario() -> None:
            engine = SyncEngine(dashboard, remote, debounce_interval=0.01)
            dashboard.add_user(name="Alice", username="alice", password="pw")
            await asyncio.sleep(0.05)

            assert engine.state == SyncState.DISABLED
            assert remote.replace_calls == []
            await engine.close()

        asyncio.run(scenario())

    def test_enable_creates_seeded_document(
        self, dashboard: Dashboard, remote: FakeRemoteStore, storage_manager: StorageManager
    ) -> None:
        """Test that enable creates a document from local data."""
        async def scenario() -> None:
            engine = SyncEngine(dashboard, remote, poll_interval=60)
            sync_id = await engine.enable()

            assert remote.documents[sync_id] == dashboard.snapshot().to_document()
            assert storage_manager.get_sync_id() == sync_id
            assert engine.health == SyncHealth.HEALTHY
            assert engine.last_synced_at is not None
            await engine.close()

        asyncio.run(scenario())

    def test_enable_failure_stays_disabled(
        self, dashboard: Dashboard, remote: FakeRemoteStore, storage_manager: StorageManager
    ) -> None:
        """Test that a failed create leaves sync disabled."""
        remote.fail_create = True

        async def scenario() -> None:
            engine = SyncEngine(dashboard, remote)
            with pytest.raises(SyncSetupError):
                await engine.enable()

            assert engine.state == SyncState.DISABLED
            assert storage_manager.get_sync_id() is None

        asyncio.run(scenario())

    def test_enable_with_identifier_pulls_immediately(
        self, dashboard: Dashboard, remote: FakeRemoteStore, tmp_path: Path, clock: FakeClock
    ) -> None:
        """Test that joining a document pulls right away."""
        other = Dashboard(StorageManager(tmp_path), clock=clock)
        other.add_user(name="Carol", username="carol", password="pw")
        remote.documents[DOC_ID] = other.snapshot().to_document()

        async def scenario() -> None:
            engine = SyncEngine(dashboard, remote, poll_interval=60)
            await engine.enable(DOC_ID)
            await asyncio.sleep(0.02)

            assert remote.read_calls == 1
            assert dashboard.snapshot().to_document() == remote.documents[DOC_ID]
            await engine.close()

        asyncio.run(scenario())

    def test_enable_accepts_document_url(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test joining a document by URL."""
        async def scenario() -> str:
            engine = SyncEngine(dashboard, remote, poll_interval=60)
            sync_id = await engine.enable("https://jsonblob.com/api/jsonBlob/abc123")
            await engine.close()
            return sync_id

        assert asyncio.run(scenario()) == "abc123"

    def test_poll_loop_repeats(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that the poll loop keeps reading."""
        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote, poll_interval=0.02)
            engine.start()
            await asyncio.sleep(0.07)
            await engine.close()

        asyncio.run(scenario())

        assert remote.read_calls >= 3

    def test_disable_cancels_timers(
        self, dashboard: Dashboard, remote: FakeRemoteStore, storage_manager: StorageManager
    ) -> None:
        """Test that disable cancels polling and pending pushes."""
        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote, poll_interval=0.01)
            engine.start()
            dashboard.add_user(name="Alice", username="alice", password="pw")
            assert engine.state == SyncState.PUSH_SCHEDULED

            await engine.disable()
            reads = remote.read_calls
            await asyncio.sleep(0.1)

            assert engine.state == SyncState.DISABLED
            assert engine.health == SyncHealth.DISABLED
            assert remote.replace_calls == []
            assert remote.read_calls == reads
            assert storage_manager.get_sync_id() is None

        asyncio.run(scenario())


class TestDebouncedPush:
    """Test debounced writes."""

    def test_rapid_changes_coalesce(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that rapid changes produce one push."""
        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote)
            dashboard.add_user(name="Alice", username="alice", password="pw")
            await asyncio.sleep(0.02)
            dashboard.add_user(name="Bob", username="bob", password="pw")
            dashboard.set_day_schedule(6, True, "10:00", "12:00")
            assert engine.state == SyncState.PUSH_SCHEDULED

            await asyncio.sleep(0.15)

            assert len(remote.replace_calls) == 1
            assert remote.replace_calls[0] == dashboard.snapshot().to_document()
            assert engine.state == SyncState.IDLE
            assert engine.health == SyncHealth.HEALTHY
            await engine.close()

        asyncio.run(scenario())

    def test_push_captures_state_when_timer_fires(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that the pushed snapshot is taken when the timer fires."""
        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote)
            dashboard.add_user(name="Alice", username="alice", password="pw")
            # Direct state edit without notification, still before the timer fires
            dashboard.state.users[0].name = "Renamed"
            await asyncio.sleep(0.15)

            assert remote.replace_calls[0]["users"][0]["name"] == "Renamed"
            await engine.close()

        asyncio.run(scenario())

    def test_push_failure_marks_degraded_without_retry(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that a failed push degrades health and is not retried."""
        remote.fail_writes = True

        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote)
            dashboard.add_user(name="Alice", username="alice", password="pw")
            await asyncio.sleep(0.3)

            assert engine.health == SyncHealth.DEGRADED
            assert "Push failed" in engine.last_error
            assert engine.state == SyncState.IDLE
            assert remote.replace_calls == []

            # The next change tries again
            remote.fail_writes = False
            dashboard.add_user(name="Bob", username="bob", password="pw")
            await asyncio.sleep(0.15)

            assert len(remote.replace_calls) == 1
            assert engine.health == SyncHealth.HEALTHY
            await engine.close()

        asyncio.run(scenario())

    def test_pushing_state_while_write_in_flight(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test the pushing state while a write is in flight."""
        async def scenario() -> None:
            remote.write_gate = asyncio.Event()
            engine = _enabled_engine(dashboard, remote)
            dashboard.add_user(name="Alice", username="alice", password="pw")
            await asyncio.sleep(0.1)

            assert engine.state == SyncState.PUSHING

            # A pull is not blocked by the pending write
            remote.documents[DOC_ID] = dashboard.snapshot().to_document()
            assert await engine.pull() is False
            assert engine.health == SyncHealth.HEALTHY
            assert engine.state == SyncState.PUSHING

            remote.write_gate.set()
            await asyncio.sleep(0.01)
            assert engine.state == SyncState.IDLE
            assert len(remote.replace_calls) == 1
            await engine.close()

        asyncio.run(scenario())

    def test_change_during_push_schedules_another(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that a change during a push schedules another."""
        async def scenario() -> None:
            remote.write_gate = asyncio.Event()
            engine = _enabled_engine(dashboard, remote)
            dashboard.add_user(name="Alice", username="alice", password="pw")
            await asyncio.sleep(0.1)
            dashboard.add_user(name="Bob", username="bob", password="pw")

            remote.write_gate.set()
            await asyncio.sleep(0.15)

            assert len(remote.replace_calls) == 2
            assert remote.replace_calls[-1] == dashboard.snapshot().to_document()
            await engine.close()

        asyncio.run(scenario())

    def test_flush_pushes_immediately(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that flush pushes pending changes at once."""
        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote, debounce_interval=60)
            dashboard.add_user(name="Alice", username="alice", password="pw")

            assert await engine.flush() is True
            assert len(remote.replace_calls) == 1
            assert engine.state == SyncState.IDLE

            # Nothing pending, nothing written
            assert await engine.flush() is True
            assert len(remote.replace_calls) == 1
            await engine.close()

        asyncio.run(scenario())

    def test_change_without_event_loop_is_flushed_later(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that a change made outside the loop is pushed on flush."""
        engine = _enabled_engine(dashboard, remote)
        dashboard.add_user(name="Alice", username="alice", password="pw")

        assert asyncio.run(engine.flush()) is True
        assert len(remote.replace_calls) == 1


class TestPull:
    """Test polling reads and the merge policy."""

    def test_remote_change_replaces_local_state(
        self, dashboard: Dashboard, remote: FakeRemoteStore, storage_manager: StorageManager
    ) -> None:
        """Test that a remote change replaces local state."""
        engine = _enabled_engine(dashboard, remote)
        remote.documents[DOC_ID]["users"][0]["name"] = "Remote Admin"

        changed = asyncio.run(engine.pull())

        assert changed is True
        assert dashboard.state.users[0].name == "Remote Admin"
        assert storage_manager.load_snapshot() == remote.documents[DOC_ID]
        assert engine.health == SyncHealth.HEALTHY

    def test_pull_does_not_schedule_push(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that an applied pull does not schedule a push."""
        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote)
            remote.documents[DOC_ID]["users"][0]["name"] = "Remote Admin"

            assert await engine.pull() is True
            assert engine.state == SyncState.IDLE
            await asyncio.sleep(0.1)
            assert remote.replace_calls == []
            await engine.close()

        asyncio.run(scenario())

    def test_pulling_unchanged_snapshot_is_idempotent(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that pulling the same snapshot twice changes nothing."""
        engine = _enabled_engine(dashboard, remote)
        remote.documents[DOC_ID]["tasks"] = []
        remote.documents[DOC_ID]["users"][0]["name"] = "Remote Admin"

        first = asyncio.run(engine.pull())
        after_first = dashboard.snapshot()
        second = asyncio.run(engine.pull())

        assert first is True
        assert second is False
        assert dashboard.snapshot() == after_first

    def test_transport_failure_is_silent(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that a transport failure degrades health without raising."""
        engine = _enabled_engine(dashboard, remote)
        before = dashboard.snapshot()
        remote.fail_reads = True

        assert asyncio.run(engine.pull()) is False
        assert engine.health == SyncHealth.DEGRADED
        assert "Pull failed" in engine.last_error
        assert dashboard.snapshot() == before

    def test_missing_document_is_transport_failure(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that a missing document counts as a transport failure."""
        engine = _enabled_engine(dashboard, remote)
        del remote.documents[DOC_ID]

        assert asyncio.run(engine.pull()) is False
        assert engine.health == SyncHealth.DEGRADED

    def test_malformed_document_is_ignored(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that a malformed document is ignored."""
        engine = _enabled_engine(dashboard, remote)
        before = dashboard.snapshot()
        remote.documents[DOC_ID] = {"users": [], "tasks": []}

        assert asyncio.run(engine.pull()) is False
        assert engine.health == SyncHealth.DEGRADED
        assert "malformed" in engine.last_error
        assert dashboard.snapshot() == before

    def test_last_writer_wins_loses_unpushed_edits(
        self, dashboard: Dashboard, remote: FakeRemoteStore, tmp_path: Path, clock: FakeClock
    ) -> None:
        """Edits made after our push are overwritten by another client's later push."""
        async def scenario() -> None:
            engine_a = _enabled_engine(dashboard, remote, debounce_interval=60)
            other = Dashboard(StorageManager(tmp_path), clock=clock)
            other.storage.set_sync_id(DOC_ID)
            engine_b = SyncEngine(other, remote, poll_interval=60, debounce_interval=60)

            # Client A pushes S1
            dashboard.add_user(name="Alice", username="alice", password="pw")
            assert await engine_a.flush() is True

            # Client A keeps editing without pushing
            dashboard.create_task(title="Unsynced", assigned_to="alice", estimated_hours=1)

            # Client B pulls S1, edits and pushes S2
            assert await engine_b.pull() is True
            other.add_user(name="Carol", username="carol", password="pw")
            assert await engine_b.flush() is True

            # Client A's next poll takes S2 wholesale
            assert await engine_a.pull() is True

            local = dashboard.snapshot().to_document()
            assert local == remote.documents[DOC_ID]
            assert [u["username"] for u in local["users"]] == ["admin", "alice", "carol"]
            assert local["tasks"] == []

            await engine_a.close()
            await engine_b.close()

        asyncio.run(scenario())

    def test_pull_for_old_identifier_is_discarded(self, dashboard: Dashboard, remote: FakeRemoteStore) -> None:
        """Test that a pull for a replaced identifier is discarded."""
        async def scenario() -> None:
            engine = _enabled_engine(dashboard, remote)
            remote.documents[DOC_ID]["users"][0]["name"] = "Remote Admin"
            remote.read_gate = asyncio.Event()

            pull = asyncio.create_task(engine.pull())
            await asyncio.sleep(0)
            engine.sync_id = "other"
            remote.read_gate.set()
            assert await pull is False
            assert dashboard.state.users[0].name != "Remote Admin"

        asyncio.run(scenario())


class TestHealthPersistence:
    """Test that the last sync outcome survives the engine."""

    def test_degraded_health_is_restored(
        self, dashboard: Dashboard, remote: FakeRemoteStore, storage_manager: StorageManager
    ) -> None:
        """Test that a new engine reports the previous failure."""
        engine = _enabled_engine(dashboard, remote)
        remote.fail_writes = True
        dashboard.add_user(name="Alice", username="alice", password="pw")

        assert asyncio.run(engine.flush()) is False

        restored = SyncEngine(dashboard, remote)
        assert restored.health == SyncHealth.DEGRADED
        assert "Push failed" in restored.last_error
        assert storage_manager.get_sync_health()[0] == SyncHealth.DEGRADED.value

    def test_success_clears_stored_error(
        self, dashboard: Dashboard, remote: FakeRemoteStore, storage_manager: StorageManager
    ) -> None:
        """Test that a successful pull replaces a stored failure."""
        engine = _enabled_engine(dashboard, remote)
        remote.fail_reads = True
        asyncio.run(engine.pull())
        remote.fail_reads = False

        asyncio.run(engine.pull())

        assert storage_manager.get_sync_health() == (SyncHealth.HEALTHY.value, None)
        assert SyncEngine(dashboard, remote).health == SyncHealth.HEALTHY

    def test_disable_clears_stored_health(
        self, dashboard: Dashboard, remote: FakeRemoteStore, storage_manager: StorageManager
    ) -> None:
        """Test that disabling forgets the last outcome."""
        engine = _enabled_engine(dashboard, remote)
        remote.fail_reads = True
        asyncio.run(engine.pull())

        asyncio.run(engine.disable())

        assert storage_manager.get_sync_health() == (None, None)
        assert SyncEngine(dashboard, remote).health == SyncHealth.DISABLED
