"""Sync engine keeping the dashboard and a shared remote document in step.

The remote document holds the whole dataset. Reads happen on a fixed poll
interval and replace local state wholesale whenever the remote copy
differs. Writes are debounced: every local change restarts a quiet-period
timer, and the snapshot is captured and written only when it fires. There
is no locking on either side, so concurrent editors overwrite each other
at snapshot granularity (last writer wins).
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from taskflow.dashboard import Dashboard
from taskflow.models import SnapshotFormatError, SyncSnapshot
from taskflow.remote import RemoteStore, normalize_document_id

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0
DEFAULT_DEBOUNCE_INTERVAL = 2.5


class SyncState(str, Enum):
    """What the engine is doing right now."""

    DISABLED = "disabled"
    IDLE = "idle"
    PULLING = "pulling"
    PUSH_SCHEDULED = "push_scheduled"
    PUSHING = "pushing"


class SyncHealth(str, Enum):
    """Outcome of the most recent remote operation."""

    DISABLED = "disabled"
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"


class SyncSetupError(RuntimeError):
    """Raised when a new remote document cannot be created."""


@dataclass
class SyncStatus:
    """Point-in-time view of the engine for display."""

    state: SyncState
    health: SyncHealth
    sync_id: str | None
    last_synced_at: datetime | None
    last_error: str | None


class SyncEngine:
    """Polling reads, debounced writes, whole-snapshot last-writer-wins."""

    def __init__(
        self,
        dashboard: Dashboard,
        remote: RemoteStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce_interval: float = DEFAULT_DEBOUNCE_INTERVAL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize sync engine.

        The engine resumes the identifier stored in the local cache but does
        not start polling until :meth:`start` or :meth:`enable` is called.

        Args:
            dashboard: Controller owning the local dataset.
            remote: Remote document store.
            poll_interval: Seconds between pulls.
            debounce_interval: Quiet period in seconds before a push.
            clock: Wall-clock source for the last-sync marker.
        """
        self.dashboard = dashboard
        self.storage = dashboard.storage
        self.remote = remote
        self.poll_interval = poll_interval
        self.debounce_interval = debounce_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.sync_id: str | None = self.storage.get_sync_id()
        self.health = SyncHealth.DISABLED
        self.last_error: str | None = None
        if self.sync_id:
            stored_health, self.last_error = self.storage.get_sync_health()
            try:
                self.health = SyncHealth(stored_health)
            except ValueError:
                self.health = SyncHealth.UNKNOWN
            if self.health == SyncHealth.DISABLED:
                self.health = SyncHealth.UNKNOWN
        self.last_synced_at = self.storage.get_last_sync_date()

        self._poll_task: asyncio.Task | None = None
        self._push_timer: asyncio.Task | None = None
        self._pushes: set[asyncio.Task] = set()
        self._pulls_in_flight = 0
        self._pushes_in_flight = 0
        self._dirty = False

        dashboard.add_listener(self.notify_change)

    @property
    def enabled(self) -> bool:
        """Whether a sync identifier is configured."""
        return self.sync_id is not None

    @property
    def state(self) -> SyncState:
        """Current state; a push in flight wins over a concurrent pull."""
        if not self.enabled:
            return SyncState.DISABLED
        if self._pushes_in_flight:
            return SyncState.PUSHING
        if self._pulls_in_flight:
            return SyncState.PULLING
        if self._push_timer is not None and not self._push_timer.done():
            return SyncState.PUSH_SCHEDULED
        return SyncState.IDLE

    def status(self) -> SyncStatus:
        """Snapshot of state and health."""
        return SyncStatus(
            state=self.state,
            health=self.health,
            sync_id=self.sync_id,
            last_synced_at=self.last_synced_at,
            last_error=self.last_error,
        )

    def start(self) -> None:
        """Start the poll loop if an identifier is configured.

        Must be called from a running event loop.
        """
        if not self.enabled:
            return
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def enable(self, sync_id: str | None = None) -> str:
        """Switch synchronization on.

        Args:
            sync_id: Existing document identifier or URL to join. When
                omitted, a new remote document is created from the
                current local snapshot.

        Returns:
            The identifier in use.

        Raises:
            SyncSetupError: If the remote document cannot be created. The
                engine stays disabled.
            ValueError: If ``sync_id`` is empty.
        """
        created = False
        if sync_id is None:
            document = self.dashboard.snapshot().to_document()
            try:
                sync_id = await self.remote.create(document)
            except Exception as e:
                logger.error(f"Failed to create remote document: {e}")
                raise SyncSetupError(f"Could not create remote document: {e}") from e
            created = True
        else:
            sync_id = normalize_document_id(sync_id)

        await self._stop_timers()
        self.sync_id = sync_id
        self.storage.set_sync_id(sync_id)
        if created:
            self._mark_healthy()
        else:
            self._set_health(SyncHealth.UNKNOWN)

        logger.info(f"Synchronization enabled with document {sync_id}")
        self.start()
        return sync_id

    async def disable(self) -> None:
        """Switch synchronization off, cancelling poll and pending pushes."""
        await self._stop_timers()
        self.sync_id = None
        self.storage.set_sync_id(None)
        self.health = SyncHealth.DISABLED
        self.last_error = None
        self.storage.set_sync_health(None)
        self._dirty = False
        logger.info("Synchronization disabled")

    def notify_change(self) -> None:
        """Restart the debounce timer after a local mutation."""
        if not self.enabled:
            return

        self._dirty = True
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, change will be pushed on next flush")
            return

        if self._push_timer is not None and not self._push_timer.done():
            self._push_timer.cancel()
        self._push_timer = asyncio.create_task(self._debounced_push())

    async def pull(self) -> bool:
        """Fetch the remote snapshot and apply it if it differs.

        Failures are logged and reflected in :attr:`health`; they never raise.

        Returns:
            True if local state was replaced.
        """
        sync_id = self.sync_id
        if sync_id is None:
            return False

        self._pulls_in_flight += 1
        try:
            document = await self.remote.read(sync_id)
            remote_snapshot = SyncSnapshot.from_document(document)
        except SnapshotFormatError as e:
            self._mark_degraded(f"Ignoring malformed remote document: {e}")
            return False
        except Exception as e:
            self._mark_degraded(f"Pull failed: {e}")
            return False
        finally:
            self._pulls_in_flight -= 1

        if sync_id != self.sync_id:
            logger.debug(f"Discarding pull of {sync_id}, identifier changed meanwhile")
            return False

        self._mark_healthy()
        if remote_snapshot.to_document() == self.dashboard.snapshot().to_document():
            logger.debug("Remote snapshot unchanged")
            return False

        self.dashboard.replace_snapshot(remote_snapshot, notify=False)
        logger.info(
            f"Applied remote snapshot: {len(remote_snapshot.users)} users, "
            f"{len(remote_snapshot.tasks)} tasks"
        )
        return True

    async def push(self) -> bool:
        """Write the current local snapshot over the remote document.

        Failures are logged and reflected in :attr:`health`; there is no
        automatic retry.

        Returns:
            True if the write succeeded.
        """
        sync_id = self.sync_id
        if sync_id is None:
            return False

        document = self.dashboard.snapshot().to_document()
        self._dirty = False
        self._pushes_in_flight += 1
        try:
            await self.remote.replace(sync_id, document)
        except Exception as e:
            self._mark_degraded(f"Push failed: {e}")
            return False
        finally:
            self._pushes_in_flight -= 1

        self._mark_healthy()
        logger.info(f"Pushed snapshot to {sync_id}")
        return True

    async def flush(self) -> bool:
        """Push unsynced changes now instead of waiting for the debounce timer.

        Returns:
            True if nothing was pending or the push succeeded.
        """
        pending = self._dirty
        if self._push_timer is not None and not self._push_timer.done():
            pending = True
            await self._cancel(self._push_timer)
        self._push_timer = None

        if not pending or not self.enabled:
            return True
        return await self.push()

    async def close(self) -> None:
        """Stop all timers and detach from the dashboard."""
        await self._stop_timers()
        self.dashboard.remove_listener(self.notify_change)

    async def _poll_loop(self) -> None:
        while True:
            await self.pull()
            await asyncio.sleep(self.poll_interval)

    async def _debounced_push(self) -> None:
        await asyncio.sleep(self.debounce_interval)

        # From here on this task is a push in flight, not a pending timer
        task = asyncio.current_task()
        if self._push_timer is task:
            self._push_timer = None
        self._pushes.add(task)
        try:
            await self.push()
        finally:
            self._pushes.discard(task)

    async def _stop_timers(self) -> None:
        tasks = [self._poll_task, self._push_timer, *self._pushes]
        self._poll_task = None
        self._push_timer = None
        self._pushes.clear()
        for task in tasks:
            if task is not None:
                await self._cancel(task)

    @staticmethod
    async def _cancel(task: asyncio.Task) -> None:
        if task is asyncio.current_task() or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _set_health(self, health: SyncHealth, error: str | None = None) -> None:
        self.health = health
        self.last_error = error
        self.storage.set_sync_health(health.value, error)

    def _mark_healthy(self) -> None:
        self._set_health(SyncHealth.HEALTHY)
        self.last_synced_at = self._clock()
        self.storage.set_last_sync_date(self.last_synced_at)

    def _mark_degraded(self, message: str) -> None:
        logger.warning(message)
        self._set_health(SyncHealth.DEGRADED, message)
