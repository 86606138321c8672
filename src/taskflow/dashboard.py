"""Dashboard controller: accounts, task lifecycle and schedule.

The controller owns the application state. Every mutation is written to
the local cache before change listeners (such as the sync engine) are told
about it, so the dashboard can always be rebuilt from local storage alone.
"""

import logging
import math
import uuid
from collections.abc import Callable
from datetime import datetime, timezone, tzinfo

from taskflow.models import (
    DaySchedule,
    Role,
    SnapshotFormatError,
    SyncSnapshot,
    Task,
    TaskNote,
    User,
)
from taskflow.reports import EfficiencyRow, efficiency_report, parse_clock
from taskflow.state import AppState
from taskflow.utils.storage import StorageManager

logger = logging.getLogger(__name__)

DEFAULT_ADMIN = User(id="admin-1", name="Administrator", username="admin", password="admin", role="admin")


class TaskActionError(ValueError):
    """Raised when an operation is rejected; state is left unchanged."""


class InvalidCredentialsError(ValueError):
    """Raised when a username/password pair does not match any account."""


def _new_id() -> str:
    return uuid.uuid4().hex


class Dashboard:
    """Single owner of the users, tasks and schedule."""

    def __init__(
        self,
        storage: StorageManager,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the dashboard from the local cache.

        Args:
            storage: Local cache used for offline bootstrap and persistence.
            clock: Wall-clock source. Defaults to the current UTC time.
        """
        self.storage = storage
        self.state = AppState()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: list[Callable[[], None]] = []
        self._load()

    def _load(self) -> None:
        document = self.storage.load_snapshot()
        if document is not None:
            try:
                self.state.replace(SyncSnapshot.from_document(document))
                return
            except SnapshotFormatError as e:
                logger.warning(f"Ignoring unreadable local cache: {e}")

        logger.info("No local data found, seeding default administrator")
        self.state.users = [DEFAULT_ADMIN.model_copy()]
        self._persist()

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback run after every local mutation."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        """Unregister a change callback."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def now_ms(self) -> int:
        """Current wall-clock time in epoch milliseconds."""
        return int(self._clock().timestamp() * 1000)

    def _persist(self) -> None:
        self.storage.save_snapshot(self.state.snapshot().to_document())

    def _commit(self) -> None:
        self._persist()
        for listener in list(self._listeners):
            listener()

    def snapshot(self) -> SyncSnapshot:
        """Detached copy of the current dataset."""
        return self.state.snapshot()

    def replace_snapshot(self, snapshot: SyncSnapshot, notify: bool = True) -> None:
        """Replace users, tasks and schedule wholesale.

        Args:
            snapshot: The new dataset.
            notify: Whether change listeners should run. Pulled snapshots
                already match the remote copy and are applied silently.
        """
        self.state.replace(snapshot)
        if notify:
            self._commit()
        else:
            self._persist()

    # Accounts

    def login(self, username: str, password: str) -> User:
        """Check credentials.

        Raises:
            InvalidCredentialsError: If no account matches.
        """
        for user in self.state.users:
            if user.username == username and user.password == password:
                logger.info(f"User {username} logged in")
                return user
        logger.info(f"Rejected login for {username}")
        raise InvalidCredentialsError("Invalid username or password")

    def get_user(self, user_id: str) -> User:
        """Get an account by ID or username."""
        for user in self.state.users:
            if user_id in (user.id, user.username):
                return user
        raise TaskActionError(f"User not found: {user_id}")

    def add_user(self, name: str, username: str, password: str, role: Role = "user") -> User:
        """Create an account.

        Raises:
            TaskActionError: If the username is taken or a field is empty.
        """
        if not name or not username:
            raise TaskActionError("Name and username are required")
        if any(user.username == username for user in self.state.users):
            raise TaskActionError(f"Username already exists: {username}")

        user = User(id=_new_id(), name=name, username=username, password=password, role=role)
        self.state.users.append(user)
        self._commit()
        logger.info(f"Added {role} account {username}")
        return user

    # Tasks

    def get_task(self, task_id: str) -> Task:
        """Get a task by ID."""
        for task in self.state.tasks:
            if task.id == task_id:
                return task
        raise TaskActionError(f"Task not found: {task_id}")

    def tasks_for(self, user: User) -> list[Task]:
        """Tasks visible to an account: all for admins, assigned ones otherwise."""
        if user.role == "admin":
            return list(self.state.tasks)
        return [task for task in self.state.tasks if task.assigned_to == user.id]

    def create_task(
        self,
        title: str,
        assigned_to: str,
        estimated_hours: float,
        description: str = "",
    ) -> Task:
        """Create a pending task.

        Args:
            title: Task title.
            assigned_to: Assignee user ID or username; must have the ``user`` role.
            estimated_hours: Author's estimate, at least 0.
            description: Free text.

        Raises:
            TaskActionError: If the assignee is unknown or not a team member, or
                the estimate is negative or not finite.
        """
        if not title:
            raise TaskActionError("Title is required")
        if not math.isfinite(estimated_hours) or estimated_hours < 0:
            raise TaskActionError("Estimated hours must be a non-negative number")
        assignee = self.get_user(assigned_to)
        if assignee.role != "user":
            raise TaskActionError(
                f"Tasks can only be assigned to team members, not {assignee.role} accounts"
            )

        task = Task(
            id=_new_id(),
            title=title,
            description=description,
            assigned_to=assignee.id,
            created_at=self.now_ms(),
            estimated_hours=estimated_hours,
        )
        self.state.tasks.append(task)
        self._commit()
        logger.info(f"Created task {task.id} for {assignee.username}")
        return task

    def accept_task(self, task_id: str) -> Task:
        """Start work on a pending task."""
        task = self.get_task(task_id)
        if task.status != "pending":
            raise TaskActionError(f"Only pending tasks can be accepted (task is {task.status})")

        task.status = "accepted"
        task.accepted_at = self.now_ms()
        self._commit()
        return task

    def add_note(self, task_id: str, text: str) -> TaskNote:
        """Record a progress note on an accepted task."""
        task = self.get_task(task_id)
        if not text.strip():
            raise TaskActionError("Note text is required")
        if task.status != "accepted":
            raise TaskActionError(f"Notes can only be added to accepted tasks (task is {task.status})")

        note = TaskNote(id=_new_id(), text=text, timestamp=self.now_ms())
        task.notes.append(note)
        self._commit()
        return note

    def complete_task(self, task_id: str) -> Task:
        """Finish an accepted task.

        Raises:
            TaskActionError: If the task is not accepted or has no progress note.
        """
        task = self.get_task(task_id)
        if task.status != "accepted":
            raise TaskActionError(f"Only accepted tasks can be completed (task is {task.status})")
        if not task.notes:
            raise TaskActionError("Add at least one progress note before completing the task")

        task.status = "completed"
        task.completed_at = self.now_ms()
        self._commit()
        logger.info(f"Completed task {task.id}")
        return task

    def delete_task(self, task_id: str) -> None:
        """Remove a task."""
        task = self.get_task(task_id)
        self.state.tasks.remove(task)
        self._commit()

    # Schedule

    def set_day_schedule(self, day: int, active: bool, start: str, end: str) -> DaySchedule:
        """Replace the business hours of one weekday (0=Sunday).

        Raises:
            TaskActionError: If the day or a clock time is invalid.
        """
        if day not in range(7):
            raise TaskActionError(f"Day must be between 0 (Sunday) and 6 (Saturday), got {day}")
        for value in (start, end):
            if parse_clock(value) is None or len(value) != 5:
                raise TaskActionError(f"Invalid time {value!r}, expected HH:MM")

        entry = DaySchedule(active=active, start=start, end=end)
        self.state.schedule[day] = entry
        self._commit()
        return entry

    def efficiency_report(self, tz: tzinfo = timezone.utc) -> list[EfficiencyRow]:
        """Efficiency of every ``user`` account."""
        return efficiency_report(self.state.users, self.state.tasks, self.state.schedule, tz)
