"""In-memory application state."""

from dataclasses import dataclass, field

from taskflow.models import SyncSnapshot, Task, User, WeeklySchedule, default_schedule


@dataclass
class AppState:
    """Users, tasks and schedule held by one dashboard controller."""

    users: list[User] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    schedule: WeeklySchedule = field(default_factory=default_schedule)

    def snapshot(self) -> SyncSnapshot:
        """Detached copy of the current state."""
        return SyncSnapshot(
            users=[user.model_copy(deep=True) for user in self.users],
            tasks=[task.model_copy(deep=True) for task in self.tasks],
            schedule={day: entry.model_copy() for day, entry in self.schedule.items()},
        )

    def replace(self, snapshot: SyncSnapshot) -> None:
        """Replace every collection with copies from ``snapshot``."""
        copy = snapshot.model_copy(deep=True)
        self.users = copy.users
        self.tasks = copy.tasks
        self.schedule = copy.schedule
