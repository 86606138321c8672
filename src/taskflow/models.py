"""Pydantic models for the TaskFlow dataset and its wire format."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

Role = Literal["admin", "user"]
TaskStatus = Literal["pending", "accepted", "completed"]

SNAPSHOT_FIELDS = ("users", "tasks", "schedule")
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


class SnapshotFormatError(ValueError):
    """Raised when a snapshot document lacks required fields or is invalid."""


class DaySchedule(BaseModel):
    """Business hours for one weekday."""

    active: bool = False
    start: str = "09:00"
    end: str = "17:00"


# 0=Sunday .. 6=Saturday
WeeklySchedule = dict[int, DaySchedule]


def default_schedule() -> WeeklySchedule:
    """Monday to Friday 09:00-17:00, weekends off."""
    return {day: DaySchedule(active=1 <= day <= 5) for day in range(7)}


def normalize_schedule(schedule: dict[int, DaySchedule]) -> WeeklySchedule:
    """Return a schedule with exactly the seven weekday entries.

    Missing days are taken from the default schedule; unknown keys are dropped.
    """
    defaults = default_schedule()
    return {day: schedule.get(day, defaults[day]) for day in range(7)}


class User(BaseModel):
    """Dashboard account."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    username: str
    password: str = ""
    role: Role = "user"


class TaskNote(BaseModel):
    """Progress note left by the assignee."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    timestamp: int


class Task(BaseModel):
    """Unit of assigned work.

    Timestamps are epoch milliseconds.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str = ""
    assigned_to: str = Field(alias="assignedTo")
    status: TaskStatus = "pending"
    created_at: int = Field(alias="createdAt")
    accepted_at: int | None = Field(default=None, alias="acceptedAt")
    completed_at: int | None = Field(default=None, alias="completedAt")
    estimated_hours: float = Field(default=0.0, ge=0, allow_inf_nan=False, alias="estimatedHours")
    notes: list[TaskNote] = Field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        """Whether the task reached its terminal state."""
        return self.status == "completed"

    @property
    def interval(self) -> tuple[int, int] | None:
        """The (accepted, completed) interval, when both ends are recorded."""
        if self.accepted_at is None or self.completed_at is None:
            return None
        return self.accepted_at, self.completed_at


class SyncSnapshot(BaseModel):
    """The full dataset, exchanged as a single unit."""

    users: list[User] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    schedule: WeeklySchedule = Field(default_factory=default_schedule)

    @field_validator("schedule")
    @classmethod
    def _seven_days(cls, value: WeeklySchedule) -> WeeklySchedule:
        return normalize_schedule(value)

    @classmethod
    def from_document(cls, document: Any) -> "SyncSnapshot":
        """Build a snapshot from a remote, cached or backup document.

        Args:
            document: Decoded JSON document.

        Returns:
            The validated snapshot.

        Raises:
            SnapshotFormatError: If a top-level field is missing or invalid.
        """
        if not isinstance(document, dict):
            raise SnapshotFormatError("Snapshot document must be a JSON object")

        missing = [name for name in SNAPSHOT_FIELDS if name not in document]
        if missing:
            raise SnapshotFormatError(f"Snapshot document is missing: {', '.join(missing)}")

        try:
            return cls.model_validate({name: document[name] for name in SNAPSHOT_FIELDS})
        except ValidationError as e:
            raise SnapshotFormatError(f"Invalid snapshot document: {e}") from e

    def to_document(self) -> dict[str, Any]:
        """Convert to the JSON-compatible wire document."""
        return self.model_dump(mode="json", by_alias=True)
