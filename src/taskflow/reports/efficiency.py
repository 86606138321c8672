"""Per-assignee efficiency report over completed tasks."""

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import timezone, tzinfo

from taskflow.models import DaySchedule, Task, User
from taskflow.reports.worktime import elapsed_working_hours

logger = logging.getLogger(__name__)


@dataclass
class EfficiencyRow:
    """Efficiency figures for one assignee."""

    user_id: str
    name: str
    tasks_counted: int
    estimated_hours: float
    actual_hours: float
    efficiency: int


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def efficiency_report(
    users: Iterable[User],
    tasks: Iterable[Task],
    schedule: Mapping[int, DaySchedule],
    tz: tzinfo = timezone.utc,
) -> list[EfficiencyRow]:
    """Compare estimated hours with business hours actually spent.

    Only accounts with the ``user`` role are reported. For each of them,
    completed tasks with both acceptance and completion timestamps are
    counted; efficiency is ``100 * estimated / actual`` rounded half up,
    or 0 when no working time elapsed or the ratio is not finite. The score
    has no upper bound.

    Args:
        users: All accounts.
        tasks: All tasks.
        schedule: Weekly business hours.
        tz: Zone for the business-hours calculation.

    Returns:
        One row per reported user, in account order.
    """
    tasks = list(tasks)
    rows = []

    for user in users:
        if user.role != "user":
            continue

        counted = 0
        total_estimated = 0.0
        total_actual = 0.0
        for task in tasks:
            if task.assigned_to != user.id or not task.is_completed or task.interval is None:
                continue
            counted += 1
            total_estimated += task.estimated_hours
            total_actual += elapsed_working_hours(*task.interval, schedule, tz)

        ratio = 100 * total_estimated / total_actual if total_actual > 0 else 0.0
        if not math.isfinite(ratio):
            logger.warning(f"Efficiency of {user.username} is out of range, reporting 0")
            ratio = 0.0
        efficiency = _round_half_up(ratio)
        rows.append(
            EfficiencyRow(
                user_id=user.id,
                name=user.name,
                tasks_counted=counted,
                estimated_hours=total_estimated,
                actual_hours=total_actual,
                efficiency=efficiency,
            )
        )

    return rows
