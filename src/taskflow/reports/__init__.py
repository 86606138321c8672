"""Working-time calculation and reporting."""

from taskflow.reports.efficiency import EfficiencyRow, efficiency_report
from taskflow.reports.worktime import elapsed_working_hours, parse_clock, schedule_weekday

__all__ = [
    "EfficiencyRow",
    "efficiency_report",
    "elapsed_working_hours",
    "parse_clock",
    "schedule_weekday",
]
