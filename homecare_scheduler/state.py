"""
Planner State Management.

This module acts as the 'Memory' of one generation run.
It tracks:
1. The per-staff week schedules being built.
2. Advisories (UNSCHEDULED / REASSIGNED / OVERLOADED / WARNING / SKIPPED).
3. Placement counts for the final report.
"""

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date as date_type, timedelta
from typing import Any, Dict, List

from .blocks import StaffWeekSchedule

logger = logging.getLogger(__name__)


class AdvisoryKind:
    UNSCHEDULED = "UNSCHEDULED"
    REASSIGNED = "REASSIGNED"
    OVERLOADED = "OVERLOADED"
    WARNING = "WARNING"
    SKIPPED = "SKIPPED"


@dataclass
class Advisory:
    """A non-fatal note attached to a generation result."""
    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class PlannerState:
    """
    Maintains the mutable state of the generator during one run.
    """

    def __init__(self, week_start: date_type):
        self.week_start = week_start
        self.schedules: Dict[int, StaffWeekSchedule] = {}
        self.advisories: List[Advisory] = []

        # Placement Tracking
        self.placed_count = 0
        self.placements_by_priority: Dict[str, int] = defaultdict(int)
        self.unscheduled_by_priority: Dict[str, int] = defaultdict(int)

    @property
    def week_dates(self) -> List[date_type]:
        return [self.week_start + timedelta(days=i) for i in range(7)]

    def add_schedule(self, schedule: StaffWeekSchedule) -> None:
        self.schedules[schedule.staff_id] = schedule

    def ordered_schedules(self) -> List[StaffWeekSchedule]:
        return [self.schedules[k] for k in sorted(self.schedules)]

    def advise(self, kind: str, message: str) -> None:
        advisory = Advisory(kind, message)
        self.advisories.append(advisory)
        logger.warning(str(advisory))

    def record_placement(self, priority: str) -> None:
        self.placed_count += 1
        self.placements_by_priority[priority] += 1

    def record_unscheduled(self, priority: str) -> None:
        self.unscheduled_by_priority[priority] += 1

    def advisory_strings(self) -> List[str]:
        return [str(a) for a in self.advisories]

    def advisories_of(self, kind: str) -> List[Advisory]:
        return [a for a in self.advisories if a.kind == kind]

    # --- Reporting ---

    def get_statistics(self) -> Dict[str, Any]:
        """
        Plan-wide totals plus a per-staff daily breakdown for the final report.
        """
        staff_summaries = []
        total_office_blocks = 0

        for schedule in self.ordered_schedules():
            daily = []
            office_blocks = 0
            for day in self.week_dates:
                day_schedule = schedule.days.get(day)
                is_day_off = day.weekday() == schedule.day_off
                if day_schedule is None:
                    daily.append({
                        "date": day.isoformat(),
                        "day_of_week": calendar.day_name[day.weekday()],
                        "is_day_off": is_day_off,
                        "work_minutes": 0,
                        "visit_minutes": 0,
                        "visits": 0,
                        "office_minutes": 0,
                    })
                    continue
                office_blocks += len(day_schedule.office_blocks())
                daily.append({
                    "date": day.isoformat(),
                    "day_of_week": calendar.day_name[day.weekday()],
                    "is_day_off": is_day_off,
                    "work_minutes": day_schedule.work_minutes(),
                    "visit_minutes": day_schedule.visit_minutes(),
                    "visits": day_schedule.visit_count(),
                    "office_minutes": day_schedule.office_minutes(),
                })

            total_office_blocks += office_blocks
            staff_summaries.append({
                "staff_id": schedule.staff_id,
                "staff_name": schedule.staff_name,
                "role": schedule.role.value,
                "day_off": calendar.day_name[schedule.day_off],
                "working_days": len(schedule.days),
                "total_work_minutes": schedule.total_work_minutes(),
                "total_visit_minutes": schedule.total_visit_minutes(),
                "total_visits": schedule.total_visits(),
                "total_office_blocks": office_blocks,
                "daily_breakdown": daily,
            })

        counts = defaultdict(int)
        for advisory in self.advisories:
            counts[advisory.kind] += 1

        return {
            "week_start": self.week_start.isoformat(),
            "total_visits": self.placed_count,
            "total_office_blocks": total_office_blocks,
            "placements_by_priority": dict(self.placements_by_priority),
            "unscheduled_by_priority": dict(self.unscheduled_by_priority),
            "advisory_counts": dict(counts),
            "staff": staff_summaries,
        }
