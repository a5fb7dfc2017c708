"""
Scheduling package for the Home-Care Planner.

Four entry points share one store, its week locks and one policy:
1. WeeklyPlanGenerator - batch weekly plan generation and confirmation
2. ConflictResolver - real-time availability checks with alternatives
3. SuggestionEngine - gap-fill suggestions from visit history
4. AppointmentService - single bookings, cancellations and reschedule requests
"""

from .errors import SchedulingValidationError, PlanConflictError
from .policy import SchedulingPolicy, load_policy
from .store import SchedulingStore, InMemoryStore, WeekLockRegistry, week_monday
from .engine import WeeklyPlanGenerator, day_off_for
from .resolver import ConflictResolver
from .suggestions import SuggestionEngine
from .booking import AppointmentService

__all__ = [
    # --- Errors ---
    "SchedulingValidationError",
    "PlanConflictError",

    # --- Configuration & Storage ---
    "SchedulingPolicy",
    "load_policy",
    "SchedulingStore",
    "InMemoryStore",
    "WeekLockRegistry",
    "week_monday",

    # --- Operations ---
    "WeeklyPlanGenerator",
    "day_off_for",
    "ConflictResolver",
    "SuggestionEngine",
    "AppointmentService",
]
