"""
Real-Time Conflict Resolver.

Answers "can I book this slot?" for a single appointment. When the answer is
no, it searches the coming week for alternatives, keeping only candidates that
pass the very same conflict check, and ranks them.
"""

import logging
from datetime import date as date_type, datetime, timedelta
from typing import Callable, List, Optional

from homecare_models import AlternativeTimeSuggestion, AvailabilityCheckResult
from .blocks import from_minutes, to_minutes
from .constraints import ConflictChecker
from .errors import SchedulingValidationError
from .policy import SchedulingPolicy
from .scoring import SlotScorer
from .store import SchedulingStore, WeekLockRegistry

logger = logging.getLogger(__name__)


class ConflictResolver:

    def __init__(
        self,
        store: SchedulingStore,
        policy: Optional[SchedulingPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[WeekLockRegistry] = None
    ):
        self.store = store
        self.policy = policy or SchedulingPolicy()
        self.clock = clock or datetime.now
        self.locks = locks or store.locks
        self.checker = ConflictChecker(store)
        self.scorer = SlotScorer()

    def check_availability(
        self,
        staff_id: int,
        patient_id: int,
        scheduled_at: datetime,
        duration_minutes: int
    ) -> AvailabilityCheckResult:
        """
        Validate one proposed appointment.
        Alternatives are only searched when the requested slot has conflicts.
        """
        if duration_minutes <= 0:
            raise SchedulingValidationError("durationMinutes must be positive")

        now = self.clock()
        horizon_end = now.date() + timedelta(days=self.policy.alternative_horizon_days)

        with self.locks.hold(scheduled_at.date(), now.date(), horizon_end):
            violations = self.checker.find_conflicts(staff_id, patient_id, scheduled_at, duration_minutes)
            conflicts = [v.reason for v in violations]

            alternatives: List[AlternativeTimeSuggestion] = []
            if conflicts:
                logger.debug(f"Staff {staff_id} at {scheduled_at}: {len(conflicts)} conflict(s), searching alternatives")
                alternatives = self._find_alternatives(staff_id, patient_id, scheduled_at, duration_minutes, now)

        return AvailabilityCheckResult(
            is_available=not conflicts,
            conflicts=conflicts,
            alternatives=alternatives
        )

    def _find_alternatives(
        self,
        staff_id: int,
        patient_id: int,
        requested: datetime,
        duration_minutes: int,
        now: datetime
    ) -> List[AlternativeTimeSuggestion]:
        """Scan today..today+horizon in fixed steps inside each availability window."""
        preference = self.store.get_preference(patient_id)
        step = self.policy.alternative_step_minutes
        found: List[AlternativeTimeSuggestion] = []

        for offset in range(self.policy.alternative_horizon_days + 1):
            day: date_type = now.date() + timedelta(days=offset)

            # Skip if staff on time-off
            if self.store.is_on_time_off(staff_id, day):
                continue

            for window in self.checker.windows_for_day(staff_id, day.weekday()):
                slot = to_minutes(window.start_time)
                window_end = to_minutes(window.end_time)

                while slot + duration_minutes <= window_end:
                    candidate = datetime.combine(day, from_minutes(slot))
                    slot += step
                    if candidate < now:
                        continue

                    # Re-run the full check so every alternative is bookable on its own
                    if self.checker.find_conflicts(staff_id, patient_id, candidate, duration_minutes):
                        continue

                    found.append(self.scorer.score(candidate, requested, duration_minutes, preference))

        # Overlapping windows may yield the same start twice
        unique = {s.scheduled_at: s for s in found}
        return self.scorer.rank(list(unique.values()), self.policy.max_alternatives)
