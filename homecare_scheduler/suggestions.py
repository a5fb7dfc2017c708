"""
Gap-Fill Suggestion Engine.

Looks at each patient a staff member cares for, infers how often they are
seen from their visit history, and proposes the next appointment(s) for the
ones who are due. Suggestions are read-only: nothing is booked here.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date as date_type, datetime, time as time_type, timedelta
from typing import Dict, List, Optional, Tuple

from homecare_models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    AvailabilityWindow,
    PatientPreference,
    RecurringFrequency,
    SuggestedAppointment,
    SuggestionResult,
    UnscheduledPatient,
)
from .blocks import from_minutes, to_minutes
from .constraints import ConflictChecker
from .errors import SchedulingValidationError
from .policy import SchedulingPolicy
from .store import SchedulingStore

logger = logging.getLogger(__name__)

# Days between suggested occurrences
CADENCE_DAYS = {
    RecurringFrequency.WEEKLY: 7,
    RecurringFrequency.BIWEEKLY: 14,
    RecurringFrequency.MONTHLY: 28,
}

# Minimum days since the last visit before a patient is due again
MIN_ELAPSED_DAYS = {
    RecurringFrequency.WEEKLY: 5,
    RecurringFrequency.BIWEEKLY: 12,
    RecurringFrequency.MONTHLY: 25,
}

Interval = Tuple[datetime, datetime]


@dataclass
class VisitPattern:
    """What a patient's next visit should look like, inferred from history."""
    frequency: RecurringFrequency
    duration_minutes: int
    type: AppointmentType
    notes: Optional[str] = None
    location: Optional[str] = None
    recurring_group_id: Optional[str] = None
    usual_time: Optional[time_type] = None

    def reason(self) -> str:
        label = self.type.value.replace("_", " ").lower()
        suffix = " (recurring series)" if self.recurring_group_id else ""
        return f"{self.frequency.value.capitalize()} {label}{suffix}"


def infer_frequency(history: List[Appointment]) -> RecurringFrequency:
    """Bucket the mean gap between consecutive visits. Fewer than two visits -> WEEKLY."""
    if len(history) < 2:
        return RecurringFrequency.WEEKLY

    dates = sorted(a.scheduled_at.date() for a in history)
    gaps = [(later - earlier).days for earlier, later in zip(dates, dates[1:])]
    mean_gap = sum(gaps) / len(gaps)

    if mean_gap <= 10:
        return RecurringFrequency.WEEKLY
    if mean_gap <= 21:
        return RecurringFrequency.BIWEEKLY
    return RecurringFrequency.MONTHLY


class SuggestionEngine:

    def __init__(self, store: SchedulingStore, policy: Optional[SchedulingPolicy] = None):
        self.store = store
        self.policy = policy or SchedulingPolicy()
        self.checker = ConflictChecker(store)

    def suggest_appointments(self, staff_id: int, start_date: date_type, end_date: date_type) -> SuggestionResult:
        """
        Propose appointments in [start_date, end_date] for every assigned
        patient who has nothing booked in that range and is due.
        """
        if self.store.get_staff(staff_id) is None:
            raise SchedulingValidationError(f"Staff not found: {staff_id}")
        if start_date > end_date:
            raise SchedulingValidationError("startDate must be on or before endDate")

        period_start = datetime.combine(start_date, time_type.min)
        period_end = datetime.combine(end_date + timedelta(days=1), time_type.min)

        existing = [
            a for a in self.store.appointments_for_staff(staff_id, period_start, period_end)
            if a.is_active
        ]
        booked_patients = {a.patient_id for a in existing}

        # Existing bookings + slots suggested earlier in this run
        occupied: List[Interval] = [(a.scheduled_at, a.end_at) for a in existing]

        suggestions: List[SuggestedAppointment] = []
        unscheduled: List[UnscheduledPatient] = []
        patient_ids = sorted({a.patient_id for a in self.store.assignments_for_staff(staff_id)})

        for patient_id in patient_ids:
            if patient_id in booked_patients:
                continue

            patient = self.store.get_patient(patient_id)
            patient_name = patient.name if patient else f"Patient {patient_id}"

            history = [
                a for a in self.store.patient_history(patient_id, staff_id)
                if a.is_active and a.type != AppointmentType.OFFICE_WORK and a.scheduled_at < period_start
            ]
            pattern = self._visit_pattern(history, start_date, self.store.get_preference(patient_id))
            last_visit = self._last_visit(history)

            due_from = self._due_from(pattern.frequency, last_visit, start_date, end_date)
            if due_from is None:
                logger.debug(f"Patient {patient_id} not due before {end_date}")
                continue

            slots = self._propose(staff_id, pattern, due_from, end_date, occupied)
            if not slots:
                unscheduled.append(UnscheduledPatient(
                    patient_id=patient_id,
                    patient_name=patient_name,
                    reason=f"No free slot between {due_from.isoformat()} and {end_date.isoformat()}",
                    last_visit_date=last_visit,
                    recommended_frequency=pattern.frequency
                ))
                continue

            for slot in slots:
                suggestions.append(SuggestedAppointment(
                    patient_id=patient_id,
                    patient_name=patient_name,
                    scheduled_at=slot,
                    duration_minutes=pattern.duration_minutes,
                    type=pattern.type,
                    notes=pattern.notes,
                    location=pattern.location,
                    reason=pattern.reason(),
                    frequency=pattern.frequency,
                    is_from_recurring=pattern.recurring_group_id is not None,
                    recurring_group_id=pattern.recurring_group_id
                ))

        suggestions.sort(key=lambda s: s.scheduled_at)
        logger.info(
            f"Staff {staff_id} {start_date}..{end_date}: {len(suggestions)} suggestions, "
            f"{len(unscheduled)} patients could not be scheduled"
        )
        return SuggestionResult(
            staff_id=staff_id,
            period_start=start_date,
            period_end=end_date,
            suggestions=suggestions,
            already_scheduled=existing,
            unscheduled_patients=unscheduled
        )

    # --- Pattern inference ---

    def _visit_pattern(
        self,
        history: List[Appointment],
        period_start: date_type,
        preference: Optional[PatientPreference] = None
    ) -> VisitPattern:
        if not history:
            # First visit: the patient's stated type and location, else a plain home visit
            visit_type = AppointmentType.HOME_VISIT
            location = None
            if preference is not None:
                if preference.preferred_visit_type not in (None, AppointmentType.OFFICE_WORK):
                    visit_type = preference.preferred_visit_type
                location = preference.preferred_location
            return VisitPattern(
                frequency=RecurringFrequency.WEEKLY,
                duration_minutes=self.policy.default_visit_minutes,
                type=visit_type,
                location=location
            )

        # A still-open recurring series wins over inference
        open_series = [
            a for a in history
            if a.recurring_group_id and a.recurring_frequency
            and (a.recurring_until is None or a.recurring_until >= period_start)
        ]
        if open_series:
            template = max(open_series, key=lambda a: a.scheduled_at)
            frequency = template.recurring_frequency
        else:
            template = self._most_common(history)
            frequency = infer_frequency(history)

        return VisitPattern(
            frequency=frequency,
            duration_minutes=template.duration_minutes,
            type=template.type,
            notes=template.notes,
            location=template.location,
            recurring_group_id=template.recurring_group_id if open_series else None,
            usual_time=history[-1].scheduled_at.time()
        )

    @staticmethod
    def _last_visit(history: List[Appointment]) -> Optional[datetime]:
        """Latest COMPLETED visit; bookings that have not happened yet only count when nothing was completed."""
        completed = [a.scheduled_at for a in history if a.status == AppointmentStatus.COMPLETED]
        if completed:
            return max(completed)
        return history[-1].scheduled_at if history else None

    @staticmethod
    def _most_common(history: List[Appointment]) -> Appointment:
        """Most frequent (type, duration, location); ties go to the most recent."""
        counts = Counter((a.type, a.duration_minutes, a.location) for a in history)
        latest: Dict[tuple, Appointment] = {}
        for appt in history:  # sorted ascending, so later entries win
            latest[(appt.type, appt.duration_minutes, appt.location)] = appt
        best = max(counts, key=lambda k: (counts[k], latest[k].scheduled_at))
        return latest[best]

    @staticmethod
    def _due_from(
        frequency: RecurringFrequency,
        last_visit: Optional[datetime],
        start_date: date_type,
        end_date: date_type
    ) -> Optional[date_type]:
        """First date in range on which the patient is due, None if not due in range."""
        if last_visit is None:
            return start_date
        due = last_visit.date() + timedelta(days=MIN_ELAPSED_DAYS[frequency])
        if due > end_date:
            return None
        return max(start_date, due)

    # --- Slot search ---

    def _propose(
        self,
        staff_id: int,
        pattern: VisitPattern,
        due_from: date_type,
        end_date: date_type,
        occupied: List[Interval]
    ) -> List[datetime]:
        """First free slot from the due date, then one per cadence interval while in range."""
        slots = []
        search_from = due_from
        while search_from <= end_date:
            slot = self._first_free_slot(staff_id, search_from, end_date, pattern, occupied)
            if slot is None:
                break
            slots.append(slot)
            occupied.append((slot, slot + timedelta(minutes=pattern.duration_minutes)))
            search_from = slot.date() + timedelta(days=CADENCE_DAYS[pattern.frequency])
        return slots

    def _first_free_slot(
        self,
        staff_id: int,
        from_date: date_type,
        to_date: date_type,
        pattern: VisitPattern,
        occupied: List[Interval]
    ) -> Optional[datetime]:
        day = from_date
        while day <= to_date:
            if not self.store.is_on_time_off(staff_id, day):
                windows = self.checker.windows_for_day(staff_id, day.weekday())
                for start in self._candidate_times(windows, pattern):
                    if self._is_free(day, start, pattern.duration_minutes, windows, occupied):
                        return datetime.combine(day, start)
            day += timedelta(days=1)
        return None

    def _candidate_times(self, windows: List[AvailabilityWindow], pattern: VisitPattern) -> List[time_type]:
        """The patient's usual time first, then every step inside each window."""
        times = []
        if pattern.usual_time is not None:
            times.append(pattern.usual_time.replace(second=0, microsecond=0))
        step = self.policy.suggestion_step_minutes
        for window in windows:
            slot = to_minutes(window.start_time)
            while slot + pattern.duration_minutes <= to_minutes(window.end_time):
                times.append(from_minutes(slot))
                slot += step
        return times

    @staticmethod
    def _is_free(
        day: date_type,
        start: time_type,
        duration: int,
        windows: List[AvailabilityWindow],
        occupied: List[Interval]
    ) -> bool:
        if not any(w.contains(start, duration) for w in windows):
            return False
        slot_start = datetime.combine(day, start)
        slot_end = slot_start + timedelta(minutes=duration)
        return not any(slot_start < end and begin < slot_end for begin, end in occupied)
