"""
Hard and Soft Constraint Validation Logic.

This module answers the question: "Can staff member X see patient Y at time T?"
Unlike a first-failure validator it accumulates every violation, so the
caller gets the full list of reasons in one pass.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from homecare_models import AppointmentStatus, AvailabilityWindow, PatientPreference
from .blocks import to_minutes
from .store import SchedulingStore


@dataclass
class ConstraintViolation:
    """Detailed reason for rejection."""
    constraint_type: str  # "Assignment", "Availability", "TimeOff", "Overlap", "Preference"
    reason: str
    staff_id: int
    scheduled_at: datetime


class ConflictChecker:
    """
    Evaluates a proposed appointment against availability, time off,
    existing bookings and patient preferences.
    """

    MORNING_END_HOUR = 12
    EVENING_START_HOUR = 17

    # Statuses that no longer hold their slot when a booking is validated
    BOOKING_RELEASED_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED)

    def __init__(self, store: SchedulingStore):
        self.store = store

    def find_conflicts(
        self,
        staff_id: int,
        patient_id: int,
        scheduled_at: datetime,
        duration_minutes: int
    ) -> List[ConstraintViolation]:
        """
        Master validation function. Returns an empty list if the slot is bookable.
        Every check runs; none short-circuits the others.
        """
        violations: List[ConstraintViolation] = []

        violations.extend(self._check_availability(staff_id, scheduled_at, duration_minutes))
        violations.extend(self._check_time_off(staff_id, scheduled_at))
        violations.extend(self._check_overlap(staff_id, scheduled_at, duration_minutes))

        preference = self.store.get_preference(patient_id)
        if preference is not None:
            violations.extend(self._check_preference(preference, staff_id, scheduled_at, duration_minutes))

        return violations

    def windows_for_day(self, staff_id: int, weekday: int) -> List[AvailabilityWindow]:
        """Available windows on a weekday (0=Monday), in start order."""
        windows = [
            w for w in self.store.availability_for(staff_id)
            if w.day_of_week == weekday and w.is_available
        ]
        return sorted(windows, key=lambda w: w.start_time)

    def _check_availability(self, staff_id: int, when: datetime, duration: int) -> List[ConstraintViolation]:
        windows = self.windows_for_day(staff_id, when.weekday())
        if not windows:
            return [ConstraintViolation(
                "Availability",
                f"Staff not available on {calendar.day_name[when.weekday()]}",
                staff_id, when
            )]

        # The whole appointment must fit inside a single window
        if not any(w.contains(when.time(), duration) for w in windows):
            return [ConstraintViolation(
                "Availability", "Requested time is outside working hours", staff_id, when
            )]
        return []

    def _check_time_off(self, staff_id: int, when: datetime) -> List[ConstraintViolation]:
        if self.store.is_on_time_off(staff_id, when.date()):
            return [ConstraintViolation(
                "TimeOff", f"Staff on approved time off on {when.date().isoformat()}", staff_id, when
            )]
        return []

    def find_booking_conflicts(
        self,
        staff_id: int,
        patient_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
        ignore_appointment_id: Optional[int] = None
    ) -> List[ConstraintViolation]:
        """
        Booking-time validation for a concrete appointment.
        The care assignment is required here and preferences are not checked.
        RESCHEDULED appointments release their slot like CANCELLED ones.
        `ignore_appointment_id` excludes the appointment being moved.
        """
        violations: List[ConstraintViolation] = []

        violations.extend(self._check_assignment(staff_id, patient_id, scheduled_at))
        violations.extend(self._check_availability(staff_id, scheduled_at, duration_minutes))
        violations.extend(self._check_time_off(staff_id, scheduled_at))
        violations.extend(self._check_overlap(
            staff_id, scheduled_at, duration_minutes,
            released=self.BOOKING_RELEASED_STATUSES, ignore_id=ignore_appointment_id
        ))
        return violations

    def _check_assignment(self, staff_id: int, patient_id: int, when: datetime) -> List[ConstraintViolation]:
        if any(a.patient_id == patient_id for a in self.store.assignments_for_staff(staff_id)):
            return []
        return [ConstraintViolation("Assignment", "Staff is not assigned to this patient", staff_id, when)]

    def _check_overlap(
        self,
        staff_id: int,
        when: datetime,
        duration: int,
        released: Tuple[AppointmentStatus, ...] = (AppointmentStatus.CANCELLED,),
        ignore_id: Optional[int] = None
    ) -> List[ConstraintViolation]:
        end = when + timedelta(minutes=duration)
        violations = []
        for existing in self.store.appointments_for_staff(staff_id, when, end):
            if existing.status in released or (ignore_id is not None and existing.id == ignore_id):
                continue
            if existing.overlaps(when, end):
                violations.append(ConstraintViolation(
                    "Overlap",
                    f"Conflict with existing appointment at {existing.scheduled_at.isoformat(timespec='minutes')}",
                    staff_id, when
                ))
        return violations

    def _check_preference(
        self,
        preference: PatientPreference,
        staff_id: int,
        when: datetime,
        duration: int
    ) -> List[ConstraintViolation]:
        return [
            ConstraintViolation("Preference", reason, staff_id, when)
            for reason in preference_violations(preference, when, duration)
        ]


def preference_violations(preference: PatientPreference, when: datetime, duration: int) -> List[str]:
    """One reason string per violated preference rule."""
    reasons = []
    if preference.avoid_mornings and when.hour < ConflictChecker.MORNING_END_HOUR:
        reasons.append("Patient prefers to avoid mornings")
    if preference.avoid_evenings and when.hour >= ConflictChecker.EVENING_START_HOUR:
        reasons.append("Patient prefers to avoid evenings")

    if preference.preferred_day_of_week is not None and when.weekday() != preference.preferred_day_of_week:
        reasons.append(f"Patient prefers {calendar.day_name[preference.preferred_day_of_week]}")

    if preference.preferred_time_start and preference.preferred_time_end:
        start_min = to_minutes(when.time())
        if (start_min < to_minutes(preference.preferred_time_start)
                or start_min + duration > to_minutes(preference.preferred_time_end)):
            reasons.append(
                f"Patient prefers time between {preference.preferred_time_start.strftime('%H:%M')} "
                f"and {preference.preferred_time_end.strftime('%H:%M')}"
            )
    return reasons


def is_preferred_time(preference: Optional[PatientPreference], when: datetime, duration: int) -> bool:
    """True only when a preference record exists and every rule holds."""
    if preference is None:
        return False
    return not preference_violations(preference, when, duration)
