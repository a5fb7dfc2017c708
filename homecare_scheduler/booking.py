"""
Appointment Booking Service.

Single-appointment writes made outside plan generation:
1. Booking-time validation (assignment, availability, time off, overlap)
2. Create / update / cancel
3. Reschedule requests: a requester asks, staff review once
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from homecare_models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BookingValidationResult,
    RescheduleRequest,
    RescheduleStatus,
)
from .constraints import ConflictChecker
from .errors import SchedulingValidationError
from .store import SchedulingStore, WeekLockRegistry

logger = logging.getLogger(__name__)

# Review outcomes that move the appointment
MOVING_OUTCOMES = (RescheduleStatus.APPROVED, RescheduleStatus.ALTERNATIVE_OFFERED)

# Appointments in these states can no longer be moved or cancelled
CLOSED_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED)


class AppointmentService:

    def __init__(
        self,
        store: SchedulingStore,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[WeekLockRegistry] = None
    ):
        self.store = store
        self.clock = clock or datetime.now
        self.locks = locks or store.locks
        self.checker = ConflictChecker(store)

    # --- Validation ---

    def validate_appointment(
        self,
        staff_id: int,
        patient_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
        ignore_appointment_id: Optional[int] = None
    ) -> BookingValidationResult:
        """Every failed rule is reported; an empty error list means the booking may go ahead."""
        violations = self.checker.find_booking_conflicts(
            staff_id, patient_id, scheduled_at, duration_minutes, ignore_appointment_id
        )
        errors = [v.reason for v in violations]
        return BookingValidationResult(is_valid=not errors, errors=errors)

    def _require_valid(self, staff_id: int, patient_id: int, scheduled_at: datetime,
                       duration_minutes: int, ignore_appointment_id: Optional[int] = None) -> None:
        result = self.validate_appointment(staff_id, patient_id, scheduled_at, duration_minutes, ignore_appointment_id)
        if not result.is_valid:
            raise SchedulingValidationError("; ".join(result.errors))

    def _require_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        if appointment is None:
            raise SchedulingValidationError(f"Appointment not found: {appointment_id}")
        return appointment

    # --- Appointments ---

    def create_appointment(self, appointment: Appointment) -> Appointment:
        """Validate and persist a single manually booked appointment."""
        if self.store.get_staff(appointment.staff_id) is None:
            raise SchedulingValidationError(f"Staff not found: {appointment.staff_id}")
        if self.store.get_patient(appointment.patient_id) is None:
            raise SchedulingValidationError(f"Patient not found: {appointment.patient_id}")
        if appointment.type == AppointmentType.OFFICE_WORK:
            raise SchedulingValidationError("Office work is only created by plan generation")

        with self.locks.hold(appointment.scheduled_at.date()):
            self._require_valid(appointment.staff_id, appointment.patient_id,
                                appointment.scheduled_at, appointment.duration_minutes)
            with self.store.transaction():
                stored = self.store.create_appointment(appointment.model_copy(update={
                    "id": None,
                    "status": AppointmentStatus.SCHEDULED,
                    "plan_id": None,
                    "is_generated": False,
                    "is_locked": False,
                }))

        logger.info(f"Booked appointment {stored.id}: staff {stored.staff_id}, patient {stored.patient_id} at {stored.scheduled_at}")
        return stored

    def update_appointment(
        self,
        appointment_id: int,
        scheduled_at: Optional[datetime] = None,
        status: Optional[AppointmentStatus] = None,
        notes: Optional[str] = None,
        location: Optional[str] = None
    ) -> Appointment:
        """Fields left as None keep their current value. A new time is re-validated."""
        appointment = self._require_appointment(appointment_id)
        moving = scheduled_at is not None and scheduled_at != appointment.scheduled_at
        if moving and appointment.is_locked:
            raise SchedulingValidationError(f"Appointment {appointment_id} belongs to a confirmed plan")

        days = [appointment.scheduled_at.date()] + ([scheduled_at.date()] if moving else [])
        with self.locks.hold(*days):
            if moving:
                self._require_valid(appointment.staff_id, appointment.patient_id, scheduled_at,
                                    appointment.duration_minutes, ignore_appointment_id=appointment_id)
            changes = {
                "scheduled_at": scheduled_at,
                "status": status,
                "notes": notes,
                "location": location,
            }
            updated = appointment.model_copy(update={k: v for k, v in changes.items() if v is not None})
            with self.store.transaction():
                self.store.update_appointment(updated)

        logger.debug(f"Updated appointment {appointment_id}")
        return updated

    def cancel_appointment(self, appointment_id: int) -> Appointment:
        appointment = self._require_appointment(appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED:
            return appointment
        if appointment.status == AppointmentStatus.COMPLETED:
            raise SchedulingValidationError("Cannot cancel a COMPLETED appointment")

        with self.locks.hold(appointment.scheduled_at.date()):
            cancelled = appointment.model_copy(update={"status": AppointmentStatus.CANCELLED})
            with self.store.transaction():
                self.store.update_appointment(cancelled)

        logger.info(f"Cancelled appointment {appointment_id}")
        return cancelled

    # --- Reschedule requests ---

    def request_reschedule(
        self,
        appointment_id: int,
        requested_by: int,
        reason: Optional[str] = None,
        preferred_times: Optional[List[datetime]] = None
    ) -> RescheduleRequest:
        appointment = self._require_appointment(appointment_id)
        if appointment.status in CLOSED_STATUSES:
            raise SchedulingValidationError(f"Cannot reschedule a {appointment.status.value} appointment")

        with self.store.transaction():
            request = self.store.create_reschedule_request(RescheduleRequest(
                appointment_id=appointment_id,
                requested_by=requested_by,
                reason=reason,
                preferred_times=preferred_times or [],
                requested_at=self.clock()
            ))
        logger.info(f"Reschedule request {request.id} opened for appointment {appointment_id}")
        return request

    def review_reschedule(
        self,
        request_id: int,
        status: RescheduleStatus,
        staff_response: Optional[str] = None,
        new_scheduled_at: Optional[datetime] = None
    ) -> RescheduleRequest:
        """
        Record the staff decision on a PENDING request.
        APPROVED and ALTERNATIVE_OFFERED move the appointment to `new_scheduled_at`
        (validated like a new booking) and mark it RESCHEDULED.
        """
        request = self.store.get_reschedule_request(request_id)
        if request is None:
            raise SchedulingValidationError(f"Reschedule request not found: {request_id}")
        if not request.is_pending:
            raise SchedulingValidationError("Request has already been reviewed")
        if status == RescheduleStatus.PENDING:
            raise SchedulingValidationError("A review must approve, reject or offer an alternative")

        appointment = self._require_appointment(request.appointment_id)
        moving = status in MOVING_OUTCOMES
        if moving and new_scheduled_at is None:
            raise SchedulingValidationError("New scheduled time is required when approving")

        days = [appointment.scheduled_at.date()] + ([new_scheduled_at.date()] if moving else [])
        with self.locks.hold(*days):
            if moving:
                self._require_valid(appointment.staff_id, appointment.patient_id, new_scheduled_at,
                                    appointment.duration_minutes, ignore_appointment_id=appointment.id)
            reviewed = request.model_copy(update={
                "status": status,
                "staff_response": staff_response,
                "new_scheduled_at": new_scheduled_at if moving else None,
                "reviewed_at": self.clock(),
            })
            with self.store.transaction():
                if moving:
                    self.store.update_appointment(appointment.model_copy(update={
                        "scheduled_at": new_scheduled_at,
                        "status": AppointmentStatus.RESCHEDULED,
                    }))
                self.store.save_reschedule_request(reviewed)

        logger.info(f"Reschedule request {request_id} reviewed: {status.value}")
        return reviewed

    def pending_requests(self, staff_id: int) -> List[RescheduleRequest]:
        return self.store.pending_reschedule_requests(staff_id)
