"""
Reference-data and appointment store.

The planner never talks to a database directly. Everything it reads (roster,
availability, time off, requirements, assignments, history, preferences) and
everything it writes (plans, appointments) goes through SchedulingStore.
InMemoryStore is the implementation used by the runner and the tests.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager, ExitStack
from datetime import date as date_type, datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional

from homecare_models import (
    Appointment,
    AvailabilityWindow,
    CareAssignment,
    Patient,
    PatientPreference,
    PlanStatus,
    RescheduleRequest,
    RescheduleStatus,
    SchedulePlan,
    StaffMember,
    TimeOffPeriod,
    VisitRequirement,
)
from .errors import PlanConflictError

logger = logging.getLogger(__name__)


class SchedulingStore(ABC):
    """
    Collaborator surface the planner depends on.

    `locks` is the WeekLockRegistry shared by every component built on this
    store, so a generator run and an availability check on the same week
    serialize without any extra wiring.
    """

    locks: "WeekLockRegistry"

    # --- Reference data (read only) ---

    @abstractmethod
    def list_staff(self) -> List[StaffMember]: ...

    @abstractmethod
    def get_staff(self, staff_id: int) -> Optional[StaffMember]: ...

    @abstractmethod
    def get_patient(self, patient_id: int) -> Optional[Patient]: ...

    @abstractmethod
    def availability_for(self, staff_id: int) -> List[AvailabilityWindow]: ...

    @abstractmethod
    def time_off_for(self, staff_id: int) -> List[TimeOffPeriod]: ...

    @abstractmethod
    def active_requirements(self) -> List[VisitRequirement]: ...

    @abstractmethod
    def assignments_for_patient(self, patient_id: int) -> List[CareAssignment]: ...

    @abstractmethod
    def assignments_for_staff(self, staff_id: int) -> List[CareAssignment]: ...

    @abstractmethod
    def get_preference(self, patient_id: int) -> Optional[PatientPreference]: ...

    # --- Appointments ---

    @abstractmethod
    def get_appointment(self, appointment_id: int) -> Optional[Appointment]: ...

    @abstractmethod
    def appointments_for_staff(self, staff_id: int, start: datetime, end: datetime) -> List[Appointment]:
        """Appointments of any status overlapping [start, end)."""

    @abstractmethod
    def patient_history(self, patient_id: int, staff_id: int) -> List[Appointment]: ...

    @abstractmethod
    def create_appointment(self, appointment: Appointment) -> Appointment: ...

    @abstractmethod
    def update_appointment(self, appointment: Appointment) -> Appointment: ...

    @abstractmethod
    def appointments_for_plan(self, plan_id: int) -> List[Appointment]: ...

    @abstractmethod
    def delete_appointments_for_plan(self, plan_id: int) -> int: ...

    # --- Plans ---

    @abstractmethod
    def create_plan(self, plan: SchedulePlan) -> SchedulePlan: ...

    @abstractmethod
    def get_plan(self, plan_id: int) -> Optional[SchedulePlan]: ...

    @abstractmethod
    def find_plan(self, week_start: date_type, status: PlanStatus) -> Optional[SchedulePlan]: ...

    @abstractmethod
    def save_plan(self, plan: SchedulePlan) -> SchedulePlan: ...

    @abstractmethod
    def delete_plan(self, plan_id: int) -> None: ...

    # --- Reschedule requests ---

    @abstractmethod
    def create_reschedule_request(self, request: RescheduleRequest) -> RescheduleRequest: ...

    @abstractmethod
    def get_reschedule_request(self, request_id: int) -> Optional[RescheduleRequest]: ...

    @abstractmethod
    def save_reschedule_request(self, request: RescheduleRequest) -> RescheduleRequest: ...

    @abstractmethod
    def reschedule_requests_for_appointment(self, appointment_id: int) -> List[RescheduleRequest]: ...

    @abstractmethod
    def pending_reschedule_requests(self, staff_id: int) -> List[RescheduleRequest]:
        """PENDING requests on appointments held by this staff member, oldest first."""

    @abstractmethod
    def transaction(self):
        """Context manager: every write inside lands, or none does."""

    # --- Convenience built on the abstract surface ---

    def is_on_time_off(self, staff_id: int, day: date_type) -> bool:
        """Only approved periods block scheduling."""
        return any(p.approved and p.covers(day) for p in self.time_off_for(staff_id))


class InMemoryStore(SchedulingStore):
    """
    Dict-backed store with snapshot/rollback transactions.
    Models are replaced on update, never mutated in place, so a shallow
    snapshot of the dicts is enough to roll back.
    """

    def __init__(
        self,
        staff: Iterable[StaffMember] = (),
        patients: Iterable[Patient] = (),
        availability: Iterable[AvailabilityWindow] = (),
        time_off: Iterable[TimeOffPeriod] = (),
        requirements: Iterable[VisitRequirement] = (),
        assignments: Iterable[CareAssignment] = (),
        preferences: Iterable[PatientPreference] = (),
        appointments: Iterable[Appointment] = (),
        reschedule_requests: Iterable[RescheduleRequest] = (),
    ):
        self.staff: Dict[int, StaffMember] = {s.id: s for s in staff}
        self.patients: Dict[int, Patient] = {p.id: p for p in patients}
        self.availability: Dict[int, List[AvailabilityWindow]] = defaultdict(list)
        for window in availability:
            self.availability[window.staff_id].append(window)
        self.time_off: Dict[int, List[TimeOffPeriod]] = defaultdict(list)
        for period in time_off:
            self.time_off[period.staff_id].append(period)
        self.requirements: List[VisitRequirement] = list(requirements)
        self.assignments: List[CareAssignment] = list(assignments)
        self.preferences: Dict[int, PatientPreference] = {p.patient_id: p for p in preferences}

        self.appointments: Dict[int, Appointment] = {}
        self.plans: Dict[int, SchedulePlan] = {}
        self.reschedule_requests: Dict[int, RescheduleRequest] = {}
        self._next_appointment_id = 1
        self._next_plan_id = 1
        self._next_request_id = 1
        self._tx_depth = 0
        self.locks = WeekLockRegistry()

        for appt in appointments:
            self.create_appointment(appt)
        for request in reschedule_requests:
            self.create_reschedule_request(request)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryStore":
        """Re-hydrate pydantic models from a JSON-style dataset."""
        return cls(
            staff=[StaffMember(**item) for item in data.get('staff', [])],
            patients=[Patient(**item) for item in data.get('patients', [])],
            availability=[AvailabilityWindow(**item) for item in data.get('availability', [])],
            time_off=[TimeOffPeriod(**item) for item in data.get('time_off', [])],
            requirements=[VisitRequirement(**item) for item in data.get('requirements', [])],
            assignments=[CareAssignment(**item) for item in data.get('assignments', [])],
            preferences=[PatientPreference(**item) for item in data.get('preferences', [])],
            appointments=[Appointment(**item) for item in data.get('appointments', [])],
            reschedule_requests=[RescheduleRequest(**item) for item in data.get('reschedule_requests', [])],
        )

    # --- Reference data ---

    def list_staff(self) -> List[StaffMember]:
        return sorted(self.staff.values(), key=lambda s: s.id)

    def get_staff(self, staff_id: int) -> Optional[StaffMember]:
        return self.staff.get(staff_id)

    def get_patient(self, patient_id: int) -> Optional[Patient]:
        return self.patients.get(patient_id)

    def availability_for(self, staff_id: int) -> List[AvailabilityWindow]:
        return list(self.availability.get(staff_id, []))

    def time_off_for(self, staff_id: int) -> List[TimeOffPeriod]:
        return list(self.time_off.get(staff_id, []))

    def active_requirements(self) -> List[VisitRequirement]:
        return [r for r in self.requirements if r.is_active]

    def assignments_for_patient(self, patient_id: int) -> List[CareAssignment]:
        return [a for a in self.assignments if a.patient_id == patient_id]

    def assignments_for_staff(self, staff_id: int) -> List[CareAssignment]:
        return [a for a in self.assignments if a.staff_id == staff_id]

    def get_preference(self, patient_id: int) -> Optional[PatientPreference]:
        return self.preferences.get(patient_id)

    # --- Appointments ---

    def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        return self.appointments.get(appointment_id)

    def appointments_for_staff(self, staff_id: int, start: datetime, end: datetime) -> List[Appointment]:
        found = [a for a in self.appointments.values() if a.staff_id == staff_id and a.overlaps(start, end)]
        return sorted(found, key=lambda a: a.scheduled_at)

    def patient_history(self, patient_id: int, staff_id: int) -> List[Appointment]:
        found = [
            a for a in self.appointments.values()
            if a.patient_id == patient_id and a.staff_id == staff_id
        ]
        return sorted(found, key=lambda a: a.scheduled_at)

    def create_appointment(self, appointment: Appointment) -> Appointment:
        stored = appointment.model_copy(update={"id": self._next_appointment_id})
        self._next_appointment_id += 1
        self.appointments[stored.id] = stored
        return stored

    def update_appointment(self, appointment: Appointment) -> Appointment:
        if appointment.id not in self.appointments:
            raise KeyError(f"Appointment {appointment.id} not found")
        self.appointments[appointment.id] = appointment
        return appointment

    def appointments_for_plan(self, plan_id: int) -> List[Appointment]:
        found = [a for a in self.appointments.values() if a.plan_id == plan_id]
        return sorted(found, key=lambda a: (a.staff_id, a.scheduled_at))

    def delete_appointments_for_plan(self, plan_id: int) -> int:
        doomed = [a.id for a in self.appointments.values() if a.plan_id == plan_id]
        for appt_id in doomed:
            del self.appointments[appt_id]
        return len(doomed)

    # --- Plans ---

    def _check_unique(self, plan: SchedulePlan) -> None:
        clash = self.find_plan(plan.week_start_date, plan.status)
        if clash is not None and clash.id != plan.id:
            raise PlanConflictError(
                f"A {plan.status.value} plan already exists for week starting {plan.week_start_date}"
            )

    def create_plan(self, plan: SchedulePlan) -> SchedulePlan:
        stored = plan.model_copy(update={"id": self._next_plan_id})
        self._check_unique(stored)
        self._next_plan_id += 1
        self.plans[stored.id] = stored
        return stored

    def get_plan(self, plan_id: int) -> Optional[SchedulePlan]:
        return self.plans.get(plan_id)

    def find_plan(self, week_start: date_type, status: PlanStatus) -> Optional[SchedulePlan]:
        for plan in self.plans.values():
            if plan.week_start_date == week_start and plan.status == status:
                return plan
        return None

    def save_plan(self, plan: SchedulePlan) -> SchedulePlan:
        if plan.id not in self.plans:
            raise KeyError(f"Plan {plan.id} not found")
        self._check_unique(plan)
        self.plans[plan.id] = plan
        return plan

    def delete_plan(self, plan_id: int) -> None:
        self.plans.pop(plan_id, None)

    # --- Reschedule requests ---

    def create_reschedule_request(self, request: RescheduleRequest) -> RescheduleRequest:
        stored = request.model_copy(update={"id": self._next_request_id})
        self._next_request_id += 1
        self.reschedule_requests[stored.id] = stored
        return stored

    def get_reschedule_request(self, request_id: int) -> Optional[RescheduleRequest]:
        return self.reschedule_requests.get(request_id)

    def save_reschedule_request(self, request: RescheduleRequest) -> RescheduleRequest:
        if request.id not in self.reschedule_requests:
            raise KeyError(f"Reschedule request {request.id} not found")
        self.reschedule_requests[request.id] = request
        return request

    def reschedule_requests_for_appointment(self, appointment_id: int) -> List[RescheduleRequest]:
        found = [r for r in self.reschedule_requests.values() if r.appointment_id == appointment_id]
        return sorted(found, key=lambda r: r.requested_at)

    def pending_reschedule_requests(self, staff_id: int) -> List[RescheduleRequest]:
        found = []
        for request in self.reschedule_requests.values():
            appointment = self.appointments.get(request.appointment_id)
            if request.status == RescheduleStatus.PENDING and appointment and appointment.staff_id == staff_id:
                found.append(request)
        return sorted(found, key=lambda r: r.requested_at)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStore"]:
        """Nested calls join the outermost transaction."""
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self
            finally:
                self._tx_depth -= 1
            return

        snapshot = (
            copy.copy(self.appointments),
            copy.copy(self.plans),
            copy.copy(self.reschedule_requests),
            self._next_appointment_id,
            self._next_plan_id,
            self._next_request_id,
        )
        self._tx_depth = 1
        try:
            yield self
        except Exception:
            (self.appointments, self.plans, self.reschedule_requests,
             self._next_appointment_id, self._next_plan_id, self._next_request_id) = snapshot
            logger.warning("Transaction rolled back")
            raise
        finally:
            self._tx_depth = 0


def week_monday(day: date_type) -> date_type:
    return day - timedelta(days=day.weekday())


class WeekLockRegistry:
    """
    Per-week re-entrant locks keyed by Monday.

    The generator holds its target week's lock for a whole run; availability
    checks hold the lock of every week they read. Locks are always taken in
    ascending week order.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[date_type, threading.RLock] = {}

    def _lock_for(self, monday: date_type) -> threading.RLock:
        with self._guard:
            if monday not in self._locks:
                self._locks[monday] = threading.RLock()
            return self._locks[monday]

    @contextmanager
    def hold(self, *days: date_type) -> Iterator[None]:
        mondays = sorted({week_monday(d) for d in days})
        with ExitStack() as stack:
            for monday in mondays:
                stack.enter_context(self._lock_for(monday))
            yield
