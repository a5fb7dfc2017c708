"""
The Weekly Plan Generator.

This module implements the core "Solver" logic. It is a deterministic greedy
heuristic with a repair pass, not an exact solver:
1. Skeleton: every working date starts as one elastic OFFICE block, with a
   rotating day off and limited weekend coverage.
2. Most Urgent First: visit requirements are expanded into single requests
   and placed URGENT -> HIGH -> ROUTINE, narrow windows first.
3. Primary / Least-Loaded: each request goes to the patient's primary staff
   member if possible, otherwise to whoever currently carries the least work.
4. Leveling: office time is trimmed to the weekly hard cap or topped up
   towards the soft target.
Anything that cannot be satisfied becomes an advisory, never an exception.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date as date_type, datetime, time as time_type
from typing import Callable, List, Optional, Tuple

from homecare_models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    PlanGenerationResult,
    PlanStatus,
    SchedulePlan,
    StaffMember,
    VisitPriority,
)
from .blocks import BlockType, DaySchedule, StaffWeekSchedule, TimeBlock, VisitPlacement
from .errors import SchedulingValidationError
from .policy import SchedulingPolicy
from .state import AdvisoryKind, PlannerState
from .store import SchedulingStore, WeekLockRegistry, week_monday

logger = logging.getLogger(__name__)


def day_off_for(staff_id: int, week_start: date_type, epoch: date_type) -> int:
    """
    Rotating weekly day off (0=Monday .. 6=Sunday).

    day_off = (week_index + stable_hash(staff_id)) mod 7, where week_index
    counts weeks since `epoch`. No randomness: the same (week, staff) pair
    always yields the same day, and consecutive weeks shift it by one.
    """
    week_index = (week_start - epoch).days // 7
    stable_hash = ((staff_id * 31 + 17) % 7 + 7) % 7
    return (week_index + stable_hash) % 7


@dataclass(frozen=True)
class VisitRequest:
    """One visit to place, expanded from a VisitRequirement."""
    requirement_id: int
    patient_id: int
    patient_name: str
    priority: VisitPriority
    duration_minutes: int
    visit_type: AppointmentType
    preferred_time_start: Optional[time_type] = None
    preferred_time_end: Optional[time_type] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    primary_staff_id: Optional[int] = None

    @property
    def is_urgent(self) -> bool:
        return self.priority == VisitPriority.URGENT

    def window_width(self) -> float:
        """Minutes in the preferred window; no window sorts last."""
        if self.preferred_time_start is None or self.preferred_time_end is None:
            return float('inf')
        return ((self.preferred_time_end.hour * 60 + self.preferred_time_end.minute)
                - (self.preferred_time_start.hour * 60 + self.preferred_time_start.minute))

    def sort_key(self) -> tuple:
        return (self.priority.rank, self.window_width(), self.patient_id)


class WeeklyPlanGenerator:
    """
    Main planning engine.
    Ingests roster + requirements through the store, outputs a persisted DRAFT plan.
    """

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

    # --- Public operations ---

    def generate_weekly_plan(self, week_start: date_type) -> PlanGenerationResult:
        """
        Build, level and persist the plan for the week starting `week_start`.
        An existing DRAFT for that week is replaced; a CONFIRMED one blocks generation.
        """
        logger.info(f"Generating weekly plan for {week_start}...")

        with self.locks.hold(week_start):
            self._validate_week(week_start)

            with self.store.transaction():
                self._delete_existing_draft(week_start)
                plan = self.store.create_plan(SchedulePlan(week_start_date=week_start, created_at=self.clock()))
                state = PlannerState(week_start)

                staff = self.store.list_staff()
                if not staff:
                    state.advise(AdvisoryKind.WARNING, "No staff members found")
                    return PlanGenerationResult(plan=plan, advisories=state.advisory_strings(),
                                                summary=state.get_statistics())

                # Step 0 & 1: Skeleton and office blocks
                self._build_skeletons(state, staff)
                logger.info(f"Step 1 complete: office skeleton generated for {len(staff)} staff")

                # Step 2: Expand and order visit requests
                requests = self._expand_requests(state)
                logger.info(f"Step 2 complete: {len(requests)} visits to schedule, sorted by priority")

                # Step 3 & 4: Staff assignment + time slot placement
                for request in requests:
                    if not self._place_request(request, state):
                        state.record_unscheduled(request.priority.value)
                        state.advise(
                            AdvisoryKind.UNSCHEDULED,
                            f"{request.patient_name} ({request.priority.value}, {request.visit_type.value}) "
                            f"- no feasible slot found"
                        )
                for schedule in state.ordered_schedules():
                    logger.info(
                        f"  {schedule.staff_name}: dayOff={calendar.day_name[schedule.day_off]}, "
                        f"visits={schedule.total_visits()}, workDays={len(schedule.days)}"
                    )
                logger.info(f"Steps 3-4 complete: {state.placed_count} visits placed")

                # Step 5: Workload leveling
                for schedule in state.ordered_schedules():
                    self._level_workload(schedule, state)
                logger.info("Step 5 complete: workload leveled")

                created = self._persist(plan, state)

        logger.info(f"Plan {plan.id} generated: {created} appointments, {len(state.advisories)} advisories")
        return PlanGenerationResult(
            plan=plan,
            advisories=state.advisory_strings(),
            appointment_count=created,
            summary=state.get_statistics()
        )

    def confirm_plan(self, plan_id: int) -> SchedulePlan:
        """DRAFT -> CONFIRMED. Every appointment of the plan is confirmed and locked."""
        plan = self.store.get_plan(plan_id)
        if plan is None:
            raise SchedulingValidationError(f"Plan not found: {plan_id}")

        with self.locks.hold(plan.week_start_date):
            plan = self.store.get_plan(plan_id)
            if plan is None or plan.status != PlanStatus.DRAFT:
                status = plan.status.value if plan else "DELETED"
                raise SchedulingValidationError(f"Only DRAFT plans can be confirmed, current status: {status}")

            with self.store.transaction():
                appointments = self.store.appointments_for_plan(plan_id)
                for appt in appointments:
                    self.store.update_appointment(appt.model_copy(update={
                        "status": AppointmentStatus.CONFIRMED,
                        "is_locked": True,
                    }))
                confirmed = self.store.save_plan(plan.model_copy(update={
                    "status": PlanStatus.CONFIRMED,
                    "confirmed_at": self.clock(),
                }))

        logger.info(f"Plan {plan_id} confirmed: {len(appointments)} appointments locked")
        return confirmed

    # --- Validation ---

    def _validate_week(self, week_start: date_type) -> None:
        if week_start.weekday() != 0:
            raise SchedulingValidationError(
                f"weekStartDate must be a Monday, got {calendar.day_name[week_start.weekday()]}"
            )

        current_monday = week_monday(self.clock().date())
        if week_start <= current_monday:
            raise SchedulingValidationError("Cannot generate plan for current or past week")

        if self.store.find_plan(week_start, PlanStatus.CONFIRMED) is not None:
            raise SchedulingValidationError(f"A confirmed plan already exists for week starting {week_start}")

    def _delete_existing_draft(self, week_start: date_type) -> None:
        draft = self.store.find_plan(week_start, PlanStatus.DRAFT)
        if draft is None:
            return
        removed = self.store.delete_appointments_for_plan(draft.id)
        self.store.delete_plan(draft.id)
        logger.info(f"Deleted existing DRAFT plan for week {week_start} (id={draft.id}, {removed} appointments)")

    # --- Step 0/1: Skeleton ---

    def _office_day(self, day: date_type) -> DaySchedule:
        start, end = self.policy.hours_for(day)
        schedule = DaySchedule(day, start, end)
        schedule.add(TimeBlock(start, end, BlockType.OFFICE))
        return schedule

    def _build_skeletons(self, state: PlannerState, staff: List[StaffMember]) -> None:
        weekdays = state.week_dates[:5]
        weekend = state.week_dates[5:]

        for member in staff:
            schedule = StaffWeekSchedule(
                staff_id=member.id,
                staff_name=member.name,
                role=member.role,
                day_off=day_off_for(member.id, state.week_start, self.policy.rotation_epoch)
            )
            for day in weekdays:
                if day.weekday() == schedule.day_off:
                    continue
                if self.store.is_on_time_off(member.id, day):
                    continue
                schedule.days[day] = self._office_day(day)
            state.add_schedule(schedule)

        # Weekend: limited coverage, lowest staff id first
        for day in weekend:
            eligible = [
                s for s in state.ordered_schedules()
                if s.day_off != day.weekday() and not self.store.is_on_time_off(s.staff_id, day)
            ]
            for schedule in eligible[:self.policy.max_weekend_staff]:
                schedule.days[day] = self._office_day(day)

    # --- Step 2: Expansion ---

    def _expand_requests(self, state: PlannerState) -> List[VisitRequest]:
        """
        Flattens "2x/week" requirements into individual requests and sorts them:
        priority, then narrowest preferred window, then patient id.
        """
        requests = []
        for requirement in self.store.active_requirements():
            patient = self.store.get_patient(requirement.patient_id)
            if patient is None:
                state.advise(
                    AdvisoryKind.SKIPPED,
                    f"requirement {requirement.id} references unknown patient {requirement.patient_id}"
                )
                continue

            primary = next((a for a in self.store.assignments_for_patient(patient.id) if a.is_primary), None)
            primary_staff_id = primary.staff_id if primary else None
            if primary_staff_id is not None and primary_staff_id not in state.schedules:
                state.advise(
                    AdvisoryKind.SKIPPED,
                    f"{patient.name} is assigned to unknown staff member {primary_staff_id}"
                )
                continue

            for _ in range(requirement.visits_per_week):
                requests.append(VisitRequest(
                    requirement_id=requirement.id,
                    patient_id=patient.id,
                    patient_name=patient.name,
                    priority=requirement.priority,
                    duration_minutes=requirement.duration_minutes,
                    visit_type=requirement.visit_type,
                    preferred_time_start=requirement.preferred_time_start,
                    preferred_time_end=requirement.preferred_time_end,
                    location=requirement.location,
                    notes=requirement.notes,
                    primary_staff_id=primary_staff_id
                ))

        requests.sort(key=lambda r: r.sort_key())
        return requests

    # --- Step 3/4: Placement ---

    def _staff_order(self, request: VisitRequest, state: PlannerState) -> List[StaffWeekSchedule]:
        """Primary staff first, then everyone else by lowest current workload."""
        primary = state.schedules.get(request.primary_staff_id) if request.primary_staff_id is not None else None
        others = sorted(
            (s for s in state.ordered_schedules() if s.staff_id != request.primary_staff_id),
            key=lambda s: s.total_work_minutes()
        )
        return [primary] + others if primary else others

    def _place_request(self, request: VisitRequest, state: PlannerState) -> bool:
        for schedule in self._staff_order(request, state):
            slot = self._find_slot(request, schedule)
            if slot is None:
                continue

            day, start = slot
            self._commit(request, schedule, day, start, state)
            if request.primary_staff_id is not None and schedule.staff_id != request.primary_staff_id:
                state.advise(
                    AdvisoryKind.REASSIGNED,
                    f"{request.patient_name} placed with least-loaded staff {schedule.staff_name} (not primary staff)"
                )
            return True
        return False

    def _find_slot(self, request: VisitRequest, schedule: StaffWeekSchedule) -> Optional[Tuple[date_type, time_type]]:
        """Earliest feasible (date, start) in week order, first fit within a day."""
        needed = request.duration_minutes + self.policy.travel_buffer_minutes

        # Weekly hard cap: only visit+travel count, office is elastic
        if schedule.total_visit_minutes() + needed > self.policy.max_weekly_minutes:
            return None

        for day in schedule.working_dates():
            day_schedule = schedule.days[day]

            # Weekend: urgent visits only
            if day_schedule.is_weekend and not request.is_urgent:
                continue

            # Daily visit count cap, urgent bypasses
            if not request.is_urgent and day_schedule.visit_count() >= self.policy.max_daily_visits:
                continue

            if day_schedule.visit_minutes() + needed > self.policy.daily_cap_for(day):
                continue

            start = day_schedule.find_office_slot(needed, request.preferred_time_start, request.preferred_time_end)
            if start is not None:
                return day, start
        return None

    def _commit(
        self,
        request: VisitRequest,
        schedule: StaffWeekSchedule,
        day: date_type,
        start: time_type,
        state: PlannerState
    ) -> None:
        placement = VisitPlacement(
            patient_id=request.patient_id,
            patient_name=request.patient_name,
            visit_type=request.visit_type,
            duration_minutes=request.duration_minutes,
            priority=request.priority,
            requirement_id=request.requirement_id,
            notes=request.notes,
            location=request.location
        )
        schedule.days[day].insert_visit(
            start, placement,
            buffer_minutes=self.policy.travel_buffer_minutes,
            min_fragment=self.policy.office_split_min_minutes
        )
        state.record_placement(request.priority.value)
        logger.debug(f"Placed {request.patient_name} with {schedule.staff_name} on {day} at {start}")

    # --- Step 5: Workload leveling ---

    def _level_workload(self, schedule: StaffWeekSchedule, state: PlannerState) -> None:
        policy = self.policy
        min_fragment = policy.office_split_min_minutes

        # Trim excess office time, latest dates first
        total = schedule.total_work_minutes()
        if total > policy.max_weekly_minutes:
            excess = total - policy.max_weekly_minutes
            for day in reversed(schedule.working_dates()):
                if excess <= 0:
                    break
                excess -= schedule.days[day].trim_office(excess, min_fragment)

            total = schedule.total_work_minutes()
            if total > policy.max_weekly_minutes:
                state.advise(
                    AdvisoryKind.OVERLOADED,
                    f"{schedule.staff_name} has {total}min (max {policy.max_weekly_minutes}min) after trimming"
                )

        # Fill underloaded weeks from uncovered gaps
        if total < policy.min_weekly_minutes:
            deficit = policy.min_weekly_minutes - total
            filled = 0
            for day in schedule.working_dates():
                if filled >= deficit:
                    break
                day_schedule = schedule.days[day]
                day_remaining = policy.daily_cap_for(day) - day_schedule.work_minutes()
                if day_remaining <= 0:
                    continue
                filled += day_schedule.fill_gaps(min(day_remaining, deficit - filled), min_fragment)

        final_total = schedule.total_work_minutes()
        if final_total < policy.min_weekly_minutes:
            state.advise(
                AdvisoryKind.WARNING,
                f"{schedule.staff_name} has {final_total}min ({final_total // 60}h{final_total % 60}m) "
                f"below {policy.min_weekly_minutes // 60}h soft target. "
                f"Day off: {calendar.day_name[schedule.day_off]}"
            )

    # --- Persistence ---

    def _persist(self, plan: SchedulePlan, state: PlannerState) -> int:
        """Write every VISIT block and every long-enough OFFICE block as an Appointment."""
        created = 0
        for schedule in state.ordered_schedules():
            for day in schedule.working_dates():
                for block in schedule.days[day]:
                    if block.type == BlockType.TRAVEL_BUFFER:
                        continue
                    if block.type == BlockType.OFFICE and block.duration_minutes < self.policy.office_persist_min_minutes:
                        continue

                    common = dict(
                        staff_id=schedule.staff_id,
                        scheduled_at=datetime.combine(day, block.start),
                        duration_minutes=block.duration_minutes,
                        status=AppointmentStatus.SCHEDULED,
                        plan_id=plan.id,
                        is_generated=True,
                        is_locked=False,
                    )
                    if block.type == BlockType.VISIT:
                        appointment = Appointment(
                            patient_id=block.visit.patient_id,
                            type=block.visit.visit_type,
                            notes=block.visit.notes,
                            location=block.visit.location,
                            **common
                        )
                    else:
                        # Office work references the staff member as the "patient"
                        appointment = Appointment(
                            patient_id=schedule.staff_id,
                            type=AppointmentType.OFFICE_WORK,
                            notes="Office work",
                            location="Office",
                            **common
                        )

                    self.store.create_appointment(appointment)
                    created += 1
        return created
