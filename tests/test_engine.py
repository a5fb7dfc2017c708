"""
Tests for the weekly plan generator (skeleton, placement, leveling, persistence, confirmation)
"""

from collections import Counter
from datetime import date, time, timedelta

import pytest

from homecare_models import (
    AppointmentStatus,
    AppointmentType,
    CareAssignment,
    PlanStatus,
    SchedulePlan,
    StaffMember,
    StaffRole,
    TimeOffPeriod,
    TimeOffStatus,
    VisitPriority,
    VisitRequirement,
)
from homecare_scheduler import (
    InMemoryStore,
    SchedulingPolicy,
    SchedulingValidationError,
    WeeklyPlanGenerator,
    day_off_for,
)
from homecare_scheduler.state import PlannerState

from conftest import FIXED_NOW, NEXT_MONDAY, weekday_windows

EPOCH = date(2026, 1, 5)


def requirement(req_id, patient_id, priority=VisitPriority.ROUTINE, visits=1, duration=30, **extra):
    return VisitRequirement(
        id=req_id, patient_id=patient_id, priority=priority,
        visits_per_week=visits, duration_minutes=duration, **extra
    )


def approved(staff_id, start, end):
    return TimeOffPeriod(staff_id=staff_id, start_date=start, end_date=end, status=TimeOffStatus.APPROVED)


def visits_of(store, plan_id):
    return [a for a in store.appointments_for_plan(plan_id) if a.type != AppointmentType.OFFICE_WORK]


def slots(store, plan_id):
    return [(a.staff_id, a.scheduled_at, a.duration_minutes, a.type) for a in store.appointments_for_plan(plan_id)]


@pytest.fixture
def generator_for(clock):
    def _make(store, policy=None):
        return WeeklyPlanGenerator(store, policy=policy, clock=clock)
    return _make


class TestDayOffRotation:

    def test_deterministic(self):
        assert day_off_for(1, NEXT_MONDAY, EPOCH) == day_off_for(1, NEXT_MONDAY, EPOCH)

    def test_known_values(self):
        assert day_off_for(1, NEXT_MONDAY, EPOCH) == 6
        assert day_off_for(2, NEXT_MONDAY, EPOCH) == 2

    def test_shifts_by_one_each_week(self):
        for staff_id in range(1, 10):
            this_week = day_off_for(staff_id, NEXT_MONDAY, EPOCH)
            next_week = day_off_for(staff_id, NEXT_MONDAY + timedelta(days=7), EPOCH)
            assert next_week == (this_week + 1) % 7

    def test_negative_ids_stay_in_range(self):
        assert 0 <= day_off_for(-5, NEXT_MONDAY, EPOCH) <= 6


class TestValidation:

    def test_must_be_monday(self, make_store, generator_for):
        store = make_store()
        with pytest.raises(SchedulingValidationError, match="must be a Monday, got Tuesday"):
            generator_for(store).generate_weekly_plan(date(2026, 10, 27))
        assert store.plans == {}

    @pytest.mark.parametrize("week", [FIXED_NOW.date(), date(2026, 10, 12)])
    def test_current_or_past_week(self, make_store, generator_for, week):
        with pytest.raises(SchedulingValidationError, match="current or past week"):
            generator_for(make_store()).generate_weekly_plan(week)

    def test_confirmed_plan_blocks_generation(self, make_store, generator_for):
        store = make_store()
        plan = store.create_plan(SchedulePlan(week_start_date=NEXT_MONDAY))
        store.save_plan(plan.model_copy(update={"status": PlanStatus.CONFIRMED}))
        with pytest.raises(SchedulingValidationError, match="confirmed plan already exists for week starting 2026-10-26"):
            generator_for(store).generate_weekly_plan(NEXT_MONDAY)

    def test_empty_roster(self, make_store, generator_for):
        store = make_store(staff=[])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        assert result.advisories == ["WARNING: No staff members found"]
        assert result.plan.status == PlanStatus.DRAFT
        assert result.appointment_count == 0
        assert store.find_plan(NEXT_MONDAY, PlanStatus.DRAFT) is not None


class TestSkeleton:

    @pytest.fixture
    def four_staff(self, staff):
        return staff + [
            StaffMember(id=3, name="Sanna Koski", role=StaffRole.NURSE),
            StaffMember(id=4, name="Juha Lehto", role=StaffRole.NURSE),
        ]

    def test_day_off_never_worked(self, make_store, generator_for, four_staff):
        store = make_store(staff=four_staff)
        generator = generator_for(store)
        state = PlannerState(NEXT_MONDAY)
        generator._build_skeletons(state, store.list_staff())

        for schedule in state.ordered_schedules():
            assert all(day.weekday() != schedule.day_off for day in schedule.days)

    def test_weekend_staffing_limited_lowest_ids_first(self, make_store, generator_for, four_staff):
        # Day offs this week: 1 -> Sunday, 2 -> Wednesday, 3 -> Saturday, 4 -> Tuesday
        store = make_store(staff=four_staff)
        state = PlannerState(NEXT_MONDAY)
        generator_for(store)._build_skeletons(state, store.list_staff())

        saturday, sunday = state.week_dates[5:]
        assert [s.staff_id for s in state.ordered_schedules() if saturday in s.days] == [1, 2]
        assert [s.staff_id for s in state.ordered_schedules() if sunday in s.days] == [2, 3]

    def test_weekend_uses_weekend_hours(self, make_store, generator_for):
        store = make_store()
        state = PlannerState(NEXT_MONDAY)
        generator_for(store)._build_skeletons(state, store.list_staff())
        saturday = state.schedules[1].days[date(2026, 10, 31)]
        assert (saturday.day_start, saturday.day_end) == (time(10, 0), time(15, 0))

    def test_approved_time_off_excluded(self, make_store, generator_for):
        store = make_store(time_off=[
            approved(1, date(2026, 10, 27), date(2026, 10, 28)),
            TimeOffPeriod(staff_id=2, start_date=date(2026, 10, 29), end_date=date(2026, 10, 29),
                          status=TimeOffStatus.PENDING),
        ])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        appointments = store.appointments_for_plan(result.plan.id)

        aino_dates = {a.scheduled_at.date() for a in appointments if a.staff_id == 1}
        assert date(2026, 10, 27) not in aino_dates
        assert date(2026, 10, 28) not in aino_dates
        # Pending time off does not block
        assert date(2026, 10, 29) in {a.scheduled_at.date() for a in appointments if a.staff_id == 2}


class TestPlacement:

    def test_daily_visit_cap_and_weekday_only_for_routine(self, single_staff_store, generator_for):
        store = single_staff_store(requirements=[requirement(1, 102, visits=21)])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        visits = visits_of(store, result.plan.id)

        assert len(visits) == 15
        per_day = Counter(v.scheduled_at.date() for v in visits)
        assert max(per_day.values()) == 3
        assert all(day.weekday() < 5 for day in per_day)

        unscheduled = [a for a in result.advisories if a.startswith("UNSCHEDULED")]
        assert len(unscheduled) == 6
        assert unscheduled[0] == "UNSCHEDULED: Liisa Mäkelä (ROUTINE, HOME_VISIT) - no feasible slot found"
        assert result.summary["unscheduled_by_priority"] == {"ROUTINE": 6}

    def test_urgent_bypasses_daily_visit_cap(self, single_staff_store, generator_for):
        store = single_staff_store(requirements=[requirement(1, 101, VisitPriority.URGENT, visits=5)])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        visits = visits_of(store, result.plan.id)

        assert len(visits) == 5
        assert {v.scheduled_at.date() for v in visits} == {NEXT_MONDAY}
        assert not [a for a in result.advisories if a.startswith("UNSCHEDULED")]

    def test_urgent_placed_before_routine(self, single_staff_store, generator_for):
        # Weekly cap leaves room for one 60 minute visit + travel
        policy = SchedulingPolicy(max_weekly_minutes=120, min_weekly_minutes=0)
        store = single_staff_store(requirements=[
            requirement(1, 101, VisitPriority.ROUTINE, duration=60),
            requirement(2, 102, VisitPriority.URGENT, duration=60),
        ])
        result = generator_for(store, policy).generate_weekly_plan(NEXT_MONDAY)

        assert [v.patient_id for v in visits_of(store, result.plan.id)] == [102]
        assert "UNSCHEDULED: Eero Nieminen (ROUTINE, HOME_VISIT) - no feasible slot found" in result.advisories

    def test_preferred_window_respected(self, single_staff_store, generator_for):
        store = single_staff_store(requirements=[
            requirement(1, 102, VisitPriority.HIGH, visits=2,
                        preferred_time_start=time(13, 0), preferred_time_end=time(15, 0)),
        ])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        visits = visits_of(store, result.plan.id)

        assert [v.scheduled_at.time() for v in visits] == [time(13, 0), time(13, 40)]
        for v in visits:
            assert v.end_at.time() <= time(15, 0)

    def test_visit_fields_carried_to_appointment(self, single_staff_store, generator_for):
        store = single_staff_store(requirements=[
            requirement(1, 103, duration=60, visit_type=AppointmentType.HOSPITAL_VISIT,
                        location="Meilahti Hospital", notes="Lab results"),
        ])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        (visit,) = visits_of(store, result.plan.id)
        assert visit.type == AppointmentType.HOSPITAL_VISIT
        assert visit.location == "Meilahti Hospital"
        assert visit.notes == "Lab results"
        assert visit.duration_minutes == 60

    def test_no_overlapping_appointments(self, single_staff_store, generator_for):
        store = single_staff_store(requirements=[
            requirement(1, 101, VisitPriority.URGENT, visits=4, duration=45),
            requirement(2, 102, VisitPriority.HIGH, visits=3),
            requirement(3, 103, visits=5, duration=60),
        ])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        appointments = sorted(store.appointments_for_plan(result.plan.id), key=lambda a: a.scheduled_at)
        for earlier, later in zip(appointments, appointments[1:]):
            assert earlier.end_at <= later.scheduled_at


class TestAssignment:

    def test_primary_staff_preferred(self, make_store, generator_for):
        store = make_store(
            requirements=[requirement(1, 101)],
            assignments=[CareAssignment(patient_id=101, staff_id=2)],
        )
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        assert [v.staff_id for v in visits_of(store, result.plan.id)] == [2]
        assert not [a for a in result.advisories if a.startswith("REASSIGNED")]

    def test_reassigned_when_primary_unavailable(self, make_store, generator_for):
        store = make_store(
            requirements=[requirement(1, 101)],
            assignments=[CareAssignment(patient_id=101, staff_id=2)],
            time_off=[approved(2, NEXT_MONDAY, NEXT_MONDAY + timedelta(days=6))],
        )
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        assert [v.staff_id for v in visits_of(store, result.plan.id)] == [1]
        assert "REASSIGNED: Eero Nieminen placed with least-loaded staff Aino Virtanen (not primary staff)" in result.advisories

    def test_unknown_references_skipped(self, make_store, generator_for):
        store = make_store(
            requirements=[requirement(1, 101), requirement(2, 102), requirement(5, 999)],
            assignments=[CareAssignment(patient_id=101, staff_id=99)],
        )
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)

        assert "SKIPPED: requirement 5 references unknown patient 999" in result.advisories
        assert "SKIPPED: Eero Nieminen is assigned to unknown staff member 99" in result.advisories
        assert [v.patient_id for v in visits_of(store, result.plan.id)] == [102]

    def test_request_order(self, make_store, generator_for):
        store = make_store(requirements=[
            requirement(1, 101),
            requirement(2, 102, VisitPriority.HIGH),
            requirement(3, 103, VisitPriority.HIGH, preferred_time_start=time(9, 0), preferred_time_end=time(10, 0)),
        ])
        requests = generator_for(store)._expand_requests(PlannerState(NEXT_MONDAY))
        assert [r.patient_id for r in requests] == [103, 102, 101]

    def test_every_visit_stays_with_primary(self, make_store, generator_for):
        store = make_store(
            requirements=[requirement(1, 101, visits=2)],
            assignments=[CareAssignment(patient_id=101, staff_id=2)],
        )
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)

        owners = {(v.patient_id, v.staff_id) for v in visits_of(store, result.plan.id)}
        assert owners == {(101, 2)}


class TestLeveling:

    def test_trimmed_to_hard_cap(self, make_store, generator_for):
        result = generator_for(make_store()).generate_weekly_plan(NEXT_MONDAY)
        totals = {s["staff_id"]: s["total_work_minutes"] for s in result.summary["staff"]}
        assert totals == {1: 2280, 2: 2280}
        assert not [a for a in result.advisories if a.startswith("OVERLOADED")]

    def test_latest_office_trimmed_first(self, make_store, generator_for):
        store = make_store()
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        aino = [a for a in store.appointments_for_plan(result.plan.id) if a.staff_id == 1]

        # Saturday dropped entirely, Friday cut back from 480 to 360
        assert date(2026, 10, 31) not in {a.scheduled_at.date() for a in aino}
        friday = [a for a in aino if a.scheduled_at.date() == date(2026, 10, 30)]
        assert [(a.scheduled_at.time(), a.duration_minutes) for a in friday] == [(time(8, 0), 360)]

    def test_underloaded_warning(self, single_staff_store, generator_for):
        store = single_staff_store(time_off=[approved(1, NEXT_MONDAY, date(2026, 10, 29))])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        assert ("WARNING: Aino Virtanen has 780min (13h0m) below 28h soft target. Day off: Sunday"
                in result.advisories)


class TestPersistence:

    def test_generated_fields(self, make_store, generator_for):
        store = make_store(requirements=[requirement(1, 101)])
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        appointments = store.appointments_for_plan(result.plan.id)

        assert result.appointment_count == len(appointments)
        for appt in appointments:
            assert appt.status == AppointmentStatus.SCHEDULED
            assert appt.is_generated and not appt.is_locked
            assert appt.plan_id == result.plan.id

    def test_office_work_shape(self, make_store, generator_for):
        store = make_store()
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        for appt in store.appointments_for_plan(result.plan.id):
            assert appt.type == AppointmentType.OFFICE_WORK
            assert appt.patient_id == appt.staff_id
            assert (appt.notes, appt.location) == ("Office work", "Office")
            assert appt.duration_minutes >= 120

    def test_short_office_not_persisted(self, make_store, generator_for):
        # Mikko's Sunday is trimmed down to a single hour
        store = make_store()
        result = generator_for(store).generate_weekly_plan(NEXT_MONDAY)
        mikko_dates = {a.scheduled_at.date() for a in store.appointments_for_plan(result.plan.id) if a.staff_id == 2}
        assert date(2026, 11, 1) not in mikko_dates
        assert date(2026, 10, 31) in mikko_dates

    def test_summary_shape(self, make_store, generator_for):
        result = generator_for(make_store()).generate_weekly_plan(NEXT_MONDAY)
        assert result.summary["week_start"] == "2026-10-26"
        for staff in result.summary["staff"]:
            assert len(staff["daily_breakdown"]) == 7
            assert sum(d["is_day_off"] for d in staff["daily_breakdown"]) == 1


class TestRegeneration:

    def test_draft_replaced(self, make_store, generator_for):
        store = make_store(requirements=[requirement(1, 101, visits=2), requirement(2, 102, VisitPriority.HIGH)])
        generator = generator_for(store)
        first = generator.generate_weekly_plan(NEXT_MONDAY)
        first_slots = slots(store, first.plan.id)
        second = generator.generate_weekly_plan(NEXT_MONDAY)

        assert store.get_plan(first.plan.id) is None
        assert store.appointments_for_plan(first.plan.id) == []
        assert store.find_plan(NEXT_MONDAY, PlanStatus.DRAFT).id == second.plan.id
        assert slots(store, second.plan.id) == first_slots
        assert len(store.appointments) == second.appointment_count

    def test_failed_run_keeps_previous_draft(self, staff, patients, clock):
        class FailingStore(InMemoryStore):
            fail = False

            def create_appointment(self, appointment):
                if self.fail and appointment.plan_id is not None:
                    raise RuntimeError("disk full")
                return super().create_appointment(appointment)

        store = FailingStore(staff=staff, patients=patients, availability=weekday_windows(1))
        generator = WeeklyPlanGenerator(store, clock=clock)
        first = generator.generate_weekly_plan(NEXT_MONDAY)

        store.fail = True
        with pytest.raises(RuntimeError):
            generator.generate_weekly_plan(NEXT_MONDAY)

        assert store.find_plan(NEXT_MONDAY, PlanStatus.DRAFT).id == first.plan.id
        assert len(store.appointments_for_plan(first.plan.id)) == first.appointment_count


class TestConfirmPlan:

    def test_confirm_locks_appointments(self, make_store, generator_for):
        store = make_store(requirements=[requirement(1, 101)])
        generator = generator_for(store)
        result = generator.generate_weekly_plan(NEXT_MONDAY)

        plan = generator.confirm_plan(result.plan.id)
        assert plan.status == PlanStatus.CONFIRMED
        assert plan.confirmed_at == FIXED_NOW
        for appt in store.appointments_for_plan(plan.id):
            assert appt.status == AppointmentStatus.CONFIRMED
            assert appt.is_locked

    def test_confirm_twice_fails(self, make_store, generator_for):
        store = make_store()
        generator = generator_for(store)
        result = generator.generate_weekly_plan(NEXT_MONDAY)
        generator.confirm_plan(result.plan.id)

        with pytest.raises(SchedulingValidationError, match="current status: CONFIRMED"):
            generator.confirm_plan(result.plan.id)
        with pytest.raises(SchedulingValidationError, match="confirmed plan already exists"):
            generator.generate_weekly_plan(NEXT_MONDAY)

    def test_unknown_plan(self, make_store, generator_for):
        with pytest.raises(SchedulingValidationError, match="Plan not found: 999"):
            generator_for(make_store()).confirm_plan(999)
