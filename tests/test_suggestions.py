"""
Tests for gap-fill suggestions (cadence inference, due dates, slot search)
"""

from datetime import date, datetime, timedelta

import pytest

from homecare_models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    CareAssignment,
    PatientPreference,
    RecurringFrequency,
    TimeOffPeriod,
    TimeOffStatus,
)
from homecare_scheduler import SchedulingValidationError, SuggestionEngine
from homecare_scheduler.suggestions import infer_frequency

MONDAY = date(2026, 10, 19)
SUNDAY = date(2026, 10, 25)


def past_visit(patient_id, at, duration=30, type=AppointmentType.HOME_VISIT,
               status=AppointmentStatus.COMPLETED, **extra):
    return Appointment(
        patient_id=patient_id, staff_id=1, scheduled_at=at, duration_minutes=duration,
        type=type, status=status, **extra
    )


def for_patient(result, patient_id):
    return [s for s in result.suggestions if s.patient_id == patient_id]


class TestInferFrequency:

    @pytest.mark.parametrize("days_apart, expected", [
        (7, RecurringFrequency.WEEKLY),
        (10, RecurringFrequency.WEEKLY),
        (14, RecurringFrequency.BIWEEKLY),
        (21, RecurringFrequency.BIWEEKLY),
        (30, RecurringFrequency.MONTHLY),
    ])
    def test_mean_gap_buckets(self, days_apart, expected):
        first = datetime(2026, 8, 3, 9, 0)
        history = [past_visit(101, first), past_visit(101, first + timedelta(days=days_apart))]
        assert infer_frequency(history) == expected

    def test_single_visit_defaults_to_weekly(self):
        assert infer_frequency([past_visit(101, datetime(2026, 10, 1, 9, 0))]) == RecurringFrequency.WEEKLY


class TestSuggestAppointments:

    def test_weekly_history_carried_over(self, single_staff_store):
        store = single_staff_store(appointments=[
            past_visit(101, datetime(2026, 10, 6, 10, 0), 45, location="Mannerheimintie 5"),
            past_visit(101, datetime(2026, 10, 13, 10, 0), 45, location="Mannerheimintie 5"),
        ])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)

        (suggestion,) = for_patient(result, 101)
        assert suggestion.scheduled_at == datetime(2026, 10, 19, 10, 0)
        assert suggestion.duration_minutes == 45
        assert suggestion.location == "Mannerheimintie 5"
        assert suggestion.frequency == RecurringFrequency.WEEKLY
        assert suggestion.reason == "Weekly home visit"
        assert not suggestion.is_from_recurring
        assert suggestion.patient_name == "Eero Nieminen"

    def test_no_history_defaults(self, single_staff_store):
        result = SuggestionEngine(single_staff_store()).suggest_appointments(1, MONDAY, SUNDAY)

        assert [(s.patient_id, s.scheduled_at) for s in result.suggestions] == [
            (101, datetime(2026, 10, 19, 8, 0)),
            (102, datetime(2026, 10, 19, 8, 30)),
            (103, datetime(2026, 10, 19, 9, 0)),
        ]
        for s in result.suggestions:
            assert s.duration_minutes == 30
            assert s.type == AppointmentType.HOME_VISIT
        assert result.unscheduled_patients == []

    def test_repeats_at_cadence_within_range(self, single_staff_store):
        store = single_staff_store(assignments=[CareAssignment(patient_id=101, staff_id=1)])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, date(2026, 11, 1))
        assert [s.scheduled_at for s in result.suggestions] == [
            datetime(2026, 10, 19, 8, 0),
            datetime(2026, 10, 26, 8, 0),
        ]

    def test_open_recurring_series_wins(self, single_staff_store):
        store = single_staff_store(appointments=[
            past_visit(103, datetime(2026, 10, 6, 13, 0), 60, type=AppointmentType.HOSPITAL_VISIT,
                       recurring_group_id="rg-103", recurring_frequency=RecurringFrequency.BIWEEKLY),
        ])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, date(2026, 11, 1))

        (suggestion,) = for_patient(result, 103)
        assert suggestion.scheduled_at == datetime(2026, 10, 19, 13, 0)
        assert suggestion.frequency == RecurringFrequency.BIWEEKLY
        assert suggestion.is_from_recurring
        assert suggestion.recurring_group_id == "rg-103"
        assert suggestion.reason == "Biweekly hospital visit (recurring series)"

    def test_closed_series_ignored(self, single_staff_store):
        store = single_staff_store(appointments=[
            past_visit(103, datetime(2026, 10, 6, 13, 0), recurring_group_id="rg-103",
                       recurring_frequency=RecurringFrequency.MONTHLY, recurring_until=date(2026, 10, 10)),
        ])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)

        (suggestion,) = for_patient(result, 103)
        assert suggestion.frequency == RecurringFrequency.WEEKLY
        assert not suggestion.is_from_recurring

    def test_not_yet_due_is_silent(self, single_staff_store):
        store = single_staff_store(appointments=[
            past_visit(101, datetime(2026, 8, 18, 9, 0)),
            past_visit(101, datetime(2026, 9, 15, 9, 0)),
            past_visit(101, datetime(2026, 10, 13, 9, 0)),
        ])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)
        assert for_patient(result, 101) == []
        assert 101 not in [u.patient_id for u in result.unscheduled_patients]

    def test_due_date_delays_first_suggestion(self, single_staff_store):
        store = single_staff_store(appointments=[past_visit(101, datetime(2026, 10, 16, 9, 0))])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)
        (suggestion,) = for_patient(result, 101)
        assert suggestion.scheduled_at == datetime(2026, 10, 21, 9, 0)

    def test_most_common_visit_shape(self, single_staff_store):
        store = single_staff_store(appointments=[
            past_visit(101, datetime(2026, 9, 22, 9, 0), 40, location="Home"),
            past_visit(101, datetime(2026, 9, 29, 9, 0), 40, location="Home"),
            past_visit(101, datetime(2026, 10, 6, 9, 0), 20, type=AppointmentType.TELECONSULTATION),
        ])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)
        (suggestion,) = for_patient(result, 101)
        assert (suggestion.type, suggestion.duration_minutes, suggestion.location) == (
            AppointmentType.HOME_VISIT, 40, "Home")

    def test_already_booked_patient_skipped(self, single_staff_store):
        booking = Appointment(patient_id=101, staff_id=1, scheduled_at=datetime(2026, 10, 21, 10, 0),
                              duration_minutes=30, type=AppointmentType.HOME_VISIT)
        cancelled = booking.model_copy(update={"patient_id": 102, "status": AppointmentStatus.CANCELLED})
        store = single_staff_store(appointments=[booking, cancelled])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)

        assert for_patient(result, 101) == []
        assert len(for_patient(result, 102)) == 1
        assert [a.patient_id for a in result.already_scheduled] == [101]

    def test_existing_bookings_avoided(self, single_staff_store):
        store = single_staff_store(appointments=[
            past_visit(101, datetime(2026, 10, 12, 10, 0)),
            Appointment(patient_id=102, staff_id=1, scheduled_at=datetime(2026, 10, 19, 10, 0),
                        duration_minutes=60, type=AppointmentType.HOME_VISIT),
        ])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)
        (suggestion,) = for_patient(result, 101)
        assert suggestion.scheduled_at == datetime(2026, 10, 19, 8, 0)

    def test_time_off_skipped(self, single_staff_store):
        store = single_staff_store(time_off=[
            TimeOffPeriod(staff_id=1, start_date=MONDAY, end_date=date(2026, 10, 20), status=TimeOffStatus.APPROVED),
        ])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)
        assert all(s.scheduled_at.date() == date(2026, 10, 21) for s in result.suggestions)

    def test_no_availability_reports_unscheduled(self, single_staff_store):
        store = single_staff_store(availability=[])
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)

        assert result.suggestions == []
        assert [u.patient_id for u in result.unscheduled_patients] == [101, 102, 103]
        unscheduled = result.unscheduled_patients[0]
        assert unscheduled.reason == "No free slot between 2026-10-19 and 2026-10-25"
        assert unscheduled.recommended_frequency == RecurringFrequency.WEEKLY
        assert unscheduled.last_visit_date is None

    def test_last_visit_is_latest_completed(self, single_staff_store):
        store = single_staff_store(
            availability=[],
            appointments=[
                past_visit(101, datetime(2026, 10, 6, 10, 0)),
                past_visit(101, datetime(2026, 10, 13, 10, 0), status=AppointmentStatus.CONFIRMED),
            ],
        )
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)

        (unscheduled,) = [u for u in result.unscheduled_patients if u.patient_id == 101]
        assert unscheduled.last_visit_date == datetime(2026, 10, 6, 10, 0)

    def test_first_visit_follows_stated_preference(self, single_staff_store):
        store = single_staff_store(
            assignments=[CareAssignment(patient_id=102, staff_id=1)],
            preferences=[PatientPreference(patient_id=102, preferred_visit_type=AppointmentType.TELECONSULTATION,
                                           preferred_location="Video call")],
        )
        result = SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)

        (suggestion,) = result.suggestions
        assert (suggestion.type, suggestion.location) == (AppointmentType.TELECONSULTATION, "Video call")
        assert suggestion.reason == "Weekly teleconsultation"

    def test_unknown_staff(self, single_staff_store):
        with pytest.raises(SchedulingValidationError, match="Staff not found: 99"):
            SuggestionEngine(single_staff_store()).suggest_appointments(99, MONDAY, SUNDAY)

    def test_inverted_range(self, single_staff_store):
        with pytest.raises(SchedulingValidationError):
            SuggestionEngine(single_staff_store()).suggest_appointments(1, SUNDAY, MONDAY)

    def test_nothing_is_booked(self, single_staff_store):
        store = single_staff_store()
        SuggestionEngine(store).suggest_appointments(1, MONDAY, SUNDAY)
        assert store.appointments == {}
