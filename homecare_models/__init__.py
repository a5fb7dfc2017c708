"""
Data models package for the Home-Care Planner.

This package exports the three pillars of the data architecture:
1. Supply (StaffMember, AvailabilityWindow, TimeOffPeriod, CareAssignment)
2. Demand (VisitRequirement, PatientPreference)
3. Output (Appointment, SchedulePlan, check and suggestion results)
"""

from .staff import (
    StaffRole,
    StaffMember,
    Patient,
    AvailabilityWindow,
    TimeOffPeriod,
    TimeOffStatus,
    CareAssignment
)

from .visit import (
    VisitPriority,
    AppointmentType,
    RecurringFrequency,
    VisitRequirement,
    PatientPreference
)

from .schedule import (
    AppointmentStatus,
    Appointment,
    PlanStatus,
    RescheduleStatus,
    RescheduleRequest,
    BookingValidationResult,
    SchedulePlan,
    AlternativeTimeSuggestion,
    AvailabilityCheckResult,
    SuggestedAppointment,
    UnscheduledPatient,
    SuggestionResult,
    PlanGenerationResult
)

__all__ = [
    # --- Supply Models ---
    "StaffRole",
    "StaffMember",
    "Patient",
    "AvailabilityWindow",
    "TimeOffPeriod",
    "TimeOffStatus",
    "CareAssignment",

    # --- Demand Models ---
    "VisitPriority",
    "AppointmentType",
    "RecurringFrequency",
    "VisitRequirement",
    "PatientPreference",

    # --- Output Models ---
    "AppointmentStatus",
    "Appointment",
    "PlanStatus",
    "RescheduleStatus",
    "RescheduleRequest",
    "BookingValidationResult",
    "SchedulePlan",
    "AlternativeTimeSuggestion",
    "AvailabilityCheckResult",
    "SuggestedAppointment",
    "UnscheduledPatient",
    "SuggestionResult",
    "PlanGenerationResult",
]
