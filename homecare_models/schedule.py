"""
Schedule data models for the Home-Care Planner.

This module defines the 'Output' side of the planner:
1. Appointments and the weekly SchedulePlan that owns generated ones.
2. Ephemeral answers: availability checks, alternatives and gap-fill suggestions.
"""

from typing import Any, Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date, datetime, timedelta

from .visit import AppointmentType, RecurringFrequency


class AppointmentStatus(str, Enum):
    """Status of a booked appointment."""
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"


class PlanStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"


class Appointment(BaseModel):
    """
    A booked block of a staff member's time.
    Office work is stored with the staff member as both patient and staff.
    """

    # --- Core Scheduling Data ---
    id: Optional[int] = Field(default=None, description="Assigned by the store on create")
    patient_id: int = Field(description="Patient visited (staff id for OFFICE_WORK)")
    staff_id: int = Field(description="Assigned staff member")
    scheduled_at: datetime = Field(description="Start of the appointment")
    duration_minutes: int = Field(default=30, ge=1, le=720)
    type: AppointmentType
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED)
    notes: Optional[str] = Field(default=None)
    location: Optional[str] = Field(default=None)

    # --- Plan Ownership ---
    plan_id: Optional[int] = Field(default=None, description="Owning plan for generated appointments")
    is_generated: bool = Field(default=False)
    is_locked: bool = Field(default=False, description="Set when the owning plan is confirmed")

    # --- Recurring Series ---
    recurring_group_id: Optional[str] = Field(default=None, description="Tag shared by a recurring series")
    recurring_frequency: Optional[RecurringFrequency] = Field(default=None)
    recurring_until: Optional[date] = Field(default=None, description="Last date of the series, None if open-ended")

    @property
    def end_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        """Cancelled appointments no longer hold their slot."""
        return self.status != AppointmentStatus.CANCELLED

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap: StartA < EndB and StartB < EndA."""
        return self.scheduled_at < end and start < self.end_at

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "patient_id": 101,
            "staff_id": 3,
            "scheduled_at": "2026-11-03T09:00:00",
            "duration_minutes": 45,
            "type": "HOME_VISIT",
            "status": "SCHEDULED",
            "location": "Mannerheimintie 5 B 12",
            "plan_id": 7,
            "is_generated": True,
            "is_locked": False
        }
    })


class SchedulePlan(BaseModel):
    """A generated week. At most one CONFIRMED plan exists per week."""
    id: Optional[int] = Field(default=None)
    week_start_date: date = Field(description="Always a Monday")
    status: PlanStatus = Field(default=PlanStatus.DRAFT)
    created_at: datetime = Field(default_factory=datetime.now)
    confirmed_at: Optional[datetime] = Field(default=None)

    @model_validator(mode='after')
    def validate_monday(self):
        if self.week_start_date.weekday() != 0:
            raise ValueError("week_start_date must be a Monday")
        return self


class RescheduleStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ALTERNATIVE_OFFERED = "ALTERNATIVE_OFFERED"


class RescheduleRequest(BaseModel):
    """
    A request to move an existing appointment.
    Staff review it once; an approval or an offered alternative moves the appointment.
    """
    id: Optional[int] = Field(default=None)
    appointment_id: int
    requested_by: int = Field(description="Patient or staff id of the requester")
    reason: Optional[str] = Field(default=None, max_length=500)
    preferred_times: List[datetime] = Field(default_factory=list, max_length=3,
                                            description="Up to three times the requester could do")
    status: RescheduleStatus = Field(default=RescheduleStatus.PENDING)
    staff_response: Optional[str] = Field(default=None, max_length=500)
    new_scheduled_at: Optional[datetime] = Field(default=None, description="Set on approval or alternative offer")
    requested_at: datetime = Field(default_factory=datetime.now)
    reviewed_at: Optional[datetime] = Field(default=None)

    @property
    def is_pending(self) -> bool:
        return self.status == RescheduleStatus.PENDING

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "appointment_id": 42,
            "requested_by": 101,
            "reason": "Family visit on Tuesday",
            "preferred_times": ["2026-11-04T10:00:00", "2026-11-05T13:00:00"],
            "status": "PENDING"
        }
    })


class BookingValidationResult(BaseModel):
    """Outcome of a booking-time check. Every failed rule contributes one error."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class AlternativeTimeSuggestion(BaseModel):
    """A bookable alternative slot. Never persisted."""
    scheduled_at: datetime
    reason: str
    is_preferred: bool = False
    confidence: float = Field(ge=0.0, le=1.0)


class AvailabilityCheckResult(BaseModel):
    is_available: bool
    conflicts: List[str] = Field(default_factory=list)
    alternatives: List[AlternativeTimeSuggestion] = Field(default_factory=list)


class SuggestedAppointment(BaseModel):
    """A proposed (not booked) gap-fill appointment."""
    patient_id: int
    patient_name: str
    scheduled_at: datetime
    duration_minutes: int
    type: AppointmentType
    notes: Optional[str] = None
    location: Optional[str] = None
    reason: str = Field(description="Why this was suggested, e.g. 'Weekly home visit'")
    frequency: RecurringFrequency
    is_from_recurring: bool = False
    recurring_group_id: Optional[str] = None


class UnscheduledPatient(BaseModel):
    """A due patient for whom no free slot was found."""
    patient_id: int
    patient_name: str
    reason: str
    last_visit_date: Optional[datetime] = None
    recommended_frequency: Optional[RecurringFrequency] = None


class SuggestionResult(BaseModel):
    staff_id: int
    period_start: date
    period_end: date
    suggestions: List[SuggestedAppointment] = Field(default_factory=list)
    already_scheduled: List[Appointment] = Field(default_factory=list)
    unscheduled_patients: List[UnscheduledPatient] = Field(default_factory=list)


class PlanGenerationResult(BaseModel):
    """The persisted plan plus every advisory raised while building it."""
    plan: SchedulePlan
    advisories: List[str] = Field(default_factory=list)
    appointment_count: int = 0
    summary: Dict[str, Any] = Field(default_factory=dict)
