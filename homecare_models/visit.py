"""
Demand-side data models for the Home-Care Planner.

A VisitRequirement says how often a patient must be seen and for how long.
A PatientPreference carries the soft rules checked when a slot is booked.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator, ConfigDict
from datetime import time


class VisitPriority(str, Enum):
    """Clinical urgency of a requirement. URGENT is placed first."""
    URGENT = "URGENT"
    HIGH = "HIGH"
    ROUTINE = "ROUTINE"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    VisitPriority.URGENT: 0,
    VisitPriority.HIGH: 1,
    VisitPriority.ROUTINE: 2,
}


class AppointmentType(str, Enum):
    """Kind of appointment. OFFICE_WORK is only produced by plan generation."""
    HOME_VISIT = "HOME_VISIT"
    HOSPITAL_VISIT = "HOSPITAL_VISIT"
    TELECONSULTATION = "TELECONSULTATION"
    OFFICE_WORK = "OFFICE_WORK"


class RecurringFrequency(str, Enum):
    """Cadence of a recurring series (or one inferred from history)."""
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


def _check_window(start: Optional[time], end: Optional[time]) -> None:
    if (start and not end) or (end and not start):
        raise ValueError("Both preferred_time_start and preferred_time_end must be provided together")
    if start and end and end <= start:
        raise ValueError("Preferred window end time must be after start time")


class VisitRequirement(BaseModel):
    """
    Standing order for home-care visits for one patient.
    Expands into `visits_per_week` independent visit requests per planning run.
    """

    id: int = Field(description="Unique requirement identifier")
    patient_id: int = Field(description="Patient to be visited")
    priority: VisitPriority = Field(default=VisitPriority.ROUTINE)
    visits_per_week: int = Field(default=1, ge=1, le=21, description="Visits required each week")
    duration_minutes: int = Field(default=30, ge=5, le=480, description="Length of one visit")
    visit_type: AppointmentType = Field(default=AppointmentType.HOME_VISIT)

    # --- Time Window ---
    preferred_time_start: Optional[time] = Field(default=None, description="Earliest allowed start")
    preferred_time_end: Optional[time] = Field(default=None, description="Latest allowed end")

    location: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True)

    @model_validator(mode='after')
    def validate_time_window_logic(self):
        """Ensure start and end times form a valid window."""
        if self.visit_type == AppointmentType.OFFICE_WORK:
            raise ValueError("Visit requirements cannot request OFFICE_WORK")
        _check_window(self.preferred_time_start, self.preferred_time_end)
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": 12,
            "patient_id": 101,
            "priority": "HIGH",
            "visits_per_week": 2,
            "duration_minutes": 45,
            "visit_type": "HOME_VISIT",
            "preferred_time_start": "09:00:00",
            "preferred_time_end": "12:00:00",
            "location": "Mannerheimintie 5 B 12",
            "notes": "Wound dressing change"
        }
    })


class PatientPreference(BaseModel):
    """Soft booking rules for a patient. Each violated rule is its own conflict."""
    patient_id: int
    preferred_day_of_week: Optional[int] = Field(default=None, ge=0, le=6, description="0=Monday, 6=Sunday")
    preferred_time_start: Optional[time] = Field(default=None)
    preferred_time_end: Optional[time] = Field(default=None)
    preferred_visit_type: Optional[AppointmentType] = Field(default=None)
    avoid_mornings: bool = Field(default=False, description="No starts before 12:00")
    avoid_evenings: bool = Field(default=False, description="No starts at or after 17:00")
    preferred_location: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)

    @model_validator(mode='after')
    def validate_window(self):
        _check_window(self.preferred_time_start, self.preferred_time_end)
        return self
