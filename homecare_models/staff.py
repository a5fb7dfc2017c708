"""
Roster and supply-side data models for the Home-Care Planner.

This module defines who can be scheduled and when:
1. Staff members (doctors, nurses) and patients
2. Weekly availability windows (split shifts allowed)
3. Time off (only approved periods block scheduling)
4. Care assignments (which staff member looks after which patient)
"""

from enum import Enum
from typing import Optional
from datetime import date, time
from pydantic import BaseModel, Field, model_validator, ConfigDict


class StaffRole(str, Enum):
    """Roles that can take visits and office work."""
    DOCTOR = "DOCTOR"
    NURSE = "NURSE"


class TimeOffStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class StaffMember(BaseModel):
    """A schedulable professional. Immutable for scheduling purposes."""
    id: int = Field(description="Unique staff identifier")
    name: str = Field(min_length=1, description="Display name")
    role: StaffRole = Field(description="DOCTOR or NURSE")

    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {"id": 3, "name": "Aino Virtanen", "role": "NURSE"}
    })


class Patient(BaseModel):
    """A patient receiving home-care visits."""
    id: int = Field(description="Unique patient identifier")
    name: str = Field(min_length=1, description="Display name")

    model_config = ConfigDict(frozen=True)


class AvailabilityWindow(BaseModel):
    """A recurring weekly window when a staff member works."""
    staff_id: int
    day_of_week: int = Field(ge=0, le=6, description="0=Monday, 6=Sunday")
    start_time: time = Field(description="Window start")
    end_time: time = Field(description="Window end")
    is_available: bool = Field(default=True, description="False marks a blocked window")

    @model_validator(mode='after')
    def validate_times(self):
        if self.start_time >= self.end_time:
            raise ValueError("End time must be strictly after start time")
        return self

    def contains(self, start: time, duration_minutes: int) -> bool:
        """True if [start, start+duration) lies fully inside this window."""
        start_min = start.hour * 60 + start.minute
        end_minutes = start_min + duration_minutes
        window_start = self.start_time.hour * 60 + self.start_time.minute
        window_end = self.end_time.hour * 60 + self.end_time.minute
        return start_min >= window_start and end_minutes <= window_end


class TimeOffPeriod(BaseModel):
    """Leave request for a staff member. Dates are inclusive."""
    staff_id: int
    start_date: date
    end_date: date
    status: TimeOffStatus = Field(default=TimeOffStatus.PENDING)
    reason: Optional[str] = Field(default=None)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("Time off end date cannot be before start date")
        return self

    @property
    def approved(self) -> bool:
        return self.status == TimeOffStatus.APPROVED

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class CareAssignment(BaseModel):
    """Links a patient to a staff member; the primary one is tried first."""
    patient_id: int
    staff_id: int
    is_primary: bool = Field(default=True)
