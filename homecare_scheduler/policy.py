"""
Scheduling Policy (configuration).

Every tunable limit used by the generator, resolver and suggestion engine
lives on one pydantic model so a deployment can override it from JSON.
"""

import json
import logging
from datetime import date, time
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


class SchedulingPolicy(BaseModel):
    """Capacity and calendar rules for weekly planning."""

    # --- Working Hours ---
    weekday_start: time = Field(default=time(8, 0))
    weekday_end: time = Field(default=time(16, 0))
    weekend_start: time = Field(default=time(10, 0))
    weekend_end: time = Field(default=time(15, 0))

    # --- Capacity (minutes) ---
    max_daily_minutes: int = Field(default=480, ge=60, description="Weekday cap on VISIT+TRAVEL minutes")
    min_weekly_minutes: int = Field(default=1680, ge=0, description="Soft weekly target (28h)")
    max_weekly_minutes: int = Field(default=2280, ge=60, description="Hard weekly cap (38h)")
    max_daily_visits: int = Field(default=3, ge=1, description="Per-day visit cap, URGENT bypasses")
    max_weekend_staff: int = Field(default=2, ge=0, description="Staff scheduled per weekend day")

    # --- Block Shaping ---
    travel_buffer_minutes: int = Field(default=10, ge=0)
    office_split_min_minutes: int = Field(default=15, ge=1, description="Shorter office fragments are dropped")
    office_persist_min_minutes: int = Field(default=120, ge=0, description="Shorter office blocks are not persisted")

    # --- Day-off Rotation ---
    rotation_epoch: date = Field(default=date(2026, 1, 5), description="Reference Monday for week numbering")

    # --- Alternative Search ---
    alternative_horizon_days: int = Field(default=7, ge=0)
    alternative_step_minutes: int = Field(default=30, ge=5)
    max_alternatives: int = Field(default=5, ge=1)

    # --- Gap-Fill Suggestions ---
    suggestion_step_minutes: int = Field(default=30, ge=5)
    default_visit_minutes: int = Field(default=30, ge=5)

    @model_validator(mode='after')
    def validate_policy(self):
        if self.weekday_end <= self.weekday_start:
            raise ValueError("weekday_end must be after weekday_start")
        if self.weekend_end <= self.weekend_start:
            raise ValueError("weekend_end must be after weekend_start")
        if self.min_weekly_minutes > self.max_weekly_minutes:
            raise ValueError("min_weekly_minutes cannot exceed max_weekly_minutes")
        if self.rotation_epoch.weekday() != 0:
            raise ValueError("rotation_epoch must be a Monday")
        return self

    # --- Derived helpers ---

    def hours_for(self, day: date) -> tuple:
        """(start, end) working hours for a calendar date."""
        if day.weekday() >= 5:
            return self.weekend_start, self.weekend_end
        return self.weekday_start, self.weekday_end

    @property
    def weekend_daily_minutes(self) -> int:
        return _minutes(self.weekend_end) - _minutes(self.weekend_start)

    def daily_cap_for(self, day: date) -> int:
        """Weekend days are capped by their shorter opening hours."""
        if day.weekday() >= 5:
            return self.weekend_daily_minutes
        return self.max_daily_minutes


def load_policy(path: Optional[Union[str, Path]] = None) -> SchedulingPolicy:
    """
    Load a policy from a JSON file. Missing keys keep their defaults.
    A missing path (or None) returns the default policy.
    """
    if path is None:
        return SchedulingPolicy()

    path = Path(path)
    if not path.exists():
        logger.warning(f"Policy file {path} not found, using defaults")
        return SchedulingPolicy()

    with open(path, 'r') as f:
        data = json.load(f)
    policy = SchedulingPolicy(**data)
    logger.info(f"Loaded scheduling policy from {path}")
    return policy
