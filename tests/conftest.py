"""
Shared fixtures: a fixed clock, a small roster and store builders.
"""

import sys
from datetime import date, datetime, time
from pathlib import Path

import pytest

# Add project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from homecare_models import (
    AvailabilityWindow,
    CareAssignment,
    Patient,
    StaffMember,
    StaffRole,
)
from homecare_scheduler import InMemoryStore, SchedulingPolicy

# Monday; "today" for every test
FIXED_NOW = datetime(2026, 10, 19, 9, 0)
NEXT_MONDAY = date(2026, 10, 26)
SAMPLE_DATASET = PROJECT_ROOT / "data" / "sample_dataset.json"


def weekday_windows(staff_id, start=time(8, 0), end=time(16, 0), days=range(5)):
    return [
        AvailabilityWindow(staff_id=staff_id, day_of_week=d, start_time=start, end_time=end)
        for d in days
    ]


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def policy():
    return SchedulingPolicy()


@pytest.fixture
def staff():
    return [
        StaffMember(id=1, name="Aino Virtanen", role=StaffRole.DOCTOR),
        StaffMember(id=2, name="Mikko Laine", role=StaffRole.NURSE),
    ]


@pytest.fixture
def patients():
    return [
        Patient(id=101, name="Eero Nieminen"),
        Patient(id=102, name="Liisa Mäkelä"),
        Patient(id=103, name="Pekka Heikkinen"),
    ]


@pytest.fixture
def make_store(staff, patients):
    """Build an InMemoryStore; keyword overrides replace the defaults."""
    def _make(**overrides):
        kwargs = dict(
            staff=staff,
            patients=patients,
            availability=weekday_windows(1) + weekday_windows(2),
        )
        kwargs.update(overrides)
        return InMemoryStore(**kwargs)
    return _make


@pytest.fixture
def single_staff_store(make_store, staff):
    """Only Aino (id 1), all patients assigned to her as primary."""
    def _make(**overrides):
        kwargs = dict(
            staff=[staff[0]],
            availability=weekday_windows(1),
            assignments=[CareAssignment(patient_id=pid, staff_id=1) for pid in (101, 102, 103)],
        )
        kwargs.update(overrides)
        return make_store(**kwargs)
    return _make
