"""
Time-Block Model.

A staff member's working day is an ordered list of typed, non-overlapping
intervals. The day starts as one OFFICE block (the elastic capacity pool);
visits are carved out of it, and workload leveling later trims or refills it.

DaySchedule is the only code that mutates a day's blocks, so the sort and
non-overlap invariant is enforced in one place.
"""

from dataclasses import dataclass, field
from datetime import date as date_type, time as time_type
from enum import Enum
from typing import Dict, List, Optional, Tuple

from homecare_models import AppointmentType, StaffRole, VisitPriority


def to_minutes(t: time_type) -> int:
    return t.hour * 60 + t.minute


def from_minutes(m: int) -> time_type:
    return time_type(m // 60, m % 60)


class BlockType(str, Enum):
    OFFICE = "OFFICE"
    VISIT = "VISIT"
    TRAVEL_BUFFER = "TRAVEL_BUFFER"


@dataclass(frozen=True)
class VisitPlacement:
    """Payload attached to a VISIT block."""
    patient_id: int
    patient_name: str
    visit_type: AppointmentType
    duration_minutes: int
    priority: VisitPriority
    requirement_id: int
    notes: Optional[str] = None
    location: Optional[str] = None


@dataclass(frozen=True)
class TimeBlock:
    start: time_type
    end: time_type
    type: BlockType
    visit: Optional[VisitPlacement] = None

    @property
    def duration_minutes(self) -> int:
        return to_minutes(self.end) - to_minutes(self.start)

    def overlaps(self, other: "TimeBlock") -> bool:
        return self.start < other.end and other.start < self.end


class DaySchedule:
    """Owned, sorted collection of blocks for one (staff, date)."""

    def __init__(self, date: date_type, day_start: time_type, day_end: time_type):
        self.date = date
        self.day_start = day_start
        self.day_end = day_end
        self._blocks: List[TimeBlock] = []

    def __iter__(self):
        return iter(self._blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    @property
    def blocks(self) -> List[TimeBlock]:
        """A copy; callers cannot break the invariant by mutating it."""
        return list(self._blocks)

    @property
    def is_weekend(self) -> bool:
        return self.date.weekday() >= 5

    # --- Mutation ---

    def add(self, block: TimeBlock) -> None:
        """Insert keeping start order. Overlapping inserts are rejected."""
        if block.end <= block.start:
            raise ValueError(f"Empty or inverted block {block.start}-{block.end}")
        for existing in self._blocks:
            if existing.overlaps(block):
                raise ValueError(
                    f"{block.type.value} {block.start}-{block.end} overlaps "
                    f"{existing.type.value} {existing.start}-{existing.end} on {self.date}"
                )
        self._blocks.append(block)
        self._blocks.sort(key=lambda b: b.start)

    def _remove(self, block: TimeBlock) -> None:
        self._blocks.remove(block)

    def insert_visit(
        self,
        start: time_type,
        placement: VisitPlacement,
        buffer_minutes: int,
        min_fragment: int
    ) -> TimeBlock:
        """
        Split the OFFICE block containing [start, start+duration) into:
        office before, VISIT, TRAVEL_BUFFER (clipped to day end), office after.
        Office fragments shorter than `min_fragment` are dropped.
        """
        start_min = to_minutes(start)
        visit_end = start_min + placement.duration_minutes
        travel_end = min(visit_end + buffer_minutes, to_minutes(self.day_end))

        office = next(
            (b for b in self._blocks
             if b.type == BlockType.OFFICE
             and to_minutes(b.start) <= start_min
             and to_minutes(b.end) >= visit_end),
            None
        )
        if office is None:
            raise ValueError(f"No office block on {self.date} contains a visit at {start}")

        self._remove(office)
        office_start = to_minutes(office.start)
        office_end = to_minutes(office.end)

        # 1. Office before the visit
        if start_min - office_start >= min_fragment:
            self.add(TimeBlock(office.start, start, BlockType.OFFICE))

        # 2. The visit itself
        visit_block = TimeBlock(start, from_minutes(visit_end), BlockType.VISIT, placement)
        self.add(visit_block)

        # 3. Travel buffer
        after_start = visit_end
        if travel_end > visit_end:
            self.add(TimeBlock(from_minutes(visit_end), from_minutes(travel_end), BlockType.TRAVEL_BUFFER))
            after_start = travel_end

        # 4. Office after the visit + buffer
        if office_end - after_start >= min_fragment:
            self.add(TimeBlock(from_minutes(after_start), office.end, BlockType.OFFICE))

        return visit_block

    def trim_office(self, minutes: int, min_fragment: int) -> int:
        """
        Truncate OFFICE blocks, latest first, by up to `minutes`.
        VISIT blocks are never touched. Returns the minutes actually removed.
        """
        removed = 0
        offices = sorted(self.office_blocks(), key=lambda b: b.start, reverse=True)
        for office in offices:
            if removed >= minutes:
                break
            trim = min(minutes - removed, office.duration_minutes)
            remaining = office.duration_minutes - trim
            self._remove(office)
            if remaining >= min_fragment:
                self.add(TimeBlock(office.start, from_minutes(to_minutes(office.start) + remaining), BlockType.OFFICE))
                removed += trim
            else:
                removed += office.duration_minutes
        return removed

    def fill_gaps(self, limit: int, min_fragment: int) -> int:
        """Add OFFICE filler into uncovered gaps, earliest first. Returns minutes added."""
        filled = 0
        for gap_start, gap_end in self.find_gaps():
            if filled >= limit:
                break
            gap_minutes = to_minutes(gap_end) - to_minutes(gap_start)
            if gap_minutes < min_fragment:
                continue
            fill = min(gap_minutes, limit - filled)
            if fill >= min_fragment:
                self.add(TimeBlock(gap_start, from_minutes(to_minutes(gap_start) + fill), BlockType.OFFICE))
                filled += fill
        return filled

    # --- Queries ---

    def find_office_slot(
        self,
        needed_minutes: int,
        window_start: Optional[time_type] = None,
        window_end: Optional[time_type] = None
    ) -> Optional[time_type]:
        """
        First fit: the start of the first OFFICE block (clipped to the window)
        with at least `needed_minutes` of room.
        """
        for office in self.office_blocks():
            search_start = office.start
            search_end = office.end
            if window_start is not None and window_start > search_start:
                search_start = window_start
            if window_end is not None and window_end < search_end:
                search_end = window_end

            if to_minutes(search_end) - to_minutes(search_start) >= needed_minutes:
                return search_start
        return None

    def find_gaps(self) -> List[Tuple[time_type, time_type]]:
        """Unoccupied intervals within working hours, in time order."""
        gaps = []
        cursor = self.day_start
        for block in self._blocks:
            if cursor < block.start:
                gaps.append((cursor, block.start))
            if block.end > cursor:
                cursor = block.end
        if cursor < self.day_end:
            gaps.append((cursor, self.day_end))
        return gaps

    def office_blocks(self) -> List[TimeBlock]:
        return [b for b in self._blocks if b.type == BlockType.OFFICE]

    def visit_blocks(self) -> List[TimeBlock]:
        return [b for b in self._blocks if b.type == BlockType.VISIT]

    def visit_count(self) -> int:
        return len(self.visit_blocks())

    def visit_minutes(self) -> int:
        """VISIT + TRAVEL_BUFFER minutes; these count against the caps."""
        return sum(b.duration_minutes for b in self._blocks if b.type != BlockType.OFFICE)

    def work_minutes(self) -> int:
        """Everything except travel."""
        return sum(b.duration_minutes for b in self._blocks if b.type != BlockType.TRAVEL_BUFFER)

    def office_minutes(self) -> int:
        return sum(b.duration_minutes for b in self.office_blocks())


@dataclass
class StaffWeekSchedule:
    """One staff member's week: the rotating day off plus a DaySchedule per working date."""
    staff_id: int
    staff_name: str
    role: StaffRole
    day_off: int  # 0=Monday
    days: Dict[date_type, DaySchedule] = field(default_factory=dict)

    def working_dates(self) -> List[date_type]:
        return sorted(self.days)

    def total_work_minutes(self) -> int:
        return sum(d.work_minutes() for d in self.days.values())

    def total_visit_minutes(self) -> int:
        return sum(d.visit_minutes() for d in self.days.values())

    def total_office_minutes(self) -> int:
        return sum(d.office_minutes() for d in self.days.values())

    def total_visits(self) -> int:
        return sum(d.visit_count() for d in self.days.values())
