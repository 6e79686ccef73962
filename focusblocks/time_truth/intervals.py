"""
Free-interval computation.

Given a day's working-hours window and the blocks already occupying it,
produce the ordered, disjoint free sub-intervals. Everything here is pure:
inputs are never mutated, so the allocator can call it as often as it likes.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Protocol

from focusblocks.time_truth.models import SchedulerPreferences


class Occupying(Protocol):
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class TimeSlot:
    """A half-open interval [start, end)."""

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def fits(self, minutes: int) -> bool:
        return self.end - self.start >= timedelta(minutes=minutes)

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.start < other.end and other.start < self.end


def _ceil_to_minute(moment: datetime) -> datetime:
    floored = moment.replace(second=0, microsecond=0)
    return floored if floored == moment else floored + timedelta(minutes=1)


def merge_intervals(intervals: Iterable[TimeSlot]) -> list[TimeSlot]:
    """Merge overlapping or touching intervals into a sorted disjoint list."""
    merged: list[TimeSlot] = []
    for slot in sorted(intervals, key=lambda s: (s.start, s.end)):
        if merged and slot.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeSlot(last.start, max(last.end, slot.end))
        else:
            merged.append(slot)
    return merged


def subtract_intervals(window: TimeSlot, occupied: Iterable[TimeSlot]) -> list[TimeSlot]:
    """
    Remove occupied intervals from a window.

    Occupied intervals fully outside the window are ignored, partial overlaps
    are clipped to the window edge, and zero-length remainders are dropped.
    """
    clipped = [
        TimeSlot(max(slot.start, window.start), min(slot.end, window.end))
        for slot in occupied
        if slot.overlaps(window)
    ]

    free: list[TimeSlot] = []
    cursor = window.start
    for busy in merge_intervals(clipped):
        if busy.start > cursor:
            free.append(TimeSlot(cursor, busy.start))
        cursor = max(cursor, busy.end)
    if cursor < window.end:
        free.append(TimeSlot(cursor, window.end))
    return free


def free_intervals(
    day: date,
    preferences: SchedulerPreferences,
    blocks: Iterable[Occupying],
    not_before: datetime | None = None,
) -> list[TimeSlot]:
    """
    Free time on a day within working hours.

    Args:
        day: Calendar day, interpreted in preferences.timezone
        preferences: Working hours and buffer
        blocks: Anything with start_time/end_time (FocusBlocks, drafts)
        not_before: Optional instant; nothing earlier is returned (rounded up
            to the whole minute)

    Returns:
        Ordered, disjoint free TimeSlots
    """
    window_start, window_end = preferences.working_window(day)
    if not_before is not None:
        window_start = max(window_start, _ceil_to_minute(not_before))
    if window_start >= window_end:
        return []

    buffer = timedelta(minutes=preferences.buffer_minutes)
    occupied = [TimeSlot(b.start_time - buffer, b.end_time + buffer) for b in blocks]
    return subtract_intervals(TimeSlot(window_start, window_end), occupied)


def carve(slots: list[TimeSlot], start: datetime, end: datetime) -> list[TimeSlot]:
    """
    Return a new slot list with [start, end) taken out.

    The slot containing the range shrinks or splits; an exhausted slot
    disappears.
    """
    taken = TimeSlot(start, end)
    remaining: list[TimeSlot] = []
    for slot in slots:
        if not slot.overlaps(taken):
            remaining.append(slot)
            continue
        if slot.start < start:
            remaining.append(TimeSlot(slot.start, start))
        if end < slot.end:
            remaining.append(TimeSlot(end, slot.end))
    return remaining


def earliest_fit(slots: list[TimeSlot], minutes: int) -> TimeSlot | None:
    """First slot (by start) long enough for the given duration."""
    for slot in sorted(slots, key=lambda s: s.start):
        if slot.fits(minutes):
            return slot
    return None
