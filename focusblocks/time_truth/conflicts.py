"""
Conflict detection between focus blocks.

Used to check a proposed slot against the calendar and to verify the
no-double-booking invariant after an allocation pass.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from focusblocks.time_truth.models import FocusBlock


@dataclass
class Conflict:
    block_a_id: str
    block_b_id: str
    overlap_start: datetime
    overlap_end: datetime


@dataclass
class ConflictResult:
    has_conflict: bool
    conflicting_blocks: list[FocusBlock] = field(default_factory=list)
    suggestion: str | None = None


def times_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    return start1 < end2 and start2 < end1


def find_conflicts(
    proposed_start: datetime, proposed_end: datetime, blocks: Iterable[FocusBlock]
) -> ConflictResult:
    """Blocks overlapping a proposed [start, end)."""
    conflicting = [b for b in blocks if b.overlaps(proposed_start, proposed_end)]
    if not conflicting:
        return ConflictResult(has_conflict=False)

    return ConflictResult(
        has_conflict=True,
        conflicting_blocks=conflicting,
        suggestion=f"{len(conflicting)} block(s) conflict with this time slot; pick another time",
    )


def detect_overlaps(blocks: Iterable[FocusBlock]) -> list[Conflict]:
    """
    Every overlapping pair among the given blocks.

    Should be empty whenever the allocator's invariants hold.
    """
    ordered = sorted(blocks, key=lambda b: (b.start_time, b.end_time, b.id))
    conflicts = []

    for i, a in enumerate(ordered):
        for b in ordered[i + 1 :]:
            if b.start_time >= a.end_time:
                break
            conflicts.append(
                Conflict(
                    block_a_id=a.id,
                    block_b_id=b.id,
                    overlap_start=max(a.start_time, b.start_time),
                    overlap_end=min(a.end_time, b.end_time),
                )
            )

    return conflicts
