"""
Property-based tests for scheduling invariants using Hypothesis.

These tests stress the allocator with random backlogs and calendars to find
edge cases in ordering, overlap and deadline handling.
"""

import tempfile
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from focusblocks.time_truth.allocator import allocate
from focusblocks.time_truth.conflicts import detect_overlaps
from focusblocks.time_truth.intervals import TimeSlot, subtract_intervals
from focusblocks.time_truth.lifecycle import CommitmentLifecycle
from focusblocks.time_truth.scheduler import plan_allocation
from tests.fixtures import DAY, OWNER, UTC_PREFS, at, fixed_clock, make_block, make_task, seeded_gateway

DURATIONS = [15, 30, 45, 60, 90, 120, 240, 480]

task_specs = st.lists(
    st.tuples(
        st.sampled_from(["p1", "p2", "p3", "p4"]),
        st.sampled_from(DURATIONS),
        st.one_of(st.none(), st.integers(min_value=-1, max_value=5)),
    ),
    max_size=12,
)

block_specs = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=3),  # day offset
        st.integers(min_value=0, max_value=15),  # 30-minute slot from 09:00
        st.integers(min_value=1, max_value=4),  # length in slots
    ),
    max_size=8,
)


def build_tasks(specs):
    return [
        make_task(
            f"t{i}",
            priority_level=priority,
            duration_minutes=minutes,
            due_date=DAY + timedelta(days=due) if due is not None else None,
        )
        for i, (priority, minutes, due) in enumerate(specs)
    ]


def build_blocks(specs):
    """Existing calendar blocks, dropping any that would overlap an earlier one."""
    blocks = []
    for i, (day, slot, length) in enumerate(specs):
        start = at(9, days=day) + timedelta(minutes=30 * slot)
        end = start + timedelta(minutes=30 * length)
        if any(b.overlaps(start, end) for b in blocks):
            continue
        blocks.append(make_block(f"e{i}", start, end))
    return blocks


@given(task_specs, block_specs)
@settings(max_examples=75, deadline=None)
def test_allocation_is_deterministic(tspecs, bspecs):
    tasks, blocks = build_tasks(tspecs), build_blocks(bspecs)
    first = allocate(tasks, blocks, UTC_PREFS, DAY)
    second = allocate(tasks, blocks, UTC_PREFS, DAY)

    assert [(s.task.id, s.scheduled_start) for s in first.scheduled_tasks] == [
        (s.task.id, s.scheduled_start) for s in second.scheduled_tasks
    ]
    assert [t.id for t in first.residual] == [t.id for t in second.residual]


@given(task_specs, block_specs)
@settings(max_examples=75, deadline=None)
def test_no_double_booking(tspecs, bspecs):
    blocks = build_blocks(bspecs)
    result = allocate(build_tasks(tspecs), blocks, UTC_PREFS, DAY)
    assert detect_overlaps(blocks + result.created_blocks) == []


@given(task_specs, block_specs)
@settings(max_examples=75, deadline=None)
def test_placements_respect_hours_and_deadlines(tspecs, bspecs):
    result = allocate(build_tasks(tspecs), build_blocks(bspecs), UTC_PREFS, DAY)

    for placed in result.scheduled_tasks:
        day = placed.scheduled_start.date()
        window_start, window_end = UTC_PREFS.working_window(day)
        assert window_start <= placed.scheduled_start
        assert placed.scheduled_end <= window_end
        assert placed.scheduled_end - placed.scheduled_start == timedelta(minutes=placed.task.duration_minutes)
        assert DAY <= day <= result.horizon_end
        if placed.task.due_date is not None:
            assert day <= placed.task.due_date


@given(task_specs, block_specs)
@settings(max_examples=75, deadline=None)
def test_every_task_is_placed_or_left_over_exactly_once(tspecs, bspecs):
    tasks = build_tasks(tspecs)
    plan = plan_allocation(tasks, build_blocks(bspecs), UTC_PREFS, DAY)

    placed = [s.task.id for s in plan.scheduled_tasks]
    residual = [t.id for t in plan.allocation.residual]
    at_risk = {a.task.id for a in plan.at_risk_tasks}

    assert sorted(placed + residual) == sorted(t.id for t in tasks)
    assert at_risk.isdisjoint(placed)


@given(task_specs, st.integers(min_value=30, max_value=480))
@settings(max_examples=50, deadline=None)
def test_daily_capacity_never_exceeded(tspecs, capacity):
    prefs = replace(UTC_PREFS, daily_capacity_minutes=capacity)
    result = allocate(build_tasks(tspecs), [], prefs, DAY)

    per_day: dict = {}
    for placed in result.scheduled_tasks:
        day = placed.scheduled_start.date()
        per_day[day] = per_day.get(day, 0) + placed.task.duration_minutes
    assert all(minutes <= capacity for minutes in per_day.values())


@given(block_specs)
@settings(max_examples=75)
def test_free_and_busy_partition_the_window(bspecs):
    window = TimeSlot(at(9), at(17))
    busy = [TimeSlot(b.start_time, b.end_time) for b in build_blocks(bspecs)]
    free = subtract_intervals(window, busy)

    for slot in free:
        assert window.start <= slot.start < slot.end <= window.end
        assert not any(slot.overlaps(b) for b in busy)

    busy_in_window = sum(
        (min(b.end, window.end) - max(b.start, window.start) for b in busy if b.overlaps(window)),
        timedelta(),
    )
    free_total = sum((s.end - s.start for s in free), timedelta())
    assert free_total + busy_in_window == window.end - window.start


defer_targets = st.lists(
    st.one_of(
        st.sampled_from(["tomorrow", "next_week", "someday", None]),
        st.integers(min_value=1, max_value=30).map(lambda d: (DAY + timedelta(days=d)).isoformat()),
    ),
    min_size=1,
    max_size=6,
)


@given(defer_targets)
@settings(max_examples=25, deadline=None)
def test_defer_count_increments_once_per_defer(targets):
    with tempfile.TemporaryDirectory() as tmp:
        gateway, _ = seeded_gateway(
            Path(tmp) / "defer.db",
            tasks=[make_task("t", scheduled_block_id="b1")],
            blocks=[make_block("b1", at(9), at(9, 30), task_id="t")],
        )
        lifecycle = CommitmentLifecycle(gateway, OWNER, preferences=UTC_PREFS, clock=fixed_clock())

        counts = [lifecycle.defer("t", target).defer_count for target in targets]

        assert counts == list(range(1, len(targets) + 1))
        stored = gateway.read_task("t", OWNER)
        assert stored.scheduled_block_id is None
        assert gateway.read_blocks_in_range(OWNER, at(0), at(0, days=1)) == []
