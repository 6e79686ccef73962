"""
Allocation Engine - place backlog tasks into free time, day by day.

Scheduling order (stable, total):
1. Priority level, p1 first
2. Due date, earliest first; undated tasks after all dated ones
3. Original backlog order

For each day of the horizon the engine walks the sorted backlog and gives
every task that still fits (and whose due date is not behind the day) the
earliest free interval long enough for it. Placements grow the occupied set
immediately, so later tasks see the reduced free time. The run is pure and
deterministic: no randomness, no clock reads beyond the supplied dates.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from focusblocks.time_truth.intervals import carve, earliest_fit, free_intervals
from focusblocks.time_truth.models import FocusBlock, SchedulerPreferences, Task

logger = logging.getLogger(__name__)

AUTO_SCHEDULER_SOURCE = "auto-scheduler"


@dataclass
class ScheduledTask:
    task: Task
    scheduled_start: datetime
    scheduled_end: datetime
    block: FocusBlock

    def to_dict(self) -> dict:
        return {
            "task_id": self.task.id,
            "task_name": self.task.name,
            "scheduled_start": self.scheduled_start.isoformat(),
            "scheduled_end": self.scheduled_end.isoformat(),
            "block": self.block.to_dict(),
        }


@dataclass
class AllocationResult:
    target_date: date
    horizon_end: date
    scheduled_tasks: list[ScheduledTask] = field(default_factory=list)
    created_blocks: list[FocusBlock] = field(default_factory=list)
    residual: list[Task] = field(default_factory=list)

    @property
    def total_minutes_scheduled(self) -> int:
        return sum(st.task.duration_minutes for st in self.scheduled_tasks)


def select_backlog(tasks: Iterable[Task]) -> list[Task]:
    """Tasks eligible for auto-scheduling: opted in, not done, not placed."""
    return [t for t in tasks if t.is_schedulable]


def sort_for_scheduling(tasks: Iterable[Task]) -> list[Task]:
    indexed = list(enumerate(tasks))
    indexed.sort(
        key=lambda pair: (
            pair[1].priority_level.rank,
            pair[1].due_date is None,
            pair[1].due_date or date.max,
            pair[0],
        )
    )
    return [task for _, task in indexed]


def draft_block(
    task: Task, start: datetime, end: datetime, preferences: SchedulerPreferences
) -> FocusBlock:
    """
    Unsaved focus block for a placement.

    The id is derived from the task so identical runs produce identical drafts;
    the gateway assigns the persistent id.
    """
    return FocusBlock(
        id=f"draft-{task.id}",
        owner_id=task.owner_id,
        title=task.name,
        description=task.description,
        context=task.context,
        start_time=start,
        end_time=end,
        timezone=preferences.timezone,
        completed=False,
        metadata={
            "source": AUTO_SCHEDULER_SOURCE,
            "task_id": task.id,
            "priority_level": task.priority_level.value,
        },
    )


def _task_minutes_on(day: date, blocks: Iterable[FocusBlock], preferences: SchedulerPreferences) -> int:
    """Minutes of task-backed blocks starting on a day (capacity accounting)."""
    tz = preferences.tzinfo
    return sum(
        b.duration_minutes
        for b in blocks
        if b.task_id and b.start_time.astimezone(tz).date() == day
    )


def allocate(
    tasks: Iterable[Task],
    existing_blocks: Iterable[FocusBlock],
    preferences: SchedulerPreferences,
    target_date: date | None = None,
    not_before: datetime | None = None,
) -> AllocationResult:
    """
    Assign backlog tasks to free intervals across [target_date, target_date + horizon].

    Args:
        tasks: Candidate tasks; ineligible ones (done, opted out, already
            placed) are filtered here
        existing_blocks: Blocks already on the calendar; never moved
        preferences: Working hours, horizon, capacity, buffer
        target_date: First day considered (defaults to today)
        not_before: Optional instant before which nothing is placed

    Returns:
        AllocationResult with placements, draft blocks and the residual backlog
    """
    if target_date is None:
        target_date = date.today()
    horizon_end = preferences.horizon_end(target_date)
    result = AllocationResult(target_date=target_date, horizon_end=horizon_end)

    pending = sort_for_scheduling(select_backlog(tasks))
    occupied: list[FocusBlock] = list(existing_blocks)
    buffer = timedelta(minutes=preferences.buffer_minutes)
    cap = preferences.daily_capacity_minutes

    day = target_date
    while day <= horizon_end and pending:
        slots = free_intervals(day, preferences, occupied, not_before)
        used = _task_minutes_on(day, occupied, preferences)
        unplaced: list[Task] = []

        for task in pending:
            if not slots:
                unplaced.append(task)
                continue
            if task.due_date is not None and task.due_date < day:
                unplaced.append(task)
                continue
            if cap is not None and used + task.duration_minutes > cap:
                unplaced.append(task)
                continue

            slot = earliest_fit(slots, task.duration_minutes)
            if slot is None:
                unplaced.append(task)
                continue

            start = slot.start
            end = start + timedelta(minutes=task.duration_minutes)
            block = draft_block(task, start, end, preferences)

            occupied.append(block)
            result.created_blocks.append(block)
            result.scheduled_tasks.append(
                ScheduledTask(task=task, scheduled_start=start, scheduled_end=end, block=block)
            )
            slots = carve(slots, start - buffer, end + buffer)
            used += task.duration_minutes

            logger.debug(
                f"Placed task {task.id} ({task.priority_level}) "
                f"{start.strftime('%Y-%m-%d %H:%M')}-{end.strftime('%H:%M')}"
            )

        pending = unplaced
        day += timedelta(days=1)

    result.residual = pending
    logger.info(
        f"Allocation {target_date}..{horizon_end}: "
        f"{len(result.scheduled_tasks)} placed, {len(pending)} left over"
    )
    return result
