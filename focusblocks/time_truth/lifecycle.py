"""
Commitment Lifecycle - the state machine between a task and its focus block.

States: Unscheduled -> Scheduled -> {Deferred, Rescheduled, Done}.
at_risk is an orthogonal flag, only valid while Unscheduled.

Transitions:
- Schedule: requires an open task with no scheduled_block_id; creates the block, links it,
  clears at_risk, stamps last_scheduled_at, bumps schedule_attempts
- Reschedule: moves the block in place when a time is given, otherwise
  releases it for the next allocation pass; always moves do/committed date
- Defer: releases the block, advances (or clears) the dates, bumps defer_count
- Commit / Uncommit: pin a task to a day, or send it back to the backlog
- Complete: marks done; placement history is left alone

Every multi-step transition runs inside one gateway transaction. Repeating a
transition repeats its bookkeeping: two defers count as two.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from focusblocks.errors import ConstraintViolation, NotFoundError, ValidationError
from focusblocks.time_truth.allocator import draft_block
from focusblocks.time_truth.conflicts import find_conflicts
from focusblocks.time_truth.events import EventSink, EventType, log_event
from focusblocks.time_truth.gateway import SchedulerGateway
from focusblocks.time_truth.intervals import earliest_fit, free_intervals
from focusblocks.time_truth.models import (
    DEFAULT_SCHEDULER_PREFERENCES,
    FocusBlock,
    SchedulerPreferences,
    Task,
    TaskStatus,
    parse_date,
    parse_time,
)

logger = logging.getLogger(__name__)

DEFER_TOMORROW = "tomorrow"
DEFER_NEXT_WEEK = "next_week"
DEFER_SOMEDAY = "someday"

MANUAL_SOURCE = "manual-commit"


def resolve_defer_target(defer_to: str | date | None, today: date) -> date | None:
    """
    Concrete date for a defer target.

    "tomorrow" (also the default) is today + 1, "next_week" is today + 7,
    "someday" is None (back to the undated backlog), anything else must be
    an ISO date.
    """
    if defer_to is None or defer_to == "" or defer_to == DEFER_TOMORROW:
        return today + timedelta(days=1)
    if defer_to == DEFER_NEXT_WEEK:
        return today + timedelta(days=7)
    if defer_to == DEFER_SOMEDAY:
        return None
    return parse_date(defer_to, "defer_to")


@dataclass
class TransitionResult:
    task: Task
    message: str
    block: FocusBlock | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "task": self.task.to_dict(),
            "message": self.message,
            "block": self.block.to_dict() if self.block else None,
            "warnings": list(self.warnings),
        }


@dataclass
class DeferResult(TransitionResult):
    defer_count: int = 0

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["defer_count"] = self.defer_count
        return data


class CommitmentLifecycle:
    """
    Applies lifecycle transitions for one owner's tasks.

    Args:
        gateway: Persistence gateway (owner-scoped reads, atomic writes)
        owner_id: Scope every lookup is restricted to
        preferences: Used for working hours and timezone of manual placements
        events: Audit sink; failures there never fail a transition
        clock: Returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        gateway: SchedulerGateway,
        owner_id: str,
        preferences: SchedulerPreferences | None = None,
        events: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.gateway = gateway
        self.owner_id = owner_id
        self.preferences = preferences or DEFAULT_SCHEDULER_PREFERENCES
        self.events = events
        self.clock = clock or (lambda: datetime.now(UTC))

    # ==================== Helpers ====================

    def now(self) -> datetime:
        return self.clock()

    def today(self) -> date:
        return self.now().astimezone(self.preferences.tzinfo).date()

    def _load(self, task_id: str) -> Task:
        if not task_id:
            raise ValidationError("task_id is required")
        task = self.gateway.read_task(task_id, self.owner_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def _release_block(self, task: Task) -> str | None:
        """Delete the task's block if it has one. Returns the released id."""
        block_id = task.scheduled_block_id
        if not block_id:
            return None
        if not self.gateway.delete_block(block_id, self.owner_id):
            logger.warning(f"Block {block_id} for task {task.id} was already gone")
        return block_id

    def _day_bounds(self, day: date) -> tuple[datetime, datetime]:
        tz = self.preferences.tzinfo
        start = datetime.combine(day, time.min, tzinfo=tz)
        return start, start + timedelta(days=1)

    # ==================== Schedule ====================

    def place(self, task: Task, draft: FocusBlock) -> TransitionResult:
        """
        Schedule transition: persist a block and link it to the task atomically.

        Raises:
            NotFoundError: task no longer exists in scope
            ConstraintViolation: task already has a block (nothing is written)
            ValidationError: task is done (nothing is written)
        """
        now = self.now()
        day = draft.start_time.astimezone(self.preferences.tzinfo).date()

        with self.gateway.transaction():
            current = self._load(task.id)
            if current.status == TaskStatus.DONE:
                raise ValidationError(f"Task {current.id} is done and cannot be scheduled")
            if current.scheduled_block_id:
                raise ConstraintViolation(current.id, current.scheduled_block_id)

            saved = self.gateway.create_block(draft)
            metadata = replace(
                current.scheduling_metadata,
                at_risk=False,
                at_risk_reason=None,
                last_scheduled_at=now,
                schedule_attempts=current.scheduling_metadata.schedule_attempts + 1,
            )
            updated = replace(
                current,
                scheduled_block_id=saved.id,
                committed_date=day,
                do_date=current.do_date or day,
                scheduling_metadata=metadata,
            )
            if not self.gateway.attach_block(updated):
                # Another writer placed it between our read and write
                refreshed = self.gateway.read_task(task.id, self.owner_id)
                winner = refreshed.scheduled_block_id if refreshed else None
                raise ConstraintViolation(task.id, winner or "unknown")

        logger.info(f"Scheduled task {task.id} into block {saved.id} at {saved.start_time.isoformat()}")
        log_event(
            self.events,
            EventType.TASK_SCHEDULED,
            f'Scheduled task "{updated.name}" at {saved.start_time.strftime("%Y-%m-%d %H:%M")}',
            {
                "task_id": updated.id,
                "block_id": saved.id,
                "start_time": saved.start_time.isoformat(),
                "end_time": saved.end_time.isoformat(),
                "source": saved.metadata.get("source"),
            },
        )
        return TransitionResult(
            task=updated,
            block=saved,
            message=f"Task scheduled {saved.start_time.strftime('%Y-%m-%d %H:%M')}-{saved.end_time.strftime('%H:%M')}",
        )

    def commit(
        self,
        task_id: str,
        day: str | date | None = None,
        auto_schedule: bool = False,
        start_time: str | time | None = None,
    ) -> TransitionResult:
        """
        Commit a task to a day (defaults to today).

        With start_time the task is scheduled at that time (the slot must be
        free). Without it the earliest free slot of the day that fits is used;
        if none fits, the day is recorded and the next allocation pass places it.
        """
        commit_day = parse_date(day, "date") or self.today()
        at = parse_time(start_time, "start_time")

        with self.gateway.transaction():
            task = self._load(task_id)

            if task.status == TaskStatus.DONE:
                warning = f"Task {task.id} is done; commit ignored"
                logger.warning(warning)
                return TransitionResult(task=task, message="Task already done", warnings=[warning])

            if task.scheduled_block_id:
                warning = str(ConstraintViolation(task.id, task.scheduled_block_id))
                logger.warning(f"Commit ignored: {warning}")
                return TransitionResult(task=task, message="Task already scheduled", warnings=[warning])

            task = replace(
                task,
                committed_date=commit_day,
                do_date=commit_day,
                auto_schedule=task.auto_schedule or auto_schedule,
            )
            self.gateway.update_task(task)

            draft = self._manual_draft(task, commit_day, at)
            if draft is None:
                result = TransitionResult(
                    task=task,
                    message=f"Task committed to {commit_day.isoformat()}",
                    warnings=[f"No free slot on {commit_day.isoformat()}; the next scheduling pass will place it"],
                )
            else:
                placed = self.place(task, draft)
                result = TransitionResult(
                    task=placed.task,
                    block=placed.block,
                    message=f"Task committed to {commit_day.isoformat()}; {placed.message.lower()}",
                )

        logger.info(f"Committed task {task_id} to {commit_day.isoformat()}")
        log_event(
            self.events,
            EventType.TASK_COMMITTED,
            f'Committed task "{result.task.name}" to {commit_day.isoformat()}',
            {"task_id": task_id, "date": commit_day.isoformat(), "block_id": result.task.scheduled_block_id},
        )
        return result

    def _manual_draft(self, task: Task, day: date, at: time | None) -> FocusBlock | None:
        duration = timedelta(minutes=task.duration_minutes)
        day_start, day_end = self._day_bounds(day)
        existing = self.gateway.read_blocks_in_range(self.owner_id, day_start, day_end)

        if at is not None:
            start = datetime.combine(day, at, tzinfo=self.preferences.tzinfo)
            conflict = find_conflicts(start, start + duration, existing)
            if conflict.has_conflict:
                ids = ", ".join(b.id for b in conflict.conflicting_blocks)
                raise ValidationError(f"Requested slot conflicts with block(s) {ids}")
        else:
            not_before = self.now() if day == self.today() else None
            slot = earliest_fit(
                free_intervals(day, self.preferences, existing, not_before), task.duration_minutes
            )
            if slot is None:
                return None
            start = slot.start

        draft = draft_block(task, start, start + duration, self.preferences)
        draft.metadata["source"] = MANUAL_SOURCE
        return draft

    def uncommit(self, task_id: str) -> TransitionResult:
        """Move a task back to the backlog: no dates, no block."""
        with self.gateway.transaction():
            task = self._load(task_id)
            released = self._release_block(task)
            task = replace(task, committed_date=None, do_date=None, scheduled_block_id=None)
            self.gateway.update_task(task)

        logger.info(f"Uncommitted task {task_id} (released block {released})")
        log_event(
            self.events,
            EventType.TASK_UNCOMMITTED,
            f'Moved task "{task.name}" back to backlog',
            {"task_id": task_id, "released_block_id": released},
        )
        return TransitionResult(task=task, message="Task moved to backlog")

    # ==================== Reschedule ====================

    def reschedule(
        self,
        task_id: str,
        new_date: str | date | None,
        new_time: str | time | None = None,
        reason: str | None = None,
    ) -> TransitionResult:
        """
        Move a task to a new day, optionally at a new time.

        With new_time and an existing block, the block is moved in place
        (same id). Without new_time the block is deleted and the task waits
        for the next allocation pass.
        """
        if not task_id or not new_date:
            raise ValidationError("task_id and new_date are required")
        target = parse_date(new_date, "new_date")
        at = parse_time(new_time, "new_time")
        now = self.now()
        warnings: list[str] = []
        block = None

        with self.gateway.transaction():
            task = self._load(task_id)
            previous = task.committed_date or task.do_date
            block_id = task.scheduled_block_id

            if block_id and at is not None:
                block = self.gateway.read_block(block_id, self.owner_id)
                if block is None:
                    raise NotFoundError("block", block_id)
                start = datetime.combine(target, at, tzinfo=ZoneInfo(block.timezone))
                end = start + timedelta(minutes=task.duration_minutes)
                day_start, day_end = self._day_bounds(target)
                others = [
                    b
                    for b in self.gateway.read_blocks_in_range(self.owner_id, day_start, day_end)
                    if b.id != block.id
                ]
                conflict = find_conflicts(start, end, others)
                if conflict.has_conflict:
                    warnings.append(conflict.suggestion)
                block = block.moved_to(start, end)
                self.gateway.update_block(block)
            elif block_id:
                self._release_block(task)
                task = replace(task, scheduled_block_id=None)

            metadata = replace(
                task.scheduling_metadata,
                last_rescheduled_at=now,
                reschedule_reason=reason,
            )
            task = replace(task, do_date=target, committed_date=target, scheduling_metadata=metadata)
            self.gateway.update_task(task)

        when = target.isoformat()
        if at is not None:
            when += f" at {at.strftime('%H:%M')}"
        message = f"Task rescheduled to {when}"
        if at is not None and block is None:
            warnings.append("Task had no block; the next scheduling pass will place it")

        logger.info(f"Rescheduled task {task_id} to {when}")
        log_event(
            self.events,
            EventType.TASK_RESCHEDULED,
            f'Rescheduled task "{task.name}" to {when}',
            {
                "task_id": task_id,
                "new_date": target.isoformat(),
                "new_time": at.isoformat(timespec="minutes") if at else None,
                "reason": reason,
                "previous_date": previous.isoformat() if previous else None,
            },
        )
        return TransitionResult(task=task, message=message, block=block, warnings=warnings)

    # ==================== Defer ====================

    def defer(self, task_id: str, defer_to: str | date | None = DEFER_TOMORROW, reason: str | None = None) -> DeferResult:
        """
        Push a task to a later day ("tomorrow", "next_week", "someday" or an ISO date).

        Always releases the block and increments defer_count.
        """
        if not task_id:
            raise ValidationError("task_id is required")
        target = resolve_defer_target(defer_to, self.today())
        now = self.now()

        with self.gateway.transaction():
            task = self._load(task_id)
            released = self._release_block(task)
            metadata = replace(
                task.scheduling_metadata,
                defer_count=task.scheduling_metadata.defer_count + 1,
                last_deferred_at=now,
                defer_reason=reason,
            )
            task = replace(
                task,
                scheduled_block_id=None,
                committed_date=target,
                do_date=target,
                scheduling_metadata=metadata,
            )
            self.gateway.update_task(task)

        defer_count = task.scheduling_metadata.defer_count
        label = target.isoformat() if target else DEFER_SOMEDAY
        logger.info(f"Deferred task {task_id} to {label} (count {defer_count})")
        log_event(
            self.events,
            EventType.TASK_DEFERRED,
            f'Deferred task "{task.name}" to {label} '
            f"(deferred {defer_count} time{'s' if defer_count > 1 else ''})",
            {
                "task_id": task_id,
                "defer_to": label,
                "reason": reason,
                "defer_count": defer_count,
                "released_block_id": released,
            },
        )
        return DeferResult(
            task=task,
            message=f"Task deferred to {target.isoformat() if target else 'backlog'}",
            defer_count=defer_count,
        )

    # ==================== Complete ====================

    def complete(self, task_id: str) -> TransitionResult:
        """Mark done. The block and scheduled_block_id are kept as history."""
        task = self._load(task_id)
        if task.status == TaskStatus.DONE:
            return TransitionResult(task=task, message="Task already done")

        task = replace(task, status=TaskStatus.DONE)
        self.gateway.update_task(task)

        logger.info(f"Completed task {task_id}")
        log_event(
            self.events,
            EventType.TASK_COMPLETED,
            f'Completed task "{task.name}"',
            {"task_id": task_id, "scheduled_block_id": task.scheduled_block_id},
        )
        return TransitionResult(task=task, message="Task marked done")
