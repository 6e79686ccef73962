"""
Scheduler - run the allocation pipeline and persist its outcome.

plan_allocation() is the pure Allocate operation: allocator -> at-risk
assessor -> summary, with no storage involved. Scheduler wraps it for one
owner: reads the backlog and calendar through the gateway, plans, then
commits each placement independently. One task failing to persist never
aborts its siblings; failures come back in the report instead of raising.
"""

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time, timedelta

from focusblocks.errors import ConstraintViolation, SchedulerError, ValidationError
from focusblocks.time_truth.allocator import AllocationResult, ScheduledTask, allocate
from focusblocks.time_truth.conflicts import detect_overlaps
from focusblocks.time_truth.estimates import calculate_do_date, estimate_duration
from focusblocks.time_truth.events import EventSink, EventType, log_event
from focusblocks.time_truth.gateway import SchedulerGateway
from focusblocks.time_truth.lifecycle import CommitmentLifecycle
from focusblocks.time_truth.models import (
    DEFAULT_SCHEDULER_PREFERENCES,
    FocusBlock,
    SchedulerPreferences,
    Task,
    parse_date,
)
from focusblocks.time_truth.risk import RiskAssessment, assess

logger = logging.getLogger(__name__)

# Best-effort write-through to an external tracker: mirror(task, block)
MirrorHook = Callable[[Task, FocusBlock], None]


@dataclass
class AllocationPlan:
    allocation: AllocationResult
    assessments: list[RiskAssessment]

    @property
    def scheduled_tasks(self) -> list[ScheduledTask]:
        return self.allocation.scheduled_tasks

    @property
    def created_blocks(self) -> list[FocusBlock]:
        return self.allocation.created_blocks

    @property
    def at_risk_tasks(self) -> list[RiskAssessment]:
        return [a for a in self.assessments if a.at_risk]

    @property
    def summary(self) -> dict:
        return {
            "total_scheduled": len(self.allocation.scheduled_tasks),
            "total_unscheduled": len(self.allocation.residual),
            "total_at_risk": len(self.at_risk_tasks),
            "total_minutes_scheduled": self.allocation.total_minutes_scheduled,
        }

    def to_dict(self) -> dict:
        return {
            "scheduled_tasks": [st.to_dict() for st in self.scheduled_tasks],
            "created_blocks": [b.to_dict() for b in self.created_blocks],
            "at_risk_tasks": [a.to_dict() for a in self.at_risk_tasks],
            "summary": self.summary,
        }


def plan_allocation(
    tasks: Iterable[Task],
    existing_blocks: Iterable[FocusBlock],
    preferences: SchedulerPreferences,
    target_date: date | None = None,
    not_before: datetime | None = None,
) -> AllocationPlan:
    """Allocate and classify leftovers. Pure; safe to discard wholesale."""
    allocation = allocate(tasks, existing_blocks, preferences, target_date, not_before)
    assessments = assess(allocation.residual, allocation.target_date, allocation.horizon_end)
    return AllocationPlan(allocation=allocation, assessments=assessments)


@dataclass
class PersistError:
    task_id: str
    name: str
    stage: str
    error: str

    def to_dict(self) -> dict:
        return {"task_id": self.task_id, "name": self.name, "stage": self.stage, "error": self.error}


@dataclass
class ScheduleRunReport:
    plan: AllocationPlan
    scheduled: list[ScheduledTask] = field(default_factory=list)
    errors: list[PersistError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def created_blocks(self) -> list[FocusBlock]:
        return [st.block for st in self.scheduled]

    @property
    def summary(self) -> dict:
        placed_minutes = sum(st.task.duration_minutes for st in self.scheduled)
        return {
            "total_scheduled": len(self.scheduled),
            "total_unscheduled": len(self.plan.allocation.residual)
            + len(self.plan.scheduled_tasks)
            - len(self.scheduled),
            "total_at_risk": len(self.plan.at_risk_tasks),
            "total_minutes_scheduled": placed_minutes,
        }

    def to_dict(self) -> dict:
        return {
            "scheduled_tasks": [st.to_dict() for st in self.scheduled],
            "created_blocks": [b.to_dict() for b in self.created_blocks],
            "at_risk_tasks": [a.to_dict() for a in self.plan.at_risk_tasks],
            "summary": self.summary,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
        }


@dataclass
class CreateTaskResult:
    task: Task
    report: ScheduleRunReport | None = None

    @property
    def scheduled(self) -> bool:
        return self.report is not None and bool(self.report.scheduled)

    def to_dict(self) -> dict:
        return {
            "task": self.task.to_dict(),
            "scheduling": self.report.to_dict() if self.report else None,
        }


@dataclass
class ValidationResult:
    valid: bool
    issues: list[str]
    stats: dict


class Scheduler:
    """
    Auto-scheduler for one owner's tasks.

    Args:
        gateway: Persistence gateway
        owner_id: Scope for every read and write
        preferences: Working hours, horizon, capacity (defaults if None)
        events: Audit sink
        clock: Current aware datetime (injectable)
        mirror: Optional best-effort hook called after each placement
    """

    def __init__(
        self,
        gateway: SchedulerGateway,
        owner_id: str,
        preferences: SchedulerPreferences | None = None,
        events: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
        mirror: MirrorHook | None = None,
    ):
        self.gateway = gateway
        self.owner_id = owner_id
        self.preferences = preferences or DEFAULT_SCHEDULER_PREFERENCES
        self.events = events
        self.clock = clock or (lambda: datetime.now(UTC))
        self.mirror = mirror
        self.lifecycle = CommitmentLifecycle(
            gateway, owner_id, preferences=self.preferences, events=events, clock=self.clock
        )

    def _horizon_blocks(self, target_date: date) -> list[FocusBlock]:
        tz = self.preferences.tzinfo
        start = datetime.combine(target_date, time.min, tzinfo=tz)
        end = datetime.combine(
            self.preferences.horizon_end(target_date) + timedelta(days=1), time.min, tzinfo=tz
        )
        return self.gateway.read_blocks_in_range(self.owner_id, start, end)

    def plan(
        self,
        target_date: date | None = None,
        task_ids: list[str] | None = None,
        max_tasks: int | None = None,
    ) -> AllocationPlan:
        """Read the backlog and calendar, then plan without writing anything."""
        today = self.lifecycle.today()
        target_date = target_date or today
        tasks = self.gateway.read_tasks_for_owner(
            self.owner_id, task_ids=task_ids, schedulable_only=True, limit=max_tasks
        )
        existing = self._horizon_blocks(target_date)
        not_before = self.clock() if target_date <= today else None

        return plan_allocation(tasks, existing, self.preferences, target_date, not_before)

    def allocate_and_persist(
        self,
        target_date: date | None = None,
        task_ids: list[str] | None = None,
        max_tasks: int | None = None,
    ) -> ScheduleRunReport:
        """
        Plan, then commit every placement and at-risk flag independently.

        Returns:
            ScheduleRunReport with persisted placements, collected errors and
            non-fatal warnings
        """
        plan = self.plan(target_date, task_ids, max_tasks)
        report = ScheduleRunReport(plan=plan)

        for scheduled in plan.scheduled_tasks:
            task = scheduled.task
            try:
                placed = self.lifecycle.place(task, scheduled.block)
            except ConstraintViolation as e:
                logger.warning(f"Skipped placement: {e}")
                report.warnings.append(str(e))
                continue
            except SchedulerError as e:
                logger.error(f"Error placing task {task.id}: {e}")
                report.errors.append(PersistError(task.id, task.name, "create_focus_block", str(e)))
                continue
            except Exception as e:
                logger.exception(f"Unexpected error placing task {task.id}")
                report.errors.append(PersistError(task.id, task.name, "create_focus_block", str(e)))
                continue

            report.scheduled.append(
                replace(scheduled, task=placed.task, block=placed.block)
            )
            self._mirror(placed.task, placed.block, report)

        for assessment in plan.assessments:
            self._persist_assessment(assessment, report)

        summary = report.summary
        log_event(
            self.events,
            EventType.TASKS_SCHEDULED,
            f"Auto-scheduled {summary['total_scheduled']} tasks",
            {**summary, "target_date": plan.allocation.target_date.isoformat(), "errors": len(report.errors)},
        )
        logger.info(
            f"Scheduling run for {self.owner_id}: {summary['total_scheduled']} scheduled, "
            f"{summary['total_at_risk']} at risk, {len(report.errors)} errors"
        )
        return report

    def _mirror(self, task: Task, block: FocusBlock, report: ScheduleRunReport) -> None:
        if self.mirror is None:
            return
        try:
            self.mirror(task, block)
        except Exception as e:
            logger.warning(f"Mirroring task {task.id} failed: {e}")
            report.warnings.append(f"Mirroring task {task.id} failed: {e}")

    def _persist_assessment(self, assessment: RiskAssessment, report: ScheduleRunReport) -> None:
        task = assessment.task
        if not assessment.at_risk and not task.scheduling_metadata.at_risk:
            return
        try:
            self.gateway.update_task(assessment.apply())
        except Exception as e:
            logger.error(f"Error marking task {task.id} at risk: {e}")
            report.errors.append(PersistError(task.id, task.name, "mark_at_risk", str(e)))

    def create_task(
        self,
        name: str,
        priority_level: str | None = None,
        due_date: str | date | None = None,
        do_date: str | date | None = None,
        duration_minutes: int | None = None,
        description: str | None = None,
        context: str | None = None,
        auto_schedule: bool = True,
        commit_to_today: bool = False,
    ) -> CreateTaskResult:
        """
        Add a task to the backlog, filling in what the caller left out.

        A missing duration is estimated from the name and description. A
        missing do_date is worked back from the due date by task size. With
        commit_to_today the task is pinned to today instead. When the task
        ends up with a do_date and auto_schedule is on, a scheduling pass for
        just this task runs from that day.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Task name is required")

        today = self.lifecycle.today()
        duration = duration_minutes or estimate_duration(
            name, description, self.preferences.default_duration_minutes
        )
        due = parse_date(due_date, "due_date")
        planned = parse_date(do_date, "do_date")
        committed = None
        if commit_to_today:
            planned = committed = today
        elif planned is None and due is not None:
            planned = calculate_do_date(due, duration, today)

        task = Task(
            id=f"task_{uuid.uuid4().hex[:12]}",
            name=name,
            owner_id=self.owner_id,
            priority_level=priority_level or "p3",
            duration_minutes=duration,
            due_date=due,
            do_date=planned,
            committed_date=committed,
            auto_schedule=auto_schedule,
            context=context or "house",
            description=description,
        )
        self.gateway.insert_task(task)

        logger.info(f"Created task {task.id} ({duration}m, do {planned}, due {due})")
        log_event(
            self.events,
            EventType.TASK_CREATED,
            f'Created task "{task.name}"',
            {
                "task_id": task.id,
                "duration_minutes": duration,
                "do_date": planned.isoformat() if planned else None,
                "due_date": due.isoformat() if due else None,
            },
        )

        if not (auto_schedule and planned):
            return CreateTaskResult(task=task)

        report = self.allocate_and_persist(planned, task_ids=[task.id], max_tasks=1)
        placed = next((st.task for st in report.scheduled if st.task.id == task.id), task)
        return CreateTaskResult(task=placed, report=report)

    def release_removed_blocks(
        self, removed_block_ids: list[str], target_date: date | None = None
    ) -> ScheduleRunReport:
        """
        Calendar changed underneath us: unlink tasks whose blocks were removed,
        then run a scheduling pass so they are placed again.
        """
        removed = set(removed_block_ids)
        released = []

        for task in self.gateway.read_tasks_for_owner(self.owner_id):
            if task.scheduled_block_id and task.scheduled_block_id in removed:
                with self.gateway.transaction():
                    self.gateway.delete_block(task.scheduled_block_id, self.owner_id)
                    self.gateway.update_task(replace(task, scheduled_block_id=None))
                released.append(task.id)

        logger.info(f"Released {len(released)} task(s) from removed blocks")
        log_event(
            self.events,
            EventType.BLOCKS_RELEASED,
            f"Released {len(released)} task(s) from removed blocks",
            {"block_ids": sorted(removed), "task_ids": released},
        )
        if not released:
            return ScheduleRunReport(plan=plan_allocation([], [], self.preferences, target_date or self.lifecycle.today()))
        return self.allocate_and_persist(target_date, task_ids=released)

    def validate_schedule(self, target_date: date | None = None) -> ValidationResult:
        """
        Check scheduling invariants for a day.

        1. No two blocks overlap
        2. Every scheduled task's block exists
        3. Every auto-scheduled block points at a task that points back
        4. No placed task is flagged at-risk
        """
        target_date = target_date or self.lifecycle.today()
        tz = self.preferences.tzinfo
        day_start = datetime.combine(target_date, time.min, tzinfo=tz)
        blocks = self.gateway.read_blocks_in_range(self.owner_id, day_start, day_start + timedelta(days=1))
        tasks = {t.id: t for t in self.gateway.read_tasks_for_owner(self.owner_id)}
        issues = []

        conflicts = detect_overlaps(blocks)
        for c in conflicts:
            issues.append(
                f"Block overlap: {c.block_a_id} and {c.block_b_id} "
                f"({c.overlap_start.strftime('%H:%M')}-{c.overlap_end.strftime('%H:%M')})"
            )

        for task in tasks.values():
            if not task.scheduled_block_id:
                continue
            if self.gateway.read_block(task.scheduled_block_id, self.owner_id) is None:
                issues.append(f"Task {task.id} references non-existent block {task.scheduled_block_id}")
            if task.scheduling_metadata.at_risk:
                issues.append(f"Task {task.id} is scheduled but still flagged at risk")

        for block in blocks:
            if not block.task_id:
                continue
            task = tasks.get(block.task_id)
            if task is None:
                issues.append(f"Block {block.id} references non-existent task {block.task_id}")
            elif task.scheduled_block_id != block.id:
                issues.append(
                    f"Reference mismatch: block {block.id} -> task {task.id}, "
                    f"but task -> {task.scheduled_block_id}"
                )

        task_blocks = [b for b in blocks if b.task_id]
        stats = {
            "date": target_date.isoformat(),
            "total_blocks": len(blocks),
            "task_blocks": len(task_blocks),
            "scheduled_minutes": sum(b.duration_minutes for b in task_blocks),
            "conflicts": len(conflicts),
            "issues": len(issues),
        }
        return ValidationResult(valid=not issues, issues=issues, stats=stats)
