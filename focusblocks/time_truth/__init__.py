"""
Time Truth - tasks, focus blocks and the scheduler that joins them.

Components (leaf first):
- intervals: free time within working hours
- allocator: deterministic day-by-day placement of the backlog
- risk: at-risk classification of leftovers
- estimates: duration and do-date heuristics for sparse tasks
- lifecycle: schedule / commit / reschedule / defer / complete transitions
- scheduler: plan + persist for one owner

Invariants:
- A task with scheduled_block_id maps to exactly one focus block
- A placed task is never flagged at-risk
- Newly created blocks never overlap existing ones
"""

from .allocator import AllocationResult, ScheduledTask, allocate, sort_for_scheduling
from .conflicts import detect_overlaps, find_conflicts
from .estimates import calculate_do_date, estimate_duration
from .events import EventSink, LoggingEventSink, StoreEventSink
from .gateway import SchedulerGateway, SQLiteGateway
from .intervals import TimeSlot, free_intervals
from .lifecycle import CommitmentLifecycle, DeferResult, TransitionResult, resolve_defer_target
from .models import (
    DEFAULT_SCHEDULER_PREFERENCES,
    FocusBlock,
    PriorityLevel,
    SchedulerPreferences,
    SchedulingMetadata,
    Task,
    TaskStatus,
)
from .risk import RiskAssessment, assess
from .scheduler import AllocationPlan, CreateTaskResult, Scheduler, ScheduleRunReport, plan_allocation

__all__ = [
    "DEFAULT_SCHEDULER_PREFERENCES",
    "AllocationPlan",
    "AllocationResult",
    "CommitmentLifecycle",
    "CreateTaskResult",
    "DeferResult",
    "EventSink",
    "FocusBlock",
    "LoggingEventSink",
    "PriorityLevel",
    "RiskAssessment",
    "SQLiteGateway",
    "ScheduleRunReport",
    "ScheduledTask",
    "Scheduler",
    "SchedulerGateway",
    "SchedulerPreferences",
    "SchedulingMetadata",
    "StoreEventSink",
    "Task",
    "TaskStatus",
    "TimeSlot",
    "TransitionResult",
    "allocate",
    "assess",
    "calculate_do_date",
    "detect_overlaps",
    "estimate_duration",
    "find_conflicts",
    "free_intervals",
    "plan_allocation",
    "resolve_defer_target",
    "sort_for_scheduling",
]
