"""
At-Risk Assessor - classify tasks the allocator could not place.

A leftover task is at-risk when its deadline is already behind the target
date, or when the deadline falls inside the horizon and no slot long enough
existed on or before it. Leftovers with no deadline, or a deadline past the
horizon, are merely unscheduled. Assessment only ever touches
scheduling_metadata; it never creates, moves or deletes a block.
"""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date

from focusblocks.time_truth.models import Task

REASON_INSUFFICIENT_TIME = "insufficient free time before due date"
REASON_DEADLINE_PASSED = "deadline already passed"

ACTION_INSUFFICIENT_TIME = "shorten duration, reschedule due date, or manually free a slot"
ACTION_DEADLINE_PASSED = "renegotiate the due date, defer the task, or mark it done"


@dataclass
class RiskAssessment:
    task: Task
    at_risk: bool
    reason: str | None = None
    suggested_action: str | None = None

    def apply(self) -> Task:
        """Copy of the task with at_risk/at_risk_reason set from this assessment."""
        metadata = replace(
            self.task.scheduling_metadata,
            at_risk=self.at_risk,
            at_risk_reason=self.reason if self.at_risk else None,
        )
        return replace(self.task, scheduling_metadata=metadata)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task.id,
            "task_name": self.task.name,
            "due_date": self.task.due_date.isoformat() if self.task.due_date else None,
            "reason": self.reason,
            "suggested_action": self.suggested_action,
        }


def assess_task(task: Task, target_date: date, horizon_end: date) -> RiskAssessment:
    if task.due_date is None:
        return RiskAssessment(task=task, at_risk=False)

    if task.due_date < target_date:
        return RiskAssessment(
            task=task,
            at_risk=True,
            reason=REASON_DEADLINE_PASSED,
            suggested_action=ACTION_DEADLINE_PASSED,
        )

    if task.due_date <= horizon_end:
        return RiskAssessment(
            task=task,
            at_risk=True,
            reason=REASON_INSUFFICIENT_TIME,
            suggested_action=ACTION_INSUFFICIENT_TIME,
        )

    # Deadline beyond the horizon: a later pass still has room to place it
    return RiskAssessment(task=task, at_risk=False)


def assess(residual: Iterable[Task], target_date: date, horizon_end: date) -> list[RiskAssessment]:
    """Assess every leftover task, preserving order."""
    return [assess_task(task, target_date, horizon_end) for task in residual]
