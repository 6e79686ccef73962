"""
Scheduler API Router - REST endpoints for auto-scheduling and task commitments.

Endpoints:
- POST /api/tasks: create a task, filling in duration and do date
- POST /api/tasks/schedule: allocate the backlog and persist placements
- POST /api/tasks/schedule/preview: allocate without writing anything
- POST /api/tasks/reschedule: move a task to a new day/time
- PUT /api/tasks/reschedule: defer (kept for older clients)
- POST /api/tasks/defer: defer to tomorrow / next_week / someday / a date
- POST /api/tasks/commit: commit a task to a day
- DELETE /api/tasks/commit?task_id=: back to backlog
- POST /api/tasks/{task_id}/complete: mark done
- GET /api/schedule/validate?date=: invariant check for a day

The caller's scope comes from the X-Owner-Id header.
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from focusblocks.config import load_preferences
from focusblocks.errors import NotFoundError, ValidationError
from focusblocks.time_truth.events import StoreEventSink
from focusblocks.time_truth.gateway import SchedulerGateway, SQLiteGateway
from focusblocks.time_truth.models import SchedulerPreferences
from focusblocks.time_truth.scheduler import Scheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scheduler"])

_gateway: SchedulerGateway | None = None
_preferences: SchedulerPreferences | None = None


def get_gateway() -> SchedulerGateway:
    """Get or create the process-wide gateway."""
    global _gateway
    if _gateway is None:
        _gateway = SQLiteGateway(default_duration_minutes=get_preferences().default_duration_minutes)
    return _gateway


def get_preferences() -> SchedulerPreferences:
    global _preferences
    if _preferences is None:
        _preferences = load_preferences()
    return _preferences


def get_clock() -> Callable[[], datetime]:
    return lambda: datetime.now(UTC)


def get_scheduler(
    x_owner_id: str | None = Header(default=None),
    gateway: SchedulerGateway = Depends(get_gateway),
    preferences: SchedulerPreferences = Depends(get_preferences),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> Scheduler:
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="X-Owner-Id header required")
    return Scheduler(
        gateway,
        x_owner_id,
        preferences=preferences,
        events=StoreEventSink(gateway),
        clock=clock,
    )


# Pydantic models for API
class ScheduleRequest(BaseModel):
    """Request to auto-schedule the backlog."""

    target_date: date | None = Field(default=None, description="First day to schedule (default today)")
    task_ids: list[str] | None = Field(default=None, description="Restrict to these tasks")
    max_tasks: int | None = Field(default=None, ge=1, description="Cap on tasks read")


class RescheduleRequest(BaseModel):
    """Request to reschedule a task. Required fields are checked by the lifecycle."""

    task_id: str | None = None
    new_date: str | None = Field(default=None, description="YYYY-MM-DD")
    new_time: str | None = Field(default=None, description="H:MM or HH:MM; omit to release the block")
    reason: str | None = None


class DeferRequest(BaseModel):
    """Request to defer a task."""

    task_id: str | None = None
    defer_to: str | None = Field(default="tomorrow", description="tomorrow|next_week|someday|YYYY-MM-DD")
    reason: str | None = None


class CommitRequest(BaseModel):
    """Request to commit a task to a day."""

    task_id: str | None = None
    date: str | None = Field(default=None, description="YYYY-MM-DD (default today)")
    auto_schedule: bool = False
    start_time: str | None = Field(default=None, description="H:MM or HH:MM")


class CreateTaskRequest(BaseModel):
    """Request to add a task. Missing duration and do_date are filled in."""

    name: str | None = None
    priority_level: str | None = Field(default=None, description="p1|p2|p3|p4 (default p3)")
    due_date: str | None = Field(default=None, description="YYYY-MM-DD")
    do_date: str | None = Field(default=None, description="YYYY-MM-DD; derived from due_date when omitted")
    duration_minutes: int | None = Field(default=None, ge=1, description="Estimated from the name when omitted")
    description: str | None = None
    context: str | None = None
    auto_schedule: bool = True
    commit_to_today: bool = False


class TaskActionResponse(BaseModel):
    success: bool
    data: dict[str, Any]
    message: str
    warnings: list[str] = Field(default_factory=list)


class DeferResponse(TaskActionResponse):
    defer_count: int


class ScheduleResponse(BaseModel):
    success: bool
    data: dict[str, Any]


def _http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, ValidationError):
        logger.info(f"Rejected {action}: {e}")
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    logger.error(f"Error during {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


# Endpoints


@router.post("/tasks", response_model=TaskActionResponse)
def create_task(request: CreateTaskRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Create a task and, when it has a do date, try to schedule it right away."""
    try:
        result = scheduler.create_task(
            request.name,
            priority_level=request.priority_level,
            due_date=request.due_date,
            do_date=request.do_date,
            duration_minutes=request.duration_minutes,
            description=request.description,
            context=request.context,
            auto_schedule=request.auto_schedule,
            commit_to_today=request.commit_to_today,
        )
        suffix = " and scheduled" if result.scheduled else ""
        return {
            "success": True,
            "data": result.to_dict(),
            "message": f'Task created{suffix}: "{result.task.name}"',
            "warnings": result.report.warnings if result.report else [],
        }
    except Exception as e:
        raise _http_error(e, "create task") from e


@router.post("/tasks/schedule", response_model=ScheduleResponse)
def schedule_tasks(request: ScheduleRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Auto-schedule the caller's backlog into focus blocks."""
    try:
        report = scheduler.allocate_and_persist(
            target_date=request.target_date,
            task_ids=request.task_ids,
            max_tasks=request.max_tasks,
        )
        return {"success": True, "data": report.to_dict()}
    except Exception as e:
        raise _http_error(e, "schedule") from e


@router.post("/tasks/schedule/preview", response_model=ScheduleResponse)
def preview_schedule(request: ScheduleRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Show what a scheduling pass would do, without persisting it."""
    try:
        plan = scheduler.plan(request.target_date, request.task_ids, request.max_tasks)
        return {"success": True, "data": plan.to_dict()}
    except Exception as e:
        raise _http_error(e, "schedule preview") from e


@router.post("/tasks/reschedule", response_model=TaskActionResponse)
def reschedule_task(request: RescheduleRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Reschedule a task to a different day and optionally time."""
    try:
        result = scheduler.lifecycle.reschedule(
            request.task_id, request.new_date, request.new_time, request.reason
        )
        return {
            "success": True,
            "data": result.task.to_dict(),
            "message": result.message,
            "warnings": result.warnings,
        }
    except Exception as e:
        raise _http_error(e, "reschedule") from e


def _defer(request: DeferRequest, scheduler: Scheduler) -> dict:
    try:
        result = scheduler.lifecycle.defer(request.task_id, request.defer_to, request.reason)
        return {
            "success": True,
            "data": result.task.to_dict(),
            "message": result.message,
            "defer_count": result.defer_count,
        }
    except Exception as e:
        raise _http_error(e, "defer") from e


@router.post("/tasks/defer", response_model=DeferResponse)
def defer_task(request: DeferRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Defer a task to a later date."""
    return _defer(request, scheduler)


@router.put("/tasks/reschedule", response_model=DeferResponse)
def defer_task_legacy(request: DeferRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Defer via PUT on the reschedule route."""
    return _defer(request, scheduler)


@router.post("/tasks/commit", response_model=TaskActionResponse)
def commit_task(request: CommitRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Commit a task to a specific day."""
    try:
        result = scheduler.lifecycle.commit(
            request.task_id, request.date, request.auto_schedule, request.start_time
        )
        return {
            "success": True,
            "data": result.task.to_dict(),
            "message": result.message,
            "warnings": result.warnings,
        }
    except Exception as e:
        raise _http_error(e, "commit") from e


@router.delete("/tasks/commit", response_model=TaskActionResponse)
def uncommit_task(task_id: str | None = Query(default=None), scheduler: Scheduler = Depends(get_scheduler)):
    """Move a task back to the backlog."""
    try:
        result = scheduler.lifecycle.uncommit(task_id)
        return {"success": True, "data": result.task.to_dict(), "message": result.message}
    except Exception as e:
        raise _http_error(e, "uncommit") from e


@router.post("/tasks/{task_id}/complete", response_model=TaskActionResponse)
def complete_task(task_id: str, scheduler: Scheduler = Depends(get_scheduler)):
    """Mark a task done; it leaves all future scheduling passes."""
    try:
        result = scheduler.lifecycle.complete(task_id)
        return {"success": True, "data": result.task.to_dict(), "message": result.message}
    except Exception as e:
        raise _http_error(e, "complete") from e


@router.get("/schedule/validate")
def validate_schedule(
    date_: date | None = Query(default=None, alias="date"),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Check scheduling invariants for a day."""
    try:
        result = scheduler.validate_schedule(date_)
        return {"valid": result.valid, "issues": result.issues, "stats": result.stats}
    except Exception as e:
        raise _http_error(e, "validate") from e
