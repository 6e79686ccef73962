"""
Time Truth records: tasks, focus blocks, scheduling metadata and preferences.

A Task owns its placement (scheduled_block_id). A FocusBlock carries only a
back-reference (metadata.task_id) and may be deleted and recreated freely.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from focusblocks.errors import ValidationError
from focusblocks.time_truth.estimates import estimate_duration


class PriorityLevel(StrEnum):
    P1 = "p1"
    P2 = "p2"
    P3 = "p3"
    P4 = "p4"

    @property
    def rank(self) -> int:
        """0 for p1 (most urgent) through 3 for p4."""
        return int(self.value[1]) - 1


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


def parse_date(value: Any, field_name: str = "date") -> date | None:
    """Accept a date, an ISO date string, an ISO datetime string, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError as e:
            raise ValidationError(f"Invalid {field_name}: {value!r} (use YYYY-MM-DD)") from e
    raise ValidationError(f"Invalid {field_name}: {value!r}")


def parse_datetime(value: Any, field_name: str = "timestamp") -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"Invalid {field_name}: {value!r}") from e
    raise ValidationError(f"Invalid {field_name}: {value!r}")


def parse_time(value: Any, field_name: str = "time") -> time | None:
    """Parse H:MM, HH:MM or HH:MM:SS."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        parts = value.strip().split(":")
        try:
            if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
                raise ValueError(value)
            return time(*(int(p) for p in parts))
        except ValueError as e:
            raise ValidationError(f"Invalid {field_name}: {value!r} (use HH:MM)") from e
    raise ValidationError(f"Invalid {field_name}: {value!r}")


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class SchedulingMetadata:
    """Accountability trail for a task. Placement truth lives in Task.scheduled_block_id."""

    at_risk: bool = False
    at_risk_reason: str | None = None
    schedule_attempts: int = 0
    defer_count: int = 0
    last_scheduled_at: datetime | None = None
    last_deferred_at: datetime | None = None
    last_rescheduled_at: datetime | None = None
    defer_reason: str | None = None
    reschedule_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "at_risk": self.at_risk,
            "at_risk_reason": self.at_risk_reason,
            "schedule_attempts": self.schedule_attempts,
            "defer_count": self.defer_count,
            "last_scheduled_at": _iso(self.last_scheduled_at),
            "last_deferred_at": _iso(self.last_deferred_at),
            "last_rescheduled_at": _iso(self.last_rescheduled_at),
            "defer_reason": self.defer_reason,
            "reschedule_reason": self.reschedule_reason,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "SchedulingMetadata":
        data = data or {}
        return cls(
            at_risk=bool(data.get("at_risk", False)),
            at_risk_reason=data.get("at_risk_reason"),
            schedule_attempts=int(data.get("schedule_attempts") or 0),
            defer_count=int(data.get("defer_count") or 0),
            last_scheduled_at=parse_datetime(data.get("last_scheduled_at")),
            last_deferred_at=parse_datetime(data.get("last_deferred_at")),
            last_rescheduled_at=parse_datetime(data.get("last_rescheduled_at")),
            defer_reason=data.get("defer_reason"),
            reschedule_reason=data.get("reschedule_reason"),
        )


@dataclass
class Task:
    id: str
    name: str = ""
    owner_id: str = ""
    priority_level: PriorityLevel = PriorityLevel.P3
    duration_minutes: int = 30
    due_date: date | None = None
    do_date: date | None = None
    committed_date: date | None = None
    auto_schedule: bool = True
    status: TaskStatus = TaskStatus.TODO
    scheduled_block_id: str | None = None
    context: str = "house"
    description: str | None = None
    scheduling_metadata: SchedulingMetadata = field(default_factory=SchedulingMetadata)

    def __post_init__(self):
        try:
            self.priority_level = PriorityLevel(str(self.priority_level or "p3").lower())
            self.status = TaskStatus(self.status or TaskStatus.TODO)
        except ValueError as e:
            raise ValidationError(f"Task {self.id}: {e}") from e
        if not isinstance(self.duration_minutes, int) or isinstance(self.duration_minutes, bool):
            raise ValidationError(f"duration_minutes must be an integer, got {self.duration_minutes!r}")
        if self.duration_minutes <= 0:
            raise ValidationError(
                f"duration_minutes must be positive (task {self.id}: {self.duration_minutes})"
            )

    @property
    def is_scheduled(self) -> bool:
        return bool(self.scheduled_block_id)

    @property
    def is_schedulable(self) -> bool:
        """Eligible for an allocation pass."""
        return self.auto_schedule and self.status != TaskStatus.DONE and not self.is_scheduled

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "priority_level": self.priority_level.value,
            "duration_minutes": self.duration_minutes,
            "due_date": _iso(self.due_date),
            "do_date": _iso(self.do_date),
            "committed_date": _iso(self.committed_date),
            "auto_schedule": self.auto_schedule,
            "status": self.status.value,
            "scheduled_block_id": self.scheduled_block_id,
            "context": self.context,
            "description": self.description,
            "scheduling_metadata": self.scheduling_metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict, default_duration: int = 30) -> "Task":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            owner_id=data.get("owner_id") or "",
            priority_level=data.get("priority_level") or PriorityLevel.P3,
            duration_minutes=data.get("duration_minutes")
            or estimate_duration(data.get("name") or "", data.get("description"), default_duration),
            due_date=parse_date(data.get("due_date"), "due_date"),
            do_date=parse_date(data.get("do_date"), "do_date"),
            committed_date=parse_date(data.get("committed_date"), "committed_date"),
            auto_schedule=bool(data.get("auto_schedule", True)),
            status=data.get("status") or TaskStatus.TODO,
            scheduled_block_id=data.get("scheduled_block_id") or None,
            context=data.get("context") or "house",
            description=data.get("description"),
            scheduling_metadata=SchedulingMetadata.from_dict(data.get("scheduling_metadata")),
        )


@dataclass
class FocusBlock:
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    context: str = "house"
    timezone: str = "UTC"
    owner_id: str = ""
    completed: bool = False
    description: str | None = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValidationError(f"Block {self.id} times must be timezone-aware")
        if self.end_time <= self.start_time:
            raise ValidationError(f"Block {self.id} must end after it starts")

    @property
    def task_id(self) -> str | None:
        return self.metadata.get("task_id")

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start_time < end and start < self.end_time

    def moved_to(self, start: datetime, end: datetime) -> "FocusBlock":
        """Same block identity at a new time."""
        return replace(self, start_time=start, end_time=end)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "description": self.description,
            "context": self.context,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "timezone": self.timezone,
            "completed": self.completed,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FocusBlock":
        return cls(
            id=data["id"],
            owner_id=data.get("owner_id") or "",
            title=data.get("title") or "",
            description=data.get("description"),
            context=data.get("context") or "house",
            start_time=parse_datetime(data["start_time"], "start_time"),
            end_time=parse_datetime(data["end_time"], "end_time"),
            timezone=data.get("timezone") or "UTC",
            completed=bool(data.get("completed", False)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class SchedulerPreferences:
    """Immutable per allocation run."""

    working_hours_start: time = time(9, 0)
    working_hours_end: time = time(18, 0)
    scheduling_horizon_days: int = 14
    timezone: str = "America/Chicago"
    daily_capacity_minutes: int | None = None
    buffer_minutes: int = 0
    default_duration_minutes: int = 30

    def __post_init__(self):
        if self.working_hours_end <= self.working_hours_start:
            raise ValidationError("working_hours_end must be after working_hours_start")
        if self.scheduling_horizon_days < 0:
            raise ValidationError("scheduling_horizon_days cannot be negative")
        if self.daily_capacity_minutes is not None and self.daily_capacity_minutes <= 0:
            raise ValidationError("daily_capacity_minutes must be positive when set")
        if self.buffer_minutes < 0:
            raise ValidationError("buffer_minutes cannot be negative")
        if self.default_duration_minutes <= 0:
            raise ValidationError("default_duration_minutes must be positive")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationError(f"Unknown timezone: {self.timezone}") from e

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def working_window(self, day: date) -> tuple[datetime, datetime]:
        """Working-hours window for a day, in the preferences' timezone."""
        tz = self.tzinfo
        return (
            datetime.combine(day, self.working_hours_start, tzinfo=tz),
            datetime.combine(day, self.working_hours_end, tzinfo=tz),
        )

    def horizon_end(self, target_date: date) -> date:
        """Last day the allocation engine considers (inclusive)."""
        return target_date + timedelta(days=self.scheduling_horizon_days)


DEFAULT_SCHEDULER_PREFERENCES = SchedulerPreferences()
