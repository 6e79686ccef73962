"""
Audit events for scheduling transitions.

Sinks are fire-and-forget: a failing sink is logged and never fails the
transition that produced the event.
"""

import logging
from abc import ABC, abstractmethod

from focusblocks.observability.context import get_request_id

logger = logging.getLogger(__name__)


class EventType:
    TASKS_SCHEDULED = "tasks_scheduled"
    TASK_SCHEDULED = "task_scheduled"
    TASK_COMMITTED = "task_committed"
    TASK_UNCOMMITTED = "task_uncommitted"
    TASK_RESCHEDULED = "task_rescheduled"
    TASK_DEFERRED = "task_deferred"
    TASK_COMPLETED = "task_completed"
    TASK_CREATED = "task_created"
    BLOCKS_RELEASED = "blocks_released"


class EventSink(ABC):
    @abstractmethod
    def emit(self, event_type: str, description: str, metadata: dict) -> None: ...


class LoggingEventSink(EventSink):
    """Writes events to the log only."""

    def emit(self, event_type: str, description: str, metadata: dict) -> None:
        logger.info(description, extra={"event_type": event_type, "event_metadata": metadata})


class StoreEventSink(EventSink):
    """Persists events through the gateway's events table."""

    def __init__(self, gateway):
        self.gateway = gateway

    def emit(self, event_type: str, description: str, metadata: dict) -> None:
        self.gateway.insert_event(event_type, description, metadata, request_id=get_request_id())


def log_event(sink: EventSink | None, event_type: str, description: str, metadata: dict) -> None:
    """Emit an event; failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.emit(event_type, description, metadata)
    except Exception as e:
        logger.warning(f"Event sink failed for {event_type}: {e}")
