"""
Scheduler error classes.

- ValidationError: bad input, rejected before any mutation (HTTP 400)
- NotFoundError: task or block absent, or outside the caller's scope (HTTP 404)
- ConstraintViolation: the desired end-state already holds; callers treat it
  as a no-op success with a warning
"""


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class ValidationError(SchedulerError):
    """Input rejected before any mutation."""


class NotFoundError(SchedulerError):
    """Task or block does not exist in the requesting scope."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class ConstraintViolation(SchedulerError):
    """Scheduling an already-scheduled task."""

    def __init__(self, task_id: str, block_id: str):
        self.task_id = task_id
        self.block_id = block_id
        super().__init__(f"Task {task_id} already scheduled in block {block_id}")
