"""
Request-scoped correlation id held in a context variable.
"""

import contextvars
import uuid
from typing import Optional

_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "focusblocks_request_id", default=None
)


def get_request_id() -> Optional[str]:
    """Current request id, or None outside a request."""
    return _request_id_var.get()


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


class RequestContext:
    """
    Binds a request id for the duration of a block.

        with RequestContext() as ctx:
            scheduler.allocate_and_persist(...)  # logs carry ctx.request_id
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or generate_request_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "RequestContext":
        self._token = _request_id_var.set(self.request_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _request_id_var.reset(self._token)
            self._token = None
