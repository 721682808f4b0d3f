import time
import uuid
from contextvars import ContextVar
from typing import Optional

# Trace ID of the request being served, propagated across awaits
trace_id_var: ContextVar[Optional[str]] = ContextVar('trace_id', default=None)


def generate_trace_id() -> str:
    """Generate a new trace ID."""
    return str(uuid.uuid4())


def set_trace_id(trace_id: str) -> None:
    """Set the trace ID for the current context."""
    trace_id_var.set(trace_id)


def current_trace_id() -> Optional[str]:
    """Get the current trace ID."""
    return trace_id_var.get()


def get_trace_id() -> str:
    """Get existing trace ID or create a new one."""
    trace_id = current_trace_id()
    if trace_id is None:
        trace_id = generate_trace_id()
        set_trace_id(trace_id)
    return trace_id


class RequestBudget:
    """
    Wall-clock time budget for one assistant request.

    Each external call (LLM, database, Supabase) is given whatever is left
    of the budget as its timeout, so a slow generation step shortens the
    time available for execution instead of extending the request.
    """

    def __init__(self, total_seconds: float):
        self.total_seconds = total_seconds
        self._started_at = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self.total_seconds - self.elapsed())

    def expired(self) -> bool:
        return self.remaining() <= 0.0
