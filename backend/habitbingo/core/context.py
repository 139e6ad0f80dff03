"""Context variables shared by logging, middleware and the pipeline."""
from __future__ import annotations

from contextvars import ContextVar

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
goal_ctx_var: ContextVar[str | None] = ContextVar("pipeline_goal", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_pipeline_goal() -> str | None:
    """Return the goal whose habit-map pipeline owns the current task, if any."""
    return goal_ctx_var.get()
