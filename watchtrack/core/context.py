"""Request context management using contextvars.

Each request gets a correlation id, and once the caller is authenticated its
user and organization ids, so every log line emitted while serving the
request can be traced back to it without passing those values around.
"""

from contextvars import ContextVar
from typing import Any
from uuid import uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
org_id_var: ContextVar[str | None] = ContextVar("org_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Incoming request ID. A new one is generated when missing.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    """Get the current user ID."""
    return user_id_var.get()


def get_org_id() -> str | None:
    """Get the current organization ID."""
    return org_id_var.get()


def set_principal(user_id: str | None, org_id: str | None) -> None:
    """Bind the authenticated caller to the current context."""
    user_id_var.set(user_id)
    org_id_var.set(org_id)


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    user_id = get_user_id()
    if user_id:
        context["user_id"] = user_id

    org_id = get_org_id()
    if org_id:
        context["org_id"] = org_id

    return context


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request to prevent leakage between requests.
    """
    request_id_var.set("")
    user_id_var.set(None)
    org_id_var.set(None)


class JobContext:
    """Context manager giving background work its own correlation id.

    Usage:
        with JobContext("rollup"):
            log.info("rollup_started")  # includes request_id="rollup-..."
    """

    def __init__(self, job_name: str) -> None:
        self.job_name = job_name
        self._token = None

    def __enter__(self) -> str:
        request_id = f"{self.job_name}-{generate_request_id()}"
        self._token = request_id_var.set(request_id)
        return request_id

    def __exit__(self, *_: object) -> None:
        if self._token is not None:
            request_id_var.reset(self._token)
            self._token = None
