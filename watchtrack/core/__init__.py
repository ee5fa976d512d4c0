"""Core infrastructure: request context, logging, middleware, connections."""

from watchtrack.core.context import (
    JobContext,
    clear_context,
    get_context,
    get_org_id,
    get_request_id,
    get_user_id,
    set_principal,
    set_request_id,
)
from watchtrack.core.logging import configure_structlog, get_logger


__all__ = [
    "JobContext",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_logger",
    "get_org_id",
    "get_request_id",
    "get_user_id",
    "set_principal",
    "set_request_id",
]
