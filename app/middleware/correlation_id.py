"""
Correlation ID Middleware
Request correlation ids for API logs and for recalculation messages handed to the worker
"""

from typing import Optional
from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id", "bind_correlation_id", "NO_CORRELATION_ID"]

NO_CORRELATION_ID = "none"


def get_correlation_id() -> str:
    """
    Correlation id of the current request.

    Returns 'none' outside a request (scheduler threads, worker processes).
    """
    return correlation_id.get() or NO_CORRELATION_ID


def bind_correlation_id(value: Optional[str]) -> None:
    """
    Restore a request's correlation id inside a Dramatiq actor.

    The async context is lost when a message crosses into the worker, so
    the id travels as an actor argument and is set here before logging.
    """
    if value and value != NO_CORRELATION_ID:
        correlation_id.set(value)
