"""
Middleware Module
ASGI middleware for request processing
"""

from app.middleware.correlation_id import CorrelationIdMiddleware, bind_correlation_id, get_correlation_id

__all__ = ["CorrelationIdMiddleware", "bind_correlation_id", "get_correlation_id"]
