"""
Monitoring Module
Exports for structured logging
"""

from app.services.monitoring.logging import (
    SERVICE_NAME,
    CorrelationJsonFormatter,
    configure_structlog,
    setup_logging,
)

__all__ = [
    "SERVICE_NAME",
    "CorrelationJsonFormatter",
    "configure_structlog",
    "setup_logging",
]
