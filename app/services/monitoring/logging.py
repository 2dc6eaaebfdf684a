"""
Structured JSON Logging with Correlation ID
JSON formatter for stdlib logging and the shared structlog configuration
"""

import logging
import sys
import os
import structlog
from pythonjsonlogger import jsonlogger
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "placement-matcher"


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with automatic correlation ID injection.

    Adds correlation_id (from CorrelationIdMiddleware), service and
    environment to every stdlib log record (SQLAlchemy, APScheduler,
    Dramatiq and uvicorn all log through stdlib logging).
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['correlation_id'] = correlation_id.get() or 'none'
        log_record['service'] = SERVICE_NAME
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


def _add_correlation_id(logger, method_name, event_dict):
    """structlog processor: same correlation_id field as the stdlib formatter."""
    event_dict.setdefault("correlation_id", correlation_id.get() or "none")
    return event_dict


def configure_structlog():
    """Key-value event logging used throughout the services, rendered as JSON."""
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            _add_correlation_id,
            structlog.processors.JSONRenderer()
        ]
    )


def setup_logging(level: int = logging.INFO):
    """
    Configure structured JSON logging to stdout.

    Sets up the root logger with CorrelationJsonFormatter on a stdout
    StreamHandler. Calling it twice does not add a second handler.

    Returns:
        logging.Handler: The configured handler (for testing)
    """
    root_logger = logging.getLogger()
    for existing in root_logger.handlers:
        if isinstance(existing.formatter, CorrelationJsonFormatter):
            return existing

    handler = logging.StreamHandler(sys.stdout)

    formatter = CorrelationJsonFormatter(
        '%(timestamp)s %(level)s %(name)s %(message)s',
        rename_fields={
            'timestamp': 'asctime',
            'level': 'levelname'
        }
    )
    handler.setFormatter(formatter)

    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    return handler
