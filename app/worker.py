"""
Dramatiq Worker Entrypoint

This module serves as the entry point for Dramatiq workers.
It imports all actor modules to register them with the broker.

Usage:
    dramatiq app.worker --processes 2 --threads 1 --verbose

Procfile Configuration:
    worker: dramatiq app.worker --processes 2 --threads 1 --verbose

Queues:
    matching: pivot-scoped recalculation and manual full runs.
    A full run holds one database session per chunk, so one thread per
    process keeps connection use at processes x 1.
"""

import structlog
from app.services.monitoring import configure_structlog, setup_logging

configure_structlog()
setup_logging()
logger = structlog.get_logger()

# Importing the package registers every actor with the broker
from app.actors import broker  # noqa: E402
from app.database import init_db  # noqa: E402

init_db()

# Worker health check log
logger.info("worker_ready", broker=type(broker).__name__)
