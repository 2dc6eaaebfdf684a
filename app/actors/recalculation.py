"""
Recalculation Actors
Dramatiq actors for pivot-scoped and full matching recalculation
"""

from typing import Any, Dict, Optional
import dramatiq
import structlog

logger = structlog.get_logger()


def should_retry(retries_so_far: int, exception: Exception) -> bool:
    """
    Retry only transient failures.

    Retryable: TransientPersistenceError, OperationalError (database connection
    issues), ConnectionError, TimeoutError.
    Permanent: NotFoundError, IneligiblePivotError, ValidationError, ValueError.

    Args:
        retries_so_far: Number of retries attempted so far
        exception: The exception that was raised

    Returns:
        True if should retry (and haven't exceeded max retries), False otherwise
    """
    # Lazy import to avoid import-time dependencies
    from sqlalchemy.exc import OperationalError
    from app.services.matching.exceptions import (
        IneligiblePivotError,
        NotFoundError,
        TransientPersistenceError,
        ValidationError,
    )

    permanent_failures = (NotFoundError, IneligiblePivotError, ValidationError, ValueError, KeyError)
    if isinstance(exception, permanent_failures):
        logger.info("non_retryable_exception",
                    exception_type=type(exception).__name__,
                    retries=retries_so_far)
        return False

    retryable_types = (TransientPersistenceError, OperationalError, ConnectionError, TimeoutError)
    if isinstance(exception, retryable_types):
        should_retry_flag = retries_so_far < 3
        logger.info("retryable_exception",
                    exception_type=type(exception).__name__,
                    retries=retries_so_far,
                    will_retry=should_retry_flag)
        return should_retry_flag

    logger.warning("unknown_exception_type",
                   exception_type=type(exception).__name__,
                   retries=retries_so_far)
    return False


def _session_factory():
    from app.database import get_session_factory, init_db

    if get_session_factory() is None:
        init_db()
    session_factory = get_session_factory()
    if session_factory is None:
        raise RuntimeError("Database not configured")
    return session_factory


@dramatiq.actor(
    max_retries=3,
    min_backoff=5000,  # 5 seconds
    max_backoff=60000,  # 1 minute
    retry_when=should_retry,
    queue_name="matching"
)
def recalculate_pivot(pivot_type: str, pivot_id: int, correlation_id: Optional[str] = None) -> int:
    """
    Recalculate and persist the current result set of one pivot.

    Args:
        pivot_type: "child" or "preference"
        pivot_id: Pivot record id
        correlation_id: Id of the API request that enqueued the message

    Returns:
        Number of result rows written
    """
    from app.middleware.correlation_id import bind_correlation_id
    from app.services.recalculation.batch_engine import BatchRecalculationEngine

    bind_correlation_id(correlation_id)
    log = logger.bind(pivot_type=pivot_type, pivot_id=pivot_id)
    log.info("pivot_recalculation_started")

    written = BatchRecalculationEngine(_session_factory()).recalculate_pivot(pivot_type, pivot_id)

    log.info("pivot_recalculation_completed", rows=written)
    return written


@dramatiq.actor(
    max_retries=0,
    time_limit=3600000,  # 1 hour
    queue_name="matching"
)
def run_batch_recalculation() -> Dict[str, Any]:
    """
    Full-population recalculation.

    No retries: the run always reaches a terminal state itself and a
    concurrent run makes this call a no-op.
    """
    from app.services.recalculation.batch_engine import BatchRecalculationEngine

    report = BatchRecalculationEngine(_session_factory()).run()
    logger.info("batch_recalculation_actor_finished", **report.to_dict())
    return report.to_dict()
