"""
APScheduler Background Jobs

Debounced matching recalculation plus periodic jobs: batch watchdog,
nightly full recalculation and match history pruning.
Jobs run via BackgroundScheduler in FastAPI process.
"""

from typing import Optional
import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.services.recalculation.batch_engine import BatchRecalculationEngine
from app.services.recalculation.scheduler import APSchedulerJobScheduler, RecalculationScheduler
from app.services.recalculation.state import BatchStateStore

logger = structlog.get_logger(__name__)

WATCHDOG_INTERVAL_MINUTES = 5

# Set by start_scheduler; read by the API and the record observers
recalculation_scheduler: Optional[RecalculationScheduler] = None


def get_recalculation_scheduler() -> Optional[RecalculationScheduler]:
    return recalculation_scheduler


def build_recalculation_scheduler(scheduler: BackgroundScheduler, session_factory) -> RecalculationScheduler:
    """Wire the debounced recalculation onto an APScheduler instance."""
    state_store = BatchStateStore(session_factory)
    return RecalculationScheduler(
        job_scheduler=APSchedulerJobScheduler(scheduler),
        engine_factory=lambda: BatchRecalculationEngine(session_factory, state_store=state_store),
        state_store=state_store
    )


def run_batch_watchdog():
    """
    Wrapper function for the batch watchdog job.

    Called by APScheduler every 5 minutes. Forces a run with no heartbeat
    for batch_watchdog_timeout_seconds to completed_with_errors, then
    releases a follow-up run deferred while a run was active.
    """
    try:
        from app.database import SessionLocal

        if SessionLocal is None:
            logger.warning("batch_watchdog_skipped", reason="database_not_configured")
            return

        BatchStateStore(SessionLocal).expire_stale_run(settings.batch_watchdog_timeout_seconds)

        if recalculation_scheduler is not None:
            recalculation_scheduler.resume_deferred()

    except Exception as e:
        logger.error("batch_watchdog_crashed", error=str(e), exc_info=True)


def run_nightly_recalculation():
    """
    Wrapper function for the nightly full recalculation.

    Goes through the debounced scheduler so it coalesces with pending
    record-change triggers.
    """
    try:
        if recalculation_scheduler is None:
            logger.warning("nightly_recalculation_skipped", reason="scheduler_not_configured")
            return

        result = recalculation_scheduler.request_recalculation(delay_seconds=0)
        logger.info("nightly_recalculation_requested", result=result)

    except Exception as e:
        logger.error("nightly_recalculation_crashed", error=str(e), exc_info=True)


def run_history_pruning():
    """
    Wrapper function for daily match history pruning.

    Deletes superseded result rows older than result_history_retention_days.
    """
    try:
        from app.database import SessionLocal
        from app.services.matching import MatchResultStore

        if SessionLocal is None:
            logger.warning("history_pruning_skipped", reason="database_not_configured")
            return

        db = SessionLocal()
        try:
            MatchResultStore(db).prune_history(settings.result_history_retention_days)
            db.commit()
        finally:
            db.close()

    except Exception as e:
        logger.error("history_pruning_crashed", error=str(e), exc_info=True)


def start_scheduler(environment: str = "production") -> BackgroundScheduler:
    """
    Start background scheduler with all jobs.

    Args:
        environment: Current environment (skip scheduler in testing)

    Returns:
        BackgroundScheduler instance
    """
    global recalculation_scheduler

    from app.database import SessionLocal

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    if SessionLocal is None:
        logger.warning("scheduler_skipped", reason="database_not_configured")
        return scheduler

    recalculation_scheduler = build_recalculation_scheduler(scheduler, SessionLocal)

    # Job 1: Batch watchdog (every 5 minutes)
    scheduler.add_job(
        run_batch_watchdog,
        trigger=IntervalTrigger(minutes=WATCHDOG_INTERVAL_MINUTES),
        id="batch_watchdog",
        name="Matching Batch Watchdog",
        replace_existing=True
    )
    logger.info("job_registered", job="batch_watchdog", schedule="every_5_minutes")

    # Job 2: Nightly full recalculation
    scheduler.add_job(
        run_nightly_recalculation,
        trigger=CronTrigger(hour=settings.nightly_recalculation_hour, minute=0),
        id="nightly_recalculation",
        name="Nightly Matching Recalculation",
        replace_existing=True
    )
    logger.info("job_registered", job="nightly_recalculation",
                schedule=f"daily_{settings.nightly_recalculation_hour:02d}:00")

    # Job 3: Daily match history pruning (at 03:30)
    scheduler.add_job(
        run_history_pruning,
        trigger=CronTrigger(hour=3, minute=30),
        id="match_history_pruning",
        name="Match History Pruning",
        replace_existing=True
    )
    logger.info("job_registered", job="match_history_pruning", schedule="daily_03:30")

    scheduler.start()
    logger.info("scheduler_started", jobs=["batch_watchdog", "nightly_recalculation", "match_history_pruning"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    global recalculation_scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")
    recalculation_scheduler = None


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "get_recalculation_scheduler",
    "build_recalculation_scheduler",
    "run_batch_watchdog",
    "run_nightly_recalculation",
    "run_history_pruning",
]
