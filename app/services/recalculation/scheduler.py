"""
Recalculation Scheduler

Debounces record-change triggers into a single delayed batch run.

At most one batch job is pending or running at any time:
- a request while a job is pending is a no-op ("already_pending")
- a request while a run is active queues one follow-up run ("deferred")
- otherwise a one-shot job is scheduled after delay_seconds ("scheduled")
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
import threading
from typing import Callable, Optional
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
import structlog

from app.config import settings
from app.services.recalculation.batch_engine import BATCH_SKIPPED, BatchRecalculationEngine
from app.services.recalculation.state import BatchStateStore

logger = structlog.get_logger(__name__)

SCHEDULED = "scheduled"
ALREADY_PENDING = "already_pending"
DEFERRED = "deferred"

RECALCULATION_JOB_ID = "matching_batch_recalculation"


class JobScheduler(ABC):
    """Delayed one-shot job execution."""

    @abstractmethod
    def schedule(self, after_seconds: int, func: Callable[[], None], job_id: str) -> None:
        """Run func once after after_seconds. Replaces a pending job with the same id."""

    @abstractmethod
    def cancel_pending(self, job_id: str) -> bool:
        """Remove a pending job. Returns False if no such job was pending."""


class APSchedulerJobScheduler(JobScheduler):
    """JobScheduler backed by an APScheduler scheduler (DateTrigger jobs)."""

    def __init__(self, scheduler: BaseScheduler):
        self.scheduler = scheduler

    def schedule(self, after_seconds: int, func: Callable[[], None], job_id: str) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(0, after_seconds))
        self.scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_date),
            id=job_id,
            name="Matching Batch Recalculation",
            replace_existing=True,
            misfire_grace_time=None
        )
        logger.info("job_scheduled", job_id=job_id, run_date=run_date.isoformat())

    def cancel_pending(self, job_id: str) -> bool:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info("job_cancelled", job_id=job_id)
        return True


class RecalculationScheduler:
    """
    Coalesces recalculation requests into one delayed batch run.

    Usage:
        recalc = RecalculationScheduler(APSchedulerJobScheduler(scheduler), engine_factory)
        recalc.request_recalculation()       # "scheduled"
        recalc.request_recalculation()       # "already_pending"
    """

    def __init__(
        self,
        job_scheduler: JobScheduler,
        engine_factory: Callable[[], BatchRecalculationEngine],
        state_store: Optional[BatchStateStore] = None,
        job_id: str = RECALCULATION_JOB_ID
    ):
        """
        Args:
            job_scheduler: Delayed job execution
            engine_factory: Builds the batch engine when the job fires
            state_store: Run state, used to detect an active run (None: never active)
            job_id: Id of the pending one-shot job
        """
        self.job_scheduler = job_scheduler
        self.engine_factory = engine_factory
        self.state_store = state_store
        self.job_id = job_id
        self._lock = threading.Lock()
        self._pending = False
        self._rerun_requested = False

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def rerun_requested(self) -> bool:
        return self._rerun_requested

    def request_recalculation(self, delay_seconds: Optional[int] = None) -> str:
        """
        Ask for a batch run after delay_seconds (default: settings.recalculation_delay_seconds).

        Returns:
            "scheduled", "already_pending" or "deferred"
        """
        delay = settings.recalculation_delay_seconds if delay_seconds is None else delay_seconds

        with self._lock:
            if self._pending:
                logger.debug("recalculation_request_coalesced", reason="pending")
                return ALREADY_PENDING

            if self._run_active():
                self._rerun_requested = True
                logger.info("recalculation_request_deferred", reason="run_active")
                return DEFERRED

            self._pending = True

        try:
            self.job_scheduler.schedule(delay, self._fire, self.job_id)
        except Exception:
            with self._lock:
                self._pending = False
            raise

        logger.info("recalculation_scheduled", delay_seconds=delay)
        return SCHEDULED

    def cancel_pending(self) -> bool:
        """Drop the pending (not yet started) run, if any."""
        with self._lock:
            if not self._pending:
                return False
            cancelled = self.job_scheduler.cancel_pending(self.job_id)
            self._pending = False
            return cancelled

    def resume_deferred(self) -> Optional[str]:
        """
        Schedule the follow-up run queued while a run was active, once it has finished.

        Called after every local run and periodically by the watchdog job so a
        run finished by another process also releases the follow-up.
        """
        with self._lock:
            if not self._rerun_requested or self._pending or self._run_active():
                return None
            self._rerun_requested = False
        return self.request_recalculation()

    def _run_active(self) -> bool:
        return self.state_store is not None and self.state_store.is_running()

    def _fire(self) -> None:
        """Job body: run the batch, then release a deferred follow-up."""
        with self._lock:
            self._pending = False

        try:
            report = self.engine_factory().run()
        except Exception as e:
            logger.error("recalculation_job_crashed", error=str(e), exc_info=True)
            return

        if report.status == BATCH_SKIPPED:
            # Another process holds the run; follow up once it finishes
            with self._lock:
                self._rerun_requested = True
            return

        try:
            self.resume_deferred()
        except Exception as e:
            logger.error("deferred_recalculation_failed", error=str(e), exc_info=True)
