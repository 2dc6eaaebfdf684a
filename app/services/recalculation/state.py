"""
Batch Run State Store

Single-writer, many-reader access to the BatchRunState row.

The idle -> running transition is a conditional UPDATE
(WHERE status != 'running'), so two near-simultaneous starts cannot both
succeed. Every later write is scoped to the run_id handed out by try_start,
so a run that was forced terminal by the watchdog cannot overwrite the
state of a newer run.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Dict, Optional
import uuid
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
import structlog

from app.models.batch_run_state import (
    BatchRunState,
    BATCH_IDLE,
    BATCH_RUNNING,
    BATCH_COMPLETED_WITH_ERRORS,
)

logger = structlog.get_logger(__name__)

DEFAULT_STATE_NAME = "matching"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class BatchRunSnapshot:
    """Read-only copy of BatchRunState."""
    name: str
    status: str
    processed: int = 0
    total: int = 0
    error_count: int = 0
    status_label: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    failures: Optional[Dict[str, str]] = None

    @property
    def is_running(self) -> bool:
        return self.status == BATCH_RUNNING

    def to_dict(self) -> dict:
        data = asdict(self)
        data["is_running"] = self.is_running
        for key in ("started_at", "completed_at", "last_run_at"):
            data[key] = _iso(data[key])
        data["failures"] = data["failures"] or {}
        return data


class BatchStateStore:
    """
    Persistence for the process-wide batch run state.

    Each call opens its own short session so state changes commit
    independently of the pivot transactions of the batch itself.
    """

    def __init__(self, session_factory: sessionmaker, name: str = DEFAULT_STATE_NAME):
        self.session_factory = session_factory
        self.name = name

    def snapshot(self) -> BatchRunSnapshot:
        session: Session = self.session_factory()
        try:
            row = session.query(BatchRunState).filter(BatchRunState.name == self.name).first()
            if row is None:
                return BatchRunSnapshot(name=self.name, status=BATCH_IDLE)
            return BatchRunSnapshot(
                name=row.name,
                status=row.status,
                processed=row.processed or 0,
                total=row.total or 0,
                error_count=row.error_count or 0,
                status_label=row.status_label,
                started_at=row.started_at,
                completed_at=row.completed_at,
                last_run_at=row.last_run_at,
                last_error=row.last_error,
                failures=dict(row.failures or {}),
            )
        finally:
            session.close()

    def is_running(self) -> bool:
        return self.snapshot().is_running

    def try_start(self) -> Optional[str]:
        """
        Atomically move idle/terminal -> running.

        Returns:
            run_id when this caller won the transition, None if a run is active
        """
        session: Session = self.session_factory()
        try:
            self._ensure_row(session)
            run_id = str(uuid.uuid4())
            now = datetime.utcnow()
            updated = session.query(BatchRunState).filter(
                BatchRunState.name == self.name,
                BatchRunState.status != BATCH_RUNNING
            ).update({
                BatchRunState.status: BATCH_RUNNING,
                BatchRunState.run_id: run_id,
                BatchRunState.processed: 0,
                BatchRunState.total: 0,
                BatchRunState.error_count: 0,
                BatchRunState.failures: {},
                BatchRunState.last_error: None,
                BatchRunState.status_label: "Starting",
                BatchRunState.started_at: now,
                BatchRunState.heartbeat_at: now,
                BatchRunState.completed_at: None,
            }, synchronize_session=False)
            session.commit()

            if updated != 1:
                logger.info("batch_start_rejected", name=self.name, reason="already_running")
                return None

            logger.info("batch_state_running", name=self.name, run_id=run_id)
            return run_id
        finally:
            session.close()

    def update_progress(
        self,
        run_id: str,
        processed: int,
        total: int,
        error_count: int,
        failures: Dict[str, str],
        label: Optional[str] = None
    ) -> bool:
        """Record chunk progress and refresh the heartbeat. False if the run no longer owns the row."""
        return self._update_owned(run_id, {
            BatchRunState.processed: processed,
            BatchRunState.total: total,
            BatchRunState.error_count: error_count,
            BatchRunState.failures: dict(failures),
            BatchRunState.status_label: label or f"Processed {processed} of {total}",
            BatchRunState.heartbeat_at: datetime.utcnow(),
        })

    def finish(
        self,
        run_id: str,
        status: str,
        processed: int,
        total: int,
        error_count: int,
        failures: Dict[str, str],
        last_error: Optional[str] = None
    ) -> bool:
        """Write the terminal state of a run."""
        now = datetime.utcnow()
        owned = self._update_owned(run_id, {
            BatchRunState.status: status,
            BatchRunState.processed: processed,
            BatchRunState.total: total,
            BatchRunState.error_count: error_count,
            BatchRunState.failures: dict(failures),
            BatchRunState.last_error: last_error,
            BatchRunState.status_label: f"Finished: {processed} of {total} processed, {error_count} error(s)",
            BatchRunState.heartbeat_at: now,
            BatchRunState.completed_at: now,
            BatchRunState.last_run_at: now,
        })
        if owned:
            logger.info("batch_state_terminal", name=self.name, run_id=run_id, status=status)
        else:
            logger.warning("batch_state_lost_ownership", name=self.name, run_id=run_id, status=status)
        return owned

    def expire_stale_run(self, timeout_seconds: int) -> bool:
        """
        Watchdog: force a run with no heartbeat for timeout_seconds to completed_with_errors.

        Returns:
            True when a stuck run was expired
        """
        session: Session = self.session_factory()
        try:
            now = datetime.utcnow()
            cutoff = now - timedelta(seconds=timeout_seconds)
            expired = session.query(BatchRunState).filter(
                BatchRunState.name == self.name,
                BatchRunState.status == BATCH_RUNNING,
                BatchRunState.heartbeat_at < cutoff
            ).update({
                BatchRunState.status: BATCH_COMPLETED_WITH_ERRORS,
                BatchRunState.error_count: BatchRunState.error_count + 1,
                BatchRunState.last_error: f"Watchdog: no progress for {timeout_seconds}s, run marked terminal",
                BatchRunState.status_label: "Stopped by watchdog",
                BatchRunState.completed_at: now,
                BatchRunState.last_run_at: now,
            }, synchronize_session=False)
            session.commit()

            if expired:
                logger.warning("batch_run_expired_by_watchdog", name=self.name, timeout_seconds=timeout_seconds)
            return bool(expired)
        finally:
            session.close()

    def _update_owned(self, run_id: str, values: dict) -> bool:
        session: Session = self.session_factory()
        try:
            updated = session.query(BatchRunState).filter(
                BatchRunState.name == self.name,
                BatchRunState.status == BATCH_RUNNING,
                BatchRunState.run_id == run_id
            ).update(values, synchronize_session=False)
            session.commit()
            return updated == 1
        finally:
            session.close()

    def _ensure_row(self, session: Session) -> None:
        exists = session.query(BatchRunState.name).filter(BatchRunState.name == self.name).first()
        if exists is not None:
            return
        try:
            session.add(BatchRunState(name=self.name, status=BATCH_IDLE, processed=0, total=0, error_count=0))
            session.commit()
        except IntegrityError:
            # Another process created the row first
            session.rollback()
