"""
Batch Recalculation Engine

Recalculates the persisted match results of every eligible pivot.

Flow:
1. Win the idle -> running transition (no-op if a run is active)
2. Collect eligible pivot ids (children, then preferences)
3. Process pivots in fixed-size chunks, one session per chunk and one
   transaction per pivot
4. Record progress after every chunk, terminal state at the end
5. Retire the current sets of pivots that are no longer eligible

A pivot that fails is recorded and skipped; the batch always reaches a
terminal state. An interrupted run is not resumed: the next run starts
from scratch.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from sqlalchemy.orm import Session, sessionmaker
import structlog

from app.config import settings
from app.models.batch_run_state import BATCH_COMPLETED, BATCH_COMPLETED_WITH_ERRORS
from app.services.matching import (
    IneligiblePivotError,
    MatchResultStore,
    MatchingRepository,
    NotFoundError,
    PartialBatchFailure,
    TransientPersistenceError,
)
from app.services.matching.profiles import PIVOT_CHILD, PIVOT_PREFERENCE
from app.services.matching_engine import CandidateMatcher
from app.services.recalculation.state import BatchStateStore

logger = structlog.get_logger(__name__)

BATCH_SKIPPED = "skipped"

# One retry per pivot for write conflicts
MAX_PERSIST_ATTEMPTS = 2

PivotKey = Tuple[str, int]


def pivot_label(pivot_type: str, pivot_id: int) -> str:
    return f"{pivot_type}:{pivot_id}"


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    """Yield consecutive slices of at most size items."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class BatchReport:
    """Outcome of one run() call."""
    status: str
    run_id: Optional[str] = None
    processed: int = 0
    total: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    retired: int = 0
    error: Optional[PartialBatchFailure] = None
    last_error: Optional[str] = None

    @property
    def error_count(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "run_id": self.run_id,
            "processed": self.processed,
            "total": self.total,
            "error_count": self.error_count,
            "failures": dict(self.failures),
            "retired": self.retired,
            "last_error": self.last_error,
        }


def persist_pivot(db: Session, pivot_type: str, pivot_id: int, calculated_at: Optional[datetime] = None) -> int:
    """
    Match one pivot and replace its current result set. Does not commit.

    Returns:
        Number of rows written (0 when the set was discarded as stale)
    """
    outcome = CandidateMatcher(db).match(pivot_type, pivot_id)
    rows = MatchResultStore(db).upsert_results(
        pivot_type,
        pivot_id,
        outcome.breakdown,
        calculated_at=calculated_at
    )
    return len(rows)


class BatchRecalculationEngine:
    """
    Orchestrates matching across the full pivot population.

    Usage:
        engine = BatchRecalculationEngine(SessionLocal)
        report = engine.run()
        if report.error:
            print(report.error.failures)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        state_store: Optional[BatchStateStore] = None,
        chunk_size: Optional[int] = None,
        pivot_processor: Callable[[Session, str, int], int] = persist_pivot
    ):
        """
        Args:
            session_factory: sessionmaker for pivot transactions
            state_store: BatchRunState access (default: BatchStateStore(session_factory))
            chunk_size: Pivots per chunk (default: settings.batch_chunk_size)
            pivot_processor: Callable that matches and persists one pivot
        """
        self.session_factory = session_factory
        self.state_store = state_store or BatchStateStore(session_factory)
        self.chunk_size = chunk_size or settings.batch_chunk_size
        self.pivot_processor = pivot_processor

    def run(self) -> BatchReport:
        """
        Execute one full recalculation.

        Never raises: per-pivot failures are collected into the report and
        unexpected faults are recorded as completed_with_errors.
        """
        run_id = self.state_store.try_start()
        if run_id is None:
            logger.info("batch_run_skipped", reason="already_running")
            return BatchReport(status=BATCH_SKIPPED)

        log = logger.bind(run_id=run_id)
        report = BatchReport(status=BATCH_COMPLETED, run_id=run_id)
        started_at = datetime.utcnow()

        try:
            pivots = self._load_pivots()
            report.total = len(pivots)
            log.info("batch_run_started", total=report.total, chunk_size=self.chunk_size)
            self.state_store.update_progress(
                run_id, 0, report.total, 0, {}, label=f"Queued {report.total} pivot(s)"
            )

            for chunk_number, chunk in enumerate(chunked(pivots, self.chunk_size), 1):
                self._process_chunk(chunk, report)

                owned = self.state_store.update_progress(
                    run_id, report.processed, report.total, report.error_count, report.failures
                )
                log.info("batch_chunk_completed",
                         chunk=chunk_number,
                         processed=report.processed,
                         total=report.total,
                         errors=report.error_count)
                if not owned:
                    # Watchdog already forced this run terminal
                    report.last_error = "Run lost ownership of batch state"
                    log.warning("batch_run_abandoned", processed=report.processed)
                    break
            else:
                report.retired = self._retire_unlisted(pivots, started_at)

        except Exception as e:
            report.last_error = f"{type(e).__name__}: {e}"
            log.error("batch_run_crashed", error=str(e), exc_info=True)

        if report.failures:
            report.error = PartialBatchFailure(report.failures)
        if report.failures or report.last_error:
            report.status = BATCH_COMPLETED_WITH_ERRORS

        self.state_store.finish(
            run_id,
            report.status,
            report.processed,
            report.total,
            report.error_count,
            report.failures,
            last_error=report.last_error
        )
        log.info("batch_run_finished",
                 status=report.status,
                 processed=report.processed,
                 total=report.total,
                 retired=report.retired,
                 errors=report.error_count)
        return report

    def recalculate_pivot(self, pivot_type: str, pivot_id: int) -> int:
        """
        Narrow-scope recalculation of a single pivot outside the batch gate.

        Raises:
            NotFoundError, IneligiblePivotError, TransientPersistenceError
        """
        session = self.session_factory()
        try:
            for attempt in range(1, MAX_PERSIST_ATTEMPTS + 1):
                try:
                    written = self.pivot_processor(session, pivot_type, pivot_id)
                    session.commit()
                    logger.info("pivot_recalculated", pivot_type=pivot_type, pivot_id=pivot_id, rows=written)
                    return written
                except TransientPersistenceError:
                    session.rollback()
                    if attempt == MAX_PERSIST_ATTEMPTS:
                        raise
                    logger.warning("pivot_persist_retry", pivot_type=pivot_type, pivot_id=pivot_id)
                except (NotFoundError, IneligiblePivotError):
                    session.rollback()
                    self._retire_pivot(session, pivot_type, pivot_id)
                    raise
                except Exception:
                    session.rollback()
                    raise
        finally:
            session.close()

    def _load_pivots(self) -> List[PivotKey]:
        session = self.session_factory()
        try:
            repository = MatchingRepository(session)
            pivots = [(PIVOT_CHILD, pid) for pid in repository.list_pivot_ids(PIVOT_CHILD)]
            pivots.extend((PIVOT_PREFERENCE, pid) for pid in repository.list_pivot_ids(PIVOT_PREFERENCE))
            return pivots
        finally:
            session.close()

    def _retire_pivot(
        self,
        session: Session,
        pivot_type: str,
        pivot_id: int,
        calculated_before: Optional[datetime] = None
    ) -> int:
        """Flip a pivot's current set to superseded and commit."""
        try:
            retired = MatchResultStore(session).retire_current(pivot_type, pivot_id, calculated_before)
            session.commit()
            return retired
        except Exception:
            session.rollback()
            raise

    def _retire_unlisted(self, pivots: Sequence[PivotKey], started_at: datetime) -> int:
        """
        Retire current sets of pivots that were not listed for this run.

        Those pivots left the eligible set (placed, closed, deleted). Sets
        written after the run started are left alone.
        """
        listed = set(pivots)
        retired = 0
        session = self.session_factory()
        try:
            store = MatchResultStore(session)
            stale = [
                (pivot_type, pivot_id)
                for pivot_type in (PIVOT_CHILD, PIVOT_PREFERENCE)
                for pivot_id in store.current_pivot_ids(pivot_type)
                if (pivot_type, pivot_id) not in listed
            ]
            session.rollback()
            for pivot_type, pivot_id in stale:
                retired += self._retire_pivot(session, pivot_type, pivot_id, calculated_before=started_at)
        finally:
            session.close()

        if retired:
            logger.info("ineligible_result_sets_retired", pivots=len(stale), rows=retired)
        return retired

    def _process_chunk(self, chunk: Sequence[PivotKey], report: BatchReport) -> None:
        session = self.session_factory()
        try:
            for pivot_type, pivot_id in chunk:
                error = self._process_pivot(session, pivot_type, pivot_id)
                report.processed += 1
                if error is not None:
                    report.failures[pivot_label(pivot_type, pivot_id)] = error
        finally:
            session.close()

    def _process_pivot(self, session: Session, pivot_type: str, pivot_id: int) -> Optional[str]:
        """Returns None on success, else the failure message recorded for the pivot."""
        log = logger.bind(pivot_type=pivot_type, pivot_id=pivot_id)

        for attempt in range(1, MAX_PERSIST_ATTEMPTS + 1):
            try:
                self.pivot_processor(session, pivot_type, pivot_id)
                session.commit()
                return None

            except TransientPersistenceError as e:
                session.rollback()
                if attempt == MAX_PERSIST_ATTEMPTS:
                    log.error("pivot_persist_failed", error=str(e), attempts=attempt)
                    return f"TransientPersistenceError: {e}"
                log.warning("pivot_persist_retry", error=str(e))

            except (NotFoundError, IneligiblePivotError) as e:
                # Pivot changed between listing and processing
                session.rollback()
                log.info("pivot_skipped", reason=str(e))
                try:
                    self._retire_pivot(session, pivot_type, pivot_id)
                except TransientPersistenceError as retire_error:
                    return f"TransientPersistenceError: {retire_error}"
                return None

            except Exception as e:
                session.rollback()
                log.error("pivot_recalculation_failed", error=str(e), exc_info=True)
                return f"{type(e).__name__}: {e}"

        return None
