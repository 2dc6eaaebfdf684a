"""
Matching Service

Operations exposed to the API and the on-demand trigger path:
- run_matching_now: synchronous single-pivot matching, never raises
- get_batch_status: snapshot of the batch run state
- trigger_recalculation: pivot-scoped (Dramatiq) or full (scheduler) recalculation
- update_match_status: caseworker workflow status
- get_current_results / get_match_history: persisted result sets
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session, sessionmaker
import structlog

from app.database import get_session_factory
from app.middleware.correlation_id import get_correlation_id
from app.services.matching import (
    IneligiblePivotError,
    MatchingError,
    MatchResultStore,
    NotFoundError,
    ValidationError,
    summarize,
)
from app.services.matching.profiles import PIVOT_TYPES
from app.services.matching_engine import CandidateMatcher
from app.services.recalculation.scheduler import RecalculationScheduler
from app.services.recalculation.state import BatchStateStore

logger = structlog.get_logger(__name__)


def validate_pivot_type(pivot_type: str) -> None:
    if pivot_type not in PIVOT_TYPES:
        raise ValidationError(f"Unknown pivot type '{pivot_type}'. Allowed: {', '.join(PIVOT_TYPES)}")


def _failure(message: str) -> Dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "results": [],
        "excluded": [],
        "summary": summarize([]),
        "persisted": False,
    }


class MatchingService:
    """
    Facade over matcher, result store, batch state and scheduler.

    Usage:
        service = MatchingService(db)
        response = service.run_matching_now("child", 42)
        if response["success"]:
            for match in response["results"]:
                print(match["rank"], match["candidate_name"])
    """

    def __init__(
        self,
        db: Session,
        session_factory: Optional[sessionmaker] = None,
        recalculation_scheduler: Optional[RecalculationScheduler] = None
    ):
        """
        Args:
            db: SQLAlchemy session for request-scoped work
            session_factory: sessionmaker for batch state reads (default: app.database.SessionLocal)
            recalculation_scheduler: Debounced full-run scheduler (None: full runs go to the worker)
        """
        self.db = db
        self.session_factory = session_factory or get_session_factory()
        self.recalculation_scheduler = recalculation_scheduler

    def run_matching_now(self, pivot_type: str, pivot_id: int, persist: bool = False) -> Dict[str, Any]:
        """
        Match one pivot immediately, bypassing the scheduler and the batch engine.

        Always returns {success, message, results, excluded, summary, persisted};
        failures are reported in the response, never raised.
        """
        log = logger.bind(pivot_type=pivot_type, pivot_id=pivot_id, persist=persist)

        if self.db is None:
            return _failure("Database not configured")

        try:
            validate_pivot_type(pivot_type)
            outcome = CandidateMatcher(self.db).match(pivot_type, pivot_id)

            persisted = False
            if persist:
                written = MatchResultStore(self.db).upsert_results(pivot_type, pivot_id, outcome.breakdown)
                self.db.commit()
                # An empty list for a non-empty breakdown means a newer set was kept
                persisted = bool(written) or not outcome.breakdown

            results = [m.to_dict() for m in outcome.ranked]
            excluded = [m.to_dict() for m in outcome.excluded]

            if results:
                message = f"Found {len(results)} eligible match(es)"
            else:
                message = "No eligible candidates found"
            if excluded:
                message += f"; {len(excluded)} candidate(s) excluded by eligibility requirements"
            if persist and not persisted:
                message += "; not saved, a newer result set is already stored"

            log.info("run_matching_now_completed", ranked=len(results), excluded=len(excluded), persisted=persisted)
            return {
                "success": True,
                "message": message,
                "results": results,
                "excluded": excluded,
                "summary": summarize(results),
                "persisted": persisted,
            }

        except (NotFoundError, IneligiblePivotError, ValidationError) as e:
            self.db.rollback()
            log.info("run_matching_now_rejected", reason=str(e))
            return _failure(str(e))

        except MatchingError as e:
            self.db.rollback()
            log.warning("run_matching_now_failed", error=str(e))
            return _failure(f"Matching failed: {e}")

        except Exception as e:
            self.db.rollback()
            log.error("run_matching_now_crashed", error=str(e), exc_info=True)
            return _failure(f"Matching failed: {type(e).__name__}")

    def get_batch_status(self) -> Dict[str, Any]:
        """Snapshot of BatchRunState plus the scheduler's pending flags."""
        status = BatchStateStore(self.session_factory).snapshot().to_dict()
        if self.recalculation_scheduler is not None:
            status["pending"] = self.recalculation_scheduler.pending
            status["rerun_requested"] = self.recalculation_scheduler.rerun_requested
        return status

    def trigger_recalculation(self, pivot_type: Optional[str] = None, pivot_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Request a recalculation.

        With a pivot, only that pivot is recalculated (Dramatiq message).
        Without one, a full run is requested through the debounced scheduler,
        or sent to the worker when no scheduler runs in this process.

        Raises:
            ValidationError: unknown pivot_type, or only one of pivot_type/pivot_id given
        """
        from app.actors.recalculation import recalculate_pivot, run_batch_recalculation

        if (pivot_type is None) != (pivot_id is None):
            raise ValidationError("pivot_type and pivot_id must be given together")

        if pivot_type is not None:
            validate_pivot_type(pivot_type)
            message = recalculate_pivot.send(pivot_type, pivot_id, get_correlation_id())
            logger.info("pivot_recalculation_enqueued",
                        pivot_type=pivot_type,
                        pivot_id=pivot_id,
                        message_id=message.message_id)
            return {"scope": "pivot", "status": "enqueued", "pivot_type": pivot_type, "pivot_id": pivot_id}

        if self.recalculation_scheduler is not None:
            result = self.recalculation_scheduler.request_recalculation()
            return {"scope": "full", "status": result}

        message = run_batch_recalculation.send()
        logger.info("batch_recalculation_enqueued", message_id=message.message_id)
        return {"scope": "full", "status": "enqueued"}

    def update_match_status(
        self,
        result_id: int,
        new_status: str,
        notes: Optional[str] = None,
        reason_if_not_suitable: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Raises:
            ValidationError: unknown status or missing not-suitable reason (nothing written)
            NotFoundError: result_id does not exist
        """
        row = MatchResultStore(self.db).update_result_status(
            result_id, new_status, notes=notes, reason_if_not_suitable=reason_if_not_suitable
        )
        self.db.commit()
        return row.to_dict()

    def get_current_results(self, pivot_type: str, pivot_id: int) -> Dict[str, Any]:
        validate_pivot_type(pivot_type)
        rows = [row.to_dict() for row in MatchResultStore(self.db).get_current_results(pivot_type, pivot_id)]
        ranked = [r for r in rows if r["is_eligible"]]
        return {
            "pivot_type": pivot_type,
            "pivot_id": pivot_id,
            "results": ranked,
            "excluded": [r for r in rows if not r["is_eligible"]],
            "summary": summarize(ranked),
        }

    def get_match_history(self, pivot_type: str, pivot_id: int, limit: int = 200) -> Dict[str, Any]:
        """Superseded result sets, newest first, grouped by result_set_id."""
        validate_pivot_type(pivot_type)
        rows = MatchResultStore(self.db).get_history(pivot_type, pivot_id, limit=limit)

        sets: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for row in rows:
            entry = sets.setdefault(row.result_set_id, {
                "result_set_id": row.result_set_id,
                "calculated_at": row.calculated_at.isoformat() if row.calculated_at else None,
                "results": [],
            })
            entry["results"].append(row.to_dict())

        history: List[Dict[str, Any]] = list(sets.values())
        return {"pivot_type": pivot_type, "pivot_id": pivot_id, "result_sets": history}
