"""
Match Result Store

Persists ranked result sets, one current set per pivot.

Replacement is write-new-then-flip under a per-pivot lock: the writer locks
the pivot (pivot_result_locks row), checks for a newer set, inserts and
flushes the new rows, then flips every other current row of the pivot to
is_current=False in one UPDATE, all in the same transaction. Readers never
observe an empty or partial current set, and overlapping writers for one
pivot leave exactly one current set.
Does NOT commit - caller controls the transaction.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
import uuid
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session
import structlog

from app.models import MatchResult, PivotResultLock, MATCH_STATUSES, DEFAULT_MATCH_STATUS
from app.services.matching.aggregator import ScoredMatch
from app.services.matching.exceptions import (
    NotFoundError,
    TransientPersistenceError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

NOT_SUITABLE = "Not Suitable"

# Dialects with INSERT .. ON CONFLICT DO NOTHING
INSERT_IGNORING_DIALECTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def validate_status_update(new_status: str, reason_if_not_suitable: Optional[str]) -> None:
    """Raise ValidationError for an unknown status or a missing not-suitable reason."""
    if new_status not in MATCH_STATUSES:
        raise ValidationError(
            f"Invalid status '{new_status}'. Allowed: {', '.join(MATCH_STATUSES)}"
        )
    if new_status == NOT_SUITABLE and not (reason_if_not_suitable or "").strip():
        raise ValidationError("A reason is required when marking a match as Not Suitable")


class MatchResultStore:
    """
    Persistence for MatchResult rows.

    Does NOT commit - caller controls transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def upsert_results(
        self,
        pivot_type: str,
        pivot_id: int,
        results: Sequence[ScoredMatch],
        calculated_at: Optional[datetime] = None
    ) -> List[MatchResult]:
        """
        Replace the pivot's current result set.

        Takes the pivot's lock first, so overlapping writers for one pivot
        run one after the other. Later write wins by calculated_at: if the
        current set was calculated after this one, the new set is discarded
        and an empty list returned.

        Raises:
            TransientPersistenceError: write conflict / database resource failure
        """
        calculated_at = calculated_at or datetime.utcnow()
        log = logger.bind(pivot_type=pivot_type, pivot_id=pivot_id)

        try:
            self._lock_pivot(pivot_type, pivot_id)

            newer = self.db.query(MatchResult.id).filter(
                MatchResult.pivot_type == pivot_type,
                MatchResult.pivot_id == pivot_id,
                MatchResult.is_current.is_(True),
                MatchResult.calculated_at > calculated_at
            ).first()
            if newer is not None:
                log.info("stale_result_set_discarded", calculated_at=calculated_at.isoformat())
                return []

            carried = {row.candidate_id: row for row in self._current_rows(pivot_type, pivot_id, refresh=True)}

            result_set_id = str(uuid.uuid4())
            rows: List[MatchResult] = []
            for scored in results:
                row = MatchResult(
                    result_set_id=result_set_id,
                    is_current=True,
                    pivot_type=pivot_type,
                    pivot_id=pivot_id,
                    candidate_id=scored.candidate_id,
                    child_id=scored.child_id,
                    family_id=scored.family_id,
                    preference_id=scored.preference_id,
                    overall_score=scored.overall_score,
                    distance_miles=scored.distance_miles,
                    detailed_scores=scored.detailed_scores,
                    match_reasons=list(scored.match_reasons),
                    flags=scored.flags,
                    is_eligible=scored.is_eligible,
                    rank=scored.rank,
                    status=DEFAULT_MATCH_STATUS,
                    calculated_at=calculated_at,
                )
                # Caseworker decisions survive recalculation
                prior = carried.get(scored.candidate_id)
                if prior is not None and prior.status != DEFAULT_MATCH_STATUS:
                    row.status = prior.status
                    row.notes = prior.notes
                    row.not_suitable_reason = prior.not_suitable_reason
                    row.status_updated_at = prior.status_updated_at
                self.db.add(row)
                rows.append(row)

            self.db.flush()

            # Every other current row of the pivot, including sets committed
            # by another writer while this one waited on the lock
            superseded = self.db.query(MatchResult).filter(
                MatchResult.pivot_type == pivot_type,
                MatchResult.pivot_id == pivot_id,
                MatchResult.is_current.is_(True),
                MatchResult.result_set_id != result_set_id
            ).update({MatchResult.is_current: False}, synchronize_session="fetch")

        except (OperationalError, IntegrityError) as e:
            log.warning("result_persist_conflict", error=str(e))
            raise TransientPersistenceError(str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise TransientPersistenceError(str(e)) from e
            raise

        log.info("match_results_saved",
                 result_set_id=result_set_id,
                 count=len(rows),
                 superseded=superseded)
        return rows

    def retire_current(
        self,
        pivot_type: str,
        pivot_id: int,
        calculated_before: Optional[datetime] = None
    ) -> int:
        """
        Mark the pivot's current set superseded without replacing it.

        Used when the pivot left the eligible set or no longer exists. With
        calculated_before, a set written after that moment is kept.

        Returns:
            Number of rows retired
        """
        try:
            self._lock_pivot(pivot_type, pivot_id)
            query = self.db.query(MatchResult).filter(
                MatchResult.pivot_type == pivot_type,
                MatchResult.pivot_id == pivot_id,
                MatchResult.is_current.is_(True)
            )
            if calculated_before is not None:
                query = query.filter(MatchResult.calculated_at < calculated_before)
            retired = query.update({MatchResult.is_current: False}, synchronize_session="fetch")
        except (OperationalError, IntegrityError) as e:
            raise TransientPersistenceError(str(e)) from e

        if retired:
            logger.info("match_results_retired", pivot_type=pivot_type, pivot_id=pivot_id, count=retired)
        return retired

    def current_pivot_ids(self, pivot_type: str) -> List[int]:
        """Ids of pivots of one type that have a current result set."""
        rows = self.db.query(MatchResult.pivot_id).filter(
            MatchResult.pivot_type == pivot_type,
            MatchResult.is_current.is_(True)
        ).distinct().order_by(MatchResult.pivot_id).all()
        return [row[0] for row in rows]

    def get_current_results(self, pivot_type: str, pivot_id: int) -> List[MatchResult]:
        """Current set: ranked rows first by rank, then excluded rows by score."""
        rows = self._current_rows(pivot_type, pivot_id)
        return sorted(
            rows,
            key=lambda r: (r.rank is None, r.rank or 0, -(r.overall_score or 0.0), r.candidate_id)
        )

    def get_history(self, pivot_type: str, pivot_id: int, limit: int = 200) -> List[MatchResult]:
        """Superseded rows, newest first."""
        return self.db.query(MatchResult).filter(
            MatchResult.pivot_type == pivot_type,
            MatchResult.pivot_id == pivot_id,
            MatchResult.is_current.is_(False)
        ).order_by(
            MatchResult.calculated_at.desc(),
            MatchResult.rank.asc()
        ).limit(limit).all()

    def update_result_status(
        self,
        result_id: int,
        new_status: str,
        notes: Optional[str] = None,
        reason_if_not_suitable: Optional[str] = None
    ) -> MatchResult:
        """
        Update caseworker workflow status.

        Validation happens before any read or write.

        Raises:
            ValidationError: unknown status or missing not-suitable reason
            NotFoundError: result_id does not exist
        """
        validate_status_update(new_status, reason_if_not_suitable)

        row = self.db.query(MatchResult).filter(MatchResult.id == result_id).first()
        if row is None:
            raise NotFoundError("MatchResult", result_id)

        row.status = new_status
        row.notes = notes
        row.not_suitable_reason = reason_if_not_suitable.strip() if new_status == NOT_SUITABLE else None
        row.status_updated_at = datetime.utcnow()
        self.db.flush()

        logger.info("match_status_updated",
                    result_id=result_id,
                    status=new_status,
                    pivot_type=row.pivot_type,
                    pivot_id=row.pivot_id)
        return row

    def prune_history(self, retention_days: int) -> int:
        """Delete superseded rows older than the retention window."""
        cutoff = datetime.utcnow() - timedelta(days=retention_days)
        deleted = self.db.query(MatchResult).filter(
            MatchResult.is_current.is_(False),
            MatchResult.calculated_at < cutoff
        ).delete(synchronize_session=False)
        logger.info("match_history_pruned", deleted=deleted, retention_days=retention_days)
        return deleted

    def _current_rows(self, pivot_type: str, pivot_id: int, refresh: bool = False) -> List[MatchResult]:
        query = self.db.query(MatchResult).filter(
            MatchResult.pivot_type == pivot_type,
            MatchResult.pivot_id == pivot_id,
            MatchResult.is_current.is_(True)
        )
        if refresh:
            # Rows already in the session may predate another writer's commit
            query = query.populate_existing()
        return query.all()

    def _lock_pivot(self, pivot_type: str, pivot_id: int) -> None:
        """
        Take the pivot's row lock for the rest of the caller's transaction.

        The lock row is created on first use (insert-if-missing); the UPDATE
        then blocks while another transaction holds the same row.
        """
        now = datetime.utcnow()
        insert_ignoring = INSERT_IGNORING_DIALECTS.get(self.db.get_bind().dialect.name)
        if insert_ignoring is not None:
            self.db.execute(
                insert_ignoring(PivotResultLock)
                .values(pivot_type=pivot_type, pivot_id=pivot_id, locked_at=now)
                .on_conflict_do_nothing(index_elements=["pivot_type", "pivot_id"])
            )
        elif self.db.get(PivotResultLock, (pivot_type, pivot_id)) is None:
            self.db.add(PivotResultLock(pivot_type=pivot_type, pivot_id=pivot_id, locked_at=now))
            self.db.flush()

        self.db.query(PivotResultLock).filter(
            PivotResultLock.pivot_type == pivot_type,
            PivotResultLock.pivot_id == pivot_id
        ).update({PivotResultLock.locked_at: now}, synchronize_session=False)


def summarize(results: Sequence[Dict]) -> Dict[str, float]:
    """Summary statistics over ranked result dicts (total, average, top, average distance)."""
    if not results:
        return {"total_matches": 0, "average_score": 0.0, "top_score": 0.0, "average_distance": None}

    scores = [r["overall_score"] for r in results]
    distances = [r["distance_miles"] for r in results if r.get("distance_miles") is not None]
    return {
        "total_matches": len(results),
        "average_score": round(sum(scores) / len(scores), 1),
        "top_score": round(max(scores), 1),
        "average_distance": round(sum(distances) / len(distances), 1) if distances else None,
    }
