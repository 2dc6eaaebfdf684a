"""
Candidate Matcher

Ranks candidates for one pivot:
- child pivot: scored against every pre-filtered family (with its active preference)
- preference pivot: scored against every eligible child

Candidates failing a hard eligibility criterion (license, background check,
training) are scored for transparency but left out of the ranking.

Ordering: overall score desc, distance asc (unknown distance last),
candidate id asc. Rank is the 1-based position in that order.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from sqlalchemy.orm import Session
import structlog

from app.config import settings
from app.services.matching import (
    CRITERIA_BY_PIVOT_TYPE,
    Criterion,
    IneligiblePivotError,
    MatchingRepository,
    ScoredMatch,
    aggregate,
)
from app.services.matching.profiles import PIVOT_CHILD, PIVOT_PREFERENCE, PIVOT_TYPES

logger = structlog.get_logger(__name__)


def ranking_key(match: ScoredMatch):
    """Deterministic ordering for ranked output."""
    distance = match.distance_miles if match.distance_miles is not None else float("inf")
    return (-match.overall_score, distance, match.candidate_id)


def rank_matches(matches: Sequence[ScoredMatch]) -> List[ScoredMatch]:
    """Sort eligible matches and assign 1-based ranks."""
    ranked = sorted(matches, key=ranking_key)
    for position, match in enumerate(ranked, 1):
        match.rank = position
    return ranked


@dataclass
class MatchOutcome:
    """
    Result of matching one pivot.
    """
    pivot_type: str
    pivot_id: int
    ranked: List[ScoredMatch] = field(default_factory=list)  # eligible, ranked 1..n
    excluded: List[ScoredMatch] = field(default_factory=list)  # hard-ineligible, unranked

    @property
    def breakdown(self) -> List[ScoredMatch]:
        """Every scored candidate, ranked ones first."""
        return self.ranked + self.excluded


class CandidateMatcher:
    """
    Scores and ranks candidates for a single pivot.

    Usage:
        matcher = CandidateMatcher(db)
        outcome = matcher.match("child", 42)
        for m in outcome.ranked:
            print(m.rank, m.candidate_name, m.overall_score)
    """

    def __init__(
        self,
        db: Session,
        repository: Optional[MatchingRepository] = None,
        clamp: Optional[bool] = None
    ):
        """
        Initialize matcher.

        Args:
            db: SQLAlchemy session
            repository: Record repository (default: MatchingRepository(db))
            clamp: Override settings.clamp_overall_score
        """
        self.db = db
        self.repository = repository or MatchingRepository(db)
        self.clamp = clamp

    def match(self, pivot_type: str, pivot_id: int) -> MatchOutcome:
        """
        Rank candidates for a pivot.

        Raises:
            NotFoundError: pivot does not exist
            IneligiblePivotError: pivot status is outside the eligible set
            ValueError: unknown pivot_type
        """
        if pivot_type not in PIVOT_TYPES:
            raise ValueError(f"Unknown pivot type: {pivot_type}")

        log = logger.bind(pivot_type=pivot_type, pivot_id=pivot_id)
        criteria: Sequence[Criterion] = CRITERIA_BY_PIVOT_TYPE[pivot_type]

        if pivot_type == PIVOT_CHILD:
            pivot = self.repository.get_child(pivot_id)
            if pivot.status not in settings.eligible_pivot_statuses:
                raise IneligiblePivotError(pivot_type, pivot_id, pivot.status)
            candidates = self.repository.list_candidate_families()
        else:
            pivot = self.repository.get_preference(pivot_id)
            if pivot.preference_status not in settings.eligible_preference_statuses:
                raise IneligiblePivotError(pivot_type, pivot_id, pivot.preference_status)
            candidates = self.repository.list_candidate_children()

        log.info("candidates_loaded", count=len(candidates))

        eligible: List[ScoredMatch] = []
        excluded: List[ScoredMatch] = []
        for candidate in candidates:
            scored = aggregate(pivot, candidate, criteria, clamp=self.clamp)
            (eligible if scored.is_eligible else excluded).append(scored)

        ranked = rank_matches(eligible)
        excluded.sort(key=ranking_key)

        for m in ranked[:3]:
            log.info("match_candidate",
                     rank=m.rank,
                     candidate_id=m.candidate_id,
                     score=m.overall_score,
                     distance_miles=round(m.distance_miles, 1) if m.distance_miles is not None else None)

        log.info("matching_completed", ranked=len(ranked), excluded=len(excluded))
        return MatchOutcome(pivot_type=pivot_type, pivot_id=pivot_id, ranked=ranked, excluded=excluded)


__all__ = ["CandidateMatcher", "MatchOutcome", "rank_matches", "ranking_key", "PIVOT_CHILD", "PIVOT_PREFERENCE"]
