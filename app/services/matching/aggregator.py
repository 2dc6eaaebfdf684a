"""
Score Aggregator

Combines weighted criterion scores and the distance adjustment into one
overall score, and collects match reasons and warning flags.

    overall = Σ(score × weight) / Σ(weight) + distance_delta

The overall score is only clamped to [0, 100] when
settings.clamp_overall_score is enabled.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union
import structlog

from app.config import settings
from app.services.matching import distance
from app.services.matching.criteria import Criterion, format_range
from app.services.matching.profiles import (
    PIVOT_CHILD,
    PIVOT_PREFERENCE,
    ChildProfile,
    FamilyProfile,
    MatchPair,
)

logger = structlog.get_logger(__name__)

REASON_THRESHOLD = 80.0
LOW_SCORE_THRESHOLD = 40.0


@dataclass
class ScoredMatch:
    """
    An unsaved match result for one pivot/candidate pairing.
    """
    pivot_type: str
    pivot_id: int
    candidate_id: int
    child_id: int
    family_id: int
    preference_id: Optional[int]
    candidate_name: str
    overall_score: float
    weighted_score: float
    distance_miles: Optional[float]
    distance_delta: int
    detailed_scores: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    match_reasons: List[str] = field(default_factory=list)
    hard_flags: List[str] = field(default_factory=list)
    soft_flags: List[str] = field(default_factory=list)
    is_eligible: bool = True
    rank: Optional[int] = None

    @property
    def flags(self) -> List[str]:
        """Hard eligibility flags first, then soft warnings."""
        return self.hard_flags + self.soft_flags

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pivot_type": self.pivot_type,
            "pivot_id": self.pivot_id,
            "candidate_id": self.candidate_id,
            "candidate_name": self.candidate_name,
            "child_id": self.child_id,
            "family_id": self.family_id,
            "preference_id": self.preference_id,
            "overall_score": self.overall_score,
            "distance_miles": round(self.distance_miles, 1) if self.distance_miles is not None else None,
            "distance_adjustment": distance.describe(self.distance_miles),
            "detailed_scores": self.detailed_scores,
            "match_reasons": list(self.match_reasons),
            "flags": self.flags,
            "is_eligible": self.is_eligible,
            "rank": self.rank,
        }


def _display_value(value: Any) -> Any:
    if isinstance(value, tuple) and len(value) == 2:
        return format_range(value)
    if isinstance(value, (list, set, frozenset)):
        return ", ".join(str(v) for v in value)
    return value


def aggregate(
    pivot: Union[ChildProfile, FamilyProfile],
    candidate: Union[ChildProfile, FamilyProfile],
    criteria: Sequence[Criterion],
    clamp: Optional[bool] = None
) -> ScoredMatch:
    """
    Score one candidate against one pivot.

    Args:
        pivot: ChildProfile (child matching) or FamilyProfile carrying the pivot preference
        candidate: FamilyProfile for a child pivot, ChildProfile for a preference pivot
        criteria: Weighted criteria of the match type
        clamp: Override settings.clamp_overall_score

    Returns:
        ScoredMatch; ineligible candidates are scored too, with is_eligible=False
    """
    if isinstance(pivot, ChildProfile):
        pair = MatchPair(child=pivot, family=candidate)
        pivot_type, pivot_id = PIVOT_CHILD, pivot.id
    else:
        pair = MatchPair(child=candidate, family=pivot)
        pivot_type, pivot_id = PIVOT_PREFERENCE, pivot.preference_id

    detailed: Dict[str, Dict[str, Any]] = {}
    reasons: List[str] = []
    hard_flags: List[str] = []
    soft_flags: List[str] = []
    eligible = True
    weighted_total = 0.0
    weight_total = 0.0

    for criterion in criteria:
        result, preference_value, candidate_value = criterion.evaluate(pair)

        weighted_total += result.score * criterion.weight
        weight_total += criterion.weight

        detailed[criterion.key] = {
            "criterion_name": criterion.name,
            "score": round(result.score, 2),
            "weight": criterion.weight,
            "priority": criterion.priority,
            "preference_value": _display_value(preference_value),
            "candidate_value": _display_value(candidate_value),
            "explanation": result.explanation,
        }

        if result.score >= REASON_THRESHOLD:
            reasons.append(f"{criterion.name}: {result.explanation}")

        if result.flag:
            (hard_flags if result.hard_flag else soft_flags).append(result.flag)
        elif result.score < LOW_SCORE_THRESHOLD:
            soft_flags.append(f"Low {criterion.name.lower()} match ({result.score:.0f})")

        if criterion.excludes_on_failure and result.hard_flag:
            eligible = False

    weighted_score = weighted_total / weight_total if weight_total else 0.0

    miles = distance.haversine_miles(
        pair.child.latitude, pair.child.longitude,
        pair.family.latitude, pair.family.longitude,
    )
    delta = distance.adjust(miles)
    if miles is None:
        soft_flags.append(distance.DISTANCE_UNAVAILABLE_FLAG)
    elif delta > 0:
        reasons.append(f"Lives nearby ({miles:.1f} mi)")

    overall = weighted_score + delta
    if settings.clamp_overall_score if clamp is None else clamp:
        overall = min(100.0, max(0.0, overall))

    if pivot_type == PIVOT_CHILD:
        candidate_id, candidate_name = pair.family.id, pair.family.name
    else:
        candidate_id, candidate_name = pair.child.id, pair.child.name

    return ScoredMatch(
        pivot_type=pivot_type,
        pivot_id=pivot_id,
        candidate_id=candidate_id,
        child_id=pair.child.id,
        family_id=pair.family.id,
        preference_id=pair.family.preference_id,
        candidate_name=candidate_name,
        overall_score=round(overall, 2),
        weighted_score=round(weighted_score, 2),
        distance_miles=miles,
        distance_delta=delta,
        detailed_scores=detailed,
        match_reasons=reasons,
        hard_flags=hard_flags,
        soft_flags=soft_flags,
        is_eligible=eligible,
    )
