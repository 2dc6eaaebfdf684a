"""
Matching Service Package

Provides the criterion evaluator, distance adjustment, score aggregator,
typed profiles, record repository and result store used to match children
with foster families.
"""

from app.services.matching.exceptions import (
    MatchingError,
    NotFoundError,
    IneligiblePivotError,
    ValidationError,
    TransientPersistenceError,
    PartialBatchFailure,
)
from app.services.matching.profiles import (
    PIVOT_CHILD,
    PIVOT_PREFERENCE,
    PIVOT_TYPES,
    ChildProfile,
    FamilyProfile,
    MatchPair,
)
from app.services.matching.criteria import (
    Criterion,
    CriterionScore,
    CRITERIA_BY_PIVOT_TYPE,
    CHILD_TO_FAMILY_CRITERIA,
    PREFERENCE_TO_CHILD_CRITERIA,
    evaluate,
)
from app.services.matching.distance import adjust, haversine_miles
from app.services.matching.aggregator import ScoredMatch, aggregate
from app.services.matching.repository import MatchingRepository
from app.services.matching.result_store import MatchResultStore, summarize, validate_status_update

__all__ = [
    # Errors
    "MatchingError",
    "NotFoundError",
    "IneligiblePivotError",
    "ValidationError",
    "TransientPersistenceError",
    "PartialBatchFailure",
    # Profiles
    "PIVOT_CHILD",
    "PIVOT_PREFERENCE",
    "PIVOT_TYPES",
    "ChildProfile",
    "FamilyProfile",
    "MatchPair",
    # Criteria
    "Criterion",
    "CriterionScore",
    "CRITERIA_BY_PIVOT_TYPE",
    "CHILD_TO_FAMILY_CRITERIA",
    "PREFERENCE_TO_CHILD_CRITERIA",
    "evaluate",
    # Distance
    "adjust",
    "haversine_miles",
    # Aggregation
    "ScoredMatch",
    "aggregate",
    # Persistence
    "MatchingRepository",
    "MatchResultStore",
    "summarize",
    "validate_status_update",
]
