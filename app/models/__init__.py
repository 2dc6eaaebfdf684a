"""
Database Models
"""

from app.models.child import Child
from app.models.family import Family
from app.models.preference import Preference
from app.models.match_result import MatchResult, MATCH_STATUSES, DEFAULT_MATCH_STATUS
from app.models.batch_run_state import BatchRunState
from app.models.pivot_result_lock import PivotResultLock

__all__ = [
    "Child",
    "Family",
    "Preference",
    "MatchResult",
    "MATCH_STATUSES",
    "DEFAULT_MATCH_STATUS",
    "BatchRunState",
    "PivotResultLock",
]
