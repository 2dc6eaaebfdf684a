"""
Matching Error Taxonomy

Scoring functions never raise; these errors surface from the matcher,
the result store, the batch engine and the status-update path.
"""

from typing import Dict, Optional


class MatchingError(Exception):
    """Base class for all matching errors."""


class NotFoundError(MatchingError):
    """A pivot, candidate or match result id does not resolve."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class IneligiblePivotError(MatchingError):
    """Pivot status is outside the eligible set."""

    def __init__(self, pivot_type: str, pivot_id: int, status: Optional[str]):
        self.pivot_type = pivot_type
        self.pivot_id = pivot_id
        self.status = status
        super().__init__(f"{pivot_type} {pivot_id} is not eligible for matching (status: {status})")


class ValidationError(MatchingError):
    """Malformed request (e.g. unknown match status, missing not-suitable reason)."""


class TransientPersistenceError(MatchingError):
    """Write conflict or resource failure while persisting results. Safe to retry."""


class PartialBatchFailure(MatchingError):
    """
    One or more pivots failed during a batch run.

    Non-fatal: the batch completes and the failures are recorded in BatchRunState.
    """

    def __init__(self, failures: Dict[str, str]):
        self.failures = dict(failures)
        super().__init__(f"{len(self.failures)} pivot(s) failed during batch recalculation")
