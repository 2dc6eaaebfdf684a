"""
MatchResult Model
Stores scored child/family pairings, one current result set per pivot
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text, Index
from sqlalchemy.sql import func
from app.database import Base, JSONType

# Caseworker workflow states
MATCH_STATUSES = ("Pending", "Recommended", "Not Suitable", "On Hold", "Outreach Approved")
DEFAULT_MATCH_STATUS = "Pending"


class MatchResult(Base):
    """
    Represents one scored pairing between a pivot and a candidate.

    Rows sharing a result_set_id were written together. A recalculation inserts
    a new set and flips the previous set's is_current flag in the same
    transaction, so readers only ever see one complete current set per pivot.
    Superseded sets stay behind as match history until pruned.
    """
    __tablename__ = "match_results"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    # Result set grouping
    result_set_id = Column(String(36), nullable=False, index=True)
    is_current = Column(Boolean, nullable=False, default=True)

    # Pivot ("child" or "preference") and candidate
    pivot_type = Column(String(20), nullable=False)
    pivot_id = Column(Integer, nullable=False)
    candidate_id = Column(Integer, nullable=False)

    # Both sides of the pairing, whatever the direction
    child_id = Column(Integer, nullable=False, index=True)
    family_id = Column(Integer, nullable=False, index=True)
    preference_id = Column(Integer, nullable=True)

    # Scores
    overall_score = Column(Float, nullable=False)  # roughly 0-100, unclamped by default
    distance_miles = Column(Float, nullable=True)  # None when coordinates are missing

    # Per-criterion breakdown (JSONB on PostgreSQL)
    detailed_scores = Column(JSONType, nullable=True)
    """
    Example detailed_scores structure:
    {
        "age": {
            "criterion_name": "Age Range",
            "score": 100.0,
            "weight": 15,
            "priority": "Medium",
            "preference_value": "5-12",
            "candidate_value": 8,
            "explanation": "Perfect match - meets all criteria"
        },
        ...
    }
    """
    match_reasons = Column(JSONType, nullable=True)  # ordered list of strings
    flags = Column(JSONType, nullable=True)  # ordered list of warning strings

    # Ranking (None for candidates excluded by hard eligibility)
    is_eligible = Column(Boolean, nullable=False, default=True)
    rank = Column(Integer, nullable=True)

    # Caseworker workflow
    status = Column(String(50), nullable=False, default=DEFAULT_MATCH_STATUS)
    notes = Column(Text, nullable=True)
    not_suitable_reason = Column(Text, nullable=True)
    status_updated_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    calculated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_match_results_pivot_current', 'pivot_type', 'pivot_id', 'is_current'),
    )

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        return {
            "match_result_id": self.id,
            "result_set_id": self.result_set_id,
            "pivot_type": self.pivot_type,
            "pivot_id": self.pivot_id,
            "candidate_id": self.candidate_id,
            "child_id": self.child_id,
            "family_id": self.family_id,
            "preference_id": self.preference_id,
            "overall_score": self.overall_score,
            "distance_miles": self.distance_miles,
            "detailed_scores": self.detailed_scores or {},
            "match_reasons": self.match_reasons or [],
            "flags": self.flags or [],
            "is_eligible": self.is_eligible,
            "rank": self.rank,
            "status": self.status,
            "notes": self.notes,
            "not_suitable_reason": self.not_suitable_reason,
            "is_current": self.is_current,
            "calculated_at": self.calculated_at.isoformat() if self.calculated_at else None,
        }

    def __repr__(self):
        return (
            f"<MatchResult(id={self.id}, pivot={self.pivot_type}:{self.pivot_id}, "
            f"candidate={self.candidate_id}, score={self.overall_score}, rank={self.rank})>"
        )
