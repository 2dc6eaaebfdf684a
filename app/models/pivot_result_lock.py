"""
PivotResultLock Model
One lock row per pivot, serializing replacement of its current result set
"""

from sqlalchemy import Column, Integer, String, DateTime
from app.database import Base


class PivotResultLock(Base):
    """
    Row-level lock for MatchResultStore writes.

    A writer touches the pivot's row (insert-if-missing, then UPDATE) before
    reading or replacing the current set. The row lock is held until the
    writer's transaction ends, so overlapping batch and on-demand writes for
    the same pivot run one after the other.
    """
    __tablename__ = "pivot_result_locks"

    pivot_type = Column(String(20), primary_key=True)
    pivot_id = Column(Integer, primary_key=True)

    locked_at = Column(DateTime(timezone=True), nullable=True)  # last writer to take the lock

    def __repr__(self):
        return f"<PivotResultLock(pivot={self.pivot_type}:{self.pivot_id}, locked_at={self.locked_at})>"
