"""
BatchRunState Model
Process-wide record of the in-flight or last completed matching recalculation
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from app.database import Base, JSONType

# State machine: idle -> running -> completed | completed_with_errors -> (idle)
# Terminal states behave like idle for the start gate.
BATCH_IDLE = "idle"
BATCH_RUNNING = "running"
BATCH_COMPLETED = "completed"
BATCH_COMPLETED_WITH_ERRORS = "completed_with_errors"


class BatchRunState(Base):
    """
    Single row per named batch engine (default: "matching").

    Only the batch engine writes this row; the API and the scheduler read it.
    The idle -> running transition is a conditional UPDATE so two near
    simultaneous starts cannot both win.
    """
    __tablename__ = "batch_run_state"

    # Primary Key
    name = Column(String(50), primary_key=True)

    status = Column(String(30), nullable=False, default=BATCH_IDLE)
    run_id = Column(String(36), nullable=True)  # token of the run that owns the row
    status_label = Column(String(255), nullable=True)  # human readable progress line

    # Progress
    processed = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    failures = Column(JSONType, nullable=True)  # {"child:12": "error message", ...}

    # Run Timestamps
    started_at = Column(DateTime(timezone=True), nullable=True)
    heartbeat_at = Column(DateTime(timezone=True), nullable=True)  # refreshed after every chunk
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)

    last_error = Column(Text, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<BatchRunState(name='{self.name}', status='{self.status}', processed={self.processed}/{self.total})>"
