"""
Child Model
Children awaiting placement (pivot for family matching, candidate for preference matching)
"""

from sqlalchemy import Column, Integer, String, DateTime, Float
from sqlalchemy.sql import func
from app.database import Base


class Child(Base):
    """
    Represents a child in care.

    Only children whose status is in settings.eligible_pivot_statuses
    ("Active", "Needs Placement") take part in matching.
    """
    __tablename__ = "children"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False)

    # Lifecycle: Active, Needs Placement, Placed, Inactive
    status = Column(String(50), nullable=False, default="Needs Placement", index=True)

    # Profile
    age = Column(Integer, nullable=True)
    gender = Column(String(20), nullable=True)
    jurisdiction = Column(String(100), nullable=True)  # county of custody
    preferred_jurisdiction = Column(String(100), nullable=True)  # required placement jurisdiction, if any
    special_needs_level = Column(Integer, nullable=False, default=0)  # 0 = none .. 3 = intensive
    sibling_group_size = Column(Integer, nullable=False, default=1)  # children placed together

    # Location
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Child(id={self.id}, name='{self.name}', status='{self.status}')>"
