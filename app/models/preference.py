"""
Preference Model
A family's stated placement desiderata
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class Preference(Base):
    """
    Represents what a family is looking for in a placement.

    Null fields mean "no preference expressed" and never penalize a child.
    """
    __tablename__ = "preferences"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    # Foreign Keys
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False, index=True)

    # Lifecycle: Active, Inactive
    status = Column(String(50), nullable=False, default="Active", index=True)

    # Desired child profile
    age_min = Column(Integer, nullable=True)
    age_max = Column(Integer, nullable=True)
    preferred_gender = Column(String(20), nullable=True)
    gender_flexible = Column(Boolean, nullable=False, default=False)  # willing to consider other genders
    jurisdiction = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    family = relationship("Family", back_populates="preferences")

    def __repr__(self):
        return f"<Preference(id={self.id}, family_id={self.family_id}, status='{self.status}')>"
