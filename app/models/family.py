"""
Family Model
Licensed foster households (candidates for child matching)
"""

from sqlalchemy import Column, Integer, String, DateTime, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class Family(Base):
    """
    Represents a foster family account.

    A family is a plausible candidate only while its license, background check
    and training statuses are all in the accepted sets from settings.
    """
    __tablename__ = "families"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False)

    # Eligibility status fields
    license_status = Column(String(50), nullable=True, index=True)  # Active, Pending, Expired, Revoked
    background_check_status = Column(String(50), nullable=True)  # Approved, Cleared, Pending, Failed
    training_status = Column(String(50), nullable=True)  # Complete, In Progress, Not Started

    # Household
    capacity = Column(Integer, nullable=False, default=0)  # available beds
    special_needs_level_supported = Column(Integer, nullable=False, default=0)  # 0 = none .. 3 = intensive

    # Location
    jurisdiction = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    preferences = relationship("Preference", back_populates="family", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Family(id={self.id}, name='{self.name}', license_status='{self.license_status}')>"
