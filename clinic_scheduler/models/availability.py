"""Availability model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Time
from clinic_scheduler.database import Base


class AvailabilityWindow(Base):
    """A weekly recurring window during which a practitioner sees patients.

    ``day_of_week`` follows ``date.weekday()``: 0 is Monday, 6 is Sunday.
    """
    __tablename__ = "availability_windows"
    __table_args__ = (
        Index("idx_availability_practitioner_day", "practitioner_id", "day_of_week", "is_active"),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
