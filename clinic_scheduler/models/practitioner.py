"""Practitioner model definitions."""

from sqlalchemy import Boolean, Column, Float, Integer, String
from clinic_scheduler.database import Base


class Practitioner(Base):
    """A clinician whose time can be booked."""
    __tablename__ = "practitioners"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    specialty = Column(String, index=True)
    rating = Column(Float)
    is_accepting_patients = Column(Boolean, default=True, nullable=False)
