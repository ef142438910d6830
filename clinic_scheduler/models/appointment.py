"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, text
from clinic_scheduler.database import Base

PENDING = "pending"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"
NO_SHOW = "no_show"

NON_TERMINAL_STATUSES = (PENDING, CONFIRMED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED, NO_SHOW)
APPOINTMENT_STATUSES = NON_TERMINAL_STATUSES + TERMINAL_STATUSES

IN_PERSON = "in_person"
TELEHEALTH = "telehealth"

_NON_TERMINAL_PREDICATE = text("status IN ('pending', 'confirmed')")


class Appointment(Base):
    """Represents a booked visit holding a practitioner's time."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_practitioner_start_active",
            "practitioner_id",
            "scheduled_at",
            unique=True,
            sqlite_where=_NON_TERMINAL_PREDICATE,
            postgresql_where=_NON_TERMINAL_PREDICATE,
        ),
        Index("idx_appointments_practitioner_range", "practitioner_id", "scheduled_at", "ends_at"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False, index=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=PENDING)
    modality = Column(String, nullable=False, default=IN_PERSON)
    consultation_type = Column(String)
    chief_complaint = Column(String)
    urgency_level = Column(String)
    fee = Column(Numeric(10, 2))
    currency = Column(String(3))
    cancellation_reason = Column(String)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)
