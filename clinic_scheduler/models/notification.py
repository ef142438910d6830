"""Notification failure model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from clinic_scheduler.database import Base

BOOKING_NOTIFICATION = "booking"
WAITLIST_NOTIFICATION = "waitlist"


class NotificationFailure(Base):
    """A notification that could not be delivered and awaits an external retry."""
    __tablename__ = "notification_failures"

    id = Column(Integer, primary_key=True)
    kind = Column(String, nullable=False)
    appointment_id = Column(Integer)
    waitlist_entry_id = Column(Integer)
    patient_id = Column(Integer)
    error = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    retried = Column(Boolean, default=False, nullable=False)
