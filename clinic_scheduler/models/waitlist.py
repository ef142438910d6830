"""Waitlist model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String
from clinic_scheduler.database import Base

WAITING = "waiting"
NOTIFIED = "notified"
EXPIRED = "expired"
FULFILLED = "fulfilled"
WAITLIST_STATUSES = (WAITING, NOTIFIED, EXPIRED, FULFILLED)
OPEN_WAITLIST_STATUSES = (WAITING, NOTIFIED)

MORNING = "morning"
AFTERNOON = "afternoon"
EVENING = "evening"
TIME_OF_DAY_BUCKETS = {
    MORNING: (8, 12),
    AFTERNOON: (12, 17),
    EVENING: (17, 21),
}


class WaitlistEntry(Base):
    """A patient queued for the next opening with a practitioner."""
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        Index("idx_waitlist_practitioner_status_created", "practitioner_id", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False, index=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False)
    preferred_date = Column(Date)
    preferred_time_of_day = Column(String)
    notes = Column(String)
    status = Column(String, nullable=False, default=WAITING)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    notified_at = Column(DateTime)
    offered_slot_start = Column(DateTime)
    appointment_id = Column(Integer, ForeignKey("appointments.id"))
