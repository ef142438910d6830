"""Cached alternative-slot recommendations."""

from sqlalchemy import JSON, Column, DateTime, Index, Integer
from clinic_scheduler.database import Base


class AlternativeSlotCache(Base):
    __tablename__ = "alternative_slot_cache"
    __table_args__ = (
        Index("idx_alternative_cache_lookup", "practitioner_id", "requested_time", "expires_at"),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, nullable=False)
    requested_time = Column(DateTime, nullable=False)
    alternatives = Column(JSON, nullable=False)
    expires_at = Column(DateTime, nullable=False)
