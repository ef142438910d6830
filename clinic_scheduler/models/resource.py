"""Resource and resource reservation model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from clinic_scheduler.database import Base

ROOM = "room"
EQUIPMENT = "equipment"
RESOURCE_KINDS = (ROOM, EQUIPMENT)


class Resource(Base):
    """A room or piece of equipment held exclusively for an appointment."""
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class ResourceReservation(Base):
    """Holds one resource for one appointment's time range on one date."""
    __tablename__ = "resource_reservations"
    __table_args__ = (
        UniqueConstraint("resource_id", "booking_date", "start_time", name="uq_resource_reservation_start"),
        Index("idx_resource_reservations_range", "resource_id", "booking_date", "start_time", "end_time"),
    )

    id = Column(Integer, primary_key=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    booking_date = Column(Date, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    booked_by = Column(Integer)
