"""Schedule Store access layer.

Thin read/write primitives over the scheduling tables. Every write commits
on its own, and every call except the compensation deletes first checks the
request's cancellation token.
"""

import logging
from datetime import date, datetime
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clinic_scheduler.core.cancellation import CancellationToken
from clinic_scheduler.models.alternative_cache import AlternativeSlotCache
from clinic_scheduler.models.appointment import CANCELLED, NON_TERMINAL_STATUSES, Appointment
from clinic_scheduler.models.availability import AvailabilityWindow
from clinic_scheduler.models.notification import NotificationFailure
from clinic_scheduler.models.practitioner import Practitioner
from clinic_scheduler.models.resource import Resource, ResourceReservation
from clinic_scheduler.models.waitlist import FULFILLED, NOTIFIED, OPEN_WAITLIST_STATUSES, WAITING, WaitlistEntry

logger = logging.getLogger(__name__)


class ScheduleStore:
    def __init__(self, db: Session, token: CancellationToken | None = None) -> None:
        self.db = db
        self.token = token or CancellationToken()

    def _checkpoint(self) -> None:
        self.token.raise_if_cancelled()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _add(self, record):
        self._checkpoint()
        self.db.add(record)
        self._commit()
        self.db.refresh(record)
        return record

    def session_factory(self) -> sessionmaker:
        """A session factory on the same bind, for work that outlives this session."""
        return sessionmaker(autocommit=False, autoflush=False, bind=self.db.get_bind())

    # Directory

    def get_practitioner(self, practitioner_id: int) -> Practitioner | None:
        self._checkpoint()
        return self.db.get(Practitioner, practitioner_id)

    def get_practitioners(self, practitioner_ids: Iterable[int]) -> dict[int, Practitioner]:
        self._checkpoint()
        ids = list(practitioner_ids)
        if not ids:
            return {}
        rows = self.db.query(Practitioner).filter(Practitioner.id.in_(ids)).all()
        return {row.id: row for row in rows}

    def list_practitioners(self, specialty: str | None = None) -> list[Practitioner]:
        self._checkpoint()
        query = self.db.query(Practitioner)
        if specialty:
            query = query.filter(Practitioner.specialty == specialty)
        return query.order_by(Practitioner.id.asc()).all()

    def add_practitioner(self, practitioner: Practitioner) -> Practitioner:
        return self._add(practitioner)

    def equivalent_practitioners(self, specialty: str, exclude_id: int, limit: int) -> list[Practitioner]:
        self._checkpoint()
        return self.db.query(Practitioner).filter(
            Practitioner.specialty == specialty,
            Practitioner.id != exclude_id,
            Practitioner.is_accepting_patients.is_(True),
        ).order_by(Practitioner.rating.desc().nulls_last(), Practitioner.id.asc()).limit(limit).all()

    def get_resources(self, resource_ids: Iterable[int]) -> dict[int, Resource]:
        self._checkpoint()
        ids = list(resource_ids)
        if not ids:
            return {}
        rows = self.db.query(Resource).filter(Resource.id.in_(ids)).all()
        return {row.id: row for row in rows}

    def list_resources(self, kind: str | None = None) -> list[Resource]:
        self._checkpoint()
        query = self.db.query(Resource)
        if kind:
            query = query.filter(Resource.kind == kind)
        return query.order_by(Resource.id.asc()).all()

    def add_resource(self, resource: Resource) -> Resource:
        return self._add(resource)

    # Availability

    def active_windows(self, practitioner_ids: Iterable[int]) -> list[AvailabilityWindow]:
        self._checkpoint()
        ids = list(practitioner_ids)
        if not ids:
            return []
        return self.db.query(AvailabilityWindow).filter(
            AvailabilityWindow.practitioner_id.in_(ids),
            AvailabilityWindow.is_active.is_(True),
        ).order_by(AvailabilityWindow.day_of_week.asc(), AvailabilityWindow.start_time.asc()).all()

    def list_windows(self, practitioner_id: int, include_inactive: bool = False) -> list[AvailabilityWindow]:
        self._checkpoint()
        query = self.db.query(AvailabilityWindow).filter(AvailabilityWindow.practitioner_id == practitioner_id)
        if not include_inactive:
            query = query.filter(AvailabilityWindow.is_active.is_(True))
        return query.order_by(AvailabilityWindow.day_of_week.asc(), AvailabilityWindow.start_time.asc()).all()

    def get_window(self, window_id: int) -> AvailabilityWindow | None:
        self._checkpoint()
        return self.db.get(AvailabilityWindow, window_id)

    def add_window(self, window: AvailabilityWindow) -> AvailabilityWindow:
        window = self._add(window)
        self.invalidate_alternatives(window.practitioner_id)
        return window

    def deactivate_window(self, window: AvailabilityWindow) -> AvailabilityWindow:
        self._checkpoint()
        window.is_active = False
        self._commit()
        self.invalidate_alternatives(window.practitioner_id)
        return window

    # Appointments

    def busy_appointments(
        self,
        practitioner_ids: Iterable[int],
        range_start: datetime,
        range_end: datetime,
    ) -> list[Appointment]:
        self._checkpoint()
        ids = list(practitioner_ids)
        if not ids:
            return []
        return self.db.query(Appointment).filter(
            Appointment.practitioner_id.in_(ids),
            Appointment.status.in_(NON_TERMINAL_STATUSES),
            Appointment.scheduled_at < range_end,
            Appointment.ends_at > range_start,
        ).order_by(Appointment.scheduled_at.asc()).all()

    def find_practitioner_conflict(self, practitioner_id: int, start: datetime, end: datetime) -> Appointment | None:
        self._checkpoint()
        return self.db.query(Appointment).filter(
            Appointment.practitioner_id == practitioner_id,
            Appointment.status.in_(NON_TERMINAL_STATUSES),
            Appointment.scheduled_at < end,
            Appointment.ends_at > start,
        ).first()

    def get_appointment(self, appointment_id: int) -> Appointment | None:
        self._checkpoint()
        return self.db.get(Appointment, appointment_id)

    def list_appointments(
        self,
        practitioner_id: int,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
    ) -> list[Appointment]:
        self._checkpoint()
        query = self.db.query(Appointment).filter(Appointment.practitioner_id == practitioner_id)
        if range_start is not None:
            query = query.filter(Appointment.ends_at > range_start)
        if range_end is not None:
            query = query.filter(Appointment.scheduled_at < range_end)
        return query.order_by(Appointment.scheduled_at.asc()).all()

    def add_appointment(self, appointment: Appointment) -> Appointment:
        return self._add(appointment)

    def save_appointment(self, appointment: Appointment) -> Appointment:
        self._checkpoint()
        self._commit()
        return appointment

    def delete_appointment(self, appointment_id: int) -> None:
        """Compensation delete; runs even after cancellation."""
        self.db.query(Appointment).filter(Appointment.id == appointment_id).delete(synchronize_session=False)
        self._commit()

    def cancel_appointment(self, appointment: Appointment, reason: str | None) -> int:
        """Mark the appointment cancelled and drop its reservations in one commit."""
        self._checkpoint()
        appointment.status = CANCELLED
        appointment.cancellation_reason = reason
        released = self.db.query(ResourceReservation).filter(
            ResourceReservation.appointment_id == appointment.id,
        ).delete(synchronize_session=False)
        self._commit()
        return released

    # Resource reservations

    def resource_reservations(
        self,
        resource_ids: Iterable[int],
        range_start: datetime,
        range_end: datetime,
    ) -> list[ResourceReservation]:
        self._checkpoint()
        ids = list(resource_ids)
        if not ids:
            return []
        return self.db.query(ResourceReservation).filter(
            ResourceReservation.resource_id.in_(ids),
            ResourceReservation.start_time < range_end,
            ResourceReservation.end_time > range_start,
        ).order_by(ResourceReservation.start_time.asc()).all()

    def find_resource_conflict(
        self,
        resource_id: int,
        booking_date: date,
        start: datetime,
        end: datetime,
    ) -> ResourceReservation | None:
        self._checkpoint()
        return self.db.query(ResourceReservation).filter(
            ResourceReservation.resource_id == resource_id,
            ResourceReservation.booking_date == booking_date,
            ResourceReservation.start_time < end,
            ResourceReservation.end_time > start,
        ).first()

    def reservations_for(self, appointment_id: int) -> list[ResourceReservation]:
        self._checkpoint()
        return self.db.query(ResourceReservation).filter(
            ResourceReservation.appointment_id == appointment_id,
        ).order_by(ResourceReservation.id.asc()).all()

    def add_reservation(self, reservation: ResourceReservation) -> ResourceReservation:
        return self._add(reservation)

    def delete_reservation(self, reservation_id: int) -> None:
        """Compensation delete; runs even after cancellation."""
        self.db.query(ResourceReservation).filter(
            ResourceReservation.id == reservation_id,
        ).delete(synchronize_session=False)
        self._commit()

    # Waitlist

    def waiting_entries(self, practitioner_id: int) -> list[WaitlistEntry]:
        self._checkpoint()
        return self.db.query(WaitlistEntry).filter(
            WaitlistEntry.practitioner_id == practitioner_id,
            WaitlistEntry.status == WAITING,
        ).order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc()).all()

    def list_waitlist(self, practitioner_id: int, status: str | None = None) -> list[WaitlistEntry]:
        self._checkpoint()
        query = self.db.query(WaitlistEntry).filter(WaitlistEntry.practitioner_id == practitioner_id)
        if status:
            query = query.filter(WaitlistEntry.status == status)
        return query.order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc()).all()

    def get_waitlist_entry(self, entry_id: int) -> WaitlistEntry | None:
        self._checkpoint()
        return self.db.get(WaitlistEntry, entry_id)

    def open_waitlist_entry(self, patient_id: int, practitioner_id: int) -> WaitlistEntry | None:
        self._checkpoint()
        return self.db.query(WaitlistEntry).filter(
            WaitlistEntry.patient_id == patient_id,
            WaitlistEntry.practitioner_id == practitioner_id,
            WaitlistEntry.status.in_(OPEN_WAITLIST_STATUSES),
        ).first()

    def add_waitlist_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        return self._add(entry)

    def save_waitlist_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        self._checkpoint()
        self._commit()
        return entry

    def mark_waitlist_fulfilled(self, entry_id: int, appointment_id: int) -> bool:
        # Runs after a booking has committed, so it ignores the cancellation token.
        result = self.db.execute(
            update(WaitlistEntry)
            .where(WaitlistEntry.id == entry_id, WaitlistEntry.status.in_(OPEN_WAITLIST_STATUSES))
            .values(status=FULFILLED, appointment_id=appointment_id)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return result.rowcount == 1

    def claim_waitlist_entry(self, entry_id: int, notified_at: datetime, slot_start: datetime | None) -> bool:
        """Move an entry from waiting to notified; False when another caller got there first."""
        self._checkpoint()
        result = self.db.execute(
            update(WaitlistEntry)
            .where(WaitlistEntry.id == entry_id, WaitlistEntry.status == WAITING)
            .values(status=NOTIFIED, notified_at=notified_at, offered_slot_start=slot_start)
            .execution_options(synchronize_session=False)
        )
        self._commit()
        return result.rowcount == 1

    # Notification failures

    def record_notification_failure(self, failure: NotificationFailure) -> NotificationFailure:
        # Failures are recorded even when the caller has gone away.
        self.db.add(failure)
        self._commit()
        return failure

    # Alternative-slot cache

    def cached_alternatives(self, practitioner_id: int, requested_time: datetime, now: datetime) -> list[dict] | None:
        self._checkpoint()
        cached = self.db.query(AlternativeSlotCache).filter(
            AlternativeSlotCache.practitioner_id == practitioner_id,
            AlternativeSlotCache.requested_time == requested_time,
            AlternativeSlotCache.expires_at > now,
        ).order_by(AlternativeSlotCache.expires_at.desc()).first()
        return None if cached is None else cached.alternatives

    def cache_alternatives(
        self,
        practitioner_id: int,
        requested_time: datetime,
        alternatives: list[dict],
        expires_at: datetime,
    ) -> None:
        self._checkpoint()
        self.db.query(AlternativeSlotCache).filter(
            AlternativeSlotCache.practitioner_id == practitioner_id,
            AlternativeSlotCache.requested_time == requested_time,
        ).delete(synchronize_session=False)
        self.db.add(
            AlternativeSlotCache(
                practitioner_id=practitioner_id,
                requested_time=requested_time,
                alternatives=alternatives,
                expires_at=expires_at,
            )
        )
        self._commit()

    def invalidate_alternatives(self, practitioner_id: int) -> None:
        self.db.query(AlternativeSlotCache).filter(
            AlternativeSlotCache.practitioner_id == practitioner_id,
        ).delete(synchronize_session=False)
        self._commit()
