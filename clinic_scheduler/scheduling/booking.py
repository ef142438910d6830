"""Atomic Booking Transaction.

A booking reserves the practitioner's time and every requested resource as
one unit. Writes are committed step by step, so a failure after the
appointment row exists is undone by explicit compensation: reservations are
deleted in reverse order, then the appointment. The store's overlap guards
are the final referee between concurrent bookings; an integrity violation at
insert time is reported exactly like a pre-check conflict.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from clinic_scheduler.core.errors import (
    EQUIPMENT_CONFLICT,
    PRACTITIONER_CONFLICT,
    ROOM_CONFLICT,
    BookingConflict,
    OperationCancelled,
    RecordNotFound,
    SchedulingValidationError,
    StoreUnavailable,
)
from clinic_scheduler.models.appointment import (
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    IN_PERSON,
    NO_SHOW,
    NON_TERMINAL_STATUSES,
    PENDING,
    TELEHEALTH,
    Appointment,
)
from clinic_scheduler.models.resource import EQUIPMENT, ROOM, ResourceReservation
from clinic_scheduler.models.waitlist import OPEN_WAITLIST_STATUSES
from clinic_scheduler.notifications import (
    BookingNotice,
    Dispatch,
    Notifier,
    deliver_booking_notice,
    dispatch_in_background,
    get_notifier,
)
from clinic_scheduler.scheduling.intervals import as_naive
from clinic_scheduler.scheduling.waitlist import FreedSlot, WaitlistMatchResult, match_waitlist
from clinic_scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PENDING: {CONFIRMED, COMPLETED, NO_SHOW},
    CONFIRMED: {COMPLETED, NO_SHOW},
}


@dataclass
class BookingRequest:
    patient_id: int
    practitioner_id: int
    start_time: datetime
    duration_minutes: int
    consultation_type: str = 'in_person'
    chief_complaint: str | None = None
    urgency_level: str | None = None
    fee: Decimal | None = None
    currency: str | None = None
    room_id: int | None = None
    equipment_ids: list[int] = field(default_factory=list)
    waitlist_entry_id: int | None = None


@dataclass
class BookingResult:
    appointment_id: int
    status: str
    start_time: datetime
    end_time: datetime
    room_id: int | None
    equipment_ids: list[int]


@dataclass
class CancellationResult:
    appointment: Appointment
    released_reservations: int
    waitlist: WaitlistMatchResult | None


def _validate(store: ScheduleStore, request: BookingRequest, now: datetime) -> tuple[datetime, datetime]:
    if request.duration_minutes is None or request.duration_minutes <= 0:
        raise SchedulingValidationError('Duration must be a positive number of minutes.')

    start = as_naive(request.start_time).replace(second=0, microsecond=0)
    end = start + timedelta(minutes=request.duration_minutes)

    if start <= now:
        raise SchedulingValidationError('Appointments must be scheduled in the future.')
    if end.date() != start.date():
        raise SchedulingValidationError('Appointments cannot span midnight.')

    if store.get_practitioner(request.practitioner_id) is None:
        raise RecordNotFound('Practitioner', request.practitioner_id)

    equipment_ids = request.equipment_ids or []
    if len(set(equipment_ids)) != len(equipment_ids):
        raise SchedulingValidationError('Equipment ids must not repeat.')
    if request.room_id is not None and request.room_id in equipment_ids:
        raise SchedulingValidationError('A room cannot also be requested as equipment.')

    requested = ([request.room_id] if request.room_id is not None else []) + list(equipment_ids)
    resources = store.get_resources(requested)
    for resource_id in requested:
        expected_kind = ROOM if resource_id == request.room_id else EQUIPMENT
        resource = resources.get(resource_id)
        if resource is None or not resource.is_active:
            raise SchedulingValidationError(f'Unknown or inactive {expected_kind} {resource_id}.')
        if resource.kind != expected_kind:
            raise SchedulingValidationError(f'Resource {resource_id} is not a {expected_kind}.')

    if request.waitlist_entry_id is not None:
        entry = store.get_waitlist_entry(request.waitlist_entry_id)
        if entry is None:
            raise RecordNotFound('Waitlist entry', request.waitlist_entry_id)
        if entry.patient_id != request.patient_id or entry.practitioner_id != request.practitioner_id:
            raise SchedulingValidationError('Waitlist entry belongs to a different patient or practitioner.')
        if entry.status not in OPEN_WAITLIST_STATUSES:
            raise SchedulingValidationError(f'Waitlist entry is already {entry.status}.')

    return start, end


def _precheck(store: ScheduleStore, request: BookingRequest, start: datetime, end: datetime) -> None:
    if store.find_practitioner_conflict(request.practitioner_id, start, end) is not None:
        raise BookingConflict(
            PRACTITIONER_CONFLICT,
            'Practitioner is no longer available at this time.',
            practitioner_id=request.practitioner_id,
        )

    if request.room_id is not None:
        if store.find_resource_conflict(request.room_id, start.date(), start, end) is not None:
            raise BookingConflict(
                ROOM_CONFLICT,
                f'Room {request.room_id} is not available at this time.',
                resource_id=request.room_id,
            )

    for equipment_id in request.equipment_ids or []:
        if store.find_resource_conflict(equipment_id, start.date(), start, end) is not None:
            raise BookingConflict(
                EQUIPMENT_CONFLICT,
                f'Equipment {equipment_id} is not available at this time.',
                resource_id=equipment_id,
            )


def _insert_appointment(store: ScheduleStore, request: BookingRequest, start: datetime, end: datetime) -> Appointment:
    appointment = Appointment(
        patient_id=request.patient_id,
        practitioner_id=request.practitioner_id,
        scheduled_at=start,
        duration_minutes=request.duration_minutes,
        ends_at=end,
        status=PENDING,
        modality=TELEHEALTH if request.consultation_type == 'video' else IN_PERSON,
        consultation_type=request.consultation_type,
        chief_complaint=request.chief_complaint,
        urgency_level=request.urgency_level,
        fee=request.fee,
        currency=request.currency,
    )
    try:
        return store.add_appointment(appointment)
    except IntegrityError as exc:
        raise BookingConflict(
            PRACTITIONER_CONFLICT,
            'Practitioner was just booked by another request.',
            practitioner_id=request.practitioner_id,
        ) from exc


def _insert_reservation(
    store: ScheduleStore,
    appointment: Appointment,
    resource_id: int,
    conflict_kind: str,
) -> ResourceReservation:
    reservation = ResourceReservation(
        resource_id=resource_id,
        appointment_id=appointment.id,
        booking_date=appointment.scheduled_at.date(),
        start_time=appointment.scheduled_at,
        end_time=appointment.ends_at,
        booked_by=appointment.patient_id,
    )
    try:
        return store.add_reservation(reservation)
    except IntegrityError as exc:
        label = 'Room' if conflict_kind == ROOM_CONFLICT else 'Equipment'
        raise BookingConflict(
            conflict_kind,
            f'{label} {resource_id} was just reserved by another booking.',
            resource_id=resource_id,
        ) from exc


def _compensate(store: ScheduleStore, appointment_id: int, reservation_ids: list[int]) -> None:
    """Undo this attempt's writes, newest first. Ignores the cancellation token."""
    for reservation_id in reversed(reservation_ids):
        store.delete_reservation(reservation_id)
    store.delete_appointment(appointment_id)
    logger.warning(
        'Rolled back booking attempt: appointment %s, reservations %s',
        appointment_id,
        reservation_ids,
    )


def book_appointment(
    store: ScheduleStore,
    request: BookingRequest,
    notifier: Notifier | None = None,
    dispatch: Dispatch = dispatch_in_background,
    now: datetime | None = None,
) -> BookingResult:
    """Reserve the practitioner and all requested resources, or nothing at all.

    Raises ``BookingConflict`` with ``practitioner_conflict``, ``room_conflict``
    or ``equipment_conflict`` when something is already held, and
    ``StoreUnavailable`` when the store fails.
    """
    now = now or datetime.now()

    try:
        start, end = _validate(store, request, now)
        _precheck(store, request, start, end)
    except SQLAlchemyError as exc:
        raise StoreUnavailable('Could not read the schedule.') from exc

    appointment: Appointment | None = None
    appointment_id: int | None = None
    reservation_ids: list[int] = []

    try:
        appointment = _insert_appointment(store, request, start, end)
        appointment_id = appointment.id
        if request.room_id is not None:
            reservation_ids.append(_insert_reservation(store, appointment, request.room_id, ROOM_CONFLICT).id)
        for equipment_id in request.equipment_ids or []:
            reservation_ids.append(_insert_reservation(store, appointment, equipment_id, EQUIPMENT_CONFLICT).id)
    except Exception as exc:
        if appointment_id is not None:
            try:
                _compensate(store, appointment_id, reservation_ids)
            except SQLAlchemyError as compensation_exc:
                logger.critical(
                    'Compensation failed for appointment %s; reservations %s may be orphaned.',
                    appointment_id,
                    reservation_ids,
                    exc_info=compensation_exc,
                )
                raise StoreUnavailable('Booking failed and could not be fully rolled back.') from compensation_exc

        if isinstance(exc, (BookingConflict, OperationCancelled)):
            logger.info('Booking for practitioner %s at %s aborted: %s', request.practitioner_id, start, exc)
            raise
        if isinstance(exc, SQLAlchemyError):
            logger.error('Store error while booking practitioner %s at %s: %s', request.practitioner_id, start, exc)
            raise StoreUnavailable('Could not complete the booking.') from exc
        raise

    logger.info(
        'Booked appointment %s for patient %s with practitioner %s at %s (room=%s, equipment=%s)',
        appointment.id,
        request.patient_id,
        request.practitioner_id,
        start,
        request.room_id,
        request.equipment_ids,
    )

    _after_commit(store, appointment, request, notifier, dispatch)

    return BookingResult(
        appointment_id=appointment.id,
        status=appointment.status,
        start_time=start,
        end_time=end,
        room_id=request.room_id,
        equipment_ids=list(request.equipment_ids or []),
    )


def _after_commit(
    store: ScheduleStore,
    appointment: Appointment,
    request: BookingRequest,
    notifier: Notifier | None,
    dispatch: Dispatch,
) -> None:
    # The booking is committed; nothing below may turn it into a failure.
    try:
        if request.waitlist_entry_id is not None:
            store.mark_waitlist_fulfilled(request.waitlist_entry_id, appointment.id)
        store.invalidate_alternatives(appointment.practitioner_id)
    except SQLAlchemyError:
        logger.exception('Post-booking bookkeeping failed for appointment %s', appointment.id)

    notice = BookingNotice(
        appointment_id=appointment.id,
        patient_id=appointment.patient_id,
        practitioner_id=appointment.practitioner_id,
        start_time=appointment.scheduled_at,
    )
    try:
        dispatch(deliver_booking_notice, notifier or get_notifier(), notice, store.session_factory())
    except Exception:
        logger.exception('Could not dispatch booking notification for appointment %s', appointment.id)


def get_appointment(store: ScheduleStore, appointment_id: int) -> Appointment:
    appointment = store.get_appointment(appointment_id)
    if appointment is None:
        raise RecordNotFound('Appointment', appointment_id)
    return appointment


def cancel_appointment(
    store: ScheduleStore,
    appointment_id: int,
    reason: str | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> CancellationResult:
    """Cancel a non-terminal appointment, release its resources and offer the slot to the waitlist."""
    appointment = get_appointment(store, appointment_id)
    if appointment.status not in NON_TERMINAL_STATUSES:
        raise SchedulingValidationError(f'Cannot cancel an appointment that is {appointment.status}.')

    released = store.cancel_appointment(appointment, reason)
    logger.info('Cancelled appointment %s and released %d reservations', appointment.id, released)

    # The cancellation is committed; the follow-ups below must not report it as failed.
    waitlist_result = None
    try:
        store.invalidate_alternatives(appointment.practitioner_id)
        freed = FreedSlot(start_time=appointment.scheduled_at, end_time=appointment.ends_at)
        waitlist_result = match_waitlist(
            store,
            appointment.practitioner_id,
            [freed],
            notifier=notifier,
            now=now,
        )
    except (SQLAlchemyError, OperationCancelled):
        logger.exception('Waitlist matching after cancelling appointment %s did not complete', appointment.id)

    return CancellationResult(appointment=appointment, released_reservations=released, waitlist=waitlist_result)


def update_status(store: ScheduleStore, appointment_id: int, new_status: str) -> Appointment:
    appointment = get_appointment(store, appointment_id)
    if new_status == CANCELLED:
        raise SchedulingValidationError('Use cancellation to cancel an appointment.')
    if new_status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
        raise SchedulingValidationError(
            f'Cannot move an appointment from {appointment.status} to {new_status}.'
        )

    appointment.status = new_status
    store.save_appointment(appointment)
    logger.info('Appointment %s moved to %s', appointment.id, new_status)
    return appointment
