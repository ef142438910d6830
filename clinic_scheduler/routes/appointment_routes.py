from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core.cancellation import run_cancellable
from clinic_scheduler.core.errors import SchedulingError
from clinic_scheduler.models.appointment import APPOINTMENT_STATUSES
from clinic_scheduler.notifications import get_notifier
from clinic_scheduler.routes.dependencies import ensure_database_ready, get_db, to_http_exception
from clinic_scheduler.scheduling.booking import (
    BookingRequest,
    book_appointment,
    cancel_appointment,
    update_status,
)
from clinic_scheduler.scheduling.recommender import recommend_alternatives
from clinic_scheduler.store import ScheduleStore

router = APIRouter(tags=['appointments'])

MAX_CHIEF_COMPLAINT_LENGTH = 600
MAX_CANCELLATION_REASON_LENGTH = 300


class CreateAppointmentRequest(BaseModel):
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
    equipment_ids: list[int] = []
    waitlist_entry_id: int | None = None

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        return value

    @field_validator('consultation_type')
    @classmethod
    def validate_consultation_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Consultation type is required.')
        return normalized

    @field_validator('chief_complaint')
    @classmethod
    def validate_chief_complaint(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_CHIEF_COMPLAINT_LENGTH:
            raise ValueError(f'Chief complaint must be {MAX_CHIEF_COMPLAINT_LENGTH} characters or fewer.')

        return normalized

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().upper()
        if len(normalized) != 3:
            raise ValueError('Currency must be a three-letter code.')
        return normalized


class BookingResponse(BaseModel):
    appointment_id: int
    status: str
    start_time: datetime
    end_time: datetime
    room_id: int | None
    equipment_ids: list[int]


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    practitioner_id: int
    scheduled_at: datetime
    duration_minutes: int
    ends_at: datetime
    status: str
    modality: str
    consultation_type: str | None = None
    cancellation_reason: str | None = None

    class Config:
        from_attributes = True


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_CANCELLATION_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_CANCELLATION_REASON_LENGTH} characters or fewer.')
        return normalized or None


class CancelAppointmentResponse(BaseModel):
    appointment: AppointmentResponse
    released_reservations: int
    waitlist_notified: int
    matched_entry_ids: list[int]


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized


class AlternativesRequest(BaseModel):
    practitioner_id: int
    requested_time: datetime
    specialty: str | None = None
    duration_minutes: int | None = None

    @field_validator('specialty')
    @classmethod
    def validate_specialty(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None


class AlternativeSlotResponse(BaseModel):
    time: datetime
    practitioner_id: int
    practitioner_name: str
    rating: float | None
    reason: str
    time_diff_minutes: int


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: CreateAppointmentRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    booking = BookingRequest(**data.model_dump())

    def run(token):
        return book_appointment(
            ScheduleStore(db, token),
            booking,
            notifier=get_notifier(),
            dispatch=background_tasks.add_task,
        )

    try:
        result = await run_cancellable(request, run)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc

    return BookingResponse(
        appointment_id=result.appointment_id,
        status=result.status,
        start_time=result.start_time,
        end_time=result.end_time,
        room_id=result.room_id,
        equipment_ids=result.equipment_ids,
    )


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    practitioner_id: int = Query(...),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return ScheduleStore(db).list_appointments(practitioner_id, start, end)
    except SQLAlchemyError as exc:
        raise to_http_exception(exc) from exc


@router.post('/alternatives', response_model=list[AlternativeSlotResponse])
async def find_alternatives(data: AlternativesRequest, request: Request, db: Session = Depends(get_db)):
    ensure_database_ready()

    def run(token):
        return recommend_alternatives(
            ScheduleStore(db, token),
            data.practitioner_id,
            data.requested_time,
            specialty=data.specialty,
            duration_minutes=data.duration_minutes,
        )

    try:
        alternatives = await run_cancellable(request, run)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc

    return [
        AlternativeSlotResponse(
            time=alternative.time,
            practitioner_id=alternative.practitioner_id,
            practitioner_name=alternative.practitioner_name,
            rating=alternative.rating,
            reason=alternative.reason,
            time_diff_minutes=alternative.time_diff_minutes,
        )
        for alternative in alternatives
    ]


@router.post('/{appointment_id}/cancel', response_model=CancelAppointmentResponse)
async def cancel(
    appointment_id: int,
    request: Request,
    data: CancelAppointmentRequest | None = None,
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    reason = data.reason if data else None

    def run(token):
        return cancel_appointment(ScheduleStore(db, token), appointment_id, reason, notifier=get_notifier())

    try:
        result = await run_cancellable(request, run)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc

    matched_ids = result.waitlist.matched_entry_ids if result.waitlist else []
    return CancelAppointmentResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        released_reservations=result.released_reservations,
        waitlist_notified=len(matched_ids),
        matched_entry_ids=matched_ids,
    )


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def change_status(appointment_id: int, data: UpdateStatusRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return update_status(ScheduleStore(db), appointment_id, data.status)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
