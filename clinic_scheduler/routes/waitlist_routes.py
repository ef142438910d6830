from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core.cancellation import run_cancellable
from clinic_scheduler.core.errors import SchedulingError, SchedulingValidationError
from clinic_scheduler.models.waitlist import TIME_OF_DAY_BUCKETS, WAITLIST_STATUSES
from clinic_scheduler.notifications import get_notifier
from clinic_scheduler.routes.dependencies import ensure_database_ready, get_db, to_http_exception
from clinic_scheduler.scheduling.waitlist import FreedSlot, expire_entry, join_waitlist, match_waitlist, requeue_entry
from clinic_scheduler.store import ScheduleStore

router = APIRouter(tags=['waitlist'])

MAX_WAITLIST_NOTES_LENGTH = 600


class JoinWaitlistRequest(BaseModel):
    patient_id: int
    practitioner_id: int
    preferred_date: date | None = None
    preferred_time_of_day: str | None = None
    notes: str | None = None

    @field_validator('preferred_time_of_day')
    @classmethod
    def validate_time_of_day(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if not normalized:
            return None
        if normalized not in TIME_OF_DAY_BUCKETS:
            raise ValueError('Preferred time of day must be morning, afternoon or evening.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        if len(normalized) > MAX_WAITLIST_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_WAITLIST_NOTES_LENGTH} characters or fewer.')
        return normalized


class WaitlistEntryResponse(BaseModel):
    id: int
    patient_id: int
    practitioner_id: int
    preferred_date: date | None = None
    preferred_time_of_day: str | None = None
    notes: str | None = None
    status: str
    created_at: datetime
    notified_at: datetime | None = None
    offered_slot_start: datetime | None = None
    appointment_id: int | None = None

    class Config:
        from_attributes = True


class FreedSlotRequest(BaseModel):
    start_time: datetime
    end_time: datetime | None = None

    @model_validator(mode='after')
    def validate_range(self) -> 'FreedSlotRequest':
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError('Freed slot must end after it starts.')
        return self


class MatchWaitlistRequest(BaseModel):
    practitioner_id: int
    freed_slots: list[FreedSlotRequest] | None = None


class WaitlistMatchResponse(BaseModel):
    entry_id: int
    patient_id: int
    slot_start: datetime | None
    notification_sent: bool


class MatchWaitlistResponse(BaseModel):
    notified_count: int
    matched_entry_ids: list[int]
    matches: list[WaitlistMatchResponse]


@router.post('', response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
def join(data: JoinWaitlistRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return join_waitlist(
            ScheduleStore(db),
            data.patient_id,
            data.practitioner_id,
            preferred_date=data.preferred_date,
            preferred_time_of_day=data.preferred_time_of_day,
            notes=data.notes,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_exception(exc) from exc


@router.get('', response_model=list[WaitlistEntryResponse])
def list_entries(
    practitioner_id: int = Query(...),
    entry_status: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    if entry_status is not None and entry_status not in WAITLIST_STATUSES:
        raise to_http_exception(SchedulingValidationError('Invalid waitlist status.'))

    try:
        return ScheduleStore(db).list_waitlist(practitioner_id, entry_status)
    except SQLAlchemyError as exc:
        raise to_http_exception(exc) from exc


@router.post('/match', response_model=MatchWaitlistResponse)
async def match(data: MatchWaitlistRequest, request: Request, db: Session = Depends(get_db)):
    ensure_database_ready()

    freed_slots = None
    if data.freed_slots:
        freed_slots = [FreedSlot(start_time=slot.start_time, end_time=slot.end_time) for slot in data.freed_slots]

    def run(token):
        return match_waitlist(ScheduleStore(db, token), data.practitioner_id, freed_slots, notifier=get_notifier())

    try:
        result = await run_cancellable(request, run)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc

    return MatchWaitlistResponse(
        notified_count=result.notified_count,
        matched_entry_ids=result.matched_entry_ids,
        matches=[
            WaitlistMatchResponse(
                entry_id=matched.entry_id,
                patient_id=matched.patient_id,
                slot_start=matched.slot_start,
                notification_sent=matched.notification_sent,
            )
            for matched in result.matches
        ],
    )


@router.post('/{entry_id}/requeue', response_model=WaitlistEntryResponse)
def requeue(entry_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return requeue_entry(ScheduleStore(db), entry_id)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_exception(exc) from exc


@router.post('/{entry_id}/expire', response_model=WaitlistEntryResponse)
def expire(entry_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return expire_entry(ScheduleStore(db), entry_id)
    except (SchedulingError, SQLAlchemyError) as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
