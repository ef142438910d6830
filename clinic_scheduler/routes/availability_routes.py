import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core.cancellation import run_cancellable
from clinic_scheduler.core.errors import SchedulingError
from clinic_scheduler.models.availability import AvailabilityWindow
from clinic_scheduler.notifications import get_notifier
from clinic_scheduler.routes.dependencies import ensure_database_ready, get_db, to_http_exception
from clinic_scheduler.scheduling.slot_engine import generate_slots
from clinic_scheduler.scheduling.waitlist import match_waitlist
from clinic_scheduler.store import ScheduleStore

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)


class CreateWindowRequest(BaseModel):
    practitioner_id: int
    day_of_week: int
    start_time: time
    end_time: time

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Monday) and 6 (Sunday).')
        return value

    @model_validator(mode='after')
    def validate_time_range(self) -> 'CreateWindowRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Window start time must be before its end time.')
        return self


class WindowResponse(BaseModel):
    id: int
    practitioner_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool

    class Config:
        from_attributes = True


class CreateWindowResponse(BaseModel):
    window: WindowResponse
    waitlist_notified: int
    matched_entry_ids: list[int]


class SlotSearchRequest(BaseModel):
    practitioner_ids: list[int]
    start_date: date
    end_date: date
    duration_minutes: int | None = None
    resource_ids: list[int] = []
    limit: int | None = None

    @field_validator('limit')
    @classmethod
    def validate_limit(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError('Limit must be at least 1.')
        return value


class CandidateSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    practitioner_ids: list[int]
    duration_minutes: int


class SlotSearchResponse(BaseModel):
    slots: list[CandidateSlotResponse]
    total_found: int


@router.post('/slots', response_model=SlotSearchResponse)
async def search_slots(data: SlotSearchRequest, request: Request, db: Session = Depends(get_db)):
    ensure_database_ready()

    def run(token):
        return generate_slots(
            ScheduleStore(db, token),
            data.practitioner_ids,
            data.start_date,
            data.end_date,
            data.duration_minutes,
            resource_ids=data.resource_ids,
            limit=data.limit,
        )

    try:
        result = await run_cancellable(request, run)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc

    return SlotSearchResponse(
        slots=[
            CandidateSlotResponse(
                start_time=slot.start_time,
                end_time=slot.end_time,
                practitioner_ids=list(slot.practitioner_ids),
                duration_minutes=slot.duration_minutes,
            )
            for slot in result.slots
        ],
        total_found=result.total_found,
    )


@router.post('/windows', response_model=CreateWindowResponse, status_code=status.HTTP_201_CREATED)
def create_window(data: CreateWindowRequest, db: Session = Depends(get_db)):
    ensure_database_ready()
    store = ScheduleStore(db)

    try:
        if store.get_practitioner(data.practitioner_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Practitioner not found.',
            )

        window = store.add_window(
            AvailabilityWindow(
                practitioner_id=data.practitioner_id,
                day_of_week=data.day_of_week,
                start_time=data.start_time,
                end_time=data.end_time,
                is_active=True,
            )
        )
        response_window = WindowResponse.model_validate(window)
    except SQLAlchemyError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc

    # New capacity: offer it to patients waiting without a fixed date.
    try:
        matched = match_waitlist(store, data.practitioner_id, None, notifier=get_notifier())
        matched_ids = matched.matched_entry_ids
    except SQLAlchemyError:
        logger.exception('Waitlist matching after new window %s did not complete', response_window.id)
        matched_ids = []

    return CreateWindowResponse(
        window=response_window,
        waitlist_notified=len(matched_ids),
        matched_entry_ids=matched_ids,
    )


@router.get('/windows', response_model=list[WindowResponse])
def list_windows(
    practitioner_id: int = Query(...),
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return ScheduleStore(db).list_windows(practitioner_id, include_inactive=include_inactive)
    except SQLAlchemyError as exc:
        raise to_http_exception(exc) from exc


@router.delete('/windows/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def deactivate_window(window_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()
    store = ScheduleStore(db)

    try:
        window = store.get_window(window_id)
        if window is None or not window.is_active:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability window not found.',
            )

        store.deactivate_window(window)
    except SQLAlchemyError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
