from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.models.practitioner import Practitioner
from clinic_scheduler.models.resource import RESOURCE_KINDS, Resource
from clinic_scheduler.routes.dependencies import ensure_database_ready, get_db, to_http_exception
from clinic_scheduler.store import ScheduleStore

router = APIRouter(tags=['directory'])


def _required_name(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Name is required.')
    return normalized


class CreatePractitionerRequest(BaseModel):
    name: str
    specialty: str | None = None
    rating: float | None = None
    is_accepting_patients: bool = True

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _required_name(value)

    @field_validator('specialty')
    @classmethod
    def validate_specialty(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None

    @field_validator('rating')
    @classmethod
    def validate_rating(cls, value: float | None) -> float | None:
        if value is not None and not 0 <= value <= 5:
            raise ValueError('Rating must be between 0 and 5.')
        return value


class PractitionerResponse(BaseModel):
    id: int
    name: str
    specialty: str | None = None
    rating: float | None = None
    is_accepting_patients: bool

    class Config:
        from_attributes = True


class CreateResourceRequest(BaseModel):
    name: str
    kind: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _required_name(value)

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in RESOURCE_KINDS:
            raise ValueError('Resource kind must be room or equipment.')
        return normalized


class ResourceResponse(BaseModel):
    id: int
    name: str
    kind: str
    is_active: bool

    class Config:
        from_attributes = True


@router.post('/practitioners', response_model=PractitionerResponse, status_code=status.HTTP_201_CREATED)
def create_practitioner(data: CreatePractitionerRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return ScheduleStore(db).add_practitioner(
            Practitioner(
                name=data.name,
                specialty=data.specialty,
                rating=data.rating,
                is_accepting_patients=data.is_accepting_patients,
            )
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc


@router.get('/practitioners', response_model=list[PractitionerResponse])
def list_practitioners(specialty: str | None = Query(default=None), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return ScheduleStore(db).list_practitioners(specialty.strip().lower() if specialty else None)
    except SQLAlchemyError as exc:
        raise to_http_exception(exc) from exc


@router.post('/resources', response_model=ResourceResponse, status_code=status.HTTP_201_CREATED)
def create_resource(data: CreateResourceRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return ScheduleStore(db).add_resource(Resource(name=data.name, kind=data.kind, is_active=True))
    except SQLAlchemyError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc


@router.get('/resources', response_model=list[ResourceResponse])
def list_resources(kind: str | None = Query(default=None), db: Session = Depends(get_db)):
    ensure_database_ready()

    if kind is not None and kind not in RESOURCE_KINDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Resource kind must be room or equipment.',
        )

    try:
        return ScheduleStore(db).list_resources(kind)
    except SQLAlchemyError as exc:
        raise to_http_exception(exc) from exc
