import os
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from clinic_scheduler.database import Base, ensure_booking_schema  # noqa: E402
from clinic_scheduler.models.alternative_cache import AlternativeSlotCache  # noqa: E402,F401
from clinic_scheduler.models.appointment import CONFIRMED, Appointment  # noqa: E402
from clinic_scheduler.models.availability import AvailabilityWindow  # noqa: E402
from clinic_scheduler.models.notification import NotificationFailure  # noqa: E402,F401
from clinic_scheduler.models.practitioner import Practitioner  # noqa: E402
from clinic_scheduler.models.resource import EQUIPMENT, ROOM, Resource, ResourceReservation  # noqa: E402
from clinic_scheduler.models.waitlist import WAITING, WaitlistEntry  # noqa: E402
from clinic_scheduler.notifications import Notifier  # noqa: E402
from clinic_scheduler.store import ScheduleStore  # noqa: E402


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.bookings = []
        self.waitlist = []
        self.fail = False

    def notify(self, appointment_id, patient_id, practitioner_id, start_time):
        if self.fail:
            raise RuntimeError('notification service down')
        self.bookings.append((appointment_id, patient_id, practitioner_id, start_time))

    def notify_waitlist_match(self, entry_id, patient_id, practitioner_id, slot_start):
        if self.fail:
            raise RuntimeError('notification service down')
        self.waitlist.append((entry_id, patient_id, practitioner_id, slot_start))


class Seeder:
    """Writes fixture rows straight through the session, bypassing the services."""

    def __init__(self, db) -> None:
        self.db = db

    def _save(self, record):
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def practitioner(self, name='Dr. Ada Lovelace', specialty='cardiology', rating=4.5, accepting=True):
        return self._save(
            Practitioner(name=name, specialty=specialty, rating=rating, is_accepting_patients=accepting)
        )

    def window(self, practitioner, day_of_week, start, end, is_active=True):
        return self._save(
            AvailabilityWindow(
                practitioner_id=practitioner.id,
                day_of_week=day_of_week,
                start_time=start if isinstance(start, time) else time(*start),
                end_time=end if isinstance(end, time) else time(*end),
                is_active=is_active,
            )
        )

    def appointment(self, practitioner, start, minutes=30, status=CONFIRMED, patient_id=900):
        return self._save(
            Appointment(
                patient_id=patient_id,
                practitioner_id=practitioner.id,
                scheduled_at=start,
                duration_minutes=minutes,
                ends_at=start + timedelta(minutes=minutes),
                status=status,
            )
        )

    def room(self, name='Room 1'):
        return self._save(Resource(name=name, kind=ROOM, is_active=True))

    def equipment(self, name='ECG'):
        return self._save(Resource(name=name, kind=EQUIPMENT, is_active=True))

    def reservation(self, resource, appointment):
        return self._save(
            ResourceReservation(
                resource_id=resource.id,
                appointment_id=appointment.id,
                booking_date=appointment.scheduled_at.date(),
                start_time=appointment.scheduled_at,
                end_time=appointment.ends_at,
                booked_by=appointment.patient_id,
            )
        )

    def waitlist(
        self,
        practitioner,
        patient_id,
        created_at,
        preferred_date=None,
        preferred_time_of_day=None,
        status=WAITING,
    ):
        return self._save(
            WaitlistEntry(
                patient_id=patient_id,
                practitioner_id=practitioner.id,
                preferred_date=preferred_date,
                preferred_time_of_day=preferred_time_of_day,
                status=status,
                created_at=created_at,
            )
        )


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    ensure_booking_schema(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return ScheduleStore(db)


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def now():
    return datetime(2030, 1, 1, 8, 0)


ROUTE_MODULES = (
    'clinic_scheduler.routes.appointment_routes',
    'clinic_scheduler.routes.availability_routes',
    'clinic_scheduler.routes.directory_routes',
    'clinic_scheduler.routes.waitlist_routes',
)


@pytest.fixture
def ready_routes(monkeypatch: pytest.MonkeyPatch, notifier):
    """Skip the schema check and capture notifications in every router."""
    for module in ROUTE_MODULES:
        monkeypatch.setattr(f'{module}.ensure_database_ready', lambda: None)
    for module in ROUTE_MODULES:
        if module.endswith('directory_routes'):
            continue
        monkeypatch.setattr(f'{module}.get_notifier', lambda: notifier)
    return notifier


@pytest.fixture
def client(db, ready_routes):
    from fastapi.testclient import TestClient

    from clinic_scheduler.main import app
    from clinic_scheduler.routes.dependencies import get_db

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
