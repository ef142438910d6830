import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core import config
from clinic_scheduler.core.logging_context import configure_logging, reset_request_id, set_request_id
from clinic_scheduler.database import Base, engine, ensure_booking_schema
from clinic_scheduler.models import (  # noqa: F401 - registers tables on Base.metadata
    alternative_cache,
    appointment,
    availability,
    notification,
    practitioner,
    resource,
    waitlist,
)
from clinic_scheduler.notifications import shutdown_dispatcher
from clinic_scheduler.routes import appointment_routes, availability_routes, directory_routes, waitlist_routes

REQUEST_ID_HEADER = 'X-Request-ID'

configure_logging()

app = FastAPI(title='Clinic Scheduler')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.middleware('http')
async def attach_request_id(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    token = set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_booking_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('shutdown')
def stop_dispatcher() -> None:
    shutdown_dispatcher()


@app.get('/')
def root():
    return {'status': 'Clinic Scheduler API Running'}


app.include_router(directory_routes.router)
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(waitlist_routes.router, prefix='/waitlist')
