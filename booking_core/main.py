import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_core.core import config
from booking_core.database import (
    Base,
    engine,
    ensure_appointment_schema,
    ensure_reservation_schema,
    ensure_service_schema,
)
from booking_core.models import appointment, audit_log, availability, business, notification, reservation  # noqa: F401
from booking_core.routes import appointment_routes, availability_routes, booking_routes, maintenance_routes

app = FastAPI(title='Booking Core API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_reservation_schema()
        ensure_appointment_schema()
        ensure_service_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Booking API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/booking')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(maintenance_routes.router, prefix='/maintenance')
