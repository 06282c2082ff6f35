import os
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-with-at-least-32-bytes')

from booking_core.database import Base  # noqa: E402
from booking_core.models import audit_log, notification  # noqa: E402,F401
from booking_core.models.appointment import STATUS_CONFIRMED, Appointment  # noqa: E402
from booking_core.models.availability import BusinessAvailability  # noqa: E402
from booking_core.models.business import Business, Service  # noqa: E402
from booking_core.models.reservation import Reservation  # noqa: E402

# Monday 2030-01-07, one hour before opening.
BASE_NOW = datetime(2030, 1, 7, 8, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(BASE_NOW)


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def business(db_session):
    business = Business(
        id='biz-1',
        name='Harbour Street Studio',
        timezone='UTC',
        advance_booking_days=30,
        min_advance_booking_minutes=0,
        time_slot_minutes=5,
    )
    db_session.add(business)
    for weekday in range(7):
        db_session.add(
            BusinessAvailability(
                business_id=business.id,
                weekday=weekday,
                enabled=weekday < 5,
                open_time=time(9, 0),
                close_time=time(17, 0),
            )
        )
    db_session.commit()
    return business


@pytest.fixture
def service(db_session, business):
    service = Service(
        id='svc-1',
        business_id=business.id,
        name='Consultation',
        duration_minutes=30,
        max_simultaneous_bookings=2,
        enabled=True,
    )
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def single_service(db_session, business):
    service = Service(
        id='svc-solo',
        business_id=business.id,
        name='Private session',
        duration_minutes=60,
        max_simultaneous_bookings=1,
        enabled=True,
    )
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def add_reservation(db_session):
    counter = {'value': 0}

    def _add(service, slot_start: datetime, slot_end: datetime, expires_at: datetime) -> Reservation:
        counter['value'] += 1
        reservation = Reservation(
            business_id=service.business_id,
            service_id=service.id,
            slot_start=slot_start,
            slot_end=slot_end,
            idempotency_key=f'seed-reservation-{counter["value"]}',
            created_at=BASE_NOW,
            expires_at=expires_at,
        )
        db_session.add(reservation)
        db_session.commit()
        return reservation

    return _add


@pytest.fixture
def add_appointment(db_session):
    counter = {'value': 0}

    def _add(service, start_time: datetime, end_time: datetime, status: str = STATUS_CONFIRMED) -> Appointment:
        counter['value'] += 1
        appointment = Appointment(
            booking_id=f'BK-SEED-{counter["value"]}',
            business_id=service.business_id,
            service_id=service.id,
            guest_email='seed@example.com',
            start_time=start_time,
            end_time=end_time,
            status=status,
            idempotency_key=f'seed-appointment-{counter["value"]}',
            cancellation_token=f'seed-token-{counter["value"]}',
            version=1,
            created_at=BASE_NOW,
            updated_at=BASE_NOW,
        )
        db_session.add(appointment)
        db_session.commit()
        return appointment

    return _add
