import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from booking_core.core.exceptions import AppointmentConflict, CapacityExceeded
from booking_core.database import Base, configure_sqlite_locking
from booking_core.models.appointment import Appointment
from booking_core.models.availability import BusinessAvailability
from booking_core.models.business import Business, Service
from booking_core.models.reservation import Reservation
from booking_core.services.appointments import AppointmentManager
from booking_core.services.reservations import ReservationManager

NOW = datetime(2030, 1, 7, 8, 0)
TEN = datetime(2030, 1, 8, 10, 0)
WORKERS = 8


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "race.db"}',
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    configure_sqlite_locking(engine)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    seed = factory()
    seed.add(Business(id='biz-1', name='Harbour Street Studio', timezone='UTC', time_slot_minutes=5))
    for weekday in range(7):
        seed.add(
            BusinessAvailability(
                business_id='biz-1',
                weekday=weekday,
                enabled=weekday < 5,
                open_time=time(9, 0),
                close_time=time(17, 0),
            )
        )
    seed.add(
        Service(
            id='svc-solo',
            business_id='biz-1',
            name='Private session',
            duration_minutes=60,
            max_simultaneous_bookings=1,
            enabled=True,
        )
    )
    seed.commit()
    seed.close()

    yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def run_concurrently(worker, arguments):
    barrier = threading.Barrier(len(arguments), timeout=10)

    def synchronized(argument):
        barrier.wait()
        return worker(argument)

    with ThreadPoolExecutor(max_workers=len(arguments)) as executor:
        return list(executor.map(synchronized, arguments))


def test_only_one_caller_wins_last_unit(session_factory) -> None:
    def attempt(key: str) -> str:
        session = session_factory()
        try:
            ReservationManager(session, clock=fixed_clock).create_reservation(
                'biz-1', 'svc-solo', TEN, TEN + timedelta(hours=1), idempotency_key=key
            )
            return 'ok'
        except CapacityExceeded:
            return 'full'
        finally:
            session.close()

    results = run_concurrently(attempt, [f'key-{index}' for index in range(WORKERS)])

    assert sorted(results) == ['full'] * (WORKERS - 1) + ['ok']
    check = session_factory()
    try:
        assert check.query(Reservation).count() == 1
    finally:
        check.close()


def test_same_key_callers_share_one_hold(session_factory) -> None:
    def attempt(_index: int) -> str:
        session = session_factory()
        try:
            reservation = ReservationManager(session, clock=fixed_clock).create_reservation(
                'biz-1', 'svc-solo', TEN, TEN + timedelta(hours=1), idempotency_key='shared-key'
            )
            return reservation.id
        finally:
            session.close()

    reservation_ids = run_concurrently(attempt, list(range(WORKERS)))

    assert len(set(reservation_ids)) == 1
    check = session_factory()
    try:
        assert check.query(Reservation).count() == 1
    finally:
        check.close()


def test_concurrent_edits_on_one_version_apply_once(session_factory) -> None:
    session = session_factory()
    try:
        reservation = ReservationManager(session, clock=fixed_clock).create_reservation(
            'biz-1', 'svc-solo', TEN, TEN + timedelta(hours=1), idempotency_key='key-a'
        )
        appointment = AppointmentManager(session, clock=fixed_clock).commit_reservation(
            reservation.id, guest_email='guest@example.com'
        )
    finally:
        session.close()

    def attempt(owner: str) -> str:
        worker_session = session_factory()
        try:
            AppointmentManager(worker_session, clock=fixed_clock).update_appointment(
                appointment.id, expected_version=1, actor_id=owner, notes=f'Edited by {owner}'
            )
            return 'ok'
        except AppointmentConflict:
            return 'conflict'
        finally:
            worker_session.close()

    results = run_concurrently(attempt, ['owner-1', 'owner-2', 'owner-3', 'owner-4'])

    assert sorted(results) == ['conflict', 'conflict', 'conflict', 'ok']
    check = session_factory()
    try:
        assert check.query(Appointment).one().version == 2
    finally:
        check.close()
