from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from booking_core.routes.availability_routes import get_capacity, list_slots

TUESDAY = date(2030, 1, 8)
TEN = datetime(2030, 1, 8, 10, 0)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch) -> None:
    monkeypatch.setattr('booking_core.routes.availability_routes.ensure_database_ready', lambda: None)


def test_list_slots_returns_utc_slots_with_capacity(db_session, service, add_reservation, clock) -> None:
    add_reservation(service, TEN, TEN + timedelta(minutes=30), expires_at=clock() + timedelta(minutes=15))

    slots = list_slots(
        business_id='biz-1',
        service_id='svc-1',
        start_date=TUESDAY,
        end_date=TUESDAY + timedelta(days=1),
        db=db_session,
        clock=clock,
    )

    by_start = {slot.start: slot for slot in slots}
    assert slots[0].start == datetime(2030, 1, 8, 9, 0, tzinfo=timezone.utc)
    assert by_start[datetime(2030, 1, 8, 10, 0, tzinfo=timezone.utc)].capacity_remaining == 1
    assert by_start[datetime(2030, 1, 8, 10, 0, tzinfo=timezone.utc)].available is True


def test_list_slots_defaults_to_one_week(db_session, service, clock) -> None:
    slots = list_slots(
        business_id='biz-1',
        service_id='svc-1',
        start_date=TUESDAY,
        end_date=None,
        db=db_session,
        clock=clock,
    )

    days = {slot.start.date() for slot in slots}
    assert days == {
        date(2030, 1, 8),
        date(2030, 1, 9),
        date(2030, 1, 10),
        date(2030, 1, 11),
        date(2030, 1, 14),
    }


@pytest.mark.parametrize(
    ('end_date', 'detail'),
    [
        (TUESDAY, 'end_date must be after start_date.'),
        (TUESDAY + timedelta(days=40), 'Date range cannot exceed 30 days.'),
    ],
)
def test_list_slots_rejects_bad_ranges(db_session, service, clock, end_date: date, detail: str) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_slots(
            business_id='biz-1',
            service_id='svc-1',
            start_date=TUESDAY,
            end_date=end_date,
            db=db_session,
            clock=clock,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == detail


def test_list_slots_unknown_business(db_session, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_slots(
            business_id='missing',
            service_id='svc-1',
            start_date=TUESDAY,
            end_date=None,
            db=db_session,
            clock=clock,
        )

    assert exception_info.value.status_code == 404


def test_get_capacity_defaults_window_to_service_duration(db_session, service, add_appointment, clock) -> None:
    add_appointment(service, TEN, TEN + timedelta(minutes=30))

    response = get_capacity(
        business_id='biz-1',
        service_id='svc-1',
        slot_start=TEN,
        slot_end=None,
        db=db_session,
        clock=clock,
    )

    assert response.capacity_remaining == 1
    assert response.capacity_total == 2
    assert response.slot_end == datetime(2030, 1, 8, 10, 30, tzinfo=timezone.utc)


def test_get_capacity_rejects_inverted_window(db_session, service, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_capacity(
            business_id='biz-1',
            service_id='svc-1',
            slot_start=TEN,
            slot_end=TEN - timedelta(minutes=5),
            db=db_session,
            clock=clock,
        )

    assert exception_info.value.status_code == 400
