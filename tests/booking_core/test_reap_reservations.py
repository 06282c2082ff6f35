from datetime import datetime, timedelta

from booking_core import reap_reservations
from booking_core.models.reservation import Reservation

TEN = datetime(2030, 1, 8, 10, 0)


def test_main_deletes_expired_reservations(db_session, service, add_reservation, monkeypatch, capsys) -> None:
    add_reservation(service, TEN, TEN + timedelta(minutes=30), expires_at=datetime(2000, 1, 1))
    monkeypatch.setattr(reap_reservations, 'SessionLocal', lambda: db_session)

    exit_code = reap_reservations.main([])

    assert exit_code == 0
    assert 'Deleted 1 expired reservations' in capsys.readouterr().out
    assert db_session.query(Reservation).count() == 0


def test_main_reports_unhealthy_store(db_session, service, add_reservation, monkeypatch, capsys) -> None:
    reservation = add_reservation(service, TEN, TEN + timedelta(minutes=30), expires_at=datetime(2999, 1, 1))
    reservation.created_at = datetime(2000, 1, 1)
    db_session.commit()
    monkeypatch.setattr(reap_reservations, 'SessionLocal', lambda: db_session)

    exit_code = reap_reservations.main(['--check-health'])

    assert exit_code == 1
    assert 'Oldest active reservation' in capsys.readouterr().err
