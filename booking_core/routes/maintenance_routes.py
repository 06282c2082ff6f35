import hmac
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_core.core import config
from booking_core.core.clock import Clock, as_utc_aware
from booking_core.routes.dependencies import database_unavailable, ensure_database_ready, get_clock, get_db
from booking_core.services import cleanup

router = APIRouter(tags=['maintenance'])

logger = logging.getLogger(__name__)


class CleanupResponse(BaseModel):
    deleted_count: int
    duration_ms: int
    timestamp: datetime


class ReservationHealthResponse(BaseModel):
    status: str
    active_reservations: int
    expired_reservations: int
    businesses_with_reservations: int
    oldest_active_created_at: datetime | None = None
    last_reservation_at: datetime | None = None
    issues: list[str]


def verify_cron_secret(authorization: str | None) -> None:
    if not config.CRON_SECRET:
        logger.error('CRON_SECRET not configured')
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Cron job not configured.',
        )

    expected = f'Bearer {config.CRON_SECRET}'
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning('Unauthorized reservation cleanup attempt')
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized')


@router.post('/cleanup-reservations', response_model=CleanupResponse)
def cleanup_reservations(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    verify_cron_secret(authorization)
    ensure_database_ready()

    try:
        result = cleanup.cleanup_expired_reservations(db, clock=clock)
    except SQLAlchemyError as exc:
        logger.exception('Reservation cleanup failed')
        raise database_unavailable() from exc

    return CleanupResponse(
        deleted_count=result.cleaned,
        duration_ms=result.duration_ms,
        timestamp=as_utc_aware(result.timestamp),
    )


@router.get('/reservations/health', response_model=ReservationHealthResponse)
def reservation_health(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        health = cleanup.check_reservation_health(db, clock())
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    metrics = health.metrics
    return ReservationHealthResponse(
        status='healthy' if health.healthy else 'degraded',
        active_reservations=metrics.active_reservations,
        expired_reservations=metrics.expired_reservations,
        businesses_with_reservations=metrics.businesses_with_reservations,
        oldest_active_created_at=as_utc_aware(metrics.oldest_active_created_at)
        if metrics.oldest_active_created_at else None,
        last_reservation_at=as_utc_aware(metrics.last_reservation_at) if metrics.last_reservation_at else None,
        issues=health.issues,
    )
