from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from booking_core.auth.dependencies import get_current_actor
from booking_core.auth.jwt_handler import decode_access_token
from booking_core.core import config


def issue_token(subject: str, expires_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {'sub': subject, 'iat': now, 'exp': now + timedelta(minutes=expires_minutes)}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_decode_access_token_returns_claims() -> None:
    assert decode_access_token(issue_token('owner-1'))['sub'] == 'owner-1'


def test_get_current_actor_returns_subject() -> None:
    assert get_current_actor(bearer(issue_token('owner-1'))) == 'owner-1'


def test_get_current_actor_rejects_garbage_token() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(bearer('not-a-jwt'))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_actor_rejects_expired_token() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(bearer(issue_token('owner-1', expires_minutes=-1)))

    assert exception_info.value.status_code == 401


def test_get_current_actor_rejects_token_signed_with_other_key() -> None:
    token = jwt.encode({'sub': 'owner-1'}, 'another-secret-key-of-at-least-32-bytes', algorithm='HS256')

    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(bearer(token))

    assert exception_info.value.status_code == 401


def test_get_current_actor_rejects_empty_subject() -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_actor(bearer(issue_token('')))

    assert exception_info.value.detail == 'Invalid token subject'
