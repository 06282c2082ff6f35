import jwt
from jwt import InvalidTokenError

from booking_core.core import config

__all__ = ["InvalidTokenError", "decode_access_token"]


def decode_access_token(token: str) -> dict:
    """Verify a bearer token issued by the login service and return its claims."""
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
