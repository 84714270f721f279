# Overview: Signed, time-limited bearer credentials (JWT).

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from ..config import ShopSettings
from ..errors import AuthError


def create_access_token(user_id: int, settings: ShopSettings, *, now: datetime | None = None) -> str:
    """Issue a token whose subject is the user id."""
    issued = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: ShopSettings) -> int:
    """
    Return the user id carried by a token.

    Raises AuthError("invalid token") for a bad signature, an expired token
    or a payload without a usable subject.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthError("invalid token")

    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise AuthError("invalid token")
