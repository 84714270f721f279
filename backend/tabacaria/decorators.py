# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import g, request

from .config import get_settings
from .errors import AuthError, ForbiddenError
from .extensions import db
from .models import User
from .services.token_service import decode_access_token


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def require_auth(f):
    """
    Require a valid bearer token and load the caller.

    Sets g.current_user. Fails with 401:
    - "token not found" when the header is missing or not "Bearer <token>"
    - "invalid token" for a bad signature, an expired token or an unknown user
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            raise AuthError("token not found")

        user_id = decode_access_token(token, get_settings())
        user = db.session.get(User, user_id)
        if user is None:
            raise AuthError("invalid token")

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the authenticated caller to be an administrator.

    Must be stacked below @require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            raise AuthError("token not found")
        if not user.is_admin:
            raise ForbiddenError()
        return f(*args, **kwargs)

    return decorated_function
