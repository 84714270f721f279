# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

Staff accounts with bcrypt-hashed passwords. The hash is never serialised;
User.to_dict() leaves it out.
"""

from __future__ import annotations

import bcrypt
from flask import current_app

from ..config import ShopSettings
from ..errors import AuthError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryTransaction, Sale, User
from ..time_utils import utcnow
from ..validation import enforce_rules_user
from .concurrency import lock_for_update, run_in_transaction
from .pagination import Page, paginate
from .token_service import create_access_token


USER_FIELDS = {"name", "email", "password", "phone", "is_admin"}
PROFILE_FIELDS = {"name", "email", "password", "phone"}


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check; a malformed stored hash never matches."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _clean(payload, allowed: set[str], *, required: set[str] = frozenset()) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")
    missing = sorted(f for f in required if not payload.get(f))
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    patch = {}
    for key, value in payload.items():
        if key == "is_admin":
            patch[key] = bool(value)
        elif value is None:
            patch[key] = None
        elif not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        else:
            patch[key] = value if key == "password" else value.strip()
    for key in ("name", "email", "password"):
        if key in patch and not patch[key]:
            raise ValidationError(f"{key} cannot be blank")
    enforce_rules_user(patch)
    return patch


def _ensure_email_free(email: str, exclude_id: int | None = None) -> None:
    query = db.session.query(User.id).filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("A user with this e-mail already exists")


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def create_user(payload: dict, *, settings: ShopSettings) -> User:
    """Register a staff account (email unique, password >= 6 characters)."""
    patch = _clean(payload, USER_FIELDS, required={"name", "email", "password"})

    def _op() -> User:
        _ensure_email_free(patch["email"])
        user = User(
            name=patch["name"],
            email=patch["email"],
            phone=patch.get("phone"),
            is_admin=patch.get("is_admin", False),
            password_hash=hash_password(patch["password"], settings.bcrypt_rounds),
        )
        db.session.add(user)
        db.session.flush()
        return user

    user = run_in_transaction(_op)
    current_app.logger.info("User %s registered (admin=%s)", user.email, user.is_admin)
    return user


def update_user(user_id: int, payload: dict, *, settings: ShopSettings, allowed: set[str] = USER_FIELDS) -> User:
    patch = _clean(payload, allowed)

    def _op() -> User:
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if patch.get("email"):
            _ensure_email_free(patch["email"], exclude_id=user.id)
        for key, value in patch.items():
            if key == "password":
                if value:
                    user.password_hash = hash_password(value, settings.bcrypt_rounds)
            else:
                setattr(user, key, value)
        db.session.flush()
        return user

    return run_in_transaction(_op)


def update_profile(user: User, payload: dict, *, settings: ShopSettings) -> User:
    """Self-service edit; cannot grant admin rights."""
    return update_user(user.id, payload, settings=settings, allowed=PROFILE_FIELDS)


def delete_user(user_id: int, *, acting_user_id: int) -> dict:
    """
    Remove a staff account.

    Accounts referenced by sales or ledger entries stay, so attribution
    survives.
    """
    if user_id == acting_user_id:
        raise ConflictError("You cannot delete your own account")

    def _op() -> dict:
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        referenced = (
            db.session.query(Sale.id).filter(Sale.seller_id == user.id).first()
            or db.session.query(InventoryTransaction.id).filter(InventoryTransaction.user_id == user.id).first()
        )
        if referenced:
            raise ConflictError("User has recorded sales or stock movements and cannot be deleted")
        db.session.delete(user)
        return {"deleted": True}

    return run_in_transaction(_op)


def list_users(*, page: int, limit: int) -> Page:
    query = db.session.query(User).order_by(User.name.asc(), User.id.asc())
    return paginate(query, page=page, limit=limit)


def authenticate(email, password, *, settings: ShopSettings) -> tuple[User, str]:
    """
    Check credentials and issue a token.

    Unknown email and wrong password fail the same way.
    """
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        raise ValidationError("email and password are required")

    user = db.session.query(User).filter(User.email == email.strip().lower()).first()
    if user is None or not verify_password(password, user.password_hash):
        current_app.logger.info("Failed login for %s", email)
        raise AuthError("Invalid email or password")

    user.last_login_at = utcnow()
    db.session.commit()
    current_app.logger.info("User %s logged in", user.email)
    return user, create_access_token(user.id, settings)
