from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ConflictError, ValidationError
from .models.inventory import PRODUCT_CATEGORIES, SUPPLIER_CATEGORIES
from .time_utils import parse_iso_datetime


__all__ = [
    "ConflictError",
    "ModelValidationPolicy",
    "ValidationError",
    "validate_payload",
]


# Maximum price: R$ 9.999.999,99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

MIN_PASSWORD_LENGTH = 6

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_TRUE_STRINGS = frozenset({"true", "1", "yes", "sim"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "nao", "não"})


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            text = value.strip().casefold()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Date columns accept "YYYY-MM-DD" or a full timestamp
    if isinstance(coltype, Date):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            return dt.date()
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, JSON):
        if not isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be an object or a list")
        return value

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str) and val == "":
            if not col.nullable:
                raise ValidationError(f"{k} cannot be blank")
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_money(patch: dict, key: str) -> None:
    if key not in patch or patch[key] is None:
        return
    value = patch[key]
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def _check_email(patch: dict, key: str = "email") -> None:
    email = patch.get(key)
    if email is None:
        return
    email = email.lower()
    if not EMAIL_RE.match(email):
        raise ValidationError(f"{key} is not a valid e-mail address")
    patch[key] = email


def _check_str_list(patch: dict, key: str) -> None:
    if key not in patch or patch[key] is None:
        return
    items = patch[key]
    if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
        raise ValidationError(f"{key} must be a list of strings")
    patch[key] = [i.strip() for i in items if i.strip()]


def normalize_category(value: str | None, allowed: tuple[str, ...] = PRODUCT_CATEGORIES) -> str:
    """Map a category label onto its canonical spelling (case-insensitive)."""
    if value is None:
        raise ValidationError("category cannot be null")
    for category in allowed:
        if category.casefold() == value.strip().casefold():
            return category
    raise ValidationError(f"category must be one of: {', '.join(allowed)}")


def enforce_rules_product(patch: dict) -> None:
    """Business rules that are not captured by SQLAlchemy metadata alone."""
    _check_money(patch, "price_cents")
    _check_money(patch, "cost_price_cents")

    for key in ("stock", "min_stock"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")

    if "category" in patch:
        patch["category"] = normalize_category(patch["category"])

    _check_str_list(patch, "images")
    _check_str_list(patch, "flavors")

    if "attributes" in patch and patch["attributes"] is not None:
        if not isinstance(patch["attributes"], dict):
            raise ValidationError("attributes must be an object")


def enforce_rules_client(patch: dict) -> None:
    _check_email(patch)
    if "address" in patch and patch["address"] is not None and not isinstance(patch["address"], dict):
        raise ValidationError("address must be an object")
    _check_str_list(patch, "preferences")


def enforce_rules_supplier(patch: dict) -> None:
    _check_email(patch)
    _check_money(patch, "min_order_value_cents")
    _check_str_list(patch, "categories")
    if patch.get("categories"):
        patch["categories"] = list(dict.fromkeys(
            normalize_category(c, SUPPLIER_CATEGORIES) for c in patch["categories"]
        ))

    for key in ("address", "contact_person"):
        if key in patch and patch[key] is not None and not isinstance(patch[key], dict):
            raise ValidationError(f"{key} must be an object")


def enforce_rules_user(patch: dict) -> None:
    _check_email(patch)
    password = patch.get("password")
    if password is not None and len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")


def parse_positive_int(value: Any, key: str) -> int:
    n = _coerce_int(key, value)
    if n <= 0:
        raise ValidationError(f"{key} must be > 0")
    return n


def parse_non_negative_int(value: Any, key: str) -> int:
    n = _coerce_int(key, value)
    if n < 0:
        raise ValidationError(f"{key} must be >= 0")
    return n
