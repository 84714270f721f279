# Overview: Service-layer operations for clients; encapsulates business logic and database work.

"""
Client Service

Clients with sales history are never physically removed: delete flips
is_active instead. Loyalty points can also be adjusted by hand.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Client, Sale
from ..models.sales import CANCELLED
from ..time_utils import to_utc_z
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_client,
    parse_positive_int,
    validate_payload,
)
from .concurrency import lock_for_update, run_in_transaction
from .pagination import Page, paginate


CLIENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "email",
        "phone",
        "document",
        "address",
        "birthday",
        "observations",
        "preferences",
        "favorite_category",
        "favorite_product_ids",
        "is_active",
    },
    required_on_create={"name"},
)

LOYALTY_OPERATIONS = ("add", "remove")


def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client


def _ensure_unique(patch: dict, exclude_id: int | None = None) -> None:
    for field in ("document", "email"):
        value = patch.get(field)
        if not value:
            continue
        query = db.session.query(Client.id).filter(getattr(Client, field) == value)
        if exclude_id is not None:
            query = query.filter(Client.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"A client with this {field} already exists")


def list_clients(filters: dict, *, page: int, limit: int) -> Page:
    query = db.session.query(Client)
    keyword = (filters.get("keyword") or "").strip()
    if keyword:
        like = f"%{keyword}%"
        query = query.filter(or_(
            Client.name.ilike(like),
            Client.email.ilike(like),
            Client.phone.ilike(like),
            Client.document.ilike(like),
        ))
    if filters.get("is_active") not in (None, ""):
        active = str(filters["is_active"]).strip().lower() in {"1", "true", "yes", "sim"}
        query = query.filter(Client.is_active.is_(active))
    query = query.order_by(Client.name.asc(), Client.id.asc())
    return paginate(query, page=page, limit=limit)


def create_client(payload: dict) -> Client:
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=False)
    enforce_rules_client(patch)

    def _op() -> Client:
        _ensure_unique(patch)
        client = Client(**patch)
        db.session.add(client)
        db.session.flush()
        return client

    return run_in_transaction(_op)


def update_client(client_id: int, payload: dict) -> Client:
    patch = validate_payload(model=Client, payload=payload, policy=CLIENT_POLICY, partial=True)
    enforce_rules_client(patch)

    def _op() -> Client:
        client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        _ensure_unique(patch, exclude_id=client.id)
        for key, value in patch.items():
            setattr(client, key, value)
        db.session.flush()
        return client

    return run_in_transaction(_op)


def has_dependents(client: Client) -> bool:
    return db.session.query(Sale.id).filter(Sale.client_id == client.id).first() is not None


def delete_client(client_id: int) -> dict:
    def _op() -> dict:
        client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        if has_dependents(client):
            client.is_active = False
            return {"deleted": False, "deactivated": True}
        db.session.delete(client)
        return {"deleted": True, "deactivated": False}

    result = run_in_transaction(_op)
    current_app.logger.info("Client %s delete: %s", client_id, result)
    return result


def client_sales(client_id: int, *, page: int, limit: int) -> tuple[Page, int]:
    """Paginated purchase history plus the sum of non-cancelled totals."""
    get_client(client_id)
    query = (
        db.session.query(Sale)
        .filter(Sale.client_id == client_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
    )
    result = paginate(query, page=page, limit=limit)
    total = (
        db.session.query(func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(Sale.client_id == client_id, Sale.payment_status != CANCELLED)
        .scalar()
    )
    return result, int(total or 0)


def adjust_loyalty(client_id: int, *, points, operation, reason: str | None = None) -> tuple[Client, str]:
    """Manually add or remove loyalty points; the balance never goes below zero."""
    if operation not in LOYALTY_OPERATIONS:
        raise ValidationError("operation must be 'add' or 'remove'")
    amount = parse_positive_int(points, "points")

    def _op() -> Client:
        client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        if operation == "add":
            client.loyalty_points = (client.loyalty_points or 0) + amount
        else:
            if (client.loyalty_points or 0) < amount:
                raise ConflictError(
                    "Client does not have enough loyalty points",
                    details={"balance": client.loyalty_points, "requested": amount},
                )
            client.loyalty_points -= amount
        db.session.flush()
        return client

    client = run_in_transaction(_op)
    reason = reason or ("points added manually" if operation == "add" else "points removed manually")
    current_app.logger.info("Client %s loyalty %s %s (%s)", client_id, operation, amount, reason)
    return client, reason


def top_clients(limit: int = 5) -> list[dict]:
    rows = (
        db.session.query(
            Client,
            func.sum(Sale.total_cents).label("total_spent"),
            func.count(Sale.id).label("order_count"),
            func.max(Sale.created_at).label("last_purchase"),
        )
        .join(Sale, Sale.client_id == Client.id)
        .filter(Sale.payment_status != CANCELLED)
        .group_by(Client.id)
        .order_by(func.sum(Sale.total_cents).desc(), Client.id)
        .limit(limit)
        .all()
    )
    return [
        {
            "id": client.id,
            "name": client.name,
            "phone": client.phone,
            "total_spent_cents": int(total or 0),
            "order_count": int(count or 0),
            "last_purchase": to_utc_z(last),
        }
        for client, total, count, last in rows
    ]
