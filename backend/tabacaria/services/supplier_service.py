# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

Suppliers referenced by any product are deactivated instead of removed.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Product, Supplier
from ..models.inventory import SUPPLIER_CATEGORIES
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_supplier,
    normalize_category,
    validate_payload,
)
from .concurrency import lock_for_update, run_in_transaction
from .pagination import Page, paginate


SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "company_name",
        "document",
        "email",
        "phone",
        "address",
        "contact_person",
        "categories",
        "payment_terms",
        "min_order_value_cents",
        "observations",
        "is_active",
        "last_purchase_at",
    },
    required_on_create={"name"},
)


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def _ensure_document_free(document: str | None, exclude_id: int | None = None) -> None:
    if not document:
        return
    query = db.session.query(Supplier.id).filter(Supplier.document == document)
    if exclude_id is not None:
        query = query.filter(Supplier.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("A supplier with this document already exists")


def list_suppliers(filters: dict, *, page: int, limit: int) -> Page:
    query = db.session.query(Supplier)
    keyword = (filters.get("keyword") or "").strip()
    if keyword:
        like = f"%{keyword}%"
        query = query.filter(or_(
            Supplier.name.ilike(like),
            Supplier.company_name.ilike(like),
            Supplier.document.ilike(like),
            Supplier.email.ilike(like),
        ))
    if filters.get("is_active") not in (None, ""):
        active = str(filters["is_active"]).strip().lower() in {"1", "true", "yes", "sim"}
        query = query.filter(Supplier.is_active.is_(active))
    query = query.order_by(Supplier.name.asc(), Supplier.id.asc())

    category = filters.get("category")
    if category:
        # categories is a JSON list; filter after loading
        wanted = normalize_category(category, SUPPLIER_CATEGORIES)
        matching = [s.id for s in query if wanted in (s.categories or [])]
        query = query.filter(Supplier.id.in_(matching))
    return paginate(query, page=page, limit=limit)


def create_supplier(payload: dict) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    enforce_rules_supplier(patch)

    def _op() -> Supplier:
        _ensure_document_free(patch.get("document"))
        supplier = Supplier(**patch)
        db.session.add(supplier)
        db.session.flush()
        return supplier

    return run_in_transaction(_op)


def update_supplier(supplier_id: int, payload: dict) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
    enforce_rules_supplier(patch)

    def _op() -> Supplier:
        supplier = lock_for_update(db.session.query(Supplier).filter_by(id=supplier_id)).first()
        if supplier is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")
        if "document" in patch:
            _ensure_document_free(patch["document"], exclude_id=supplier.id)
        for key, value in patch.items():
            setattr(supplier, key, value)
        db.session.flush()
        return supplier

    return run_in_transaction(_op)


def has_dependents(supplier: Supplier) -> bool:
    return db.session.query(Product.id).filter(Product.supplier_id == supplier.id).first() is not None


def delete_supplier(supplier_id: int) -> dict:
    def _op() -> dict:
        supplier = lock_for_update(db.session.query(Supplier).filter_by(id=supplier_id)).first()
        if supplier is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")
        if has_dependents(supplier):
            supplier.is_active = False
            return {"deleted": False, "deactivated": True}
        db.session.delete(supplier)
        return {"deleted": True, "deactivated": False}

    result = run_in_transaction(_op)
    current_app.logger.info("Supplier %s delete: %s", supplier_id, result)
    return result


def supplier_products(supplier_id: int, *, page: int, limit: int) -> Page:
    get_supplier(supplier_id)
    query = (
        db.session.query(Product)
        .filter(Product.supplier_id == supplier_id)
        .order_by(Product.name.asc(), Product.id.asc())
    )
    return paginate(query, page=page, limit=limit)


def suppliers_by_category() -> list[dict]:
    counts = {category: 0 for category in SUPPLIER_CATEGORIES}
    for (categories,) in db.session.query(Supplier.categories).filter(Supplier.is_active.is_(True)):
        for category in set(categories or []):
            if category in counts:
                counts[category] += 1
    return [{"category": category, "count": count} for category, count in counts.items()]
