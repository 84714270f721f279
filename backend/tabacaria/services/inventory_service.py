# Overview: Service-layer operations for the stock ledger; the single write path for stock changes.

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryTransaction, LedgerReference, Product
from ..models.inventory import LEDGER_KINDS
from .concurrency import lock_for_update, run_in_transaction
from .pagination import Page, paginate

"""
Stock ledger invariants (authoritative)

- Product.stock is the current quantity; InventoryTransaction rows are the
  audit trail of how it got there.
- Every stock change appends exactly one ledger entry in the same DB
  transaction as the change itself.
- quantity on an entry is always new_stock - previous_stock (signed).
- Stock never goes negative.
- Entries are never updated.
"""

MOVEMENT_KINDS = ("in", "out", "adjustment")


def get_product_for_update(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def append_ledger_entry(
    product: Product,
    *,
    kind: str,
    previous_stock: int,
    new_stock: int,
    user_id: int,
    reason: str | None = None,
    reference: LedgerReference | None = None,
    cost_price_cents: int | None = None,
) -> InventoryTransaction:
    """
    Record one stock movement for product (no commit).

    The caller is responsible for having set product.stock to new_stock.
    cost_price_cents defaults to the product's current cost.
    """
    if kind not in LEDGER_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(LEDGER_KINDS)}")
    if new_stock < 0:
        raise ConflictError("insufficient stock", details={"product_id": product.id})

    entry = InventoryTransaction(
        product_id=product.id,
        kind=kind,
        quantity=new_stock - previous_stock,
        previous_stock=previous_stock,
        new_stock=new_stock,
        cost_price_cents=product.cost_price_cents if cost_price_cents is None else cost_price_cents,
        reason=reason,
        user_id=user_id,
    )
    entry.reference = reference
    db.session.add(entry)
    return entry


def move_stock(
    product: Product,
    *,
    kind: str,
    quantity: int,
    user_id: int,
    reason: str | None = None,
    reference: LedgerReference | None = None,
    cost_price_cents: int | None = None,
) -> InventoryTransaction:
    """
    Apply one movement to an already-loaded (ideally locked) product.

    in adds, out subtracts, adjustment sets the stock to quantity.
    """
    previous = product.stock
    if kind == "in":
        new_stock = previous + quantity
    elif kind == "out":
        new_stock = previous - quantity
    elif kind == "adjustment":
        new_stock = quantity
    else:
        raise ValidationError(f"kind must be one of: {', '.join(MOVEMENT_KINDS)}")

    if new_stock < 0:
        raise ConflictError(
            "insufficient stock",
            details={"product_id": product.id, "available": previous, "requested": quantity},
        )

    product.stock = new_stock
    return append_ledger_entry(
        product,
        kind=kind,
        previous_stock=previous,
        new_stock=new_stock,
        user_id=user_id,
        reason=reason,
        reference=reference,
        cost_price_cents=cost_price_cents,
    )


def apply_stock_movement(
    product_id: int,
    *,
    quantity,
    kind: str,
    user_id: int,
    reason: str | None = None,
) -> tuple[Product, InventoryTransaction]:
    """
    Manual stock movement (in / out / adjustment) with its ledger entry, atomically.
    """
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(MOVEMENT_KINDS)}")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if kind == "adjustment" and quantity < 0:
        raise ValidationError("quantity must be >= 0 for adjustment")
    if kind != "adjustment" and quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {kind}")

    def _op():
        product = get_product_for_update(product_id)
        entry = move_stock(
            product,
            kind=kind,
            quantity=quantity,
            user_id=user_id,
            reason=reason or None,
        )
        db.session.flush()
        return product, entry

    product, entry = run_in_transaction(_op)
    current_app.logger.info(
        "Stock movement product=%s kind=%s %s -> %s by user=%s",
        product.id, kind, entry.previous_stock, entry.new_stock, user_id,
    )
    return product, entry


def list_product_ledger(product_id: int, *, page: int, limit: int) -> Page:
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    query = (
        db.session.query(InventoryTransaction)
        .filter(InventoryTransaction.product_id == product_id)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
    )
    return paginate(query, page=page, limit=limit)


def list_sale_entries(sale_id: int) -> list[InventoryTransaction]:
    return (
        db.session.query(InventoryTransaction)
        .filter_by(reference_kind="sale", reference_id=sale_id)
        .order_by(InventoryTransaction.id.asc())
        .all()
    )
