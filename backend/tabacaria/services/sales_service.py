"""
Sales Service - cart validation, stock deduction and reversal.

A sale is recorded in a single DB transaction: number allocation, the sale
and its line snapshots, the stock decrements with their ledger entries and
the client's spend/loyalty update either all commit or none do.
"""

from __future__ import annotations

import unicodedata
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..config import ShopSettings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Client, LedgerReference, Product, Sale, SaleLine
from ..models.sales import (
    CANCELLED,
    DEFAULT_PAYMENT_METHOD,
    DEFAULT_PAYMENT_STATUS,
)
from ..time_utils import end_of_day, parse_date_range, start_of_day, to_utc_z, utcnow
from ..validation import MAX_PRICE_CENTS, parse_non_negative_int, parse_positive_int
from .concurrency import lock_for_update, run_in_transaction
from .document_service import next_sale_number
from .inventory_service import move_stock
from .pagination import Page, paginate


def _fold(value: str) -> str:
    """Lower-case and strip accents: 'Cartão de Crédito' -> 'cartao de credito'."""
    decomposed = unicodedata.normalize("NFKD", value.strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


_PAYMENT_METHOD_ALIASES = {
    "dinheiro": "Dinheiro",
    "cash": "Dinheiro",
    "cartao de credito": "Cartão de crédito",
    "credito": "Cartão de crédito",
    "credit card": "Cartão de crédito",
    "credit": "Cartão de crédito",
    "cartao de debito": "Cartão de débito",
    "debito": "Cartão de débito",
    "debit card": "Cartão de débito",
    "debit": "Cartão de débito",
    "pix": "Pix",
    "transferencia": "Transferência",
    "transfer": "Transferência",
    "outro": "Outro",
    "other": "Outro",
}

_PAYMENT_STATUS_ALIASES = {
    "pending": "Pending",
    "pendente": "Pending",
    "paid": "Paid",
    "pago": "Paid",
    "partial": "Partial",
    "parcial": "Partial",
    "cancelled": "Cancelled",
    "canceled": "Cancelled",
    "cancelado": "Cancelled",
}


def normalize_payment_method(value) -> str:
    """Canonical payment label; anything unrecognised is recorded as cash."""
    if not isinstance(value, str) or not value.strip():
        return DEFAULT_PAYMENT_METHOD
    return _PAYMENT_METHOD_ALIASES.get(_fold(value), DEFAULT_PAYMENT_METHOD)


def normalize_payment_status(value) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_PAYMENT_STATUS
    if not isinstance(value, str):
        raise ValidationError("payment_status must be a string")
    status = _PAYMENT_STATUS_ALIASES.get(_fold(value))
    if status is None:
        raise ValidationError(f"Unknown payment_status: {value}")
    return status


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    price_cents: int | None
    discount_cents: int


def _money(value, key: str) -> int:
    cents = parse_non_negative_int(value, key)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def parse_cart(items) -> list[CartLine]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must contain at least one item")

    lines: list[CartLine] = []
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"items[{i}].product_id is required")
        price = raw.get("price_cents")
        lines.append(CartLine(
            product_id=parse_positive_int(raw["product_id"], f"items[{i}].product_id"),
            quantity=parse_positive_int(raw.get("quantity"), f"items[{i}].quantity"),
            price_cents=_money(price, f"items[{i}].price_cents") if price is not None else None,
            discount_cents=_money(raw.get("discount_cents") or 0, f"items[{i}].discount_cents"),
        ))
    return lines


def _loyalty_points(total_cents: int, settings: ShopSettings) -> int:
    return max(total_cents, 0) // settings.loyalty_cents_per_point


def _lock_cart_products(lines: list[CartLine]) -> dict[int, Product]:
    """
    Lock every product in the cart (in id order) and check availability.

    Quantities are summed per product first, so the same product on two
    lines cannot sell more than is in stock.
    """
    requested: OrderedDict[int, int] = OrderedDict()
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    rows = lock_for_update(
        db.session.query(Product)
        .filter(Product.id.in_(list(requested)))
        .order_by(Product.id)
    ).all()
    products = {p.id: p for p in rows}

    for product_id, quantity in requested.items():
        product = products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        if product.stock < quantity:
            raise ConflictError(
                f"insufficient stock for {product.name}",
                details={
                    "product_id": product_id,
                    "available": product.stock,
                    "requested": quantity,
                },
            )
    return products


def create_sale(payload: dict, *, seller_id: int, settings: ShopSettings) -> Sale:
    """
    Record a sale: snapshot lines, decrement stock, update the client.

    Fails without side effects on an empty cart, a missing product or
    insufficient stock.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    lines = parse_cart(payload.get("items"))
    sale_discount = _money(payload.get("discount_cents") or 0, "discount_cents")
    tax = _money(payload.get("tax_cents") or 0, "tax_cents")
    payment_method = normalize_payment_method(payload.get("payment_method"))
    payment_status = normalize_payment_status(payload.get("payment_status"))
    if payment_status == CANCELLED:
        raise ValidationError("A sale cannot be created as Cancelled")
    notes = payload.get("notes")
    client_id = payload.get("client_id")
    if client_id is not None:
        client_id = parse_positive_int(client_id, "client_id")

    def _op() -> Sale:
        client = None
        if client_id is not None:
            client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
            if client is None:
                raise NotFoundError(f"Client {client_id} not found")

        products = _lock_cart_products(lines)

        subtotal = 0
        gross_profit = 0
        sale_lines: list[SaleLine] = []
        for position, line in enumerate(lines):
            product = products[line.product_id]
            price = line.price_cents if line.price_cents is not None else product.price_cents
            line_gross = price * line.quantity
            subtotal += line_gross
            gross_profit += line_gross - product.cost_price_cents * line.quantity
            sale_lines.append(SaleLine(
                position=position,
                product_id=product.id,
                name=product.name,
                price_cents=price,
                cost_price_cents=product.cost_price_cents,
                quantity=line.quantity,
                discount_cents=line.discount_cents,
                total_cents=line_gross - line.discount_cents,
            ))

        total = subtotal - sale_discount + tax
        if total < 0:
            raise ValidationError("discount_cents must be <= subtotal_cents + tax_cents")

        sale = Sale(
            sale_number=next_sale_number(),
            client_id=client.id if client else None,
            seller_id=seller_id,
            subtotal_cents=subtotal,
            discount_cents=sale_discount,
            tax_cents=tax,
            total_cents=total,
            profit_cents=gross_profit - sale_discount,
            payment_method=payment_method,
            payment_status=payment_status,
            notes=notes.strip() if isinstance(notes, str) and notes.strip() else None,
            items=sale_lines,
        )
        db.session.add(sale)
        db.session.flush()

        reference = LedgerReference("sale", sale.id)
        for line in sale.items:
            move_stock(
                products[line.product_id],
                kind="out",
                quantity=line.quantity,
                user_id=seller_id,
                reason=f"Sale {sale.sale_number}",
                reference=reference,
            )

        if client is not None:
            client.total_purchased_cents = (client.total_purchased_cents or 0) + total
            client.last_purchase_at = utcnow()
            points = _loyalty_points(total, settings)
            if points > 0:
                client.loyalty_points = (client.loyalty_points or 0) + points

        db.session.flush()
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info(
        "Sale %s created by user=%s total_cents=%s", sale.sale_number, seller_id, sale.total_cents
    )
    return sale


def cancel_sale(sale_id: int, *, user_id: int, settings: ShopSettings) -> Sale:
    """
    Reverse a sale: return every line to stock and roll back the client.

    Stock is restored on top of the product's current level. A sale can only
    be cancelled once.
    """
    def _op() -> Sale:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found")
        if sale.is_cancelled:
            raise ConflictError("sale already cancelled")

        sale.payment_status = CANCELLED

        # Same lock order as create_sale: client first, then products by id
        client = None
        if sale.client_id is not None:
            client = lock_for_update(db.session.query(Client).filter_by(id=sale.client_id)).first()

        product_ids = sorted({line.product_id for line in sale.items})
        rows = lock_for_update(
            db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id)
        ).all()
        products = {p.id: p for p in rows}

        reference = LedgerReference("sale", sale.id)
        for line in sale.items:
            product = products.get(line.product_id)
            if product is None:
                current_app.logger.warning(
                    "Sale %s: product %s no longer exists, stock not restored",
                    sale.sale_number, line.product_id,
                )
                continue
            move_stock(
                product,
                kind="in",
                quantity=line.quantity,
                user_id=user_id,
                reason="sale cancellation",
                reference=reference,
                cost_price_cents=line.cost_price_cents,
            )

        if client is not None:
            client.total_purchased_cents = max(0, (client.total_purchased_cents or 0) - sale.total_cents)
            points = _loyalty_points(sale.total_cents, settings)
            if points > 0:
                client.loyalty_points = max(0, (client.loyalty_points or 0) - points)

        db.session.flush()
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("Sale %s cancelled by user=%s", sale.sale_number, user_id)
    return sale


def update_sale_payment(sale_id: int, *, payment_status=None, payment_method=None) -> Sale:
    if payment_status is None and payment_method is None:
        raise ValidationError("payment_status or payment_method is required")

    status = normalize_payment_status(payment_status) if payment_status is not None else None
    if status == CANCELLED:
        raise ValidationError("Use the cancel operation to cancel a sale")

    def _op() -> Sale:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found")
        if sale.is_cancelled:
            raise ConflictError("Cannot change payment of a cancelled sale")
        if status is not None:
            sale.payment_status = status
        if payment_method is not None:
            sale.payment_method = normalize_payment_method(payment_method)
        db.session.flush()
        return sale

    return run_in_transaction(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def _apply_sale_filters(query, filters: dict):
    start_dt, end_dt = parse_date_range(filters.get("start_date"), filters.get("end_date"))
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
    if filters.get("client_id"):
        query = query.filter(Sale.client_id == parse_positive_int(filters["client_id"], "client_id"))
    if filters.get("seller_id"):
        query = query.filter(Sale.seller_id == parse_positive_int(filters["seller_id"], "seller_id"))
    if filters.get("payment_method"):
        query = query.filter(Sale.payment_method == normalize_payment_method(filters["payment_method"]))
    if filters.get("payment_status"):
        query = query.filter(Sale.payment_status == normalize_payment_status(filters["payment_status"]))
    return query


def list_sales(filters: dict, *, page: int, limit: int) -> tuple[Page, dict]:
    """Newest-first sales page plus count/revenue/profit over the whole filter."""
    query = _apply_sale_filters(db.session.query(Sale), filters).order_by(
        Sale.created_at.desc(), Sale.id.desc()
    )
    result = paginate(query, page=page, limit=limit)

    count, revenue, profit = _apply_sale_filters(
        db.session.query(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.profit_cents), 0),
        ),
        filters,
    ).one()
    totals = {
        "total_sales": int(count or 0),
        "total_revenue_cents": int(revenue or 0),
        "total_profit_cents": int(profit or 0),
    }
    return result, totals


PERIODS = ("today", "yesterday", "week", "month", "year")


def period_bounds(period: str | None, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Inclusive [start, end] for a named period; unknown/absent means the last 30 days."""
    now = now or utcnow()
    end = end_of_day(now)
    if period == "today":
        start = start_of_day(now)
    elif period == "yesterday":
        start = start_of_day(now - timedelta(days=1))
        end = end_of_day(start)
    elif period == "week":
        start = start_of_day(now - timedelta(days=7))
    elif period == "month":
        start = start_of_day(now - timedelta(days=30))
    elif period == "year":
        start = start_of_day(now - timedelta(days=365))
    else:
        start = start_of_day(now - timedelta(days=30))
    return start, end


def sales_by_period(period: str | None) -> dict:
    start, end = period_bounds(period)
    base = db.session.query(Sale).filter(
        Sale.created_at >= start,
        Sale.created_at <= end,
        Sale.payment_status != CANCELLED,
    )

    count, revenue, profit = base.with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.coalesce(func.sum(Sale.profit_cents), 0),
    ).one()

    day = func.strftime("%Y-%m-%d", Sale.created_at)
    rows = (
        base.with_entities(
            day.label("day"),
            func.count(Sale.id).label("count"),
            func.coalesce(func.sum(Sale.total_cents), 0).label("revenue"),
            func.coalesce(func.sum(Sale.profit_cents), 0).label("profit"),
        )
        .group_by("day")
        .order_by("day")
        .all()
    )

    return {
        "period": period if period in PERIODS else "last_30_days",
        "start_date": to_utc_z(start),
        "end_date": to_utc_z(end),
        "totals": {
            "total_sales": int(count or 0),
            "total_revenue_cents": int(revenue or 0),
            "total_profit_cents": int(profit or 0),
        },
        "sales_by_day": [
            {
                "day": row.day,
                "count": int(row.count or 0),
                "revenue_cents": int(row.revenue or 0),
                "profit_cents": int(row.profit or 0),
            }
            for row in rows
        ],
    }


def top_products(*, limit: int = 5, start: str | None = None, end: str | None = None) -> list[dict]:
    """Best sellers by units sold, excluding cancelled sales."""
    start_dt, end_dt = parse_date_range(start, end)

    query = (
        db.session.query(
            SaleLine.product_id.label("product_id"),
            func.min(SaleLine.name).label("name"),
            func.sum(SaleLine.quantity).label("total_quantity"),
            func.count(func.distinct(SaleLine.sale_id)).label("total_sales"),
            func.sum(SaleLine.price_cents * SaleLine.quantity).label("total_revenue"),
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .filter(Sale.payment_status != CANCELLED)
    )
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)

    rows = (
        query.group_by(SaleLine.product_id)
        .order_by(func.sum(SaleLine.quantity).desc(), SaleLine.product_id)
        .limit(limit)
        .all()
    )

    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_([r.product_id for r in rows]))
    } if rows else {}

    result = []
    for row in rows:
        product = products.get(row.product_id)
        result.append({
            "product_id": row.product_id,
            "name": row.name,
            "category": product.category if product else None,
            "stock": product.stock if product else None,
            "total_quantity": int(row.total_quantity or 0),
            "total_sales": int(row.total_sales or 0),
            "total_revenue_cents": int(row.total_revenue or 0),
        })
    return result
