# Overview: Service-layer operations for reporting; read-only aggregations for the dashboard.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..config import ShopSettings
from ..errors import ValidationError
from ..extensions import db
from ..models import Client, Product, Sale, SaleLine, Supplier
from ..models.sales import CANCELLED
from ..time_utils import (
    end_of_day,
    end_of_month,
    parse_date_range,
    start_of_day,
    start_of_month,
    to_utc_z,
    utcnow,
)


GROUP_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
    "year": "%Y",
}


def _valid_sales(start: datetime | None = None, end: datetime | None = None):
    query = db.session.query(Sale).filter(Sale.payment_status != CANCELLED)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query


def _sales_summary(start: datetime | None, end: datetime | None) -> dict:
    count, total, profit = _valid_sales(start, end).with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.coalesce(func.sum(Sale.profit_cents), 0),
    ).one()
    return {
        "count": int(count or 0),
        "total_cents": int(total or 0),
        "profit_cents": int(profit or 0),
    }


def _payment_methods(start: datetime, end: datetime) -> list[dict]:
    rows = (
        _valid_sales(start, end)
        .with_entities(
            Sale.payment_method,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
        )
        .group_by(Sale.payment_method)
        .order_by(func.sum(Sale.total_cents).desc())
        .all()
    )
    return [
        {"payment_method": method, "count": int(count), "total_cents": int(total)}
        for method, count, total in rows
    ]


def _category_sales(start: datetime | None, end: datetime | None) -> list[dict]:
    line_total = SaleLine.price_cents * SaleLine.quantity
    line_cost = SaleLine.cost_price_cents * SaleLine.quantity
    query = (
        db.session.query(
            Product.category,
            func.coalesce(func.sum(SaleLine.quantity), 0),
            func.coalesce(func.sum(line_total), 0),
            func.coalesce(func.sum(line_total - line_cost), 0),
        )
        .select_from(SaleLine)
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .filter(Sale.payment_status != CANCELLED)
    )
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    rows = query.group_by(Product.category).order_by(func.sum(line_total).desc()).all()
    return [
        {
            "category": category,
            "quantity": int(quantity),
            "total_cents": int(total),
            "profit_cents": int(profit),
        }
        for category, quantity, total, profit in rows
    ]


def _sales_by_day(start: datetime, end: datetime) -> list[dict]:
    day = func.strftime("%Y-%m-%d", Sale.created_at)
    rows = (
        _valid_sales(start, end)
        .with_entities(
            day.label("day"),
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.profit_cents), 0),
        )
        .group_by("day")
        .order_by("day")
        .all()
    )
    return [
        {"day": d, "count": int(c), "total_cents": int(t), "profit_cents": int(p)}
        for d, c, t, p in rows
    ]


def _top_products(start: datetime, end: datetime, limit: int = 5) -> list[dict]:
    rows = (
        db.session.query(
            SaleLine.product_id,
            func.min(SaleLine.name),
            func.sum(SaleLine.quantity),
            func.sum(SaleLine.price_cents * SaleLine.quantity),
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .filter(
            Sale.payment_status != CANCELLED,
            Sale.created_at >= start,
            Sale.created_at <= end,
        )
        .group_by(SaleLine.product_id)
        .order_by(func.sum(SaleLine.quantity).desc(), SaleLine.product_id)
        .limit(limit)
        .all()
    )
    return [
        {"product_id": pid, "name": name, "quantity": int(qty), "total_cents": int(total)}
        for pid, name, qty, total in rows
    ]


def _client_totals(start: datetime | None = None, end: datetime | None = None):
    query = (
        db.session.query(
            Client.id,
            Client.name,
            Client.phone,
            func.sum(Sale.total_cents).label("total_spent"),
            func.count(Sale.id).label("order_count"),
            func.max(Sale.created_at).label("last_purchase"),
        )
        .join(Sale, Sale.client_id == Client.id)
        .filter(Sale.payment_status != CANCELLED)
    )
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query.group_by(Client.id, Client.name, Client.phone)


def dashboard_stats(now: datetime | None = None) -> dict:
    now = now or utcnow()
    today_start, today_end = start_of_day(now), end_of_day(now)
    month_start, month_end = start_of_month(now), end_of_month(now)
    week_start = start_of_day(now - timedelta(days=6))

    active_products = db.session.query(Product).filter(Product.is_active.is_(True))

    top_clients = (
        _client_totals(month_start, month_end)
        .order_by(func.sum(Sale.total_cents).desc(), Client.id)
        .limit(5)
        .all()
    )

    return {
        "counts": {
            "products": active_products.count(),
            "clients": db.session.query(Client).filter(Client.is_active.is_(True)).count(),
            "suppliers": db.session.query(Supplier).filter(Supplier.is_active.is_(True)).count(),
            "low_stock": active_products.filter(Product.stock <= Product.min_stock).count(),
        },
        "sales": {
            "today": _sales_summary(today_start, today_end),
            "month": _sales_summary(month_start, month_end),
        },
        "charts": {
            "payment_methods": _payment_methods(month_start, month_end),
            "sales_by_category": _category_sales(month_start, month_end),
            "sales_by_day": _sales_by_day(week_start, today_end),
        },
        "top": {
            "products": _top_products(month_start, month_end),
            "clients": [
                {
                    "id": row.id,
                    "name": row.name,
                    "count": int(row.order_count),
                    "total_cents": int(row.total_spent or 0),
                }
                for row in top_clients
            ],
        },
    }


def sales_analysis(*, start: str | None, end: str | None, group_by: str | None) -> dict:
    """Sales grouped by day/week/month/year; defaults to the last 30 days by day."""
    group_by = group_by or "day"
    if group_by not in GROUP_FORMATS:
        raise ValidationError("group_by must be day, week, month, or year")

    start_dt, end_dt = parse_date_range(start, end)
    now = utcnow()
    start_dt = start_of_day(start_dt or now - timedelta(days=30))
    end_dt = end_of_day(end_dt or now)

    period_expr = func.strftime(GROUP_FORMATS[group_by], Sale.created_at)
    rows = (
        _valid_sales(start_dt, end_dt)
        .with_entities(
            period_expr.label("period"),
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.profit_cents), 0),
            func.avg(Sale.total_cents),
        )
        .group_by("period")
        .order_by("period")
        .all()
    )

    count, total, profit, average = _valid_sales(start_dt, end_dt).with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.coalesce(func.sum(Sale.profit_cents), 0),
        func.avg(Sale.total_cents),
    ).one()

    return {
        "period": {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt), "group_by": group_by},
        "analysis": [
            {
                "period": period,
                "count": int(c),
                "total_cents": int(t),
                "profit_cents": int(p),
                "average_ticket_cents": int(round(avg or 0)),
            }
            for period, c, t, p, avg in rows
        ],
        "totals": {
            "count": int(count or 0),
            "total_cents": int(total or 0),
            "profit_cents": int(profit or 0),
            "average_ticket_cents": int(round(average or 0)),
        },
        "category_sales": _category_sales(start_dt, end_dt),
    }


def inventory_analysis(settings: ShopSettings) -> dict:
    active = Product.is_active.is_(True)
    value = Product.stock * Product.price_cents
    cost = Product.stock * Product.cost_price_cents

    categories = (
        db.session.query(
            Product.category,
            func.count(Product.id),
            func.coalesce(func.sum(Product.stock), 0),
            func.coalesce(func.sum(value), 0),
            func.coalesce(func.sum(cost), 0),
            func.avg(Product.price_cents),
        )
        .filter(active)
        .group_by(Product.category)
        .order_by(func.sum(value).desc())
        .all()
    )

    low_stock = (
        db.session.query(Product)
        .filter(active, Product.stock <= Product.min_stock)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )

    items, stock, total_value, total_cost = (
        db.session.query(
            func.count(Product.id),
            func.coalesce(func.sum(Product.stock), 0),
            func.coalesce(func.sum(value), 0),
            func.coalesce(func.sum(cost), 0),
        )
        .filter(active)
        .one()
    )

    return {
        "category_analysis": [
            {
                "category": category,
                "count": int(count),
                "total_stock": int(total_stock),
                "total_value_cents": int(val),
                "total_cost_cents": int(cst),
                "average_price_cents": int(round(avg or 0)),
            }
            for category, count, total_stock, val, cst, avg in categories
        ],
        "stock_status": {
            "out_of_stock": db.session.query(Product).filter(active, Product.stock == 0).count(),
            "critical": sum(1 for p in low_stock if p.stock <= settings.stock_critical_threshold),
            "low_stock": [
                {
                    "id": p.id,
                    "name": p.name,
                    "category": p.category,
                    "stock": p.stock,
                    "min_stock": p.min_stock,
                    "price_cents": p.price_cents,
                }
                for p in low_stock
            ],
        },
        "inventory_value": {
            "total_items": int(items or 0),
            "total_stock": int(stock or 0),
            "total_value_cents": int(total_value or 0),
            "total_cost_cents": int(total_cost or 0),
            "potential_profit_cents": int((total_value or 0) - (total_cost or 0)),
        },
    }


def client_analysis(now: datetime | None = None) -> dict:
    now = now or utcnow()
    month_start, month_end = start_of_month(now), end_of_month(now)

    active_clients = db.session.query(Client).filter(Client.is_active.is_(True))
    new_this_month = active_clients.filter(
        Client.created_at >= month_start, Client.created_at <= month_end
    ).count()
    buying_this_month = (
        _valid_sales(month_start, month_end)
        .filter(Sale.client_id.isnot(None))
        .with_entities(func.count(func.distinct(Sale.client_id)))
        .scalar()
    )

    per_client = _client_totals().all()
    tickets = [row.total_spent / row.order_count for row in per_client if row.order_count]
    ranked = sorted(per_client, key=lambda row: (-(row.total_spent or 0), row.id))[:10]

    return {
        "counts": {
            "total": active_clients.count(),
            "new_this_month": new_this_month,
            "active_this_month": int(buying_this_month or 0),
        },
        "top_clients": [
            {
                "id": row.id,
                "name": row.name,
                "phone": row.phone,
                "total_spent_cents": int(row.total_spent or 0),
                "order_count": int(row.order_count),
                "last_purchase": to_utc_z(row.last_purchase),
                "average_ticket_cents": int(round(row.total_spent / row.order_count)),
            }
            for row in ranked
        ],
        "average_ticket_cents": int(round(sum(tickets) / len(tickets))) if tickets else 0,
    }
