# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/tabacaria/routes/sales.py
"""Sales API routes: recording, payment updates, cancellation and sales reports."""

from flask import Blueprint, g, request

from ..config import get_settings
from ..decorators import require_admin, require_auth
from ..services import inventory_service, sales_service
from ..services.pagination import parse_page_args
from ..validation import parse_positive_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales():
    """
    Query params: start_date, end_date, client_id, seller_id, payment_method,
    payment_status, page, limit.
    """
    page, limit = parse_page_args(request.args, get_settings())
    result, totals = sales_service.list_sales(request.args, page=page, limit=limit)
    body = result.to_dict("sales", lambda sale: sale.to_dict(include_items=False))
    body["totals"] = totals
    return body


@sales_bp.get("/by-period")
@require_auth
def sales_by_period():
    return sales_service.sales_by_period(request.args.get("period"))


@sales_bp.get("/top-products")
@require_auth
def top_products():
    limit = parse_positive_int(request.args.get("limit", 5), "limit")
    products = sales_service.top_products(
        limit=min(limit, get_settings().pagination_max_limit),
        start=request.args.get("start_date"),
        end=request.args.get("end_date"),
    )
    return {"products": products}


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    entries = inventory_service.list_sale_entries(sale.id)
    return {"sale": sale.to_dict(), "transactions": [entry.to_dict() for entry in entries]}


@sales_bp.post("")
@require_auth
def create_sale():
    """
    Body: {client_id?, items: [{product_id, quantity, price_cents?, discount_cents?}],
    discount_cents?, tax_cents?, payment_method?, payment_status?, notes?}
    """
    sale = sales_service.create_sale(
        request.get_json(silent=True),
        seller_id=g.current_user.id,
        settings=get_settings(),
    )
    return {"sale": sale.to_dict()}, 201


@sales_bp.put("/<int:sale_id>/payment")
@require_auth
def update_payment(sale_id: int):
    data = request.get_json(silent=True) or {}
    sale = sales_service.update_sale_payment(
        sale_id,
        payment_status=data.get("payment_status"),
        payment_method=data.get("payment_method"),
    )
    return {"sale": sale.to_dict()}


@sales_bp.put("/<int:sale_id>/cancel")
@require_auth
@require_admin
def cancel_sale(sale_id: int):
    sale = sales_service.cancel_sale(sale_id, user_id=g.current_user.id, settings=get_settings())
    return {"message": "Sale cancelled", "sale": sale.to_dict()}
