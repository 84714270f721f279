# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/tabacaria/routes/products.py
"""
Catalog routes: product CRUD, stock movements, ledger history, images.

All routes require authentication; delete requires an administrator.
"""
from flask import Blueprint, g, request

from ..config import get_settings
from ..decorators import require_admin, require_auth
from ..services import inventory_service, products_service
from ..services.pagination import parse_page_args

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params: keyword, category, is_active, low_stock, supplier_id, page, limit.
    """
    page, limit = parse_page_args(request.args, get_settings())
    return products_service.list_products(request.args, page=page, limit=limit).to_dict("products")


@products_bp.get("/low-stock")
@require_auth
def low_stock():
    products = products_service.low_stock_products()
    return {"products": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/categories")
@require_auth
def categories():
    return {"categories": products_service.category_counts()}


@products_bp.get("/table")
@require_auth
def price_table():
    category = request.args.get("category") or request.args.get("categoria")
    return {"table": products_service.price_table(category)}


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    return {"product": products_service.get_product(product_id).to_dict()}


@products_bp.post("")
@require_auth
def create_product():
    product = products_service.create_product(
        request.get_json(silent=True),
        user_id=g.current_user.id,
        settings=get_settings(),
    )
    return {"product": product.to_dict()}, 201


@products_bp.put("/<int:product_id>")
@require_auth
def update_product(product_id: int):
    product = products_service.update_product(
        product_id, request.get_json(silent=True), user_id=g.current_user.id
    )
    return {"product": product.to_dict()}


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def delete_product(product_id: int):
    return products_service.delete_product(product_id)


@products_bp.put("/<int:product_id>/stock")
@require_auth
def update_stock(product_id: int):
    """Body: {quantity, kind: in|out|adjustment, reason?}"""
    data = request.get_json(silent=True) or {}
    product, entry = inventory_service.apply_stock_movement(
        product_id,
        quantity=data.get("quantity"),
        kind=data.get("kind"),
        reason=data.get("reason"),
        user_id=g.current_user.id,
    )
    return {"product": product.to_dict(), "transaction": entry.to_dict()}


@products_bp.get("/<int:product_id>/inventory")
@require_auth
def product_inventory(product_id: int):
    page, limit = parse_page_args(request.args, get_settings())
    result = inventory_service.list_product_ledger(product_id, page=page, limit=limit)
    return result.to_dict("transactions")


@products_bp.put("/<int:product_id>/image")
@require_auth
def add_image(product_id: int):
    data = request.get_json(silent=True) or {}
    product = products_service.add_image(product_id, data.get("image_url"), data.get("image_index"))
    return {"product": product.to_dict()}


@products_bp.delete("/<int:product_id>/image/<int:index>")
@require_auth
def remove_image(product_id: int, index: int):
    return {"product": products_service.remove_image(product_id, index).to_dict()}


@products_bp.put("/<int:product_id>/images/reorder")
@require_auth
def reorder_images(product_id: int):
    data = request.get_json(silent=True) or {}
    product = products_service.reorder_images(product_id, data.get("order"))
    return {"product": product.to_dict()}
