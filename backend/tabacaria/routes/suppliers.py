# Overview: Flask API routes for suppliers operations; parses input and returns JSON responses.

from flask import Blueprint, request

from ..config import get_settings
from ..decorators import require_admin, require_auth
from ..services import supplier_service
from ..services.pagination import parse_page_args

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
def list_suppliers():
    page, limit = parse_page_args(request.args, get_settings())
    return supplier_service.list_suppliers(request.args, page=page, limit=limit).to_dict("suppliers")


@suppliers_bp.get("/by-category")
@require_auth
def by_category():
    return {"categories": supplier_service.suppliers_by_category()}


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
def get_supplier(supplier_id: int):
    return {"supplier": supplier_service.get_supplier(supplier_id).to_dict()}


@suppliers_bp.post("")
@require_auth
def create_supplier():
    return {"supplier": supplier_service.create_supplier(request.get_json(silent=True)).to_dict()}, 201


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
def update_supplier(supplier_id: int):
    supplier = supplier_service.update_supplier(supplier_id, request.get_json(silent=True))
    return {"supplier": supplier.to_dict()}


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_admin
def delete_supplier(supplier_id: int):
    return supplier_service.delete_supplier(supplier_id)


@suppliers_bp.get("/<int:supplier_id>/products")
@require_auth
def supplier_products(supplier_id: int):
    page, limit = parse_page_args(request.args, get_settings())
    return supplier_service.supplier_products(supplier_id, page=page, limit=limit).to_dict("products")
