# Overview: Flask API routes for clients operations; parses input and returns JSON responses.

from flask import Blueprint, request

from ..config import get_settings
from ..decorators import require_admin, require_auth
from ..services import client_service
from ..services.pagination import parse_page_args
from ..validation import parse_positive_int

clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


@clients_bp.get("")
@require_auth
def list_clients():
    page, limit = parse_page_args(request.args, get_settings())
    return client_service.list_clients(request.args, page=page, limit=limit).to_dict("clients")


@clients_bp.get("/top")
@require_auth
def top_clients():
    limit = parse_positive_int(request.args.get("limit", 5), "limit")
    return {"clients": client_service.top_clients(min(limit, get_settings().pagination_max_limit))}


@clients_bp.get("/<int:client_id>")
@require_auth
def get_client(client_id: int):
    return {"client": client_service.get_client(client_id).to_dict()}


@clients_bp.post("")
@require_auth
def create_client():
    return {"client": client_service.create_client(request.get_json(silent=True)).to_dict()}, 201


@clients_bp.put("/<int:client_id>")
@require_auth
def update_client(client_id: int):
    return {"client": client_service.update_client(client_id, request.get_json(silent=True)).to_dict()}


@clients_bp.delete("/<int:client_id>")
@require_auth
@require_admin
def delete_client(client_id: int):
    return client_service.delete_client(client_id)


@clients_bp.get("/<int:client_id>/sales")
@require_auth
def client_sales(client_id: int):
    page, limit = parse_page_args(request.args, get_settings())
    result, total_purchased = client_service.client_sales(client_id, page=page, limit=limit)
    body = result.to_dict("sales", lambda sale: sale.to_dict(include_items=False))
    body["total_purchased_cents"] = total_purchased
    return body


@clients_bp.put("/<int:client_id>/loyalty")
@require_auth
def update_loyalty(client_id: int):
    """Body: {points, operation: add|remove, reason?}"""
    data = request.get_json(silent=True) or {}
    client, reason = client_service.adjust_loyalty(
        client_id,
        points=data.get("points"),
        operation=data.get("operation"),
        reason=data.get("reason"),
    )
    return {"loyalty_points": client.loyalty_points, "reason": reason, "client": client.to_dict()}
