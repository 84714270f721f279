# Overview: Flask API routes for users and login; parses input and returns JSON responses.

from flask import Blueprint, g, request

from ..config import get_settings
from ..decorators import require_admin, require_auth
from ..services import auth_service
from ..services.pagination import parse_page_args

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.post("/login")
def login():
    """Public: exchange email + password for a bearer token."""
    data = request.get_json(silent=True) or {}
    user, token = auth_service.authenticate(
        data.get("email"), data.get("password"), settings=get_settings()
    )
    return {"user": user.to_dict(), "token": token}


@users_bp.get("/profile")
@require_auth
def get_profile():
    return {"user": g.current_user.to_dict()}


@users_bp.put("/profile")
@require_auth
def update_profile():
    user = auth_service.update_profile(
        g.current_user, request.get_json(silent=True), settings=get_settings()
    )
    return {"user": user.to_dict()}


@users_bp.post("")
@require_auth
@require_admin
def register_user():
    user = auth_service.create_user(request.get_json(silent=True), settings=get_settings())
    return {"user": user.to_dict()}, 201


@users_bp.get("")
@require_auth
@require_admin
def list_users():
    page, limit = parse_page_args(request.args, get_settings())
    return auth_service.list_users(page=page, limit=limit).to_dict("users")


@users_bp.get("/<int:user_id>")
@require_auth
@require_admin
def get_user(user_id: int):
    return {"user": auth_service.get_user(user_id).to_dict()}


@users_bp.put("/<int:user_id>")
@require_auth
@require_admin
def update_user(user_id: int):
    user = auth_service.update_user(user_id, request.get_json(silent=True), settings=get_settings())
    return {"user": user.to_dict()}


@users_bp.delete("/<int:user_id>")
@require_auth
@require_admin
def delete_user(user_id: int):
    return auth_service.delete_user(user_id, acting_user_id=g.current_user.id)
