# Overview: Flask API routes for dashboard reports; read-only aggregations.

from flask import Blueprint, request

from ..config import get_settings
from ..decorators import require_auth
from ..services import reporting_service

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("")
@require_auth
def dashboard_stats():
    return reporting_service.dashboard_stats()


@dashboard_bp.get("/sales-analysis")
@require_auth
def sales_analysis():
    return reporting_service.sales_analysis(
        start=request.args.get("start_date"),
        end=request.args.get("end_date"),
        group_by=request.args.get("group_by"),
    )


@dashboard_bp.get("/inventory-analysis")
@require_auth
def inventory_analysis():
    return reporting_service.inventory_analysis(get_settings())


@dashboard_bp.get("/client-analysis")
@require_auth
def client_analysis():
    return reporting_service.client_analysis()
