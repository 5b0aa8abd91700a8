# Overview: Flask API routes for loyalty configuration, balances and manual adjustments.

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import loyalty_service
from ..validation import json_body, require_int
from ..decorators import require_auth, require_role, current_actor, idempotency_key

loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/config")
@require_auth
def get_config_route():
    return {"config": loyalty_service.get_config().to_dict()}


@loyalty_bp.put("/config")
@require_auth
@require_role(ROLE_ADMIN)
def update_config_route():
    data = json_body(request.get_json(silent=True))
    config = loyalty_service.update_config(data, current_actor())
    return {"config": config.to_dict()}


@loyalty_bp.get("/customers/<int:customer_id>")
@require_auth
def customer_points_route(customer_id: int):
    return loyalty_service.customer_points(customer_id)


@loyalty_bp.post("/customers/<int:customer_id>/adjust")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def adjust_points_route(customer_id: int):
    """Request body: {"points": -50, "description"?: "..."} (signed)"""
    data = json_body(request.get_json(silent=True))
    result = loyalty_service.adjust_points(
        customer_id,
        require_int(data, "points"),
        current_actor(),
        description=data.get("description"),
        idempotency_key=idempotency_key(),
    )
    return {"result": result.to_dict(), "loyalty_points": result.new_balance}


@loyalty_bp.get("/leaderboard")
@require_auth
def leaderboard_route():
    limit = min(max(request.args.get("limit", 10, type=int), 1), 100)
    return {"customers": loyalty_service.leaderboard(limit)}


@loyalty_bp.get("/stats")
@require_auth
def loyalty_stats_route():
    return loyalty_service.loyalty_stats()
