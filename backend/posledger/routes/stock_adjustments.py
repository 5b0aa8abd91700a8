# Overview: Flask API routes for manual stock adjustments.

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import stock_adjustment_service
from ..validation import (
    json_body,
    require_int,
    optional_date,
    parse_pagination,
    pagination_meta,
)
from ..decorators import require_auth, require_role, current_actor, idempotency_key

stock_adjustments_bp = Blueprint("stock_adjustments", __name__, url_prefix="/api/stock-adjustments")


@stock_adjustments_bp.get("/types")
@require_auth
def adjustment_types_route():
    return {"types": stock_adjustment_service.adjustment_types()}


@stock_adjustments_bp.get("/stats")
@require_auth
def adjustment_stats_route():
    return stock_adjustment_service.adjustment_stats()


@stock_adjustments_bp.get("")
@require_auth
def list_adjustments_route():
    """
    Query params: type, product_id, date_from, date_to, search, page, limit
    """
    page, limit, offset = parse_pagination(request.args)
    rows, total = stock_adjustment_service.list_adjustments(
        adjustment_type=request.args.get("type"),
        product_id=request.args.get("product_id", type=int),
        date_from=optional_date(request.args, "date_from"),
        date_to=optional_date(request.args, "date_to"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    return {
        "adjustments": [a.to_dict() for a in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@stock_adjustments_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_adjustment_route():
    """
    Request body:
    {
        "product_id": 1,
        "adjustment_type": "damage",
        "quantity": 2,           (for "correction": the new absolute count)
        "reason": "...",
        "reference_number": "..."?
    }
    """
    data = json_body(request.get_json(silent=True))
    if not data.get("adjustment_type"):
        return {"error": "adjustment_type is required"}, 400

    adjustment = stock_adjustment_service.create_adjustment(
        require_int(data, "product_id"),
        data["adjustment_type"],
        require_int(data, "quantity"),
        current_actor(),
        reason=data.get("reason"),
        reference_number=data.get("reference_number"),
        idempotency_key=idempotency_key(),
    )
    return {"adjustment": adjustment.to_dict()}, 201


@stock_adjustments_bp.get("/<int:adjustment_id>")
@require_auth
def get_adjustment_route(adjustment_id: int):
    return {"adjustment": stock_adjustment_service.get_adjustment(adjustment_id).to_dict()}
