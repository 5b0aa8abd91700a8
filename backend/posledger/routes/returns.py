# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

from flask import Blueprint, request

from ..services import return_service
from ..validation import json_body, require_int, optional_date, parse_pagination, pagination_meta
from ..decorators import require_auth, current_actor, idempotency_key

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.get("/sale/<int:sale_id>")
@require_auth
def sale_for_return_route(sale_id: int):
    """Sale lines with already_returned and max_returnable per product."""
    return return_service.get_sale_for_return(sale_id)


@returns_bp.post("")
@require_auth
def create_return_route():
    """
    Request body:
    {
        "sale_id": 12,
        "items": [{"product_id": 3, "quantity_returned": 1}],
        "reason": "damaged",
        "reason_note": "...",
        "refund_method": "original",
        "return_type": "return"
    }
    """
    data = json_body(request.get_json(silent=True))
    return_doc = return_service.create_return(
        require_int(data, "sale_id"),
        data.get("items"),
        data.get("reason"),
        current_actor(),
        reason_note=data.get("reason_note"),
        refund_method=data.get("refund_method"),
        return_type=data.get("return_type"),
        idempotency_key=idempotency_key(),
    )
    return {"return": return_doc.to_dict(include_items=True)}, 201


@returns_bp.get("")
@require_auth
def list_returns_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = return_service.list_returns(
        date_start=optional_date(request.args, "date_start"),
        date_end=optional_date(request.args, "date_end"),
        limit=limit,
        offset=offset,
    )
    return {
        "returns": [r.to_dict() for r in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return_route(return_id: int):
    return {"return": return_service.get_return(return_id).to_dict(include_items=True)}
