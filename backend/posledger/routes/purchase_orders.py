# Overview: Flask API routes for purchase orders; receiving adds stock through the balance protocol.

"""
Purchase order routes.

Lifecycle: ordered -> partial -> received, or ordered/partial -> cancelled.
"""

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import purchasing_service
from ..validation import json_body, require_int, optional_date, parse_pagination, pagination_meta
from ..decorators import require_auth, require_role, current_actor, idempotency_key

purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("")
@require_auth
def list_purchase_orders_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = purchasing_service.list_purchase_orders(
        status=request.args.get("status"),
        supplier_id=request.args.get("supplier_id", type=int),
        limit=limit,
        offset=offset,
    )
    return {
        "purchase_orders": [po.to_dict() for po in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@purchase_orders_bp.get("/<int:po_id>")
@require_auth
def get_purchase_order_route(po_id: int):
    po = purchasing_service.get_purchase_order(po_id)
    return {"purchase_order": po.to_dict(include_items=True)}


@purchase_orders_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_purchase_order_route():
    """Request body: {"supplier_id", "items": [{"product_id", "quantity_ordered", "unit_cost_cents"}], "order_date"?, "expected_date"?, "notes"?}"""
    data = json_body(request.get_json(silent=True))
    po = purchasing_service.create_purchase_order(
        require_int(data, "supplier_id"),
        data.get("items"),
        current_actor(),
        order_date=optional_date(data, "order_date"),
        expected_date=optional_date(data, "expected_date"),
        notes=data.get("notes"),
    )
    return {"purchase_order": po.to_dict(include_items=True)}, 201


@purchase_orders_bp.post("/<int:po_id>/receive")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def receive_purchase_order_route(po_id: int):
    """Request body: {"items": [{"item_id", "quantity_received"}]}"""
    data = json_body(request.get_json(silent=True))
    po = purchasing_service.receive_purchase_order(
        po_id,
        data.get("items"),
        current_actor(),
        idempotency_key=idempotency_key(),
    )
    return {"purchase_order": po.to_dict(include_items=True)}


@purchase_orders_bp.post("/<int:po_id>/cancel")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def cancel_purchase_order_route(po_id: int):
    po = purchasing_service.cancel_purchase_order(po_id, current_actor())
    return {"purchase_order": po.to_dict()}
