# Overview: Flask API routes for transfers operations; parses input and returns JSON responses.

"""
Inter-store transfer routes.

Lifecycle: pending -> completed (approve) or pending -> cancelled.
Approval moves stock from the source store to the destination store in one
balance transaction.
"""

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import transfer_service
from ..validation import json_body, require_int, parse_pagination, pagination_meta
from ..decorators import require_auth, require_role, current_actor, idempotency_key

transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.get("")
@require_auth
def list_transfers_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = transfer_service.list_transfers(
        status=request.args.get("status"),
        store_id=request.args.get("store_id", type=int),
        limit=limit,
        offset=offset,
    )
    return {
        "transfers": [t.to_dict() for t in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@transfers_bp.get("/stats")
@require_auth
def transfer_stats_route():
    return transfer_service.transfer_stats()


@transfers_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_transfer_route():
    """Request body: {"from_store_id", "to_store_id", "product_id", "quantity", "notes"?}"""
    data = json_body(request.get_json(silent=True))
    transfer = transfer_service.create_transfer(
        require_int(data, "from_store_id"),
        require_int(data, "to_store_id"),
        require_int(data, "product_id"),
        require_int(data, "quantity"),
        current_actor(),
        notes=data.get("notes"),
    )
    return {"transfer": transfer.to_dict()}, 201


@transfers_bp.post("/<int:transfer_id>/approve")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def approve_transfer_route(transfer_id: int):
    transfer = transfer_service.approve_transfer(
        transfer_id,
        current_actor(),
        idempotency_key=idempotency_key(),
    )
    return {"transfer": transfer.to_dict()}


@transfers_bp.post("/<int:transfer_id>/cancel")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def cancel_transfer_route(transfer_id: int):
    transfer = transfer_service.cancel_transfer(transfer_id, current_actor())
    return {"transfer": transfer.to_dict()}


@transfers_bp.get("/<int:transfer_id>")
@require_auth
def get_transfer_route(transfer_id: int):
    return {"transfer": transfer_service.get_transfer(transfer_id).to_dict()}
