# Overview: Flask API routes for registers operations; parses input and returns JSON responses.

"""
Register API Routes

One register session may be open at a time. Cash sales, cash refunds and
cash in/out movements add to its running totals through the balance
protocol; closing computes expected cash and the over/short difference.
"""

from flask import Blueprint, request

from ..services import register_service
from ..validation import json_body, amount_cents, parse_pagination, pagination_meta
from ..decorators import require_auth, current_actor, idempotency_key

registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


@registers_bp.get("/current")
@require_auth
def current_register_route():
    register = register_service.get_current_register()
    if not register:
        return {"register": None}
    return {"register": register_service.register_summary(register)}


@registers_bp.post("/open")
@require_auth
def open_register_route():
    """Request body: {"opening_balance_cents": 10000} (or "opening_balance": "100.00")"""
    data = json_body(request.get_json(silent=True))
    register = register_service.open_register(
        amount_cents(data, "opening_balance", allow_zero=True),
        current_actor(),
        idempotency_key=idempotency_key(),
    )
    return {"register": register.to_dict()}, 201


@registers_bp.post("/close")
@require_auth
def close_register_route():
    """Request body: {"closing_balance_cents": 12345, "close_note"?: "..."}"""
    data = json_body(request.get_json(silent=True))
    register = register_service.close_register(
        amount_cents(data, "closing_balance", allow_zero=True),
        current_actor(),
        close_note=data.get("close_note"),
    )
    return {"register": register_service.register_summary(register)}


@registers_bp.post("/cash-movements")
@require_auth
def cash_movement_route():
    """Request body: {"type": "cash_in" | "cash_out", "amount_cents": 500, "reason": "..."}"""
    data = json_body(request.get_json(silent=True))
    result = register_service.add_cash_movement(
        data.get("type"),
        amount_cents(data, "amount"),
        data.get("reason"),
        current_actor(),
        idempotency_key=idempotency_key(),
    )
    register = register_service.get_current_register()
    return {
        "result": result.to_dict(),
        "register": register_service.register_summary(register) if register else None,
    }, 201


@registers_bp.get("/history")
@require_auth
def register_history_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = register_service.register_history(limit=limit, offset=offset)
    return {
        "registers": [r.to_dict() for r in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@registers_bp.get("/<int:register_id>")
@require_auth
def get_register_route(register_id: int):
    return {"register": register_service.register_summary(register_service.get_register(register_id))}
