# Overview: Flask API routes for gift card issue, load, redeem and lookup.

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import gift_card_service
from ..validation import (
    json_body,
    amount_cents,
    optional_int,
    optional_date,
    parse_pagination,
    pagination_meta,
)
from ..decorators import require_auth, require_role, current_actor, idempotency_key

gift_cards_bp = Blueprint("gift_cards", __name__, url_prefix="/api/gift-cards")


@gift_cards_bp.get("")
@require_auth
def list_gift_cards_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = gift_card_service.list_gift_cards(
        status=request.args.get("status"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    return {
        "gift_cards": [c.to_dict() for c in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@gift_cards_bp.get("/stats")
@require_auth
def gift_card_stats_route():
    return gift_card_service.gift_card_stats()


@gift_cards_bp.get("/check/<string:card_number>")
@require_auth
def check_balance_route(card_number: str):
    return {"gift_card": gift_card_service.check_balance(card_number).to_dict()}


@gift_cards_bp.get("/<int:card_id>")
@require_auth
def get_gift_card_route(card_id: int):
    card = gift_card_service.get_gift_card(card_id)
    entries = gift_card_service.gift_card_transactions(card_id)
    return {
        "gift_card": card.to_dict(),
        "transactions": [e.to_dict() for e in entries],
    }


@gift_cards_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def issue_gift_card_route():
    """
    Request body: {"initial_balance_cents": 10000, "customer_id"?, "expiry_date"?: "YYYY-MM-DD"}
    """
    data = json_body(request.get_json(silent=True))
    card = gift_card_service.issue_gift_card(
        amount_cents(data, "initial_balance"),
        current_actor(),
        customer_id=optional_int(data, "customer_id"),
        expiry_date=optional_date(data, "expiry_date"),
        idempotency_key=idempotency_key(),
    )
    return {"gift_card": card.to_dict()}, 201


@gift_cards_bp.post("/<int:card_id>/load")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def load_funds_route(card_id: int):
    data = json_body(request.get_json(silent=True))
    result = gift_card_service.load_funds(
        card_id,
        amount_cents(data, "amount"),
        current_actor(),
        idempotency_key=idempotency_key(),
    )
    return {
        "gift_card": gift_card_service.get_gift_card(card_id).to_dict(),
        "result": result.to_dict(),
    }


@gift_cards_bp.post("/<int:card_id>/redeem")
@require_auth
def redeem_route(card_id: int):
    """Standalone redeem; checkout redeems through the sale instead."""
    data = json_body(request.get_json(silent=True))
    result = gift_card_service.redeem(
        card_id,
        amount_cents(data, "amount"),
        current_actor(),
        idempotency_key=idempotency_key(),
    )
    return {
        "gift_card": gift_card_service.get_gift_card(card_id).to_dict(),
        "result": result.to_dict(),
    }


@gift_cards_bp.post("/<int:card_id>/disable")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def disable_gift_card_route(card_id: int):
    card = gift_card_service.disable_gift_card(card_id, current_actor())
    return {"gift_card": card.to_dict()}
