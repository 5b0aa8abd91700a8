# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Sales API Routes

Checkout is one balance transaction: stock for every line, gift card,
loyalty points and the open register's cash total move together or not at
all. Clients should send an Idempotency-Key header on POST so a retried
checkout returns the original sale instead of selling twice.
"""

from flask import Blueprint, request

from ..models.sales import SALE_STATUS_PENDING
from ..services import sales_service
from ..validation import (
    json_body,
    amount_cents,
    optional_int,
    optional_date,
    parse_pagination,
    pagination_meta,
)
from ..decorators import require_auth, current_actor, idempotency_key

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _tender(data: dict) -> dict:
    return {
        "gift_card_id": optional_int(data, "gift_card_id"),
        "gift_card_amount_cents": amount_cents(data, "gift_card_amount", required=False),
        "redeem_points": optional_int(data, "redeem_points", minimum=0) or 0,
    }


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Checkout a cart.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1000?}],
        "discount_cents": 0,
        "customer_id": null,            (walk-in when omitted)
        "payment_method": "cash",
        "gift_card_id": null,
        "gift_card_amount_cents": null, (defaults to the remaining amount due)
        "redeem_points": 0
    }
    """
    data = json_body(request.get_json(silent=True))
    sale = sales_service.create_sale(
        data.get("items"),
        current_actor(),
        discount_cents=amount_cents(data, "discount", required=False, allow_zero=True) or 0,
        customer_id=optional_int(data, "customer_id"),
        payment_method=data.get("payment_method") or "cash",
        idempotency_key=idempotency_key(),
        **_tender(data),
    )
    return {"sale": sale.to_dict(include_items=True)}, 201


@sales_bp.post("/hold")
@require_auth
def hold_sale_route():
    """Save a cart as a pending sale; no balances move."""
    data = json_body(request.get_json(silent=True))
    sale = sales_service.hold_sale(
        data.get("items"),
        current_actor(),
        discount_cents=amount_cents(data, "discount", required=False, allow_zero=True) or 0,
        customer_id=optional_int(data, "customer_id"),
        payment_method=data.get("payment_method") or "cash",
    )
    return {"sale": sale.to_dict(include_items=True)}, 201


@sales_bp.post("/<int:sale_id>/complete")
@require_auth
def complete_sale_route(sale_id: int):
    data = json_body(request.get_json(silent=True))
    sale = sales_service.complete_sale(
        sale_id,
        current_actor(),
        idempotency_key=idempotency_key(),
        **_tender(data),
    )
    return {"sale": sale.to_dict(include_items=True)}


@sales_bp.delete("/<int:sale_id>")
@require_auth
def delete_sale_route(sale_id: int):
    sales_service.delete_pending_sale(sale_id, current_actor())
    return {"message": "Sale deleted"}


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params: status, customer_id, date_start, date_end (YYYY-MM-DD), page, limit
    """
    page, limit, offset = parse_pagination(request.args)
    rows, total = sales_service.list_sales(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
        date_start=optional_date(request.args, "date_start"),
        date_end=optional_date(request.args, "date_end"),
        limit=limit,
        offset=offset,
    )
    return {
        "sales": [s.to_dict() for s in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@sales_bp.get("/pending")
@require_auth
def list_pending_sales_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = sales_service.list_sales(status=SALE_STATUS_PENDING, limit=limit, offset=offset)
    return {
        "sales": [s.to_dict(include_items=True) for s in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@sales_bp.get("/today")
@require_auth
def today_sales_route():
    return sales_service.list_today_sales()


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    return {"sale": sales_service.get_sale(sale_id).to_dict(include_items=True)}
