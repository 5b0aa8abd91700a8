# Overview: Flask API routes for credit sales and their payments.

from flask import Blueprint, request

from ..services import credit_sale_service
from ..validation import (
    json_body,
    require_int,
    amount_cents,
    optional_date,
    optional_bool,
    parse_pagination,
    pagination_meta,
)
from ..decorators import require_auth, current_actor, idempotency_key

credit_sales_bp = Blueprint("credit_sales", __name__, url_prefix="/api/credit-sales")


@credit_sales_bp.get("")
@require_auth
def list_credit_sales_route():
    """Query params: status, customer_id, overdue, search, page, limit"""
    page, limit, offset = parse_pagination(request.args)
    rows, total = credit_sale_service.list_credit_sales(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
        overdue=optional_bool(request.args, "overdue"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    return {
        "credit_sales": [c.to_dict() for c in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@credit_sales_bp.get("/stats")
@require_auth
def credit_stats_route():
    return credit_sale_service.credit_stats()


@credit_sales_bp.get("/customers/<int:customer_id>/balance")
@require_auth
def customer_balance_route(customer_id: int):
    return credit_sale_service.customer_balance(customer_id)


@credit_sales_bp.post("")
@require_auth
def create_credit_sale_route():
    """
    Request body:
    {
        "sale_id": 5,
        "customer_id": 2,
        "total_amount_cents": 5000,
        "paid_amount_cents": 0,
        "due_date": "YYYY-MM-DD"?,
        "payment_method": "cash",
        "notes": "..."?
    }
    """
    data = json_body(request.get_json(silent=True))
    credit_sale = credit_sale_service.create_credit_sale(
        require_int(data, "sale_id"),
        require_int(data, "customer_id"),
        amount_cents(data, "total_amount"),
        current_actor(),
        due_date=optional_date(data, "due_date"),
        paid_amount_cents=amount_cents(data, "paid_amount", required=False, allow_zero=True) or 0,
        payment_method=data.get("payment_method") or "cash",
        notes=data.get("notes"),
        idempotency_key=idempotency_key(),
    )
    return {"credit_sale": credit_sale.to_dict(include_payments=True)}, 201


@credit_sales_bp.get("/<int:credit_sale_id>")
@require_auth
def get_credit_sale_route(credit_sale_id: int):
    credit_sale = credit_sale_service.get_credit_sale(credit_sale_id)
    return {"credit_sale": credit_sale.to_dict(include_payments=True)}


@credit_sales_bp.post("/<int:credit_sale_id>/payments")
@require_auth
def record_payment_route(credit_sale_id: int):
    """Request body: {"amount_cents": 1000, "payment_method"?: "cash", "notes"?: "..."}"""
    data = json_body(request.get_json(silent=True))
    result = credit_sale_service.record_payment(
        credit_sale_id,
        amount_cents(data, "amount"),
        current_actor(),
        payment_method=data.get("payment_method") or "cash",
        notes=data.get("notes"),
        idempotency_key=idempotency_key(),
    )
    credit_sale = credit_sale_service.get_credit_sale(credit_sale_id)
    return {
        "credit_sale": credit_sale.to_dict(include_payments=True),
        "result": result.to_dict(),
    }, 201
