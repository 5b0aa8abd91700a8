"""
Return Processing Service

WHY: Customers bring goods back. Stock is restored and, for cash refunds,
the drawer is debited.

OVER-RETURN GUARD:
- For each sale line, max_returnable = sold quantity - sum of quantities
  already returned for that product on that sale.
- It is recomputed from ReturnDetail history on every request, under a lock
  on the sale row, so two concurrent partial returns on the same sale are
  serialised and cannot together exceed what was sold.

BALANCE EFFECTS (one balance-protocol transaction):
- product_stock +quantity per line ("return" entries)
- cash refund with an open register: total_cash_out += refund
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Return, ReturnDetail, Sale
from ..models.returns import REFUND_METHODS, RETURN_TYPES
from ..models.sales import SALE_STATUS_COMPLETED
from ..validation import ValidationError, coerce_int
from . import register_service
from .balance_service import (
    Actor,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    Mutation,
    PreconditionFailed,
    mutation_boundary,
)
from .concurrency import lock_for_update
from .holders import PRODUCT_STOCK
from .sales_service import SaleError, get_sale


class ReturnError(Exception):
    """Raised for missing returns."""
    pass


def returned_quantities(sale_id: int) -> dict[int, int]:
    """product_id -> total quantity already returned on this sale."""
    rows = (
        db.session.query(ReturnDetail.product_id, func.coalesce(func.sum(ReturnDetail.quantity), 0))
        .filter(ReturnDetail.sale_id == sale_id)
        .group_by(ReturnDetail.product_id)
        .all()
    )
    return {product_id: int(qty) for product_id, qty in rows}


def get_sale_for_return(sale_id: int) -> dict:
    sale = get_sale(sale_id)
    if sale.status != SALE_STATUS_COMPLETED:
        raise PreconditionFailed("Can only return completed sales")

    returned = returned_quantities(sale_id)
    items = []
    for detail in sale.details:
        already = returned.get(detail.product_id, 0)
        d = detail.to_dict()
        d["already_returned"] = already
        d["max_returnable"] = detail.quantity - already
        items.append(d)

    data = sale.to_dict()
    data["items"] = items
    return data


def _normalize_return_items(items) -> dict[int, int]:
    if not items or not isinstance(items, list):
        raise ValidationError("Sale ID and items are required")
    merged: dict[int, int] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        product_id = coerce_int("product_id", raw.get("product_id"))
        key = "quantity_returned" if raw.get("quantity_returned") is not None else "quantity"
        quantity = coerce_int(key, raw.get(key))
        if quantity < 1:
            raise ValidationError(f"{key} must be >= 1")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def create_return(
    sale_id: int,
    items,
    reason: str | None,
    actor: Actor,
    *,
    reason_note: str | None = None,
    refund_method: str | None = None,
    return_type: str | None = None,
    idempotency_key: str | None = None,
) -> Return:
    if not reason or not reason.strip():
        raise ValidationError("Return reason is required")
    requested = _normalize_return_items(items)
    refund_method = refund_method or "original"
    if refund_method not in REFUND_METHODS:
        raise ValidationError(f"refund_method must be one of: {', '.join(REFUND_METHODS)}")
    return_type = return_type or "return"
    if return_type not in RETURN_TYPES:
        raise ValidationError(f"return_type must be one of: {', '.join(RETURN_TYPES)}")

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            # Sale row lock first: serialises returns against the same sale.
            sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
            if not sale:
                raise SaleError("Sale not found")
            if sale.status != SALE_STATUS_COMPLETED:
                raise PreconditionFailed("Can only return completed sales")

            details = {d.product_id: d for d in sale.details}
            returned = returned_quantities(sale_id)

            lines = []
            total_refund = 0
            for product_id, quantity in requested.items():
                detail = details.get(product_id)
                if detail is None:
                    raise PreconditionFailed(f"Product {product_id} not found in this sale")
                max_returnable = detail.quantity - returned.get(product_id, 0)
                if quantity > max_returnable:
                    raise PreconditionFailed(
                        f"Cannot return {quantity} of product {product_id}. Max returnable: {max_returnable}"
                    )
                refund = detail.unit_price_cents * quantity
                total_refund += refund
                lines.append((detail, quantity, refund))

            register_id = None
            if refund_method == "cash" and total_refund > 0:
                register_id = register_service.find_open_register_id()

            refs = [HolderRef(PRODUCT_STOCK.name, product_id) for product_id in requested]
            if register_id is not None:
                refs.append(register_service.register_ref(register_id, "total_cash_out_cents"))
            txn.lock(*refs)

            return_doc = txn.add(Return(
                sale_id=sale_id,
                user_id=actor.user_id,
                return_type=return_type,
                refund_method=refund_method,
                reason=reason.strip(),
                reason_note=reason_note,
                total_refund_cents=total_refund,
                register_id=register_id,
            ))
            txn.set_reference("return", return_doc.id)
            ledger = LedgerDescriptor("return", "return", return_doc.id, reason.strip())

            for detail, quantity, refund in lines:
                return_detail = txn.add(ReturnDetail(
                    return_id=return_doc.id,
                    sale_id=sale_id,
                    product_id=detail.product_id,
                    quantity=quantity,
                    unit_price_cents=detail.unit_price_cents,
                    refund_cents=refund,
                ))
                entry = txn.apply(Mutation(HolderRef(PRODUCT_STOCK.name, detail.product_id), quantity), ledger)
                return_detail.ledger_entry_id = entry.entry_id

            if register_id is not None:
                txn.apply(
                    Mutation(
                        register_service.register_ref(register_id, "total_cash_out_cents"),
                        total_refund,
                        preconditions=(register_service.require_open(),),
                    ),
                    LedgerDescriptor("cash_refund", "return", return_doc.id, reason.strip()),
                )

            txn.audit("return.create", "return", return_doc.id, {
                "sale_id": sale_id,
                "return_type": return_type,
                "reason": reason.strip(),
                "refund_method": refund_method,
                "total_refund_cents": total_refund,
                "items_count": len(lines),
            })
    except IdempotentReplay as replay:
        return get_return(replay.result.reference_id)

    return return_doc


def get_return(return_id: int) -> Return:
    return_doc = db.session.get(Return, return_id)
    if not return_doc:
        raise ReturnError("Return not found")
    return return_doc


def list_returns(
    *,
    date_start=None,
    date_end=None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Return], int]:
    query = db.session.query(Return)
    if date_start:
        query = query.filter(Return.created_at >= datetime.combine(date_start, datetime.min.time()))
    if date_end:
        query = query.filter(Return.created_at < datetime.combine(date_end + timedelta(days=1), datetime.min.time()))

    total = query.count()
    rows = query.order_by(Return.created_at.desc(), Return.id.desc()).offset(offset).limit(limit).all()
    return rows, total
