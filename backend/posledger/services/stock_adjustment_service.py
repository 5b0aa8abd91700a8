# Overview: Manual stock adjustments (damage, theft, corrections, ...) through the balance protocol.

"""
Stock Adjustment Service

TYPES:
- additive:    addition, return, opening_stock   stock += quantity
- subtractive: subtraction, damage, theft, expired stock -= quantity, never below 0
- correction:  stock = quantity (absolute set)

The same quantity field is relative for every type but correction, where it
is the new level. A correction is applied in ABSOLUTE mode; every other type
is RELATIVE. Either way the ledger entry records the signed change (new - old).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockAdjustment, User
from ..models.stock import ADJUSTMENT_TYPES, SUBTRACTIVE_ADJUSTMENT_TYPES
from ..time_utils import today, utcnow
from ..validation import ValidationError
from .balance_service import (
    ABSOLUTE,
    RELATIVE,
    Actor,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    Mutation,
    mutation_boundary,
)
from .catalog_service import get_product
from .holders import PRODUCT_STOCK
from .preconditions import sufficient_balance

CORRECTION = "correction"


class AdjustmentError(Exception):
    """Raised for missing adjustments."""
    pass


def adjustment_types() -> list[str]:
    return list(ADJUSTMENT_TYPES)


def default_reference_number() -> str:
    return f"SA-{int(utcnow().timestamp() * 1000)}"


def create_adjustment(
    product_id: int,
    adjustment_type: str,
    quantity: int,
    actor: Actor,
    *,
    reason: str | None = None,
    reference_number: str | None = None,
    idempotency_key: str | None = None,
) -> StockAdjustment:
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationError("Invalid adjustment type")
    if adjustment_type == CORRECTION:
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative")
    elif quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    get_product(product_id)

    ref = HolderRef(PRODUCT_STOCK.name, product_id)
    if adjustment_type == CORRECTION:
        mutation = Mutation(ref, quantity, mode=ABSOLUTE)
    elif adjustment_type in SUBTRACTIVE_ADJUSTMENT_TYPES:
        mutation = Mutation(ref, -quantity, mode=RELATIVE, preconditions=(
            sufficient_balance("Insufficient stock. Current: {current}, Adjusting: -{requested}"),
        ))
    else:
        mutation = Mutation(ref, quantity, mode=RELATIVE)

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            stock = txn.lock(ref)[0]
            before = stock.available_stock
            adjustment = txn.add(StockAdjustment(
                product_id=product_id,
                adjustment_type=adjustment_type,
                quantity_before=before,
                quantity_adjusted=quantity,
                quantity_after=before,
                reason=reason,
                reference_number=reference_number or default_reference_number(),
                created_by=actor.user_id,
            ))
            txn.set_reference("stock_adjustment", adjustment.id)
            entry = txn.apply(
                mutation,
                LedgerDescriptor(adjustment_type, "stock_adjustment", adjustment.id, reason),
            )
            adjustment.quantity_after = entry.balance_after
            adjustment.ledger_entry_id = entry.entry_id
            txn.audit("stock.adjust", "stock_adjustment", adjustment.id, {
                "product_id": product_id,
                "adjustment_type": adjustment_type,
                "quantity_before": before,
                "quantity_adjusted": quantity,
                "quantity_after": entry.balance_after,
                "reason": reason,
            })
    except IdempotentReplay as replay:
        return get_adjustment(replay.result.reference_id)

    return adjustment


def get_adjustment(adjustment_id: int) -> StockAdjustment:
    adjustment = db.session.get(StockAdjustment, adjustment_id)
    if not adjustment:
        raise AdjustmentError("Adjustment not found")
    return adjustment


def list_adjustments(
    *,
    adjustment_type: str | None = None,
    product_id: int | None = None,
    date_from=None,
    date_to=None,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[StockAdjustment], int]:
    query = (
        db.session.query(StockAdjustment)
        .join(Product, StockAdjustment.product_id == Product.id)
        .join(User, StockAdjustment.created_by == User.id)
    )
    if adjustment_type:
        query = query.filter(StockAdjustment.adjustment_type == adjustment_type)
    if product_id is not None:
        query = query.filter(StockAdjustment.product_id == product_id)
    if date_from:
        query = query.filter(StockAdjustment.created_at >= datetime.combine(date_from, datetime.min.time()))
    if date_to:
        query = query.filter(
            StockAdjustment.created_at < datetime.combine(date_to + timedelta(days=1), datetime.min.time())
        )
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Product.name.ilike(like),
            StockAdjustment.reference_number.ilike(like),
            StockAdjustment.reason.ilike(like),
            User.name.ilike(like),
        ))

    total = query.count()
    rows = (
        query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def adjustment_stats() -> dict:
    """This month's adjustments grouped by type."""
    month_start = datetime.combine(today().replace(day=1), datetime.min.time())
    rows = (
        db.session.query(
            StockAdjustment.adjustment_type,
            func.count(StockAdjustment.id),
            func.coalesce(func.sum(StockAdjustment.quantity_adjusted), 0),
        )
        .filter(StockAdjustment.created_at >= month_start)
        .group_by(StockAdjustment.adjustment_type)
        .order_by(StockAdjustment.adjustment_type)
        .all()
    )
    by_type = [
        {"adjustment_type": t, "count": count, "total_qty": int(total_qty)}
        for t, count, total_qty in rows
    ]
    return {"total": sum(item["count"] for item in by_type), "by_type": by_type}
