# backend/posledger/services/transfer_service.py
"""
Inter-store stock transfer service.

WHY: Move stock between stores with an approval step. A transfer is the
two-holder case of the balance protocol: source and destination store_stock
holders are locked together, in global order, before either is written.

LIFECYCLE:
1. pending:   created; source stock checked but nothing moves
2. completed: approved; source -quantity, destination +quantity
3. cancelled: only from pending
"""
from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import StockTransfer
from ..models.stock import TRANSFER_CANCELLED, TRANSFER_COMPLETED, TRANSFER_PENDING
from ..validation import ValidationError
from posledger.time_utils import utcnow
from . import audit_service
from .balance_service import (
    Actor,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    Mutation,
    PreconditionFailed,
    mutation_boundary,
)
from .catalog_service import ensure_store_stock, get_product, get_store
from .concurrency import lock_for_update
from .holders import STORE_STOCK
from .preconditions import sufficient_balance


class TransferError(Exception):
    """Raised when a transfer does not exist."""
    pass


def store_stock_ref(store_id: int, product_id: int) -> HolderRef:
    return HolderRef(STORE_STOCK.name, (store_id, product_id))


def create_transfer(
    from_store_id: int,
    to_store_id: int,
    product_id: int,
    quantity: int,
    actor: Actor,
    *,
    notes: str | None = None,
) -> StockTransfer:
    """
    Create a pending transfer.

    Source stock is checked (unlocked) so obviously impossible transfers are
    refused early; approval re-checks under lock.
    """
    if from_store_id == to_store_id:
        raise ValidationError("Source and destination stores must be different")
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    get_store(from_store_id)
    get_store(to_store_id)
    get_product(product_id)

    source = STORE_STOCK.fetch((from_store_id, product_id), lock=False)
    available = source.available_stock if source else 0
    if available < quantity:
        raise PreconditionFailed(f"Insufficient stock at source. Available: {available}")

    transfer = StockTransfer(
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        product_id=product_id,
        quantity=quantity,
        status=TRANSFER_PENDING,
        notes=notes,
        created_by=actor.user_id,
    )
    db.session.add(transfer)
    db.session.commit()

    audit_service.log_action(actor, "transfer.create", "stock_transfer", transfer.id, {
        "from_store_id": from_store_id,
        "to_store_id": to_store_id,
        "product_id": product_id,
        "quantity": quantity,
    })
    return transfer


def approve_transfer(
    transfer_id: int,
    actor: Actor,
    *,
    idempotency_key: str | None = None,
) -> StockTransfer:
    transfer = get_transfer(transfer_id)

    # Destination holder may not exist yet; create it at zero before locking.
    ensure_store_stock(transfer.to_store_id, transfer.product_id)
    db.session.commit()

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            transfer = lock_for_update(db.session.query(StockTransfer).filter_by(id=transfer_id)).first()
            if transfer.status != TRANSFER_PENDING:
                raise PreconditionFailed("Only pending transfers can be approved")

            source = store_stock_ref(transfer.from_store_id, transfer.product_id)
            destination = store_stock_ref(transfer.to_store_id, transfer.product_id)
            txn.lock(source, destination)
            txn.set_reference("stock_transfer", transfer.id)

            ledger = LedgerDescriptor("transfer", "stock_transfer", transfer.id, transfer.notes)
            txn.apply(
                Mutation(source, -transfer.quantity, preconditions=(
                    sufficient_balance("Insufficient stock at source store"),
                )),
                ledger,
            )
            txn.apply(Mutation(destination, transfer.quantity), ledger)

            transfer.status = TRANSFER_COMPLETED
            transfer.approved_by = actor.user_id
            transfer.completed_at = utcnow()
            txn.audit("transfer.approve", "stock_transfer", transfer.id, {
                "from_store_id": transfer.from_store_id,
                "to_store_id": transfer.to_store_id,
                "quantity": transfer.quantity,
            })
    except IdempotentReplay as replay:
        return get_transfer(replay.result.reference_id)

    return transfer


def cancel_transfer(transfer_id: int, actor: Actor) -> StockTransfer:
    get_transfer(transfer_id)
    transfer = lock_for_update(db.session.query(StockTransfer).filter_by(id=transfer_id)).first()
    if transfer.status != TRANSFER_PENDING:
        db.session.rollback()
        raise PreconditionFailed("Only pending transfers can be cancelled")

    transfer.status = TRANSFER_CANCELLED
    db.session.commit()

    audit_service.log_action(actor, "transfer.cancel", "stock_transfer", transfer.id)
    return transfer


def get_transfer(transfer_id: int) -> StockTransfer:
    transfer = db.session.get(StockTransfer, transfer_id)
    if not transfer:
        raise TransferError("Transfer not found")
    return transfer


def list_transfers(
    *,
    status: str | None = None,
    store_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[StockTransfer], int]:
    query = db.session.query(StockTransfer)
    if status:
        query = query.filter(StockTransfer.status == status)
    if store_id is not None:
        query = query.filter(db.or_(
            StockTransfer.from_store_id == store_id,
            StockTransfer.to_store_id == store_id,
        ))
    total = query.count()
    rows = query.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def transfer_stats() -> dict:
    rows = (
        db.session.query(StockTransfer.status, func.count(StockTransfer.id))
        .group_by(StockTransfer.status)
        .order_by(StockTransfer.status)
        .all()
    )
    by_status = [{"status": status, "count": count} for status, count in rows]
    return {"total": sum(item["count"] for item in by_status), "by_status": by_status}
