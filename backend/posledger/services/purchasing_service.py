# Overview: Suppliers and purchase orders; receiving goods is a product_stock increment through the balance protocol.

"""
Purchasing Service

SUPPLIERS:
- Unique name; soft-deactivated (is_active=False), never deleted.
- Inactive suppliers cannot receive new purchase orders.

PURCHASE ORDERS:
1. ordered:   created with lines (product, quantity_ordered, unit_cost_cents)
2. partial:   some lines received, something still outstanding
3. received:  every line fully received
4. cancelled: from ordered or partial; units already received stay in stock

RECEIVING:
- Each receipt line adds quantity to the product_stock holder
  (kind "purchase_receive", reference "purchase_order").
- Per line, max receivable = quantity_ordered - quantity_received, checked
  under the purchase order row lock so concurrent receipts cannot exceed it.
"""

from __future__ import annotations

import secrets

from sqlalchemy import func

from ..extensions import db
from ..models import Product, PurchaseOrder, PurchaseOrderItem, Supplier
from ..models.purchasing import (
    PO_OPEN_STATUSES,
    PO_STATUS_CANCELLED,
    PO_STATUS_ORDERED,
    PO_STATUS_PARTIAL,
    PO_STATUS_RECEIVED,
)
from ..validation import ConflictError, ValidationError, coerce_int
from posledger.time_utils import today, utcnow
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
from .concurrency import lock_for_update
from .holders import PRODUCT_STOCK


class PurchasingError(Exception):
    """Raised when a supplier or purchase order does not exist."""
    pass


# =============================================================================
# SUPPLIERS
# =============================================================================

def _ensure_unique_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Supplier).filter(func.lower(Supplier.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Supplier.id != exclude_id)
    if query.first():
        raise ConflictError("Supplier with this name already exists")


def create_supplier(*, patch: dict, actor: Actor) -> Supplier:
    _ensure_unique_name(patch["name"])
    supplier = Supplier(**patch)
    db.session.add(supplier)
    db.session.commit()
    audit_service.log_action(actor, "supplier.create", "supplier", supplier.id, {"name": supplier.name})
    return supplier


def update_supplier(supplier_id: int, patch: dict, actor: Actor) -> Supplier:
    supplier = get_supplier(supplier_id)
    if "name" in patch:
        _ensure_unique_name(patch["name"], exclude_id=supplier_id)
    for key, value in patch.items():
        setattr(supplier, key, value)
    db.session.commit()
    audit_service.log_action(actor, "supplier.update", "supplier", supplier.id, patch)
    return supplier


def deactivate_supplier(supplier_id: int, actor: Actor) -> Supplier:
    supplier = get_supplier(supplier_id)
    supplier.is_active = False
    db.session.commit()
    audit_service.log_action(actor, "supplier.deactivate", "supplier", supplier.id, {"name": supplier.name})
    return supplier


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if not supplier:
        raise PurchasingError("Supplier not found")
    return supplier


def list_suppliers(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Supplier], int]:
    query = db.session.query(Supplier)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Supplier.name.ilike(like),
            Supplier.contact_person.ilike(like),
            Supplier.phone.ilike(like),
            Supplier.email.ilike(like),
        ))
    total = query.with_entities(func.count(Supplier.id)).scalar()
    rows = query.order_by(Supplier.name.asc(), Supplier.id.asc()).offset(offset).limit(limit).all()
    return rows, total


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

def default_po_number() -> str:
    return f"PO-{int(utcnow().timestamp() * 1000)}-{secrets.token_hex(3).upper()}"


def _normalize_order_items(items) -> list[dict]:
    if not items or not isinstance(items, list):
        raise ValidationError("At least one item is required")
    lines: dict[int, dict] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        product_id = coerce_int("product_id", raw.get("product_id"))
        quantity = coerce_int("quantity_ordered", raw.get("quantity_ordered"))
        unit_cost = coerce_int("unit_cost_cents", raw.get("unit_cost_cents", 0))
        if quantity < 1:
            raise ValidationError("quantity_ordered must be >= 1")
        if unit_cost < 0:
            raise ValidationError("unit_cost_cents cannot be negative")
        if product_id in lines:
            raise ValidationError(f"Product {product_id} appears more than once")
        lines[product_id] = {"product_id": product_id, "quantity_ordered": quantity, "unit_cost_cents": unit_cost}
    return list(lines.values())


def create_purchase_order(
    supplier_id: int,
    items,
    actor: Actor,
    *,
    order_date=None,
    expected_date=None,
    notes: str | None = None,
) -> PurchaseOrder:
    lines = _normalize_order_items(items)
    supplier = get_supplier(supplier_id)
    if not supplier.is_active:
        raise PreconditionFailed("Supplier is inactive")
    for line in lines:
        if db.session.get(Product, line["product_id"]) is None:
            raise PurchasingError(f"Product {line['product_id']} not found")

    order_date = order_date or today()
    if expected_date is not None and expected_date < order_date:
        raise ValidationError("expected_date cannot be before order_date")

    po = PurchaseOrder(
        po_number=default_po_number(),
        supplier_id=supplier_id,
        status=PO_STATUS_ORDERED,
        order_date=order_date,
        expected_date=expected_date,
        notes=notes,
        created_by=actor.user_id,
    )
    db.session.add(po)
    db.session.flush()

    total = 0
    for line in lines:
        line_total = line["quantity_ordered"] * line["unit_cost_cents"]
        total += line_total
        db.session.add(PurchaseOrderItem(purchase_order_id=po.id, total_cost_cents=line_total, **line))
    po.total_amount_cents = total
    db.session.commit()

    audit_service.log_action(actor, "purchase_order.create", "purchase_order", po.id, {
        "po_number": po.po_number,
        "supplier_id": supplier_id,
        "total_amount_cents": total,
    })
    return po


def _normalize_receipt_items(items) -> dict[int, int]:
    if not items or not isinstance(items, list):
        raise ValidationError("At least one item is required")
    merged: dict[int, int] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        item_id = coerce_int("item_id", raw.get("item_id"))
        quantity = coerce_int("quantity_received", raw.get("quantity_received"))
        if quantity < 1:
            raise ValidationError("quantity_received must be >= 1")
        merged[item_id] = merged.get(item_id, 0) + quantity
    return merged


def receive_purchase_order(
    po_id: int,
    items,
    actor: Actor,
    *,
    idempotency_key: str | None = None,
) -> PurchaseOrder:
    """
    Receive some or all outstanding quantities.

    items: [{"item_id", "quantity_received"}]; quantities are this receipt's
    increments, not running totals.
    """
    requested = _normalize_receipt_items(items)

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
            if not po:
                raise PurchasingError("Purchase order not found")
            if po.status not in PO_OPEN_STATUSES:
                raise PreconditionFailed(f"Cannot receive a {po.status} purchase order")

            lines_by_id = {item.id: item for item in po.items}
            receipts = []
            for item_id, quantity in requested.items():
                item = lines_by_id.get(item_id)
                if item is None:
                    raise PreconditionFailed(f"Item {item_id} is not on this purchase order")
                if quantity > item.quantity_outstanding:
                    raise PreconditionFailed(
                        f"Cannot receive {quantity} of product {item.product_id}. "
                        f"Max receivable: {item.quantity_outstanding}"
                    )
                receipts.append((item, quantity))

            txn.lock(*(HolderRef(PRODUCT_STOCK.name, item.product_id) for item, _ in receipts))
            txn.set_reference("purchase_order", po.id)
            ledger = LedgerDescriptor("purchase_receive", "purchase_order", po.id, po.po_number)
            for item, quantity in receipts:
                txn.apply(Mutation(HolderRef(PRODUCT_STOCK.name, item.product_id), quantity), ledger)
                item.quantity_received += quantity

            if all(item.quantity_outstanding == 0 for item in po.items):
                po.status = PO_STATUS_RECEIVED
                po.received_date = today()
            else:
                po.status = PO_STATUS_PARTIAL

            txn.audit("purchase_order.receive", "purchase_order", po.id, {
                "po_number": po.po_number,
                "status": po.status,
                "items": {str(item.id): quantity for item, quantity in receipts},
            })
    except IdempotentReplay as replay:
        return get_purchase_order(replay.result.reference_id)

    return po


def cancel_purchase_order(po_id: int, actor: Actor) -> PurchaseOrder:
    get_purchase_order(po_id)
    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if po.status == PO_STATUS_RECEIVED:
        db.session.rollback()
        raise PreconditionFailed("Cannot cancel a received purchase order")
    if po.status == PO_STATUS_CANCELLED:
        db.session.rollback()
        raise PreconditionFailed("Purchase order is already cancelled")

    po.status = PO_STATUS_CANCELLED
    db.session.commit()
    audit_service.log_action(actor, "purchase_order.cancel", "purchase_order", po.id, {"po_number": po.po_number})
    return po


def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if not po:
        raise PurchasingError("Purchase order not found")
    return po


def list_purchase_orders(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    query = db.session.query(PurchaseOrder)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    total = query.count()
    rows = query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).offset(offset).limit(limit).all()
    return rows, total
