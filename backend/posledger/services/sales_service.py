"""
Sale Checkout Service

STATE MACHINE (Sale.status):
- pending -> completed     checkout; stock leaves inventory here
- pending -> (deleted)     a held cart that is abandoned
- completed                returns reduce what is still returnable but never
                           change the sale's status

CHECKOUT (one balance-protocol transaction):
1. Lock every product_stock holder in the cart, plus the open register
   (cash portion), the gift card (gift card portion) and the customer's
   points (redeem or earn), all in one ordered lock call.
2. net_amount = sum(unit_price * quantity) - discount; discount > subtotal
   is rejected.
3. One "sale" ledger entry per line: -quantity with precondition
   available_stock >= quantity.
4. Tender: points value, then gift card, then the rest in the chosen
   payment method. Cash adds to the register's cash_sales_total.
5. Loyalty earn when the program is active and the customer is not walk-in.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Sale, SaleDetail
from ..models.sales import PAYMENT_METHODS, SALE_STATUS_COMPLETED, SALE_STATUS_PENDING
from ..money import format_cents
from ..time_utils import today, utcnow
from ..validation import MAX_AMOUNT_CENTS, ValidationError, coerce_int
from . import audit_service, gift_card_service, loyalty_service, register_service
from .balance_service import (
    Actor,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    Mutation,
    PreconditionFailed,
    mutation_boundary,
)
from .catalog_service import CatalogError, get_customer, walk_in_customer_id
from .concurrency import lock_for_update
from .holders import PRODUCT_STOCK
from .preconditions import sufficient_balance

CASH_TENDER_METHODS = ("cash", "mixed")


class SaleError(Exception):
    """Raised for missing sales."""
    pass


# =============================================================================
# CART
# =============================================================================

def normalize_items(items) -> list[dict]:
    """
    Validate cart lines and merge repeated products.

    Each item: {"product_id": int, "quantity": int >= 1, "unit_price_cents": optional int}.
    Without unit_price_cents the product's current price is used.
    """
    if not items:
        raise PreconditionFailed("Cart is empty")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    merged: dict[int, dict] = {}
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        product_id = coerce_int("product_id", raw.get("product_id"))
        quantity = coerce_int("quantity", raw.get("quantity"))
        if quantity < 1:
            raise ValidationError("quantity must be >= 1")

        product = db.session.get(Product, product_id)
        if not product or not product.is_active:
            raise CatalogError(f"Product {product_id} not found")

        if raw.get("unit_price_cents") is not None:
            unit_price = coerce_int("unit_price_cents", raw["unit_price_cents"])
        else:
            unit_price = product.price_cents
        if unit_price < 0 or unit_price > MAX_AMOUNT_CENTS:
            raise ValidationError("unit_price_cents out of range")

        line = merged.get(product_id)
        if line is None:
            merged[product_id] = {"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price}
        else:
            if line["unit_price_cents"] != unit_price:
                raise ValidationError(f"Conflicting prices for product {product_id}")
            line["quantity"] += quantity

    return list(merged.values())


def _totals(lines: list[dict], discount_cents: int) -> tuple[int, int]:
    subtotal = sum(line["unit_price_cents"] * line["quantity"] for line in lines)
    if discount_cents < 0:
        raise ValidationError("discount cannot be negative")
    if discount_cents > subtotal:
        raise PreconditionFailed("Discount cannot exceed total amount")
    return subtotal, subtotal - discount_cents


def _resolve_customer(customer_id: int | None) -> int:
    if customer_id is None:
        return walk_in_customer_id()
    customer = get_customer(customer_id)
    if not customer.is_active:
        raise PreconditionFailed("Customer is not active")
    return customer.id


# =============================================================================
# CHECKOUT
# =============================================================================

def hold_sale(
    items,
    actor: Actor,
    *,
    discount_cents: int = 0,
    customer_id: int | None = None,
    payment_method: str = "cash",
) -> Sale:
    """Save a cart as a pending sale. No stock moves until it is completed."""
    lines = normalize_items(items)
    subtotal, net = _totals(lines, discount_cents)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    sale = Sale(
        status=SALE_STATUS_PENDING,
        customer_id=_resolve_customer(customer_id),
        user_id=actor.user_id,
        total_amount_cents=subtotal,
        discount_cents=discount_cents,
        net_amount_cents=net,
        payment_method=payment_method,
    )
    db.session.add(sale)
    db.session.flush()
    for line in lines:
        db.session.add(SaleDetail(
            sale_id=sale.id,
            product_id=line["product_id"],
            quantity=line["quantity"],
            unit_price_cents=line["unit_price_cents"],
            total_price_cents=line["unit_price_cents"] * line["quantity"],
        ))
    db.session.commit()

    audit_service.log_action(actor, "sale.hold", "sale", sale.id, {"net_amount_cents": net})
    return sale


def create_sale(
    items,
    actor: Actor,
    *,
    discount_cents: int = 0,
    customer_id: int | None = None,
    payment_method: str = "cash",
    gift_card_id: int | None = None,
    gift_card_amount_cents: int | None = None,
    redeem_points: int = 0,
    idempotency_key: str | None = None,
) -> Sale:
    """Checkout a cart in one transaction and return the completed sale."""
    lines = normalize_items(items)
    customer_id = _resolve_customer(customer_id)

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            sale = Sale(
                status=SALE_STATUS_PENDING,
                customer_id=customer_id,
                user_id=actor.user_id,
                discount_cents=discount_cents,
                payment_method=payment_method,
            )
            _checkout(
                txn,
                sale,
                lines,
                gift_card_id=gift_card_id,
                gift_card_amount_cents=gift_card_amount_cents,
                redeem_points=redeem_points,
                existing_details=None,
            )
    except IdempotentReplay as replay:
        return get_sale(replay.result.reference_id)

    return sale


def complete_sale(
    sale_id: int,
    actor: Actor,
    *,
    gift_card_id: int | None = None,
    gift_card_amount_cents: int | None = None,
    redeem_points: int = 0,
    idempotency_key: str | None = None,
) -> Sale:
    """Checkout a held (pending) sale."""
    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            sale = _lock_sale(sale_id)
            if sale.status != SALE_STATUS_PENDING:
                raise PreconditionFailed("Only pending sales can be completed")
            details = list(sale.details)
            lines = [
                {"product_id": d.product_id, "quantity": d.quantity, "unit_price_cents": d.unit_price_cents}
                for d in details
            ]
            _checkout(
                txn,
                sale,
                lines,
                gift_card_id=gift_card_id,
                gift_card_amount_cents=gift_card_amount_cents,
                redeem_points=redeem_points,
                existing_details=details,
            )
    except IdempotentReplay as replay:
        return get_sale(replay.result.reference_id)

    return sale


def _checkout(
    txn,
    sale: Sale,
    lines: list[dict],
    *,
    gift_card_id: int | None,
    gift_card_amount_cents: int | None,
    redeem_points: int,
    existing_details: list[SaleDetail] | None,
) -> None:
    if not lines:
        raise PreconditionFailed("Cart is empty")
    if sale.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    if redeem_points < 0:
        raise ValidationError("redeem_points cannot be negative")

    subtotal, net = _totals(lines, sale.discount_cents or 0)
    config = loyalty_service.get_config()

    # -- plan the tender before locking so every holder is known up front --
    points_value = 0
    if redeem_points:
        points_value = redeem_points * config.point_value_cents
        if points_value > net:
            raise PreconditionFailed("Points value exceeds amount due")

    gift_amount = 0
    if gift_card_id is not None:
        gift_amount = gift_card_amount_cents if gift_card_amount_cents is not None else net - points_value
        if gift_amount <= 0:
            raise PreconditionFailed("Gift card amount must be greater than 0")
        if gift_amount > net - points_value:
            raise PreconditionFailed("Gift card amount exceeds amount due")

    remainder = net - points_value - gift_amount
    cash_amount = remainder if sale.payment_method in CASH_TENDER_METHODS else 0
    register_id = register_service.find_open_register_id() if cash_amount > 0 else None

    earn = 0
    if loyalty_service.earns_points(sale.customer_id, config):
        earn = loyalty_service.points_for_amount(net - points_value, config)

    refs = [HolderRef(PRODUCT_STOCK.name, line["product_id"]) for line in lines]
    if register_id is not None:
        refs.append(register_service.register_ref(register_id, "cash_sales_total_cents"))
    if gift_card_id is not None:
        refs.append(gift_card_service.card_ref(gift_card_id))
    if redeem_points or earn:
        refs.append(loyalty_service.points_ref(sale.customer_id))
    txn.lock(*refs)

    # -- document rows --
    sale.total_amount_cents = subtotal
    sale.net_amount_cents = net
    sale.register_id = register_id
    sale.gift_card_id = gift_card_id
    sale.gift_card_amount_cents = gift_amount
    sale.points_redeemed = redeem_points
    txn.add(sale)
    txn.set_reference("sale", sale.id)
    ledger = LedgerDescriptor("sale", "sale", sale.id)

    details = existing_details
    if details is None:
        details = [
            txn.add(SaleDetail(
                sale_id=sale.id,
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_price_cents=line["unit_price_cents"] * line["quantity"],
            ))
            for line in lines
        ]

    # -- balance mutations --
    for detail in details:
        entry = txn.apply(
            Mutation(
                HolderRef(PRODUCT_STOCK.name, detail.product_id),
                -detail.quantity,
                preconditions=(sufficient_balance(f"Insufficient stock for product ID {detail.product_id}"),),
            ),
            ledger,
        )
        detail.ledger_entry_id = entry.entry_id

    if redeem_points:
        txn.apply(
            loyalty_service.redeem_mutation(sale.customer_id, redeem_points, config),
            LedgerDescriptor("redeem", "sale", sale.id, "Redeemed at checkout"),
        )

    if gift_card_id is not None:
        card = txn.holder(gift_card_service.card_ref(gift_card_id))
        txn.apply(
            Mutation(
                gift_card_service.card_ref(gift_card_id),
                -gift_amount,
                preconditions=gift_card_service.redeem_preconditions(),
            ),
            LedgerDescriptor("redeem", "sale", sale.id, "Gift card payment"),
        )
        gift_card_service.after_redeem(card)

    if register_id is not None:
        txn.apply(
            Mutation(
                register_service.register_ref(register_id, "cash_sales_total_cents"),
                cash_amount,
                preconditions=(register_service.require_open(),),
            ),
            ledger,
        )

    if earn:
        txn.apply(
            Mutation(loyalty_service.points_ref(sale.customer_id), earn),
            LedgerDescriptor("earn", "sale", sale.id, "Earned on sale"),
        )
    sale.points_earned = earn

    sale.status = SALE_STATUS_COMPLETED
    sale.completed_at = utcnow()

    txn.audit("sale.complete", "sale", sale.id, {
        "net_amount": format_cents(net),
        "items": len(details),
        "payment_method": sale.payment_method,
        "gift_card_amount_cents": gift_amount,
        "points_redeemed": redeem_points,
        "points_earned": earn,
    })


def delete_pending_sale(sale_id: int, actor: Actor) -> None:
    """Remove a held cart. Completed sales are history and cannot be deleted."""
    sale = _lock_sale(sale_id)
    if sale.status != SALE_STATUS_PENDING:
        db.session.rollback()
        raise PreconditionFailed("Only pending sales can be deleted")
    for detail in list(sale.details):
        db.session.delete(detail)
    db.session.delete(sale)
    db.session.commit()

    audit_service.log_action(actor, "sale.delete", "sale", sale_id)


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise SaleError("Sale not found")
    return sale


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleError("Sale not found")
    return sale


def list_sales(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    date_start=None,
    date_end=None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if date_start:
        query = query.filter(Sale.created_at >= datetime.combine(date_start, datetime.min.time()))
    if date_end:
        query = query.filter(Sale.created_at < datetime.combine(date_end + timedelta(days=1), datetime.min.time()))

    total = query.count()
    rows = query.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def list_today_sales() -> dict:
    start = datetime.combine(today(), datetime.min.time())
    query = db.session.query(Sale).filter(
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.created_at >= start,
    )
    sales = query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()
    total = db.session.query(func.coalesce(func.sum(Sale.net_amount_cents), 0)).filter(
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.created_at >= start,
    ).scalar()
    return {
        "sales": [s.to_dict() for s in sales],
        "count": len(sales),
        "total_net_amount_cents": int(total),
    }
