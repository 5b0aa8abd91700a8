# Overview: Customer credit (pay-later) sales and the payments that settle them.

"""
Credit Sale Service

balance_due_cents is a credit_sale holder:
- creation writes a "charge" entry for the full amount, then a "payment"
  entry for any initial payment
- each payment is a "payment" entry with precondition amount <= balance_due

STATUS: pending (nothing paid) -> partial -> paid (balance_due == 0)
"""

from __future__ import annotations

from sqlalchemy import case, func

from ..extensions import db
from ..models import CreditPayment, CreditSale, Customer
from ..models.credit import CREDIT_PAID, CREDIT_PARTIAL, CREDIT_PENDING
from ..time_utils import today
from ..validation import ValidationError
from .balance_service import (
    Actor,
    HolderNotFound,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    Mutation,
    MutationResult,
    PreconditionFailed,
    mutation_boundary,
)
from .catalog_service import get_customer, walk_in_customer_id
from .holders import CREDIT_SALE
from .preconditions import status_not_in, sufficient_balance
from .sales_service import get_sale

OPEN_STATUSES = (CREDIT_PENDING, CREDIT_PARTIAL)


def credit_ref(credit_sale_id: int) -> HolderRef:
    return HolderRef(CREDIT_SALE.name, credit_sale_id)


def _status_for(credit_sale: CreditSale) -> str:
    if credit_sale.balance_due_cents == 0:
        return CREDIT_PAID
    if credit_sale.paid_amount_cents > 0:
        return CREDIT_PARTIAL
    return CREDIT_PENDING


def _payment_mutation(credit_sale_id: int, amount_cents: int) -> Mutation:
    return Mutation(credit_ref(credit_sale_id), -amount_cents, preconditions=(
        status_not_in(CREDIT_PAID, message="Credit sale is already paid"),
        sufficient_balance("Payment amount exceeds balance due"),
    ))


def create_credit_sale(
    sale_id: int,
    customer_id: int,
    total_amount_cents: int,
    actor: Actor,
    *,
    due_date=None,
    paid_amount_cents: int = 0,
    payment_method: str = "cash",
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> CreditSale:
    if customer_id == walk_in_customer_id():
        raise PreconditionFailed("Walk-in customers cannot have credit sales")
    if total_amount_cents <= 0:
        raise ValidationError("total_amount must be greater than 0")
    if paid_amount_cents < 0:
        raise ValidationError("paid_amount cannot be negative")
    get_sale(sale_id)
    get_customer(customer_id)
    if db.session.query(CreditSale.id).filter_by(sale_id=sale_id).first():
        raise PreconditionFailed("Sale already has a credit record")

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            credit_sale = txn.add(CreditSale(
                sale_id=sale_id,
                customer_id=customer_id,
                total_amount_cents=total_amount_cents,
                paid_amount_cents=0,
                balance_due_cents=0,
                status=CREDIT_PENDING,
                due_date=due_date,
                notes=notes,
                created_by=actor.user_id,
            ))
            txn.set_reference("credit_sale", credit_sale.id)
            txn.apply(
                Mutation(credit_ref(credit_sale.id), total_amount_cents),
                LedgerDescriptor("charge", "sale", sale_id, "Credit sale"),
            )
            if paid_amount_cents:
                payment = txn.add(CreditPayment(
                    credit_sale_id=credit_sale.id,
                    amount_cents=paid_amount_cents,
                    payment_method=payment_method,
                    notes="Initial payment",
                    received_by=actor.user_id,
                ))
                entry = txn.apply(
                    _payment_mutation(credit_sale.id, paid_amount_cents),
                    LedgerDescriptor("payment", "credit_payment", payment.id, "Initial payment"),
                )
                payment.ledger_entry_id = entry.entry_id
                credit_sale.paid_amount_cents = paid_amount_cents
            credit_sale.status = _status_for(credit_sale)
            txn.audit("credit_sale.create", "credit_sale", credit_sale.id, {
                "sale_id": sale_id,
                "customer_id": customer_id,
                "total_amount_cents": total_amount_cents,
                "paid_amount_cents": paid_amount_cents,
            })
    except IdempotentReplay as replay:
        return get_credit_sale(replay.result.reference_id)

    return credit_sale


def record_payment(
    credit_sale_id: int,
    amount_cents: int,
    actor: Actor,
    *,
    payment_method: str = "cash",
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> MutationResult:
    if amount_cents <= 0:
        raise ValidationError("Amount must be greater than 0")

    ref = credit_ref(credit_sale_id)
    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            credit_sale = txn.lock(ref)[0]
            payment = txn.add(CreditPayment(
                credit_sale_id=credit_sale_id,
                amount_cents=amount_cents,
                payment_method=payment_method,
                notes=notes,
                received_by=actor.user_id,
            ))
            entry = txn.apply(
                _payment_mutation(credit_sale_id, amount_cents),
                LedgerDescriptor("payment", "credit_payment", payment.id, notes),
            )
            payment.ledger_entry_id = entry.entry_id
            credit_sale.paid_amount_cents += amount_cents
            credit_sale.status = _status_for(credit_sale)
            txn.set_reference("credit_sale", credit_sale_id)
            txn.audit("credit_sale.payment", "credit_sale", credit_sale_id, {
                "amount_cents": amount_cents,
                "payment_method": payment_method,
                "new_balance_cents": entry.balance_after,
                "new_status": credit_sale.status,
            })
    except IdempotentReplay as replay:
        return replay.result

    return txn.result


def get_credit_sale(credit_sale_id: int) -> CreditSale:
    credit_sale = db.session.get(CreditSale, credit_sale_id)
    if not credit_sale:
        raise HolderNotFound(credit_ref(credit_sale_id))
    return credit_sale


def list_credit_sales(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    overdue: bool = False,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[CreditSale], int]:
    query = db.session.query(CreditSale).join(Customer, CreditSale.customer_id == Customer.id)
    if status:
        query = query.filter(CreditSale.status == status)
    if customer_id is not None:
        query = query.filter(CreditSale.customer_id == customer_id)
    if overdue:
        query = query.filter(CreditSale.due_date < today(), CreditSale.status.in_(OPEN_STATUSES))
    if search:
        query = query.filter(Customer.name.ilike(f"%{search.strip()}%"))

    total = query.count()
    rows = query.order_by(CreditSale.created_at.desc(), CreditSale.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def customer_balance(customer_id: int) -> dict:
    customer = get_customer(customer_id)
    outstanding, open_count = (
        db.session.query(
            func.coalesce(func.sum(case((CreditSale.status != CREDIT_PAID, CreditSale.balance_due_cents), else_=0)), 0),
            func.count(case((CreditSale.status.in_(OPEN_STATUSES), 1))),
        )
        .filter(CreditSale.customer_id == customer_id)
        .one()
    )
    return {
        "customer_id": customer.id,
        "name": customer.name,
        "total_outstanding_cents": int(outstanding),
        "open_credit_sales": open_count,
    }


def credit_stats() -> dict:
    outstanding, overdue_count, active_count = db.session.query(
        func.coalesce(func.sum(case((CreditSale.status != CREDIT_PAID, CreditSale.balance_due_cents), else_=0)), 0),
        func.count(case((db.and_(CreditSale.due_date < today(), CreditSale.status.in_(OPEN_STATUSES)), 1))),
        func.count(case((CreditSale.status.in_(OPEN_STATUSES), 1))),
    ).one()
    return {
        "total_outstanding_cents": int(outstanding),
        "overdue_count": overdue_count,
        "active_count": active_count,
    }
