"""
Cash Register Session Service

WHY: Cash accountability. One drawer session is open at a time; every cash
sale, manual cash in/out and cash refund accumulates on it, and closing
reconciles counted cash against what the totals say should be there.

DESIGN PRINCIPLES:
- At most one open register globally. Checked under lock at open time and
  backed by the unique open_slot column, so a racing second open fails at
  the database even if both requests pass the check.
- Running totals (cash_sales_total, total_cash_in, total_cash_out) are
  cash_register holder fields and only change through the balance protocol.
- Sessions are immutable once closed.

RECONCILIATION:
    expected   = opening + cash_sales_total + total_cash_in - total_cash_out
    difference = closing - expected
All amounts are integer cents, so both are exact.
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashMovement, CashRegister, Sale
from ..models.registers import CASH_IN, CASH_MOVEMENT_TYPES, REGISTER_CLOSED, REGISTER_OPEN
from ..models.sales import SALE_STATUS_COMPLETED
from ..validation import ValidationError
from posledger.time_utils import utcnow
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
from .concurrency import lock_for_update
from .holders import CASH_REGISTER
from .preconditions import status_in

ALREADY_OPEN_MESSAGE = "A register is already open. Close it before opening a new one."
NO_OPEN_REGISTER_MESSAGE = "No open register. Open a register first."


def register_ref(register_id: int, field: str | None = None) -> HolderRef:
    return HolderRef(CASH_REGISTER.name, register_id, field)


def require_open():
    return status_in(REGISTER_OPEN, message=NO_OPEN_REGISTER_MESSAGE)


def find_open_register_id() -> int | None:
    """Unlocked lookup; callers lock the returned id and re-check status under lock."""
    row = db.session.query(CashRegister.id).filter_by(status=REGISTER_OPEN).first()
    return row[0] if row else None


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_register(
    opening_balance_cents: int,
    actor: Actor,
    *,
    idempotency_key: str | None = None,
) -> CashRegister:
    if opening_balance_cents < 0:
        raise PreconditionFailed("Valid opening balance is required")

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            existing = lock_for_update(
                db.session.query(CashRegister).filter_by(status=REGISTER_OPEN)
            ).first()
            if existing:
                raise PreconditionFailed(ALREADY_OPEN_MESSAGE)

            register = CashRegister(
                status=REGISTER_OPEN,
                open_slot=1,
                opened_by=actor.user_id,
                opening_balance_cents=opening_balance_cents,
                opened_at=utcnow(),
            )
            try:
                txn.add(register)
            except IntegrityError:
                raise PreconditionFailed(ALREADY_OPEN_MESSAGE) from None

            txn.set_reference("cash_register", register.id)
            txn.audit("register.open", "cash_register", register.id, {
                "opening_balance_cents": opening_balance_cents,
            })
    except IdempotentReplay as replay:
        return get_register(replay.result.reference_id)

    return register


def close_register(
    closing_balance_cents: int,
    actor: Actor,
    *,
    close_note: str | None = None,
) -> CashRegister:
    if closing_balance_cents < 0:
        raise PreconditionFailed("Valid closing balance is required")

    register_id = find_open_register_id()
    if register_id is None:
        raise HolderNotFound(register_ref(0), "No open register found")

    with mutation_boundary(actor) as txn:
        register = txn.lock(register_ref(register_id))[0]
        if register.status != REGISTER_OPEN:
            raise HolderNotFound(register_ref(register_id), "No open register found")

        expected = register.current_expected_cents()
        register.closing_balance_cents = closing_balance_cents
        register.expected_balance_cents = expected
        register.difference_cents = closing_balance_cents - expected
        register.close_note = close_note
        register.closed_by = actor.user_id
        register.closed_at = utcnow()
        register.status = REGISTER_CLOSED
        register.open_slot = None

        txn.set_reference("cash_register", register.id)
        txn.audit("register.close", "cash_register", register.id, {
            "closing_balance_cents": closing_balance_cents,
            "expected_balance_cents": expected,
            "difference_cents": register.difference_cents,
        })

    return register


def add_cash_movement(
    movement_type: str,
    amount_cents: int,
    reason: str | None,
    actor: Actor,
    *,
    idempotency_key: str | None = None,
) -> MutationResult:
    if movement_type not in CASH_MOVEMENT_TYPES:
        raise ValidationError("Type must be cash_in or cash_out")
    if amount_cents <= 0:
        raise ValidationError("Valid amount is required")
    if not reason or not reason.strip():
        raise ValidationError("Reason is required")

    register_id = find_open_register_id()
    if register_id is None:
        raise PreconditionFailed(NO_OPEN_REGISTER_MESSAGE)

    field = "total_cash_in_cents" if movement_type == CASH_IN else "total_cash_out_cents"
    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            txn.lock(register_ref(register_id))
            movement = txn.add(CashMovement(
                register_id=register_id,
                movement_type=movement_type,
                amount_cents=amount_cents,
                reason=reason.strip(),
                created_by=actor.user_id,
            ))
            entry = txn.apply(
                Mutation(register_ref(register_id, field), amount_cents, preconditions=(require_open(),)),
                LedgerDescriptor(movement_type, "cash_movement", movement.id, reason.strip()),
            )
            movement.ledger_entry_id = entry.entry_id
            txn.audit("register.cash_movement", "cash_register", register_id, {
                "type": movement_type,
                "amount_cents": amount_cents,
                "reason": reason.strip(),
            })
    except IdempotentReplay as replay:
        return replay.result

    return txn.result


# =============================================================================
# QUERIES
# =============================================================================

def get_current_register() -> CashRegister | None:
    return db.session.query(CashRegister).filter_by(status=REGISTER_OPEN).first()


def get_register(register_id: int) -> CashRegister:
    register = db.session.get(CashRegister, register_id)
    if not register:
        raise HolderNotFound(register_ref(register_id), "Register not found")
    return register


def register_summary(register: CashRegister) -> dict:
    """Register dict plus movements and the sales rung up during the session."""
    sales_count, sales_total = (
        db.session.query(func.count(Sale.id), func.coalesce(func.sum(Sale.net_amount_cents), 0))
        .filter(Sale.register_id == register.id, Sale.status == SALE_STATUS_COMPLETED)
        .one()
    )
    d = register.to_dict()
    d["current_expected_cents"] = register.current_expected_cents()
    d["movements"] = [m.to_dict() for m in register.movements]
    d["sales_count"] = sales_count
    d["sales_total_cents"] = int(sales_total)
    return d


def register_history(*, limit: int = 20, offset: int = 0) -> tuple[list[CashRegister], int]:
    query = db.session.query(CashRegister)
    total = query.count()
    rows = query.order_by(CashRegister.opened_at.desc(), CashRegister.id.desc()).offset(offset).limit(limit).all()
    return rows, total
