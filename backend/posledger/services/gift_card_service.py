# Overview: Gift card issue, load, redeem and disable on top of the balance protocol.

"""
Gift Card Service

STATUS MACHINE (GiftCard.status):
- active -> depleted        redeem brings the balance to 0
- active/depleted -> expired detected lazily when a redeem is attempted
                            after expiry_date; the transition is committed
                            on its own and the redeem is rejected
- any -> disabled           manual; no further loads or redeems
- depleted/expired -> active on load

PRECONDITIONS (evaluated under lock):
- redeem: status == active, expiry_date >= today, amount <= balance
- load:   status != disabled
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, GiftCard, LedgerEntry
from ..models.gift_cards import (
    GIFT_CARD_ACTIVE,
    GIFT_CARD_DEPLETED,
    GIFT_CARD_DISABLED,
    GIFT_CARD_EXPIRED,
)
from ..money import format_cents
from ..time_utils import today
from ..validation import ConflictError
from .balance_service import (
    Actor,
    HolderNotFound,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    Mutation,
    MutationResult,
    PreconditionFailed,
    holder_history,
    mutation_boundary,
)
from .catalog_service import get_customer
from .holders import GIFT_CARD
from .preconditions import not_expired, status_in, status_not_in, sufficient_balance

CARD_NUMBER_PREFIX = "GC-"
CARD_NUMBER_LENGTH = 8
CARD_NUMBER_ATTEMPTS = 10
_CARD_ALPHABET = string.ascii_uppercase + string.digits


class GiftCardExpired(PreconditionFailed):
    def __init__(self):
        super().__init__("Gift card has expired")


def card_ref(card_id: int) -> HolderRef:
    return HolderRef(GIFT_CARD.name, card_id)


def redeem_preconditions() -> tuple:
    return (
        status_in(GIFT_CARD_ACTIVE, message="Card is {status}. Cannot redeem."),
        not_expired(message="Gift card has expired"),
        sufficient_balance(formatter=format_cents),
    )


def expiry_due(card: GiftCard) -> bool:
    return (
        card.expiry_date is not None
        and card.expiry_date < today()
        and card.status in (GIFT_CARD_ACTIVE, GIFT_CARD_DEPLETED)
    )


def after_redeem(card: GiftCard) -> None:
    """Status follow-up for a card whose balance was just reduced."""
    if card.current_balance_cents == 0:
        card.status = GIFT_CARD_DEPLETED


def generate_card_number() -> str:
    suffix = "".join(secrets.choice(_CARD_ALPHABET) for _ in range(CARD_NUMBER_LENGTH))
    return f"{CARD_NUMBER_PREFIX}{suffix}"


def _unique_card_number() -> str:
    for _ in range(CARD_NUMBER_ATTEMPTS):
        number = generate_card_number()
        if not db.session.query(GiftCard.id).filter_by(card_number=number).first():
            return number
    raise ConflictError("Could not generate a unique card number")


# =============================================================================
# MUTATIONS
# =============================================================================

def issue_gift_card(
    initial_balance_cents: int,
    actor: Actor,
    *,
    customer_id: int | None = None,
    expiry_date=None,
    idempotency_key: str | None = None,
) -> GiftCard:
    """Create a card and load its initial balance as an "issue" entry."""
    if initial_balance_cents <= 0:
        raise PreconditionFailed("Initial balance must be greater than 0")
    if customer_id is not None:
        get_customer(customer_id)

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            card = txn.add(GiftCard(
                card_number=_unique_card_number(),
                initial_balance_cents=initial_balance_cents,
                current_balance_cents=0,
                status=GIFT_CARD_ACTIVE,
                customer_id=customer_id,
                expiry_date=expiry_date,
                created_by=actor.user_id,
            ))
            txn.set_reference("gift_card", card.id)
            txn.apply(
                Mutation(card_ref(card.id), initial_balance_cents),
                LedgerDescriptor("issue", "gift_card", card.id, "Initial balance"),
            )
            txn.audit("gift_card.issue", "gift_card", card.id, {
                "card_number": card.card_number,
                "initial_balance_cents": initial_balance_cents,
            })
    except IdempotentReplay as replay:
        return get_gift_card(replay.result.reference_id)

    return card


def load_funds(
    card_id: int,
    amount_cents: int,
    actor: Actor,
    *,
    idempotency_key: str | None = None,
) -> MutationResult:
    if amount_cents <= 0:
        raise PreconditionFailed("Amount must be greater than 0")

    ref = card_ref(card_id)
    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            card = txn.lock(ref)[0]
            entry = txn.apply(
                Mutation(ref, amount_cents, preconditions=(
                    status_not_in(GIFT_CARD_DISABLED, message="Cannot load funds to a disabled card"),
                )),
                LedgerDescriptor("load", "gift_card", card_id, "Funds loaded"),
            )
            card.status = GIFT_CARD_ACTIVE
            txn.audit("gift_card.load", "gift_card", card_id, {
                "amount_cents": amount_cents,
                "new_balance_cents": entry.balance_after,
            })
    except IdempotentReplay as replay:
        return replay.result

    return txn.result


def redeem(
    card_id: int,
    amount_cents: int,
    actor: Actor,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    idempotency_key: str | None = None,
) -> MutationResult:
    """
    Redeem against a card.

    Past expiry, the card is moved to expired in a separate committed
    transaction and the redeem is rejected with "Gift card has expired".
    """
    if amount_cents <= 0:
        raise PreconditionFailed("Amount must be greater than 0")

    ref = card_ref(card_id)
    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key) as txn:
            card = txn.lock(ref)[0]
            if expiry_due(card):
                raise GiftCardExpired()
            entry = txn.apply(
                Mutation(ref, -amount_cents, preconditions=redeem_preconditions()),
                LedgerDescriptor("redeem", reference_type or "gift_card", reference_id or card_id, "Redeemed"),
            )
            after_redeem(card)
            txn.audit("gift_card.redeem", "gift_card", card_id, {
                "amount_cents": amount_cents,
                "new_balance_cents": entry.balance_after,
                "status": card.status,
            })
    except IdempotentReplay as replay:
        return replay.result
    except GiftCardExpired:
        mark_expired(card_id, actor)
        raise

    return txn.result


def mark_expired(card_id: int, actor: Actor) -> None:
    """Commit the lazy active/depleted -> expired transition."""
    with mutation_boundary(actor) as txn:
        card = txn.lock(card_ref(card_id))[0]
        if expiry_due(card):
            card.status = GIFT_CARD_EXPIRED
            txn.set_reference("gift_card", card_id)
            txn.audit("gift_card.expire", "gift_card", card_id, {
                "expiry_date": card.expiry_date.isoformat(),
            })


def disable_gift_card(card_id: int, actor: Actor) -> GiftCard:
    with mutation_boundary(actor) as txn:
        card = txn.lock(card_ref(card_id))[0]
        previous = card.status
        card.status = GIFT_CARD_DISABLED
        txn.set_reference("gift_card", card_id)
        txn.audit("gift_card.disable", "gift_card", card_id, {"previous_status": previous})
    return card


# =============================================================================
# QUERIES
# =============================================================================

def get_gift_card(card_id: int) -> GiftCard:
    card = db.session.get(GiftCard, card_id)
    if not card:
        raise HolderNotFound(card_ref(card_id))
    return card


def check_balance(card_number: str) -> GiftCard:
    card = db.session.query(GiftCard).filter_by(card_number=card_number.strip().upper()).first()
    if not card:
        raise HolderNotFound(HolderRef(GIFT_CARD.name, card_number))
    return card


def gift_card_transactions(card_id: int) -> list[LedgerEntry]:
    get_gift_card(card_id)
    return holder_history(card_ref(card_id))


def list_gift_cards(
    *,
    status: str | None = None,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[GiftCard], int]:
    query = db.session.query(GiftCard).outerjoin(Customer, GiftCard.customer_id == Customer.id)
    if status:
        query = query.filter(GiftCard.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(GiftCard.card_number.ilike(like), Customer.name.ilike(like)))

    total = query.count()
    rows = query.order_by(GiftCard.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def gift_card_stats() -> dict:
    active_count, active_balance = (
        db.session.query(func.count(GiftCard.id), func.coalesce(func.sum(GiftCard.current_balance_cents), 0))
        .filter(GiftCard.status == GIFT_CARD_ACTIVE)
        .one()
    )
    total_issued = db.session.query(func.count(GiftCard.id)).scalar()

    month_start = datetime.combine(today().replace(day=1), datetime.min.time())
    redeemed = (
        db.session.query(func.coalesce(func.sum(-LedgerEntry.delta), 0))
        .filter(
            LedgerEntry.holder_type == GIFT_CARD.name,
            LedgerEntry.kind == "redeem",
            LedgerEntry.created_at >= month_start,
        )
        .scalar()
    )

    return {
        "active_count": active_count,
        "total_balance_cents": int(active_balance),
        "total_issued": total_issued,
        "redeemed_this_month_cents": int(redeemed),
    }
