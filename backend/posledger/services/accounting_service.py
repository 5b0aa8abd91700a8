# Overview: Chart-of-accounts balances; the signed holder variant of the balance protocol.

from __future__ import annotations

from ..extensions import db
from ..models import Account, LedgerEntry
from ..models.accounting import ACCOUNT_TYPES
from ..validation import ConflictError, ValidationError
from . import audit_service
from .balance_service import (
    Actor,
    HolderNotFound,
    HolderRef,
    LedgerDescriptor,
    Mutation,
    MutationResult,
    PreconditionFailed,
    holder_history,
    mutate_balance,
)
from .holders import ACCOUNT


def account_ref(account_id: int) -> HolderRef:
    return HolderRef(ACCOUNT.name, account_id)


def create_account(code: str, name: str, account_type: str, actor: Actor) -> Account:
    if account_type not in ACCOUNT_TYPES:
        raise ValidationError(f"account_type must be one of: {', '.join(ACCOUNT_TYPES)}")
    if db.session.query(Account.id).filter_by(code=code).first():
        raise ConflictError(f"Account code already exists: {code}")

    account = Account(code=code, name=name, account_type=account_type, balance_cents=0)
    db.session.add(account)
    db.session.commit()
    audit_service.log_action(actor, "account.create", "account", account.id, {"code": code})
    return account


def post_to_account(
    account_id: int,
    delta_cents: int,
    actor: Actor,
    *,
    kind: str = "posting",
    note: str | None = None,
    idempotency_key: str | None = None,
) -> MutationResult:
    """Signed posting; the balance may go negative."""
    if delta_cents == 0:
        raise ValidationError("Amount cannot be zero")
    account = get_account(account_id)
    if not account.is_active:
        raise PreconditionFailed("Account is not active")

    return mutate_balance(
        Mutation(account_ref(account_id), delta_cents),
        LedgerDescriptor(kind, "account", account_id, note),
        actor,
        idempotency_key=idempotency_key,
        audit={
            "action": "account.post",
            "entity_type": "account",
            "entity_id": account_id,
            "details": {"delta_cents": delta_cents, "kind": kind, "note": note},
        },
    )


def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if not account:
        raise HolderNotFound(account_ref(account_id))
    return account


def list_accounts(*, include_inactive: bool = False) -> list[Account]:
    query = db.session.query(Account)
    if not include_inactive:
        query = query.filter(Account.is_active.is_(True))
    return query.order_by(Account.code.asc()).all()


def account_ledger(account_id: int, *, limit: int = 100) -> list[LedgerEntry]:
    get_account(account_id)
    return holder_history(account_ref(account_id), limit=limit)
