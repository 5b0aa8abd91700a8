# Overview: Balance Mutation Protocol; the one lock-check-write-ledger-commit primitive.

"""
Balance Mutation Protocol

Every operation that changes a stored balance (stock, gift card, register
totals, loyalty points, credit balance due, account balance) goes through
this module. Nothing else writes a holder's balance field.

PROCEDURE (per mutation_boundary):
1. Open the transaction (SQLite: BEGIN IMMEDIATE, see concurrency.py).
2. Lock every holder involved, read-for-update, in ascending
   (holder_type, key) order. All locks are taken before the first write.
3. Evaluate preconditions against the locked value.
4. new_balance = current + delta (RELATIVE) or new_balance = value (ABSOLUTE).
5. Write the holder row.
6. Insert one LedgerEntry with balance_after = new_balance.
7. Commit.
8. Write audit rows: after commit and best-effort by default, or inside the
   transaction when AUDIT_DELIVERY_MODE == "transactional".

FAILURES:
- PreconditionFailed / HolderNotFound: rollback, re-raised unchanged.
- Any SQLAlchemy error: rollback, re-raised as TransactionAborted.
- Nothing is retried automatically.

IDEMPOTENCY:
- With an idempotency key, the batch row carries the key under a unique
  constraint. A repeated key replays the stored result and writes nothing.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import LedgerBatch, LedgerEntry
from . import audit_service
from .holders import HolderType, all_holder_types, get_holder_type

RELATIVE = "relative"
ABSOLUTE = "absolute"
MUTATION_MODES = (RELATIVE, ABSOLUTE)

AUDIT_BEST_EFFORT = "best_effort"
AUDIT_TRANSACTIONAL = "transactional"


# =============================================================================
# ERRORS
# =============================================================================

class BalanceError(Exception):
    """Base class for balance protocol failures."""


class PreconditionFailed(BalanceError):
    """Business rule violated (insufficient balance, wrong status, over limit)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class HolderNotFound(BalanceError):
    def __init__(self, ref: "HolderRef", message: str | None = None):
        super().__init__(message or f"{ref.type.label} not found")
        self.ref = ref


class TransactionAborted(BalanceError):
    """Store failure; the whole operation was rolled back and is safe to resubmit."""

    def __init__(self, cause: Exception):
        super().__init__("Transaction aborted")
        self.cause = cause


class LockOrderError(BalanceError):
    """Raised when a lock is requested after a write or out of global order."""


class IdempotentReplay(BalanceError):
    """Raised on entry to a boundary whose idempotency key already committed."""

    def __init__(self, result: "MutationResult"):
        super().__init__(f"Idempotent replay of ledger batch {result.batch_id}")
        self.result = result


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class HolderRef:
    """
    Identifies one balance field on one holder.

    key is an int, or a tuple for composite keys (store_stock: (store_id, product_id)).
    field defaults to the holder type's primary balance field.
    """
    holder_type: str
    key: Any
    field: str | None = None

    @property
    def type(self) -> HolderType:
        return get_holder_type(self.holder_type)

    @property
    def key_tuple(self) -> tuple:
        if isinstance(self.key, (tuple, list)):
            return tuple(self.key)
        return (self.key,)

    @property
    def holder_key(self) -> str:
        return ":".join(str(part) for part in self.key_tuple)

    @property
    def field_name(self) -> str:
        return self.field or self.type.default_field

    @property
    def identity(self) -> tuple:
        """Lock identity (the field is not part of it: one row, one lock)."""
        return (self.holder_type, self.key_tuple)


@dataclass(frozen=True)
class Mutation:
    ref: HolderRef
    delta: int
    mode: str = RELATIVE
    preconditions: Sequence[Callable] = ()


@dataclass(frozen=True)
class LedgerDescriptor:
    kind: str
    reference_type: str | None = None
    reference_id: int | None = None
    note: str | None = None


@dataclass(frozen=True)
class Actor:
    user_id: int | None
    name: str | None = None
    ip: str | None = None


@dataclass(frozen=True)
class AppliedEntry:
    entry_id: int
    holder_type: str
    holder_key: str
    field: str
    delta: int
    balance_before: int
    balance_after: int
    kind: str
    reference_type: str | None
    reference_id: int | None

    @classmethod
    def from_row(cls, entry: LedgerEntry) -> "AppliedEntry":
        return cls(
            entry_id=entry.id,
            holder_type=entry.holder_type,
            holder_key=entry.holder_key,
            field=entry.field,
            delta=entry.delta,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            kind=entry.kind,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
        )


@dataclass
class MutationResult:
    batch_id: int
    entries: list[AppliedEntry] = field(default_factory=list)
    replayed: bool = False
    reference_type: str | None = None
    reference_id: int | None = None

    @property
    def new_balance(self) -> int | None:
        return self.entries[-1].balance_after if self.entries else None

    @property
    def entry_id(self) -> int | None:
        return self.entries[-1].entry_id if self.entries else None

    def for_holder(self, ref: HolderRef) -> list[AppliedEntry]:
        return [
            e for e in self.entries
            if e.holder_type == ref.holder_type
            and e.holder_key == ref.holder_key
            and e.field == ref.field_name
        ]

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "replayed": self.replayed,
            "new_balance": self.new_balance,
            "ledger_entry_id": self.entry_id,
            "entries": [asdict(e) for e in self.entries],
        }


# =============================================================================
# TRANSACTION
# =============================================================================

class BalanceTransaction:
    """
    Handle yielded by mutation_boundary. Not reusable after the boundary exits.
    """

    def __init__(self, actor: Actor, *, ledger: LedgerDescriptor | None, audit_mode: str):
        self.actor = actor
        self.default_ledger = ledger
        self.audit_mode = audit_mode
        self.batch: LedgerBatch | None = None
        self.result: MutationResult | None = None
        self._locked: dict[tuple, Any] = {}
        self._applied: list[AppliedEntry] = []
        self._audits: list[dict] = []

    # -- lifecycle -----------------------------------------------------------

    def _begin(self, idempotency_key: str | None) -> None:
        if idempotency_key:
            stored = _load_batch(idempotency_key)
            if stored is not None:
                raise IdempotentReplay(_result_from_batch(stored))

        self.batch = LedgerBatch(
            idempotency_key=idempotency_key or None,
            actor_id=self.actor.user_id,
        )
        db.session.add(self.batch)
        try:
            db.session.flush()
        except IntegrityError:
            # Concurrent request with the same key committed first.
            if not idempotency_key:
                raise
            db.session.rollback()
            stored = _load_batch(idempotency_key)
            if stored is None:
                raise
            raise IdempotentReplay(_result_from_batch(stored))

    def _finish(self) -> None:
        if self.batch.reference_type is None and self._applied:
            first = self._applied[0]
            self.batch.reference_type = first.reference_type
            self.batch.reference_id = first.reference_id

        if self.audit_mode == AUDIT_TRANSACTIONAL:
            for item in self._audits:
                db.session.add(audit_service.build_entry(self.actor, **item))
            db.session.flush()

    def _deliver_audits(self) -> None:
        if self.audit_mode == AUDIT_TRANSACTIONAL:
            return
        for item in self._audits:
            audit_service.log_action(self.actor, **item)

    # -- operations ----------------------------------------------------------

    def lock(self, *refs: HolderRef) -> list:
        """
        Lock holders read-for-update and return their rows in the order given.

        Locks are taken in ascending (holder_type, key) order regardless of
        argument order; duplicates are locked once. Asking for a new lock
        after a write, or for a holder that sorts below one already locked,
        raises LockOrderError.
        """
        if self._applied:
            raise LockOrderError("Cannot acquire locks after the first balance write")

        wanted: dict[tuple, HolderRef] = {}
        for ref in refs:
            wanted.setdefault(ref.identity, ref)

        pending = sorted(identity for identity in wanted if identity not in self._locked)
        if pending and self._locked and pending[0] < max(self._locked):
            raise LockOrderError(
                f"Lock on {pending[0]} requested after {max(self._locked)}; "
                "acquire all locks in one call"
            )

        for identity in pending:
            ref = wanted[identity]
            row = ref.type.fetch(ref.key_tuple, lock=True)
            if row is None:
                raise HolderNotFound(ref)
            self._locked[identity] = row

        return [self._locked[ref.identity] for ref in refs]

    def holder(self, ref: HolderRef):
        try:
            return self._locked[ref.identity]
        except KeyError:
            raise LockOrderError(f"{ref.holder_type} {ref.holder_key} is not locked") from None

    def apply(self, mutation: Mutation, ledger: LedgerDescriptor | None = None) -> AppliedEntry:
        ref = mutation.ref
        holder_type = ref.type
        field_name = ref.field_name
        if field_name not in holder_type.fields:
            raise ValueError(f"{holder_type.name} has no balance field {field_name!r}")
        if mutation.mode not in MUTATION_MODES:
            raise ValueError(f"Unknown mutation mode: {mutation.mode!r}")
        if isinstance(mutation.delta, bool) or not isinstance(mutation.delta, int):
            raise TypeError("delta must be an int")

        ledger = ledger or self.default_ledger
        if ledger is None:
            raise ValueError("A ledger descriptor is required")

        if ref.identity not in self._locked:
            self.lock(ref)
        row = self._locked[ref.identity]

        current = getattr(row, field_name)
        if mutation.mode == ABSOLUTE:
            proposed = mutation.delta
        else:
            proposed = current + mutation.delta

        for check in mutation.preconditions:
            check(row, current, proposed)

        if holder_type.non_negative and proposed < 0:
            raise PreconditionFailed(f"Insufficient balance. Available: {holder_type.format(current)}")

        setattr(row, field_name, proposed)

        entry = LedgerEntry(
            batch_id=self.batch.id,
            holder_type=ref.holder_type,
            holder_key=ref.holder_key,
            field=field_name,
            delta=proposed - current,
            balance_before=current,
            balance_after=proposed,
            mode=mutation.mode,
            kind=ledger.kind,
            reference_type=ledger.reference_type,
            reference_id=ledger.reference_id,
            note=ledger.note,
            actor_id=self.actor.user_id,
        )
        db.session.add(entry)
        db.session.flush()

        applied = AppliedEntry.from_row(entry)
        self._applied.append(applied)
        return applied

    def add(self, obj):
        """Add a document row to this transaction and flush it so its id is available."""
        db.session.add(obj)
        db.session.flush()
        return obj

    def set_reference(self, reference_type: str, reference_id: int) -> None:
        self.batch.reference_type = reference_type
        self.batch.reference_id = reference_id

    def audit(self, action: str, entity_type: str, entity_id: int | None = None, details: dict | None = None) -> None:
        self._audits.append({
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details,
        })

    @property
    def entries(self) -> list[AppliedEntry]:
        return list(self._applied)


@contextmanager
def mutation_boundary(
    actor: Actor,
    idempotency_key: str | None = None,
    ledger: LedgerDescriptor | None = None,
):
    """
    Atomic unit for one balance-changing operation.

    Usage:
        with mutation_boundary(actor) as txn:
            txn.lock(ref_a, ref_b)
            txn.apply(Mutation(ref_a, -2), LedgerDescriptor("sale", "sale", sale.id))
        txn.result.new_balance

    With an idempotency key that already committed, entering raises
    IdempotentReplay carrying the stored MutationResult.
    """
    audit_mode = current_app.config.get("AUDIT_DELIVERY_MODE", AUDIT_BEST_EFFORT)
    txn = BalanceTransaction(actor, ledger=ledger, audit_mode=audit_mode)

    try:
        txn._begin(idempotency_key)
        yield txn
        txn._finish()
        batch_id = txn.batch.id
        reference = (txn.batch.reference_type, txn.batch.reference_id)
        db.session.commit()
    except BalanceError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(
            "Balance mutation rolled back (actor=%s): %s",
            actor.user_id,
            exc,
            exc_info=True,
        )
        raise TransactionAborted(exc) from exc
    except Exception:
        db.session.rollback()
        raise

    txn.result = MutationResult(
        batch_id=batch_id,
        entries=txn.entries,
        replayed=False,
        reference_type=reference[0],
        reference_id=reference[1],
    )
    txn._deliver_audits()


def mutate_balance(
    mutations: Mutation | Iterable[Mutation],
    ledger: LedgerDescriptor,
    actor: Actor,
    idempotency_key: str | None = None,
    audit: dict | None = None,
) -> MutationResult:
    """
    One-shot form of mutation_boundary for callers that only touch balances.

    audit: optional {"action", "entity_type", "entity_id", "details"}.
    """
    if isinstance(mutations, Mutation):
        mutations = [mutations]
    mutations = list(mutations)

    try:
        with mutation_boundary(actor, idempotency_key=idempotency_key, ledger=ledger) as txn:
            txn.lock(*(m.ref for m in mutations))
            for mutation in mutations:
                txn.apply(mutation)
            if audit:
                txn.audit(**audit)
    except IdempotentReplay as replay:
        return replay.result
    return txn.result


# =============================================================================
# IDEMPOTENCY
# =============================================================================

def _load_batch(idempotency_key: str) -> LedgerBatch | None:
    return db.session.query(LedgerBatch).filter_by(idempotency_key=idempotency_key).first()


def _result_from_batch(batch: LedgerBatch) -> MutationResult:
    entries = (
        db.session.query(LedgerEntry)
        .filter_by(batch_id=batch.id)
        .order_by(LedgerEntry.id)
        .all()
    )
    return MutationResult(
        batch_id=batch.id,
        entries=[AppliedEntry.from_row(e) for e in entries],
        replayed=True,
        reference_type=batch.reference_type,
        reference_id=batch.reference_id,
    )


# =============================================================================
# READS / INVARIANT CHECKS
# =============================================================================

def current_balance(ref: HolderRef) -> int:
    row = ref.type.fetch(ref.key_tuple, lock=False)
    if row is None:
        raise HolderNotFound(ref)
    return getattr(row, ref.field_name)


def holder_history(ref: HolderRef, *, limit: int | None = None) -> list[LedgerEntry]:
    """Ledger entries for one holder field, newest first."""
    query = (
        db.session.query(LedgerEntry)
        .filter_by(holder_type=ref.holder_type, holder_key=ref.holder_key, field=ref.field_name)
        .order_by(LedgerEntry.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


@dataclass(frozen=True)
class HolderCheck:
    holder_type: str
    holder_key: str
    field: str
    balance: int
    ledger_balance: int
    entry_count: int

    @property
    def ok(self) -> bool:
        return self.balance == self.ledger_balance

    def to_dict(self) -> dict:
        return {
            "holder_type": self.holder_type,
            "holder_key": self.holder_key,
            "field": self.field,
            "balance": self.balance,
            "ledger_balance": self.ledger_balance,
            "entry_count": self.entry_count,
            "ok": self.ok,
        }


def verify_holder(ref: HolderRef) -> HolderCheck:
    """
    Check that the holder's stored balance equals balance_after of its newest
    ledger entry. A holder with no entries must be at zero.
    """
    balance = current_balance(ref)
    base = db.session.query(LedgerEntry).filter_by(
        holder_type=ref.holder_type,
        holder_key=ref.holder_key,
        field=ref.field_name,
    )
    latest = base.order_by(LedgerEntry.id.desc()).first()
    return HolderCheck(
        holder_type=ref.holder_type,
        holder_key=ref.holder_key,
        field=ref.field_name,
        balance=balance,
        ledger_balance=latest.balance_after if latest else 0,
        entry_count=base.count(),
    )


def verify_all(holder_type: str | None = None) -> list[HolderCheck]:
    types = [get_holder_type(holder_type)] if holder_type else all_holder_types()
    checks: list[HolderCheck] = []
    for htype in types:
        for key in htype.keys():
            for field_name in htype.fields:
                checks.append(verify_holder(HolderRef(htype.name, key, field_name)))
    return checks
