"""
Ledger invariants (authoritative)

- Append-only: entries are never updated or deleted.
- One entry per balance mutation; written in the same DB transaction as the
  balance write it records.
- balance_after equals the holder field's value right after the mutation, so
  the newest entry per (holder_type, holder_key, field) always matches the
  holder's current balance.
- A batch groups the entries of one committed mutation call and carries the
  caller's idempotency key (unique) when one was supplied.
"""

from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow


class LedgerBatch(db.Model):
    __tablename__ = "ledger_batches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)
    # Document the batch belongs to (sale, return, gift_card, ...)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    entries = db.relationship(
        "LedgerEntry",
        back_populates="batch",
        order_by="LedgerEntry.id",
        lazy=True,
    )


class LedgerEntry(db.Model):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_holder", "holder_type", "holder_key", "field", "id"),
        db.Index("ix_ledger_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("ledger_batches.id"), nullable=False, index=True)

    # Holder identity: "product_stock" / "12", "store_stock" / "3:7", ...
    holder_type = db.Column(db.String(32), nullable=False)
    holder_key = db.Column(db.String(64), nullable=False)
    field = db.Column(db.String(64), nullable=False)

    delta = db.Column(db.Integer, nullable=False)
    balance_before = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    mode = db.Column(db.String(16), nullable=False, default="relative")  # relative, absolute

    kind = db.Column(db.String(32), nullable=False, index=True)  # sale, return, load, redeem, ...
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    batch = db.relationship("LedgerBatch", back_populates="entries")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "holder_type": self.holder_type,
            "holder_key": self.holder_key,
            "field": self.field,
            "delta": self.delta,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "mode": self.mode,
            "kind": self.kind,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }
