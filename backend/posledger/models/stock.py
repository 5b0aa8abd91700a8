from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow

ADJUSTMENT_TYPES = (
    "addition",
    "subtraction",
    "correction",
    "damage",
    "theft",
    "return",
    "opening_stock",
    "expired",
)
SUBTRACTIVE_ADJUSTMENT_TYPES = frozenset({"subtraction", "damage", "theft", "expired"})

TRANSFER_PENDING = "pending"
TRANSFER_COMPLETED = "completed"
TRANSFER_CANCELLED = "cancelled"


class StockAdjustment(db.Model):
    """
    Manual stock change with a reason.

    quantity_adjusted is the quantity as entered: a relative amount for every
    type except correction, where it is the absolute new stock level. The
    signed change actually applied is quantity_after - quantity_before and is
    what the linked ledger entry records.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    adjustment_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_adjusted = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    reference_number = db.Column(db.String(64), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "adjustment_type": self.adjustment_type,
            "quantity_before": self.quantity_before,
            "quantity_adjusted": self.quantity_adjusted,
            "quantity_after": self.quantity_after,
            "reason": self.reason,
            "reference_number": self.reference_number,
            "created_by": self.created_by,
            "created_by_name": self.user.name if self.user else None,
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockTransfer(db.Model):
    """
    Store-to-store stock movement.

    LIFECYCLE: pending -> completed (approve) | pending -> cancelled.
    Stock only moves on approval.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.CheckConstraint("from_store_id <> to_store_id", name="ck_stock_transfers_distinct_stores"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TRANSFER_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    from_store = db.relationship("Store", foreign_keys=[from_store_id])
    to_store = db.relationship("Store", foreign_keys=[to_store_id])
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_store_id": self.from_store_id,
            "from_store_name": self.from_store.name if self.from_store else None,
            "to_store_id": self.to_store_id,
            "to_store_name": self.to_store.name if self.to_store else None,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
