from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow

REFUND_METHODS = ("original", "cash", "card", "gift_card", "store_credit")
RETURN_TYPES = ("return", "exchange")


class Return(db.Model):
    """
    Return document against a completed sale.

    Per-line returned quantities live on ReturnDetail; the remaining
    returnable quantity is always recomputed from those rows.
    """
    __tablename__ = "returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    return_type = db.Column(db.String(16), nullable=False, default="return")
    refund_method = db.Column(db.String(16), nullable=False, default="original")
    reason = db.Column(db.String(255), nullable=False)
    reason_note = db.Column(db.Text, nullable=True)

    total_refund_cents = db.Column(db.Integer, nullable=False, default=0)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    user = db.relationship("User")
    details = db.relationship("ReturnDetail", back_populates="return_doc", order_by="ReturnDetail.id", lazy=True)

    def to_dict(self, *, include_items: bool = False) -> dict:
        d = {
            "id": self.id,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "processed_by": self.user.name if self.user else None,
            "return_type": self.return_type,
            "refund_method": self.refund_method,
            "reason": self.reason,
            "reason_note": self.reason_note,
            "total_refund_cents": self.total_refund_cents,
            "register_id": self.register_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            d["items"] = [detail.to_dict() for detail in self.details]
        return d


class ReturnDetail(db.Model):
    __tablename__ = "return_details"
    __table_args__ = (
        db.Index("ix_return_details_sale_product", "sale_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    # Denormalised for the max-returnable sum
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)

    return_doc = db.relationship("Return", back_populates="details")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "refund_cents": self.refund_cents,
            "ledger_entry_id": self.ledger_entry_id,
        }
