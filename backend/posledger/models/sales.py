from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow

SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"

PAYMENT_METHODS = ("cash", "card", "gift_card", "credit", "mixed")


class Sale(db.Model):
    """
    Sale document.

    LIFECYCLE: pending -> completed, or pending -> (deleted).
    Returns against a completed sale reduce the returnable quantity per line
    but never change the sale's status.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PENDING, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)

    # Amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)  # sum(unit_price * qty)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_amount_cents = db.Column(db.Integer, nullable=False, default=0)  # total - discount

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    gift_card_id = db.Column(db.Integer, db.ForeignKey("gift_cards.id"), nullable=True)
    gift_card_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    points_earned = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    user = db.relationship("User")
    details = db.relationship("SaleDetail", back_populates="sale", order_by="SaleDetail.id", lazy=True)

    def to_dict(self, *, include_items: bool = False) -> dict:
        d = {
            "id": self.id,
            "status": self.status,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "user_id": self.user_id,
            "cashier_name": self.user.name if self.user else None,
            "register_id": self.register_id,
            "total_amount_cents": self.total_amount_cents,
            "discount_cents": self.discount_cents,
            "net_amount_cents": self.net_amount_cents,
            "payment_method": self.payment_method,
            "gift_card_id": self.gift_card_id,
            "gift_card_amount_cents": self.gift_card_amount_cents,
            "points_redeemed": self.points_redeemed,
            "points_earned": self.points_earned,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
        if include_items:
            d["items"] = [detail.to_dict() for detail in self.details]
        return d


class SaleDetail(db.Model):
    """One cart line of a sale. Quantities here are the original sold quantities."""
    __tablename__ = "sale_details"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_details_sale_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)

    sale = db.relationship("Sale", back_populates="details")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "ledger_entry_id": self.ledger_entry_id,
        }
