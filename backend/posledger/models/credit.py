from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_iso_date, to_utc_z, utcnow

CREDIT_PENDING = "pending"
CREDIT_PARTIAL = "partial"
CREDIT_PAID = "paid"


class CreditSale(db.Model):
    """
    Balance holder: amount a customer still owes on a sale.

    STATUS: pending (nothing paid) -> partial -> paid (balance_due == 0).
    """
    __tablename__ = "credit_sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=CREDIT_PENDING, index=True)
    due_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    customer = db.relationship("Customer")
    payments = db.relationship("CreditPayment", back_populates="credit_sale", order_by="CreditPayment.id", lazy=True)

    def to_dict(self, *, include_payments: bool = False) -> dict:
        d = {
            "id": self.id,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "status": self.status,
            "due_date": to_iso_date(self.due_date),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
        if include_payments:
            d["payments"] = [p.to_dict() for p in self.payments]
        return d


class CreditPayment(db.Model):
    __tablename__ = "credit_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    credit_sale_id = db.Column(db.Integer, db.ForeignKey("credit_sales.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    notes = db.Column(db.String(255), nullable=True)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    credit_sale = db.relationship("CreditSale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_sale_id": self.credit_sale_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "received_by": self.received_by,
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }
