from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow

REGISTER_OPEN = "open"
REGISTER_CLOSED = "closed"

CASH_IN = "cash_in"
CASH_OUT = "cash_out"
CASH_MOVEMENT_TYPES = (CASH_IN, CASH_OUT)


class CashRegister(db.Model):
    """
    Balance holder: one cash drawer session.

    LIFECYCLE: (none open) -> open -> closed (terminal).

    SINGLE OPEN REGISTER: open_slot is 1 while the register is open and NULL
    once closed. The unique constraint admits any number of NULLs but only
    one 1, so the database rejects a second open register even if two
    requests race past the service-level check.
    """
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("open_slot", name="uq_cash_registers_open_slot"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=REGISTER_OPEN, index=True)
    open_slot = db.Column(db.Integer, nullable=True)

    opened_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    closed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_in_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_out_cents = db.Column(db.Integer, nullable=False, default=0)

    # Set on close
    closing_balance_cents = db.Column(db.Integer, nullable=True)
    expected_balance_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)
    close_note = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    opener = db.relationship("User", foreign_keys=[opened_by])
    closer = db.relationship("User", foreign_keys=[closed_by])
    movements = db.relationship("CashMovement", back_populates="register", order_by="CashMovement.id", lazy=True)

    def current_expected_cents(self) -> int:
        return (
            self.opening_balance_cents
            + self.cash_sales_total_cents
            + self.total_cash_in_cents
            - self.total_cash_out_cents
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "opened_by": self.opened_by,
            "opened_by_name": self.opener.name if self.opener else None,
            "closed_by": self.closed_by,
            "closed_by_name": self.closer.name if self.closer else None,
            "opening_balance_cents": self.opening_balance_cents,
            "cash_sales_total_cents": self.cash_sales_total_cents,
            "total_cash_in_cents": self.total_cash_in_cents,
            "total_cash_out_cents": self.total_cash_out_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "difference_cents": self.difference_cents,
            "close_note": self.close_note,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
        }


class CashMovement(db.Model):
    """Manual cash in/out on an open register (float top-up, payout, drop)."""
    __tablename__ = "cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False)  # cash_in, cash_out
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    register = db.relationship("CashRegister", back_populates="movements")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "type": self.movement_type,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "created_by": self.created_by,
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }
