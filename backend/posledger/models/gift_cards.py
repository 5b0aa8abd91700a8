from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_iso_date, to_utc_z, utcnow

GIFT_CARD_ACTIVE = "active"
GIFT_CARD_DEPLETED = "depleted"
GIFT_CARD_EXPIRED = "expired"
GIFT_CARD_DISABLED = "disabled"
GIFT_CARD_STATUSES = (GIFT_CARD_ACTIVE, GIFT_CARD_DEPLETED, GIFT_CARD_EXPIRED, GIFT_CARD_DISABLED)


class GiftCard(db.Model):
    """
    Balance holder: stored-value card.

    STATUS MACHINE:
    - active -> depleted (balance reaches 0 on redeem)
    - active/depleted -> expired (detected lazily on a redeem past expiry)
    - any -> disabled (manual; terminal for redemption)
    - depleted/expired -> active again on load
    """
    __tablename__ = "gift_cards"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    card_number = db.Column(db.String(32), nullable=False, unique=True)
    initial_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=GIFT_CARD_ACTIVE, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    expiry_date = db.Column(db.Date, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    customer = db.relationship("Customer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "card_number": self.card_number,
            "initial_balance_cents": self.initial_balance_cents,
            "current_balance_cents": self.current_balance_cents,
            "status": self.status,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "expiry_date": to_iso_date(self.expiry_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
