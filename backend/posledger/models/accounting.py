from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow

ACCOUNT_TYPES = ("asset", "liability", "equity", "revenue", "expense")


class Account(db.Model):
    """
    Balance holder: chart-of-accounts balance.

    Unlike every other holder the balance is signed; there is no
    non-negative floor.
    """
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    account_type = db.Column(db.String(16), nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "account_type": self.account_type,
            "balance_cents": self.balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
