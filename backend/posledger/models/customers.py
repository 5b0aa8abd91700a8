from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data; also the loyalty-points balance holder.

    Customers with history are deactivated, not deleted.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "loyalty_points": self.loyalty_points,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyConfig(db.Model):
    """
    Singleton loyalty program settings.

    Earn rule: every full amount_per_point_cents of net sale earns
    points_per_amount points.
    """
    __tablename__ = "loyalty_config"

    id = db.Column(db.Integer, primary_key=True)
    points_per_amount = db.Column(db.Integer, nullable=False, default=1)
    amount_per_point_cents = db.Column(db.Integer, nullable=False, default=10000)
    min_redeem_points = db.Column(db.Integer, nullable=False, default=100)
    # Value of one point when redeemed at checkout
    point_value_cents = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "points_per_amount": self.points_per_amount,
            "amount_per_point_cents": self.amount_per_point_cents,
            "min_redeem_points": self.min_redeem_points,
            "point_value_cents": self.point_value_cents,
            "is_active": self.is_active,
        }
