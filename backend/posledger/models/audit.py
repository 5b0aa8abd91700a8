from __future__ import annotations

import json

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow


class AuditLog(db.Model):
    """
    Append-only record of who did what. Not a financial record: the ledger
    is authoritative for balances, this table is for people.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    user_name = db.Column(db.String(128), nullable=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.Text, nullable=True)  # JSON
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": json.loads(self.details) if self.details else {},
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
        }
