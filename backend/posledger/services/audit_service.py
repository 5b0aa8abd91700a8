# Overview: Audit log writer and queries; who did what, outside the financial record.

"""
Audit log

log_action() is best-effort: a failure is logged with full context and
reported as False, never raised. A committed balance mutation is never
reported as failed because its audit row could not be written.

build_entry() returns an unsaved AuditLog for callers that write the audit
row inside their own transaction (AUDIT_DELIVERY_MODE = "transactional").
"""

from __future__ import annotations

import json

from flask import current_app

from ..extensions import db
from ..models import AuditLog


def build_entry(actor, action: str, entity_type: str, entity_id: int | None = None, details: dict | None = None) -> AuditLog:
    return AuditLog(
        user_id=getattr(actor, "user_id", None),
        user_name=getattr(actor, "name", None),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=json.dumps(details, default=str, sort_keys=True) if details else None,
        ip_address=getattr(actor, "ip", None),
    )


def log_action(actor, action: str, entity_type: str, entity_id: int | None = None, details: dict | None = None) -> bool:
    try:
        db.session.add(build_entry(actor, action, entity_type, entity_id, details))
        db.session.commit()
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.error(
            "Audit log write failed: action=%s entity=%s/%s actor=%s",
            action,
            entity_type,
            entity_id,
            getattr(actor, "user_id", None),
            exc_info=True,
        )
        return False


def list_audit_logs(
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    user_id: int | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    query = db.session.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)

    total = query.count()
    rows = query.order_by(AuditLog.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def tail(limit: int = 20) -> list[AuditLog]:
    return db.session.query(AuditLog).order_by(AuditLog.id.desc()).limit(limit).all()
