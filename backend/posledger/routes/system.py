# backend/posledger/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import LedgerEntry, SessionToken, User
from ..services.register_service import find_open_register_id
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Database connectivity plus a cheap look at the ledger."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        entry_count, last_entry_at = db.session.query(
            func.count(LedgerEntry.id),
            func.max(LedgerEntry.created_at),
        ).one()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.revoked_at.is_(None),
            SessionToken.expires_at > utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "ledger_entries": entry_count,
                "last_ledger_entry_at": to_utc_z(last_entry_at),
                "active_sessions": active_sessions,
                "open_register_id": find_open_register_id(),
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503
    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "audit_delivery_mode": current_app.config.get("AUDIT_DELIVERY_MODE"),
        "server_time": to_utc_z(utcnow()),
    }
