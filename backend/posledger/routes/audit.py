# Overview: Flask API routes for browsing the audit log.

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import audit_service
from ..validation import parse_pagination, pagination_meta
from ..decorators import require_auth, require_role

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_audit_logs_route():
    """Query params: action, entity_type, entity_id, user_id, page, limit"""
    page, limit, offset = parse_pagination(request.args)
    rows, total = audit_service.list_audit_logs(
        action=request.args.get("action"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        user_id=request.args.get("user_id", type=int),
        limit=limit,
        offset=offset,
    )
    return {
        "logs": [row.to_dict() for row in rows],
        "pagination": pagination_meta(total, page, limit),
    }
