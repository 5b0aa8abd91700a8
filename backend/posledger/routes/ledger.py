# Overview: Flask API routes for reading the balance ledger and checking it against stored balances.

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services.balance_service import HolderRef, holder_history, verify_all, verify_holder
from ..services.holders import UnknownHolderType, get_holder_type
from ..validation import ValidationError, parse_pagination
from ..decorators import require_auth, require_role

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _holder_ref(holder_type: str, holder_key: str, field: str | None) -> HolderRef:
    try:
        htype = get_holder_type(holder_type)
    except UnknownHolderType:
        raise ValidationError(f"Unknown holder type: {holder_type}")
    parts = holder_key.split(":")
    if len(parts) != len(htype.key_columns) or not all(p.isdigit() for p in parts):
        raise ValidationError(f"Invalid key for {holder_type}: {holder_key}")
    if field is not None and field not in htype.fields:
        raise ValidationError(f"{holder_type} has no balance field {field}")
    key = tuple(int(p) for p in parts)
    return HolderRef(htype.name, key if len(key) > 1 else key[0], field)


@ledger_bp.get("/verify")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def verify_route():
    """
    Compare every holder's stored balance with its latest ledger entry.

    Query params: holder_type (optional)
    """
    holder_type = request.args.get("holder_type")
    if holder_type:
        try:
            get_holder_type(holder_type)
        except UnknownHolderType:
            return {"error": f"Unknown holder type: {holder_type}"}, 400

    checks = verify_all(holder_type)
    mismatches = [c.to_dict() for c in checks if not c.ok]
    return {
        "checked": len(checks),
        "mismatches": mismatches,
        "ok": not mismatches,
    }


@ledger_bp.get("/<string:holder_type>/<string:holder_key>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def holder_history_route(holder_type: str, holder_key: str):
    """
    Ledger entries for one holder field, newest first, with a check result.

    holder_key is "id" or "store_id:product_id" for store_stock.
    Query params: field (defaults to the holder's primary balance), limit
    """
    ref = _holder_ref(holder_type, holder_key, request.args.get("field"))
    _, limit, _ = parse_pagination(request.args)
    return {
        "check": verify_holder(ref).to_dict(),
        "entries": [e.to_dict() for e in holder_history(ref, limit=limit)],
    }
