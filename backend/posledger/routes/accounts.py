# Overview: Flask API routes for chart-of-accounts balances and postings.

from flask import Blueprint, request

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import accounting_service
from ..validation import json_body, require_int, optional_bool, parse_pagination
from ..decorators import require_auth, require_role, current_actor, idempotency_key

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_accounts_route():
    accounts = accounting_service.list_accounts(include_inactive=optional_bool(request.args, "include_inactive"))
    return {"accounts": [a.to_dict() for a in accounts]}


@accounts_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_account_route():
    """Request body: {"code": "1000", "name": "Cash", "account_type": "asset"}"""
    data = json_body(request.get_json(silent=True))
    if not all([data.get("code"), data.get("name"), data.get("account_type")]):
        return {"error": "code, name and account_type required"}, 400

    account = accounting_service.create_account(
        str(data["code"]).strip(),
        str(data["name"]).strip(),
        data["account_type"],
        current_actor(),
    )
    return {"account": account.to_dict()}, 201


@accounts_bp.get("/<int:account_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_account_route(account_id: int):
    return {"account": accounting_service.get_account(account_id).to_dict()}


@accounts_bp.post("/<int:account_id>/postings")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def post_to_account_route(account_id: int):
    """Request body: {"amount_cents": -2500, "kind"?: "posting", "note"?: "..."} (signed)"""
    data = json_body(request.get_json(silent=True))
    result = accounting_service.post_to_account(
        account_id,
        require_int(data, "amount_cents"),
        current_actor(),
        kind=data.get("kind") or "posting",
        note=data.get("note"),
        idempotency_key=idempotency_key(),
    )
    return {
        "account": accounting_service.get_account(account_id).to_dict(),
        "result": result.to_dict(),
    }, 201


@accounts_bp.get("/<int:account_id>/ledger")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def account_ledger_route(account_id: int):
    _, limit, _ = parse_pagination(request.args)
    entries = accounting_service.account_ledger(account_id, limit=limit)
    return {"entries": [e.to_dict() for e in entries]}
