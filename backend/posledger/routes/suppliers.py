# Overview: Flask API routes for supplier master data.

from flask import Blueprint, request

from ..models import Supplier
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import purchasing_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    json_body,
    optional_bool,
    parse_pagination,
    pagination_meta,
)
from ..decorators import require_auth, require_role, current_actor

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact_person", "phone", "email", "address", "tax_id", "payment_terms", "is_active"},
    required_on_create={"name"},
)

suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
def list_suppliers_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = purchasing_service.list_suppliers(
        search=request.args.get("search"),
        include_inactive=optional_bool(request.args, "include_inactive"),
        limit=limit,
        offset=offset,
    )
    return {
        "suppliers": [s.to_dict() for s in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
def get_supplier_route(supplier_id: int):
    return {"supplier": purchasing_service.get_supplier(supplier_id).to_dict()}


@suppliers_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_supplier_route():
    payload = json_body(request.get_json(silent=True))
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    supplier = purchasing_service.create_supplier(patch=patch, actor=current_actor())
    return {"supplier": supplier.to_dict()}, 201


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_supplier_route(supplier_id: int):
    payload = json_body(request.get_json(silent=True))
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
    supplier = purchasing_service.update_supplier(supplier_id, patch, current_actor())
    return {"supplier": supplier.to_dict()}


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def deactivate_supplier_route(supplier_id: int):
    supplier = purchasing_service.deactivate_supplier(supplier_id, current_actor())
    return {"supplier": supplier.to_dict()}
