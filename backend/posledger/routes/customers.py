# Overview: Flask API routes for customer master data.

from flask import Blueprint, request

from ..models import Customer
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import catalog_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    json_body,
    optional_bool,
    parse_pagination,
    pagination_meta,
)
from ..decorators import require_auth, require_role, current_actor

# loyalty_points is a balance: only the loyalty service changes it.
CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "is_active"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    page, limit, offset = parse_pagination(request.args)
    rows, total = catalog_service.list_customers(
        search=request.args.get("search"),
        include_inactive=optional_bool(request.args, "include_inactive"),
        limit=limit,
        offset=offset,
    )
    return {
        "customers": [c.to_dict() for c in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    return {"customer": catalog_service.get_customer(customer_id).to_dict()}


@customers_bp.post("")
@require_auth
def create_customer_route():
    payload = json_body(request.get_json(silent=True))
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    customer = catalog_service.create_customer(patch=patch)
    return {"customer": customer.to_dict()}, 201


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    payload = json_body(request.get_json(silent=True))
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    customer = catalog_service.update_customer(customer_id, patch)
    return {"customer": customer.to_dict()}


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def deactivate_customer_route(customer_id: int):
    customer = catalog_service.deactivate_customer(customer_id, current_actor())
    return {"customer": customer.to_dict()}
