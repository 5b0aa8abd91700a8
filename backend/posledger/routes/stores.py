# Overview: Flask API routes for stores and per-store stock.

from flask import Blueprint, request

from ..models import Store
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import catalog_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    json_body,
    require_int,
    optional_bool,
)
from ..decorators import require_auth, require_role, current_actor

STORE_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "address", "is_active"},
    required_on_create={"code", "name"},
)

stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.get("")
@require_auth
def list_stores_route():
    stores = catalog_service.list_stores(include_inactive=optional_bool(request.args, "include_inactive"))
    return {"stores": [s.to_dict() for s in stores]}


@stores_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_store_route():
    payload = json_body(request.get_json(silent=True))
    patch = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=False)
    store = catalog_service.create_store(patch=patch)
    return {"store": store.to_dict()}, 201


@stores_bp.get("/<int:store_id>")
@require_auth
def get_store_route(store_id: int):
    return {"store": catalog_service.get_store(store_id).to_dict()}


@stores_bp.get("/<int:store_id>/stock")
@require_auth
def store_stock_route(store_id: int):
    catalog_service.get_store(store_id)
    return {"stock": [row.to_dict() for row in catalog_service.store_stock(store_id)]}


@stores_bp.post("/<int:store_id>/stock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def seed_store_stock_route(store_id: int):
    """
    Credit opening stock for a product at this store.

    Request body: {"product_id": int, "quantity": int >= 1}
    """
    data = json_body(request.get_json(silent=True))
    product_id = require_int(data, "product_id")
    quantity = require_int(data, "quantity", minimum=1)

    balance = catalog_service.seed_store_stock(store_id, product_id, quantity, current_actor())
    return {"store_id": store_id, "product_id": product_id, "available_stock": balance}, 201
