# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product routes.

Stock is never written here: opening stock at creation is credited through
the balance protocol; later changes go through stock adjustments, sales,
returns and transfers.
"""
from flask import Blueprint, request

from ..models import Product
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import catalog_service
from ..services.balance_service import HolderRef, holder_history
from ..services.holders import PRODUCT_STOCK
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    json_body,
    optional_int,
    optional_bool,
    parse_pagination,
    pagination_meta,
)
from ..decorators import require_auth, require_role, current_actor

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "barcode", "name", "price_cents", "is_active"},
    required_on_create={"sku", "name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - search: matches name, sku or barcode
    - include_inactive: bool
    - page, limit
    """
    page, limit, offset = parse_pagination(request.args)
    rows, total = catalog_service.list_products(
        search=request.args.get("search"),
        include_inactive=optional_bool(request.args, "include_inactive"),
        limit=limit,
        offset=offset,
    )
    return {
        "products": [p.to_dict() for p in rows],
        "pagination": pagination_meta(total, page, limit),
    }


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    return {"product": catalog_service.get_product(product_id).to_dict()}


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product_route():
    """
    Request body: Product fields plus optional "opening_stock" (int >= 0).
    """
    payload = dict(json_body(request.get_json(silent=True)))
    opening_stock = optional_int(payload, "opening_stock", minimum=0) or 0
    payload.pop("opening_stock", None)

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    if patch.get("price_cents", 0) < 0:
        return {"error": "price_cents cannot be negative"}, 400

    product = catalog_service.create_product(patch=patch, actor=current_actor(), opening_stock=opening_stock)
    return {"product": product.to_dict()}, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_product_route(product_id: int):
    payload = json_body(request.get_json(silent=True))
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    if patch.get("price_cents") is not None and patch["price_cents"] < 0:
        return {"error": "price_cents cannot be negative"}, 400

    product = catalog_service.update_product(product_id, patch)
    return {"product": product.to_dict()}


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def deactivate_product_route(product_id: int):
    product = catalog_service.deactivate_product(product_id, current_actor())
    return {"product": product.to_dict()}


@products_bp.get("/<int:product_id>/stock-history")
@require_auth
def stock_history_route(product_id: int):
    """Ledger entries for this product's stock, newest first."""
    catalog_service.get_product(product_id)
    _, limit, _ = parse_pagination(request.args)
    entries = holder_history(HolderRef(PRODUCT_STOCK.name, product_id), limit=limit)
    return {"entries": [e.to_dict() for e in entries]}
