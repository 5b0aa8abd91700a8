# Overview: Products, stores and customers; the master data balance holders hang off.

"""
Catalog Service

Products own one InventoryStock row (product_stock holder), customers carry
loyalty_points (loyalty_points holder), stores own StoreInventory rows
(store_stock holder). Initial quantities are never written directly: they
go through the balance protocol as "opening_stock" entries so the ledger
explains every unit from the first one.

Products, stores and customers are soft-deactivated, never deleted.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, InventoryStock, Product, Store, StoreInventory
from ..validation import ConflictError
from . import audit_service
from .balance_service import (
    Actor,
    HolderRef,
    LedgerDescriptor,
    Mutation,
    PreconditionFailed,
    mutation_boundary,
)
from .holders import PRODUCT_STOCK, STORE_STOCK


class CatalogError(Exception):
    """Raised for missing or inactive catalog records."""
    pass


# =============================================================================
# PRODUCTS
# =============================================================================

def create_product(*, patch: dict, actor: Actor, opening_stock: int = 0) -> Product:
    """
    Create a product and its stock holder in one transaction.

    patch: validated Product fields (sku, name, price_cents, barcode, is_active).
    """
    if opening_stock < 0:
        raise PreconditionFailed("Opening stock cannot be negative")

    if db.session.query(Product).filter_by(sku=patch["sku"]).first():
        raise ConflictError(f"SKU already exists: {patch['sku']}")

    with mutation_boundary(actor) as txn:
        product = txn.add(Product(**patch))
        txn.add(InventoryStock(product_id=product.id, available_stock=0))
        txn.set_reference("product", product.id)
        if opening_stock:
            txn.apply(
                Mutation(HolderRef(PRODUCT_STOCK.name, product.id), opening_stock),
                LedgerDescriptor("opening_stock", "product", product.id, "Opening stock"),
            )
        txn.audit("product.create", "product", product.id, {
            "sku": product.sku,
            "opening_stock": opening_stock,
        })

    return product


def update_product(product_id: int, patch: dict) -> Product:
    """Update descriptive fields. Stock is not a product field and cannot be patched."""
    product = get_product(product_id)
    if "sku" in patch and patch["sku"] != product.sku:
        if db.session.query(Product).filter_by(sku=patch["sku"]).first():
            raise ConflictError(f"SKU already exists: {patch['sku']}")
    for key, value in patch.items():
        setattr(product, key, value)
    db.session.commit()
    return product


def list_products(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Product], int]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Product.name.ilike(like),
            Product.sku.ilike(like),
            Product.barcode.ilike(like),
        ))
    total = query.count()
    rows = query.order_by(Product.name.asc(), Product.id.asc()).offset(offset).limit(limit).all()
    return rows, total


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise CatalogError("Product not found")
    return product


def deactivate_product(product_id: int, actor: Actor) -> Product:
    product = get_product(product_id)
    product.is_active = False
    db.session.commit()
    audit_service.log_action(actor, "product.deactivate", "product", product.id)
    return product


# =============================================================================
# STORES
# =============================================================================

def create_store(*, patch: dict) -> Store:
    if db.session.query(Store).filter_by(code=patch["code"]).first():
        raise ConflictError(f"Store code already exists: {patch['code']}")
    store = Store(**patch)
    db.session.add(store)
    db.session.commit()
    return store


def list_stores(*, include_inactive: bool = False) -> list[Store]:
    query = db.session.query(Store)
    if not include_inactive:
        query = query.filter(Store.is_active.is_(True))
    return query.order_by(Store.code.asc()).all()


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if not store:
        raise CatalogError("Store not found")
    return store


def ensure_store_stock(store_id: int, product_id: int) -> StoreInventory:
    """Create the (store, product) holder at zero if it does not exist yet. Caller commits."""
    row = db.session.get(StoreInventory, (store_id, product_id))
    if row is None:
        row = StoreInventory(store_id=store_id, product_id=product_id, available_stock=0)
        db.session.add(row)
        db.session.flush()
    return row


def seed_store_stock(store_id: int, product_id: int, quantity: int, actor: Actor) -> int:
    """
    Record stock physically present at a store (opening_stock entry).

    Returns the new store balance.
    """
    if quantity <= 0:
        raise PreconditionFailed("Quantity must be greater than 0")
    store = get_store(store_id)
    if not store.is_active:
        raise PreconditionFailed("Store is not active")
    get_product(product_id)

    ensure_store_stock(store_id, product_id)
    db.session.commit()

    with mutation_boundary(actor) as txn:
        entry = txn.apply(
            Mutation(HolderRef(STORE_STOCK.name, (store_id, product_id)), quantity),
            LedgerDescriptor("opening_stock", "store", store_id, "Opening store stock"),
        )
        txn.audit("store_stock.seed", "store", store_id, {"product_id": product_id, "quantity": quantity})
    return entry.balance_after


def store_stock(store_id: int) -> list[StoreInventory]:
    get_store(store_id)
    return (
        db.session.query(StoreInventory)
        .filter_by(store_id=store_id)
        .order_by(StoreInventory.product_id.asc())
        .all()
    )


# =============================================================================
# CUSTOMERS
# =============================================================================

def walk_in_customer_id() -> int:
    return current_app.config.get("WALK_IN_CUSTOMER_ID", 1)


def ensure_walk_in_customer() -> Customer:
    customer_id = walk_in_customer_id()
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        customer = Customer(id=customer_id, name="Walk-in Customer")
        db.session.add(customer)
        db.session.commit()
    return customer


def create_customer(*, patch: dict) -> Customer:
    customer = Customer(**patch)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, patch: dict) -> Customer:
    customer = get_customer(customer_id)
    for key, value in patch.items():
        setattr(customer, key, value)
    db.session.commit()
    return customer


def list_customers(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Customer], int]:
    query = db.session.query(Customer)
    if not include_inactive:
        query = query.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Customer.name.ilike(like),
            Customer.phone.ilike(like),
            Customer.email.ilike(like),
        ))
    total = query.with_entities(func.count(Customer.id)).scalar()
    rows = query.order_by(Customer.name.asc(), Customer.id.asc()).offset(offset).limit(limit).all()
    return rows, total


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CatalogError("Customer not found")
    return customer


def deactivate_customer(customer_id: int, actor: Actor) -> Customer:
    if customer_id == walk_in_customer_id():
        raise PreconditionFailed("The walk-in customer cannot be deactivated")
    customer = get_customer(customer_id)
    customer.is_active = False
    db.session.commit()
    audit_service.log_action(actor, "customer.deactivate", "customer", customer.id)
    return customer
