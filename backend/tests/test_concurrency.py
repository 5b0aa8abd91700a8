"""
Concurrent mutations against a file-backed SQLite database.

Each worker thread pushes its own app context (own session and connection).
With BEGIN IMMEDIATE the read-check-write of one worker cannot interleave
with another's, so stock never oversells and the ledger stays consistent.
"""

import threading

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import CashRegister, InventoryStock, LedgerEntry
from posledger.models.auth import ROLE_ADMIN
from posledger.services import (
    catalog_service,
    gift_card_service,
    purchasing_service,
    register_service,
    return_service,
    sales_service,
)
from posledger.services.auth_service import create_user
from posledger.services.balance_service import Actor, PreconditionFailed, verify_all

WORKERS = 8


@pytest.fixture()
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
        'SQLITE_IMMEDIATE_TRANSACTIONS': True,
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()
        catalog_service.ensure_walk_in_customer()
        user = create_user("admin", "Admin User", "Password123!", role_name=ROLE_ADMIN)
        actor = Actor(user_id=user.id, name=user.name)
    yield app, actor
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def run_workers(app, target):
    outcomes = []
    lock = threading.Lock()
    barrier = threading.Barrier(WORKERS)

    def worker(index):
        with app.app_context():
            barrier.wait()
            try:
                target(index)
                outcome = "ok"
            except PreconditionFailed as exc:
                outcome = str(exc)
            finally:
                db.session.remove()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_concurrent_sales_never_oversell(file_app):
    app, actor = file_app
    with app.app_context():
        product = catalog_service.create_product(
            patch={"sku": "HOT-1", "name": "Hot item", "price_cents": 100}, actor=actor, opening_stock=5,
        )
        product_id = product.id

    outcomes = run_workers(
        app,
        lambda i: sales_service.create_sale([{"product_id": product_id, "quantity": 1}], actor, payment_method="card"),
    )

    assert outcomes.count("ok") == 5
    assert outcomes.count(f"Insufficient stock for product ID {product_id}") == WORKERS - 5
    with app.app_context():
        assert db.session.get(InventoryStock, product_id).available_stock == 0
        entries = db.session.query(LedgerEntry).filter_by(holder_type="product_stock", kind="sale").count()
        assert entries == 5
        assert all(c.ok for c in verify_all())


def test_concurrent_gift_card_redeems(file_app):
    app, actor = file_app
    with app.app_context():
        card_id = gift_card_service.issue_gift_card(1000, actor).id

    outcomes = run_workers(app, lambda i: gift_card_service.redeem(card_id, 300, actor))

    assert outcomes.count("ok") == 3
    with app.app_context():
        card = gift_card_service.get_gift_card(card_id)
        assert card.current_balance_cents == 100
        assert all(c.ok for c in verify_all("gift_card"))


def test_concurrent_idempotent_requests_apply_once(file_app):
    app, actor = file_app
    with app.app_context():
        card_id = gift_card_service.issue_gift_card(1000, actor).id

    outcomes = run_workers(app, lambda i: gift_card_service.load_funds(card_id, 500, actor, idempotency_key="load-once"))

    assert outcomes == ["ok"] * WORKERS
    with app.app_context():
        assert gift_card_service.get_gift_card(card_id).current_balance_cents == 1500


def test_concurrent_open_register_leaves_one_open(file_app):
    app, actor = file_app

    outcomes = run_workers(app, lambda i: register_service.open_register(1000, actor))

    assert outcomes.count("ok") == 1
    assert outcomes.count(register_service.ALREADY_OPEN_MESSAGE) == WORKERS - 1
    with app.app_context():
        assert db.session.query(CashRegister).filter_by(status="open").count() == 1


def test_concurrent_returns_never_exceed_sold_quantity(file_app):
    app, actor = file_app
    with app.app_context():
        product = catalog_service.create_product(
            patch={"sku": "RET-1", "name": "Returnable", "price_cents": 500}, actor=actor, opening_stock=5,
        )
        product_id = product.id
        sale_id = sales_service.create_sale(
            [{"product_id": product_id, "quantity": 2}], actor, payment_method="card",
        ).id

    outcomes = run_workers(
        app,
        lambda i: return_service.create_return(
            sale_id, [{"product_id": product_id, "quantity": 1}], "Changed mind", actor,
        ),
    )

    assert outcomes.count("ok") == 2
    assert outcomes.count(f"Cannot return 1 of product {product_id}. Max returnable: 0") == WORKERS - 2
    with app.app_context():
        assert db.session.get(InventoryStock, product_id).available_stock == 5
        assert all(c.ok for c in verify_all())


def test_concurrent_receipts_never_exceed_ordered_quantity(file_app):
    app, actor = file_app
    with app.app_context():
        product = catalog_service.create_product(
            patch={"sku": "PO-1", "name": "Restocked", "price_cents": 500}, actor=actor,
        )
        product_id = product.id
        supplier = purchasing_service.create_supplier(patch={"name": "Acme Wholesale"}, actor=actor)
        po = purchasing_service.create_purchase_order(
            supplier.id, [{"product_id": product_id, "quantity_ordered": 3, "unit_cost_cents": 200}], actor,
        )
        po_id, item_id = po.id, po.items[0].id

    outcomes = run_workers(
        app,
        lambda i: purchasing_service.receive_purchase_order(
            po_id, [{"item_id": item_id, "quantity_received": 1}], actor,
        ),
    )

    assert outcomes.count("ok") == 3
    with app.app_context():
        assert db.session.get(InventoryStock, product_id).available_stock == 3
        assert purchasing_service.get_purchase_order(po_id).status == "received"
        assert all(c.ok for c in verify_all())
