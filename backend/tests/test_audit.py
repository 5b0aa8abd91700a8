"""Audit delivery: best-effort after commit by default, optionally transactional."""

import pytest

from posledger.extensions import db
from posledger.models import AuditLog, InventoryStock
from posledger.services import audit_service
from posledger.services.balance_service import (
    HolderRef,
    LedgerDescriptor,
    Mutation,
    PreconditionFailed,
    mutate_balance,
)
from posledger.services.holders import PRODUCT_STOCK


def _audit(product_id):
    return {"action": "stock.test", "entity_type": "product", "entity_id": product_id}


def test_audit_row_written_after_commit(actor, make_product):
    product = make_product("AU-1", stock=3)

    mutate_balance(Mutation(HolderRef(PRODUCT_STOCK.name, product.id), -1), LedgerDescriptor("sale"), actor, audit=_audit(product.id))

    row = db.session.query(AuditLog).filter_by(action="stock.test").one()
    assert row.user_id == actor.user_id
    assert row.user_name == actor.name
    assert row.entity_id == product.id


def test_audit_failure_does_not_fail_mutation(app, actor, make_product, monkeypatch, caplog):
    product = make_product("AU-2", stock=3)

    def broken_build_entry(*args, **kwargs):
        raise RuntimeError("audit store down")

    monkeypatch.setattr(audit_service, "build_entry", broken_build_entry)

    result = mutate_balance(
        Mutation(HolderRef(PRODUCT_STOCK.name, product.id), -1),
        LedgerDescriptor("sale"),
        actor,
        audit=_audit(product.id),
    )

    assert result.new_balance == 2
    db.session.expire_all()
    assert db.session.get(InventoryStock, product.id).available_stock == 2
    assert db.session.query(AuditLog).filter_by(action="stock.test").count() == 0
    assert "Audit log write failed" in caplog.text


def test_log_action_reports_failure(actor, monkeypatch):
    def broken_build_entry(*args, **kwargs):
        raise RuntimeError("nope")

    monkeypatch.setattr(audit_service, "build_entry", broken_build_entry)

    assert audit_service.log_action(actor, "x", "y") is False


def test_transactional_mode_writes_inside_transaction(app, actor, make_product):
    product = make_product("AU-3", stock=3)
    app.config["AUDIT_DELIVERY_MODE"] = "transactional"

    mutate_balance(Mutation(HolderRef(PRODUCT_STOCK.name, product.id), -1), LedgerDescriptor("sale"), actor, audit=_audit(product.id))

    assert db.session.query(AuditLog).filter_by(action="stock.test").count() == 1


def test_transactional_mode_rolls_back_with_mutation(app, actor, make_product):
    product = make_product("AU-4", stock=1)
    app.config["AUDIT_DELIVERY_MODE"] = "transactional"

    with pytest.raises(PreconditionFailed):
        mutate_balance(Mutation(HolderRef(PRODUCT_STOCK.name, product.id), -2), LedgerDescriptor("sale"), actor, audit=_audit(product.id))

    assert db.session.query(AuditLog).filter_by(action="stock.test").count() == 0


def test_audit_details_serialized(actor):
    audit_service.log_action(actor, "custom.event", "thing", 7, {"b": 2, "a": 1})

    row = db.session.query(AuditLog).filter_by(action="custom.event").one()
    assert row.details == '{"a": 1, "b": 2}'

    rows, total = audit_service.list_audit_logs(entity_type="thing")
    assert total == 1
    assert audit_service.tail(1)[0].id == row.id
