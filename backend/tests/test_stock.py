"""Stock adjustments (relative and absolute correction) and store transfers."""

import pytest

from posledger.extensions import db
from posledger.models import InventoryStock, LedgerEntry, StoreInventory
from posledger.services import catalog_service, stock_adjustment_service, transfer_service
from posledger.services.balance_service import PreconditionFailed, verify_all
from posledger.validation import ValidationError


def stock_of(product_id):
    db.session.expire_all()
    return db.session.get(InventoryStock, product_id).available_stock


class TestAdjustments:
    def test_addition(self, actor, make_product):
        product = make_product("ADJ-1", stock=5)

        adj = stock_adjustment_service.create_adjustment(product.id, "addition", 3, actor, reason="Delivery")

        assert (adj.quantity_before, adj.quantity_adjusted, adj.quantity_after) == (5, 3, 8)
        assert adj.reference_number.startswith("SA-")
        assert adj.ledger_entry_id is not None
        assert stock_of(product.id) == 8

    def test_subtractive_types_reduce(self, actor, make_product):
        product = make_product("ADJ-2", stock=10)

        for adjustment_type in ("subtraction", "damage", "theft", "expired"):
            stock_adjustment_service.create_adjustment(product.id, adjustment_type, 1, actor)

        assert stock_of(product.id) == 6

    def test_subtractive_insufficient_message(self, actor, make_product):
        product = make_product("ADJ-3", stock=2)

        with pytest.raises(PreconditionFailed) as exc:
            stock_adjustment_service.create_adjustment(product.id, "damage", 5, actor)

        assert str(exc.value) == "Insufficient stock. Current: 2, Adjusting: -5"
        assert stock_of(product.id) == 2

    def test_correction_sets_absolute_value(self, actor, make_product):
        product = make_product("ADJ-4", stock=7)

        adj = stock_adjustment_service.create_adjustment(product.id, "correction", 4, actor, reason="Count")

        assert adj.quantity_before == 7
        assert adj.quantity_after == 4
        assert stock_of(product.id) == 4

    def test_correction_to_zero_allowed(self, actor, make_product):
        product = make_product("ADJ-5", stock=7)

        adj = stock_adjustment_service.create_adjustment(product.id, "correction", 0, actor)

        assert adj.quantity_after == 0
        assert stock_of(product.id) == 0

    def test_ledger_mode_follows_adjustment_type(self, actor, make_product):
        product = make_product("ADJ-9", stock=7)

        damage = stock_adjustment_service.create_adjustment(product.id, "damage", 2, actor)
        count = stock_adjustment_service.create_adjustment(product.id, "correction", 9, actor)

        damage_entry = db.session.get(LedgerEntry, damage.ledger_entry_id)
        count_entry = db.session.get(LedgerEntry, count.ledger_entry_id)
        assert (damage_entry.mode, damage_entry.delta) == ("relative", -2)
        assert (count_entry.mode, count_entry.delta) == ("absolute", 4)

    def test_zero_quantity_rejected_for_relative(self, actor, make_product):
        product = make_product("ADJ-6", stock=1)

        with pytest.raises(ValidationError):
            stock_adjustment_service.create_adjustment(product.id, "addition", 0, actor)

    def test_unknown_type_rejected(self, actor, make_product):
        product = make_product("ADJ-7", stock=1)

        with pytest.raises(ValidationError):
            stock_adjustment_service.create_adjustment(product.id, "gift", 1, actor)

    def test_list_and_stats(self, actor, make_product):
        product = make_product("ADJ-8", stock=5)
        stock_adjustment_service.create_adjustment(product.id, "addition", 2, actor, reason="Delivery")
        stock_adjustment_service.create_adjustment(product.id, "damage", 1, actor, reason="Broken")

        rows, total = stock_adjustment_service.list_adjustments(adjustment_type="damage")
        assert total == 1
        assert rows[0].reason == "Broken"

        stats = stock_adjustment_service.adjustment_stats()
        assert stats["total"] == 2


class TestTransfers:
    def _seed(self, actor, make_product, two_stores, quantity=10):
        product = make_product("TR-1")
        main, annex = two_stores
        catalog_service.seed_store_stock(main.id, product.id, quantity, actor)
        return product, main, annex

    def test_approve_moves_stock_between_stores(self, actor, make_product, two_stores):
        product, main, annex = self._seed(actor, make_product, two_stores)

        transfer = transfer_service.create_transfer(main.id, annex.id, product.id, 4, actor)
        assert transfer.status == "pending"

        transfer = transfer_service.approve_transfer(transfer.id, actor)

        assert transfer.status == "completed"
        db.session.expire_all()
        assert db.session.get(StoreInventory, (main.id, product.id)).available_stock == 6
        assert db.session.get(StoreInventory, (annex.id, product.id)).available_stock == 4
        assert all(c.ok for c in verify_all("store_stock"))

    def test_create_refuses_obvious_shortfall(self, actor, make_product, two_stores):
        product, main, annex = self._seed(actor, make_product, two_stores, quantity=2)

        with pytest.raises(PreconditionFailed) as exc:
            transfer_service.create_transfer(main.id, annex.id, product.id, 3, actor)

        assert str(exc.value) == "Insufficient stock at source. Available: 2"

    def test_same_store_rejected(self, actor, make_product, two_stores):
        product, main, _ = self._seed(actor, make_product, two_stores)

        with pytest.raises(ValidationError):
            transfer_service.create_transfer(main.id, main.id, product.id, 1, actor)

    def test_approve_rechecks_under_lock(self, actor, make_product, two_stores):
        product, main, annex = self._seed(actor, make_product, two_stores, quantity=5)
        first = transfer_service.create_transfer(main.id, annex.id, product.id, 4, actor)
        second = transfer_service.create_transfer(main.id, annex.id, product.id, 4, actor)
        transfer_service.approve_transfer(first.id, actor)

        with pytest.raises(PreconditionFailed) as exc:
            transfer_service.approve_transfer(second.id, actor)

        assert str(exc.value) == "Insufficient stock at source store"
        db.session.expire_all()
        assert transfer_service.get_transfer(second.id).status == "pending"

    def test_cannot_approve_twice_or_after_cancel(self, actor, make_product, two_stores):
        product, main, annex = self._seed(actor, make_product, two_stores)
        approved = transfer_service.create_transfer(main.id, annex.id, product.id, 1, actor)
        transfer_service.approve_transfer(approved.id, actor)
        cancelled = transfer_service.create_transfer(main.id, annex.id, product.id, 1, actor)
        transfer_service.cancel_transfer(cancelled.id, actor)

        with pytest.raises(PreconditionFailed):
            transfer_service.approve_transfer(approved.id, actor)
        with pytest.raises(PreconditionFailed):
            transfer_service.approve_transfer(cancelled.id, actor)
        with pytest.raises(PreconditionFailed):
            transfer_service.cancel_transfer(approved.id, actor)
