"""Checkout and return flows: stock, register, gift card and loyalty legs."""

import pytest

from posledger.extensions import db
from posledger.models import CashRegister, Customer, InventoryStock, LedgerEntry, Sale
from posledger.services import (
    gift_card_service,
    loyalty_service,
    register_service,
    return_service,
    sales_service,
)
from posledger.services.balance_service import PreconditionFailed, verify_all
from posledger.services.catalog_service import CatalogError
from posledger.validation import ValidationError


def stock_of(product_id):
    db.session.expire_all()
    return db.session.get(InventoryStock, product_id).available_stock


class TestCheckout:
    def test_sale_decrements_stock(self, actor, make_product):
        product = make_product("S-1", price_cents=1250, stock=5)

        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 2}], actor)

        assert sale.status == "completed"
        assert sale.total_amount_cents == 2500
        assert sale.net_amount_cents == 2500
        assert stock_of(product.id) == 3
        detail = sale.details[0]
        entry = db.session.get(LedgerEntry, detail.ledger_entry_id)
        assert (entry.kind, entry.delta, entry.reference_type, entry.reference_id) == ("sale", -2, "sale", sale.id)

    def test_repeated_lines_are_merged(self, actor, make_product):
        product = make_product("S-2", stock=5)

        sale = sales_service.create_sale([
            {"product_id": product.id, "quantity": 1},
            {"product_id": product.id, "quantity": 2},
        ], actor)

        assert len(sale.details) == 1
        assert sale.details[0].quantity == 3

    def test_insufficient_stock_names_product_and_writes_nothing(self, actor, make_product):
        ok = make_product("S-3", stock=5)
        short = make_product("S-4", stock=1)
        sales_before = db.session.query(Sale).count()

        with pytest.raises(PreconditionFailed) as exc:
            sales_service.create_sale([
                {"product_id": ok.id, "quantity": 1},
                {"product_id": short.id, "quantity": 2},
            ], actor)

        assert str(exc.value) == f"Insufficient stock for product ID {short.id}"
        assert stock_of(ok.id) == 5
        assert db.session.query(Sale).count() == sales_before

    def test_empty_cart_rejected(self, actor):
        with pytest.raises(PreconditionFailed):
            sales_service.create_sale([], actor)

    def test_unknown_product_rejected(self, actor):
        with pytest.raises(CatalogError):
            sales_service.create_sale([{"product_id": 999, "quantity": 1}], actor)

    def test_discount_cannot_exceed_total(self, actor, make_product):
        product = make_product("S-5", price_cents=500, stock=5)

        with pytest.raises(PreconditionFailed) as exc:
            sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor, discount_cents=600)

        assert str(exc.value) == "Discount cannot exceed total amount"

    def test_invalid_quantity_rejected(self, actor, make_product):
        product = make_product("S-6", stock=5)

        with pytest.raises(ValidationError):
            sales_service.create_sale([{"product_id": product.id, "quantity": 0}], actor)

    def test_cash_sale_updates_open_register(self, actor, make_product):
        product = make_product("S-7", price_cents=1000, stock=5)
        register = register_service.open_register(5000, actor)

        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 2}], actor)

        db.session.expire_all()
        register = db.session.get(CashRegister, register.id)
        assert sale.register_id == register.id
        assert register.cash_sales_total_cents == 2000
        assert register.current_expected_cents() == 7000

    def test_card_sale_leaves_register_alone(self, actor, make_product):
        product = make_product("S-8", price_cents=1000, stock=5)
        register = register_service.open_register(0, actor)

        sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor, payment_method="card")

        db.session.expire_all()
        assert db.session.get(CashRegister, register.id).cash_sales_total_cents == 0

    def test_cash_sale_without_register_still_completes(self, actor, make_product):
        product = make_product("S-9", stock=5)

        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor)

        assert sale.status == "completed"
        assert sale.register_id is None

    def test_gift_card_tender(self, actor, make_product):
        product = make_product("S-10", price_cents=4000, stock=5)
        card = gift_card_service.issue_gift_card(3000, actor)

        sale = sales_service.create_sale(
            [{"product_id": product.id, "quantity": 1}],
            actor,
            payment_method="mixed",
            gift_card_id=card.id,
            gift_card_amount_cents=3000,
        )

        assert sale.gift_card_amount_cents == 3000
        db.session.expire_all()
        card = gift_card_service.get_gift_card(card.id)
        assert card.current_balance_cents == 0
        assert card.status == "depleted"

    def test_gift_card_shortfall_rolls_back_stock(self, actor, make_product):
        product = make_product("S-11", price_cents=4000, stock=5)
        card = gift_card_service.issue_gift_card(1000, actor)

        with pytest.raises(PreconditionFailed):
            sales_service.create_sale(
                [{"product_id": product.id, "quantity": 1}],
                actor,
                gift_card_id=card.id,
                gift_card_amount_cents=2000,
            )

        assert stock_of(product.id) == 5
        db.session.expire_all()
        assert gift_card_service.get_gift_card(card.id).current_balance_cents == 1000

    def test_idempotent_sale_replays(self, actor, make_product):
        product = make_product("S-12", stock=5)
        items = [{"product_id": product.id, "quantity": 1}]

        first = sales_service.create_sale(items, actor, idempotency_key="sale-1")
        second = sales_service.create_sale(items, actor, idempotency_key="sale-1")

        assert first.id == second.id
        assert stock_of(product.id) == 4


class TestHeldSales:
    def test_hold_then_complete(self, actor, make_product):
        product = make_product("H-1", stock=5)

        held = sales_service.hold_sale([{"product_id": product.id, "quantity": 2}], actor)
        assert held.status == "pending"
        assert stock_of(product.id) == 5

        completed = sales_service.complete_sale(held.id, actor)
        assert completed.status == "completed"
        assert stock_of(product.id) == 3

        with pytest.raises(PreconditionFailed):
            sales_service.complete_sale(held.id, actor)

    def test_delete_pending_only(self, actor, make_product):
        product = make_product("H-2", stock=5)
        held = sales_service.hold_sale([{"product_id": product.id, "quantity": 1}], actor)
        done = sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor)

        sales_service.delete_pending_sale(held.id, actor)
        assert db.session.get(Sale, held.id) is None

        with pytest.raises(PreconditionFailed):
            sales_service.delete_pending_sale(done.id, actor)


class TestLoyaltyAtCheckout:
    def _activate(self, actor, **overrides):
        patch = {"is_active": True, "amount_per_point_cents": 1000, "points_per_amount": 1, "min_redeem_points": 10}
        patch.update(overrides)
        return loyalty_service.update_config(patch, actor)

    def test_customer_earns_points(self, actor, make_product, customer):
        self._activate(actor)
        product = make_product("LY-1", price_cents=2500, stock=5)

        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 2}], actor, customer_id=customer.id)

        assert sale.points_earned == 5
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).loyalty_points == 5

    def test_walk_in_never_earns(self, actor, make_product):
        self._activate(actor)
        product = make_product("LY-2", price_cents=5000, stock=5)

        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor)

        assert sale.points_earned == 0

    def test_redeem_below_minimum_rejected(self, actor, make_product, customer):
        self._activate(actor)
        loyalty_service.adjust_points(customer.id, 50, actor)
        product = make_product("LY-3", price_cents=5000, stock=5)

        with pytest.raises(PreconditionFailed) as exc:
            sales_service.create_sale(
                [{"product_id": product.id, "quantity": 1}], actor, customer_id=customer.id, redeem_points=5,
            )

        assert str(exc.value) == "Minimum 10 points required to redeem"
        assert stock_of(product.id) == 5

    def test_redeem_and_earn_on_remainder(self, actor, make_product, customer):
        self._activate(actor, point_value_cents=100)
        loyalty_service.adjust_points(customer.id, 20, actor)
        product = make_product("LY-4", price_cents=5000, stock=5)

        sale = sales_service.create_sale(
            [{"product_id": product.id, "quantity": 1}], actor, customer_id=customer.id, redeem_points=20,
        )

        # 5000 net - 2000 points value = 3000 -> 3 points earned
        assert sale.points_redeemed == 20
        assert sale.points_earned == 3
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).loyalty_points == 3


class TestReturns:
    def test_return_restocks_and_limits_quantity(self, actor, make_product):
        product = make_product("R-1", price_cents=800, stock=5)
        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 2}], actor)
        assert stock_of(product.id) == 3

        ret = return_service.create_return(
            sale.id, [{"product_id": product.id, "quantity": 1}], "Damaged box", actor,
        )

        assert ret.total_refund_cents == 800
        assert stock_of(product.id) == 4

        info = return_service.get_sale_for_return(sale.id)
        assert info["items"][0]["already_returned"] == 1
        assert info["items"][0]["max_returnable"] == 1

        with pytest.raises(PreconditionFailed) as exc:
            return_service.create_return(sale.id, [{"product_id": product.id, "quantity": 2}], "Again", actor)
        assert str(exc.value) == f"Cannot return 2 of product {product.id}. Max returnable: 1"
        assert stock_of(product.id) == 4

    def test_return_requires_reason(self, actor, make_product):
        product = make_product("R-2", stock=5)
        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 1}], actor)

        with pytest.raises(ValidationError):
            return_service.create_return(sale.id, [{"product_id": product.id, "quantity": 1}], "  ", actor)

    def test_product_not_in_sale(self, actor, make_product):
        sold = make_product("R-3", stock=5)
        other = make_product("R-4", stock=5)
        sale = sales_service.create_sale([{"product_id": sold.id, "quantity": 1}], actor)

        with pytest.raises(PreconditionFailed):
            return_service.create_return(sale.id, [{"product_id": other.id, "quantity": 1}], "Wrong item", actor)

    def test_pending_sale_not_returnable(self, actor, make_product):
        product = make_product("R-5", stock=5)
        held = sales_service.hold_sale([{"product_id": product.id, "quantity": 1}], actor)

        with pytest.raises(PreconditionFailed) as exc:
            return_service.create_return(held.id, [{"product_id": product.id, "quantity": 1}], "x", actor)
        assert str(exc.value) == "Can only return completed sales"

    def test_cash_refund_goes_to_cash_out(self, actor, make_product):
        product = make_product("R-6", price_cents=1500, stock=5)
        register = register_service.open_register(10000, actor)
        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 2}], actor)

        return_service.create_return(
            sale.id, [{"product_id": product.id, "quantity": 1}], "Changed mind", actor, refund_method="cash",
        )

        db.session.expire_all()
        register = db.session.get(CashRegister, register.id)
        assert register.cash_sales_total_cents == 3000
        assert register.total_cash_out_cents == 1500
        assert register.current_expected_cents() == 11500
        assert all(c.ok for c in verify_all())
