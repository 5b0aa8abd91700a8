"""Loyalty adjustments, credit sales with payments, and signed account postings."""

from datetime import timedelta

import pytest

from posledger.extensions import db
from posledger.models import CreditPayment, CreditSale
from posledger.services import accounting_service, credit_sale_service, loyalty_service, sales_service
from posledger.services.balance_service import HolderNotFound, PreconditionFailed, holder_history, verify_all
from posledger.time_utils import today
from posledger.validation import ConflictError, ValidationError


class TestLoyalty:
    def test_config_defaults_without_row(self, db_session):
        config = loyalty_service.get_config()

        assert config.id is None
        assert config.is_active is False
        assert config.amount_per_point_cents == 10000

    def test_update_config_validates(self, actor):
        with pytest.raises(PreconditionFailed):
            loyalty_service.update_config({"points_per_amount": 0}, actor)

        config = loyalty_service.update_config({"is_active": True, "min_redeem_points": 50}, actor)
        assert config.id is not None
        assert config.is_active is True
        assert config.min_redeem_points == 50

    def test_adjust_points_both_ways(self, actor, customer):
        up = loyalty_service.adjust_points(customer.id, 120, actor, description="Welcome bonus")
        down = loyalty_service.adjust_points(customer.id, -20, actor)

        assert up.new_balance == 120
        assert down.new_balance == 100
        info = loyalty_service.customer_points(customer.id)
        assert info["loyalty_points"] == 100
        assert [t["delta"] for t in info["transactions"]] == [-20, 120]

    def test_negative_adjust_cannot_go_below_zero(self, actor, customer):
        loyalty_service.adjust_points(customer.id, 10, actor)

        with pytest.raises(PreconditionFailed) as exc:
            loyalty_service.adjust_points(customer.id, -11, actor)

        assert str(exc.value) == "Insufficient points for negative adjustment"

    def test_walk_in_cannot_hold_points(self, actor):
        with pytest.raises(PreconditionFailed):
            loyalty_service.adjust_points(1, 10, actor)

    def test_leaderboard_and_stats(self, actor, customer):
        loyalty_service.adjust_points(customer.id, 40, actor)

        board = loyalty_service.leaderboard()
        stats = loyalty_service.loyalty_stats()

        assert board[0]["customer_id"] == customer.id
        assert board[0]["loyalty_points"] == 40
        assert stats["total_points_circulation"] == 40


class TestCreditSales:
    def _sale(self, actor, make_product, customer):
        product = make_product("CR-1", price_cents=10000, stock=5)
        return sales_service.create_sale(
            [{"product_id": product.id, "quantity": 1}], actor, customer_id=customer.id, payment_method="credit",
        )

    def test_create_with_initial_payment(self, actor, make_product, customer):
        sale = self._sale(actor, make_product, customer)

        credit = credit_sale_service.create_credit_sale(
            sale.id, customer.id, 10000, actor, paid_amount_cents=2500, due_date=today() + timedelta(days=30),
        )

        assert credit.balance_due_cents == 7500
        assert credit.paid_amount_cents == 2500
        assert credit.status == "partial"
        history = [(e.kind, e.delta) for e in reversed(holder_history(credit_sale_service.credit_ref(credit.id)))]
        assert history == [("charge", 10000), ("payment", -2500)]

    def test_payments_settle_balance(self, actor, make_product, customer):
        sale = self._sale(actor, make_product, customer)
        credit = credit_sale_service.create_credit_sale(sale.id, customer.id, 10000, actor)
        assert credit.status == "pending"

        credit_sale_service.record_payment(credit.id, 4000, actor)
        result = credit_sale_service.record_payment(credit.id, 6000, actor, payment_method="card")

        assert result.new_balance == 0
        db.session.expire_all()
        credit = db.session.get(CreditSale, credit.id)
        assert credit.status == "paid"
        assert credit.paid_amount_cents == 10000
        assert db.session.query(CreditPayment).filter_by(credit_sale_id=credit.id).count() == 2

    def test_overpayment_rejected(self, actor, make_product, customer):
        sale = self._sale(actor, make_product, customer)
        credit = credit_sale_service.create_credit_sale(sale.id, customer.id, 10000, actor)

        with pytest.raises(PreconditionFailed) as exc:
            credit_sale_service.record_payment(credit.id, 10001, actor)

        assert str(exc.value) == "Payment amount exceeds balance due"
        assert db.session.query(CreditPayment).count() == 0

    def test_paid_sale_rejects_payment(self, actor, make_product, customer):
        sale = self._sale(actor, make_product, customer)
        credit = credit_sale_service.create_credit_sale(sale.id, customer.id, 10000, actor, paid_amount_cents=10000)
        assert credit.status == "paid"

        with pytest.raises(PreconditionFailed) as exc:
            credit_sale_service.record_payment(credit.id, 1, actor)

        assert str(exc.value) == "Credit sale is already paid"

    def test_walk_in_and_duplicate_rejected(self, actor, make_product, customer):
        sale = self._sale(actor, make_product, customer)

        with pytest.raises(PreconditionFailed):
            credit_sale_service.create_credit_sale(sale.id, 1, 10000, actor)

        credit_sale_service.create_credit_sale(sale.id, customer.id, 10000, actor)
        with pytest.raises(PreconditionFailed) as exc:
            credit_sale_service.create_credit_sale(sale.id, customer.id, 10000, actor)
        assert str(exc.value) == "Sale already has a credit record"

    def test_customer_balance_and_stats(self, actor, make_product, customer):
        sale = self._sale(actor, make_product, customer)
        credit_sale_service.create_credit_sale(
            sale.id, customer.id, 10000, actor, paid_amount_cents=1000, due_date=today() - timedelta(days=1),
        )

        balance = credit_sale_service.customer_balance(customer.id)
        stats = credit_sale_service.credit_stats()

        assert balance["total_outstanding_cents"] == 9000
        assert balance["open_credit_sales"] == 1
        assert stats["overdue_count"] == 1
        rows, total = credit_sale_service.list_credit_sales(overdue=True)
        assert total == 1

    def test_unknown_credit_sale(self, actor):
        with pytest.raises(HolderNotFound):
            credit_sale_service.record_payment(12345, 100, actor)

    def test_zero_payment_rejected(self, actor):
        with pytest.raises(ValidationError):
            credit_sale_service.record_payment(1, 0, actor)


class TestAccounts:
    def test_postings_may_go_negative(self, actor):
        account = accounting_service.create_account("1000", "Cash on hand", "asset", actor)

        accounting_service.post_to_account(account.id, 5000, actor, note="Deposit")
        result = accounting_service.post_to_account(account.id, -8000, actor, kind="withdrawal")

        assert result.new_balance == -3000
        ledger = accounting_service.account_ledger(account.id)
        assert [e.balance_after for e in ledger] == [-3000, 5000]
        assert all(c.ok for c in verify_all("account"))

    def test_duplicate_code_conflicts(self, actor):
        accounting_service.create_account("2000", "Payables", "liability", actor)

        with pytest.raises(ConflictError):
            accounting_service.create_account("2000", "Other", "liability", actor)

    def test_invalid_type_and_zero_posting(self, actor):
        with pytest.raises(ValidationError):
            accounting_service.create_account("3000", "Odd", "mystery", actor)

        account = accounting_service.create_account("3001", "Equity", "equity", actor)
        with pytest.raises(ValidationError):
            accounting_service.post_to_account(account.id, 0, actor)

    def test_inactive_account_rejects_postings(self, actor):
        account = accounting_service.create_account("4000", "Sales", "revenue", actor)
        account.is_active = False
        db.session.commit()

        with pytest.raises(PreconditionFailed):
            accounting_service.post_to_account(account.id, 100, actor)
