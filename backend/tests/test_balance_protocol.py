"""
Balance mutation protocol tests.

Covers the primitive every operation is built on: lock ordering, the two
mutation modes, the non-negative floor, rollback on failure, idempotent
replay and the ledger invariant (stored balance == newest balance_after).
"""

import pytest

from posledger.extensions import db
from posledger.models import InventoryStock, LedgerBatch, LedgerEntry
from posledger.services.balance_service import (
    ABSOLUTE,
    HolderNotFound,
    HolderRef,
    IdempotentReplay,
    LedgerDescriptor,
    LockOrderError,
    Mutation,
    PreconditionFailed,
    current_balance,
    holder_history,
    mutate_balance,
    mutation_boundary,
    verify_all,
    verify_holder,
)
from posledger.services.holders import PRODUCT_STOCK, UnknownHolderType


def stock_ref(product_id):
    return HolderRef(PRODUCT_STOCK.name, product_id)


def entry_count():
    return db.session.query(LedgerEntry).count()


class TestRelativeAndAbsolute:
    def test_relative_mutation_writes_balance_and_entry(self, actor, make_product):
        product = make_product("P-1", stock=10)

        result = mutate_balance(
            Mutation(stock_ref(product.id), -3),
            LedgerDescriptor("sale", "sale", 99),
            actor,
        )

        assert result.new_balance == 7
        assert result.replayed is False
        entry = result.entries[0]
        assert (entry.balance_before, entry.delta, entry.balance_after) == (10, -3, 7)
        assert current_balance(stock_ref(product.id)) == 7

    def test_absolute_mutation_sets_value_and_records_delta(self, actor, make_product):
        product = make_product("P-2", stock=8)

        result = mutate_balance(
            Mutation(stock_ref(product.id), 3, mode=ABSOLUTE),
            LedgerDescriptor("correction"),
            actor,
        )

        entry = result.entries[0]
        assert entry.balance_after == 3
        assert entry.delta == -5
        row = db.session.get(LedgerEntry, entry.entry_id)
        assert row.mode == "absolute"

    def test_absolute_mutation_may_set_zero(self, actor, make_product):
        product = make_product("P-3", stock=4)

        result = mutate_balance(Mutation(stock_ref(product.id), 0, mode=ABSOLUTE), LedgerDescriptor("correction"), actor)

        assert result.new_balance == 0
        assert verify_holder(stock_ref(product.id)).ok

    def test_negative_result_rejected_with_available_message(self, actor, make_product):
        product = make_product("P-4", stock=2)
        before = entry_count()

        with pytest.raises(PreconditionFailed) as exc:
            mutate_balance(Mutation(stock_ref(product.id), -3), LedgerDescriptor("sale"), actor)

        assert str(exc.value) == "Insufficient balance. Available: 2"
        assert entry_count() == before
        assert current_balance(stock_ref(product.id)) == 2

    def test_delta_must_be_int(self, actor, make_product):
        product = make_product("P-5", stock=1)

        with pytest.raises(TypeError):
            mutate_balance(Mutation(stock_ref(product.id), 1.5), LedgerDescriptor("sale"), actor)


class TestLocking:
    def test_lock_returns_rows_in_argument_order(self, actor, make_product):
        first = make_product("L-1", stock=1)
        second = make_product("L-2", stock=2)

        with mutation_boundary(actor, ledger=LedgerDescriptor("test")) as txn:
            rows = txn.lock(stock_ref(second.id), stock_ref(first.id))
            assert [r.product_id for r in rows] == [second.id, first.id]

    def test_lock_after_write_raises(self, actor, make_product):
        first = make_product("L-3", stock=5)
        second = make_product("L-4", stock=5)

        with pytest.raises(LockOrderError):
            with mutation_boundary(actor, ledger=LedgerDescriptor("test")) as txn:
                txn.apply(Mutation(stock_ref(first.id), -1))
                txn.lock(stock_ref(second.id))

        assert current_balance(stock_ref(first.id)) == 5

    def test_out_of_order_lock_raises(self, actor, make_product):
        low = make_product("L-5", stock=5)
        high = make_product("L-6", stock=5)

        with pytest.raises(LockOrderError):
            with mutation_boundary(actor, ledger=LedgerDescriptor("test")) as txn:
                txn.lock(stock_ref(high.id))
                txn.lock(stock_ref(low.id))

    def test_unlocked_holder_lookup_raises(self, actor, make_product):
        product = make_product("L-7", stock=1)

        with pytest.raises(LockOrderError):
            with mutation_boundary(actor, ledger=LedgerDescriptor("test")) as txn:
                txn.holder(stock_ref(product.id))

    def test_missing_holder_raises_not_found(self, actor):
        with pytest.raises(HolderNotFound) as exc:
            mutate_balance(Mutation(stock_ref(4242), 1), LedgerDescriptor("test"), actor)

        assert str(exc.value) == "Product stock not found"

    def test_unknown_holder_type(self, actor):
        with pytest.raises(UnknownHolderType):
            mutate_balance(Mutation(HolderRef("nope", 1), 1), LedgerDescriptor("test"), actor)


class TestAtomicity:
    def test_failure_on_second_holder_rolls_back_first(self, actor, make_product):
        plenty = make_product("A-1", stock=10)
        scarce = make_product("A-2", stock=1)
        before_entries = entry_count()
        before_batches = db.session.query(LedgerBatch).count()

        with pytest.raises(PreconditionFailed):
            mutate_balance(
                [Mutation(stock_ref(plenty.id), -2), Mutation(stock_ref(scarce.id), -2)],
                LedgerDescriptor("sale"),
                actor,
            )

        db.session.expire_all()
        assert db.session.get(InventoryStock, plenty.id).available_stock == 10
        assert db.session.get(InventoryStock, scarce.id).available_stock == 1
        assert entry_count() == before_entries
        assert db.session.query(LedgerBatch).count() == before_batches

    def test_exception_inside_boundary_rolls_back(self, actor, make_product):
        product = make_product("A-3", stock=3)

        with pytest.raises(RuntimeError):
            with mutation_boundary(actor, ledger=LedgerDescriptor("test")) as txn:
                txn.apply(Mutation(stock_ref(product.id), -1))
                raise RuntimeError("boom")

        db.session.expire_all()
        assert current_balance(stock_ref(product.id)) == 3
        assert verify_holder(stock_ref(product.id)).ok

    def test_multi_holder_batch_shares_one_batch_id(self, actor, make_product):
        a = make_product("A-4", stock=4)
        b = make_product("A-5", stock=4)

        result = mutate_balance(
            [Mutation(stock_ref(b.id), -1), Mutation(stock_ref(a.id), -1)],
            LedgerDescriptor("sale"),
            actor,
        )

        rows = db.session.query(LedgerEntry).filter_by(batch_id=result.batch_id).all()
        assert len(rows) == 2
        assert len(result.for_holder(stock_ref(a.id))) == 1


class TestIdempotency:
    def test_repeated_key_replays_without_writing(self, actor, make_product):
        product = make_product("I-1", stock=10)
        ledger = LedgerDescriptor("sale")

        first = mutate_balance(Mutation(stock_ref(product.id), -4), ledger, actor, idempotency_key="key-1")
        count = entry_count()
        second = mutate_balance(Mutation(stock_ref(product.id), -4), ledger, actor, idempotency_key="key-1")

        assert second.replayed is True
        assert second.batch_id == first.batch_id
        assert second.new_balance == 6
        assert entry_count() == count
        assert current_balance(stock_ref(product.id)) == 6

    def test_boundary_raises_replay_on_entry(self, actor, make_product):
        product = make_product("I-2", stock=2)
        mutate_balance(Mutation(stock_ref(product.id), 1), LedgerDescriptor("load"), actor, idempotency_key="key-2")

        with pytest.raises(IdempotentReplay) as exc:
            with mutation_boundary(actor, idempotency_key="key-2") as txn:
                txn.apply(Mutation(stock_ref(product.id), 1), LedgerDescriptor("load"))

        assert exc.value.result.new_balance == 3

    def test_failed_attempt_does_not_consume_key(self, actor, make_product):
        product = make_product("I-3", stock=1)

        with pytest.raises(PreconditionFailed):
            mutate_balance(Mutation(stock_ref(product.id), -5), LedgerDescriptor("sale"), actor, idempotency_key="key-3")

        result = mutate_balance(Mutation(stock_ref(product.id), -1), LedgerDescriptor("sale"), actor, idempotency_key="key-3")
        assert result.replayed is False
        assert result.new_balance == 0


class TestVerification:
    def test_history_is_newest_first(self, actor, make_product):
        product = make_product("V-1", stock=5)
        mutate_balance(Mutation(stock_ref(product.id), -1), LedgerDescriptor("sale"), actor)
        mutate_balance(Mutation(stock_ref(product.id), -1), LedgerDescriptor("sale"), actor)

        history = holder_history(stock_ref(product.id))

        assert [e.balance_after for e in history] == [3, 4, 5]
        assert history[-1].kind == "opening_stock"
        assert len(holder_history(stock_ref(product.id), limit=1)) == 1

    def test_verify_all_clean(self, actor, make_product):
        make_product("V-2", stock=5)
        make_product("V-3")

        checks = verify_all()

        assert checks
        assert all(c.ok for c in checks)

    def test_verify_detects_out_of_band_write(self, actor, make_product):
        product = make_product("V-4", stock=5)
        db.session.execute(
            db.text("UPDATE inventory SET available_stock = 99 WHERE product_id = :pid"),
            {"pid": product.id},
        )
        db.session.commit()
        db.session.expire_all()

        check = verify_holder(stock_ref(product.id))

        assert not check.ok
        assert check.balance == 99
        assert check.ledger_balance == 5
        assert check.to_dict()["ok"] is False
