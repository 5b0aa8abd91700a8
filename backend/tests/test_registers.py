"""Cash register sessions: single open register, movements and close math."""

import pytest

from posledger.extensions import db
from posledger.models import CashMovement, CashRegister
from posledger.services import register_service
from posledger.services.balance_service import HolderNotFound, PreconditionFailed, verify_all
from posledger.validation import ValidationError


def test_open_register(actor):
    register = register_service.open_register(10000, actor)

    assert register.status == "open"
    assert register.opening_balance_cents == 10000
    assert register_service.get_current_register().id == register.id


def test_only_one_open_register(actor):
    register_service.open_register(0, actor)

    with pytest.raises(PreconditionFailed) as exc:
        register_service.open_register(0, actor)

    assert str(exc.value) == register_service.ALREADY_OPEN_MESSAGE
    assert db.session.query(CashRegister).count() == 1


def test_negative_opening_balance_rejected(actor):
    with pytest.raises(PreconditionFailed):
        register_service.open_register(-1, actor)


def test_cash_movements_move_totals(actor):
    register = register_service.open_register(5000, actor)

    cash_in = register_service.add_cash_movement("cash_in", 2000, "Float top-up", actor)
    cash_out = register_service.add_cash_movement("cash_out", 500, "Supplies", actor)

    assert cash_in.new_balance == 2000
    assert cash_out.new_balance == 500
    db.session.expire_all()
    register = db.session.get(CashRegister, register.id)
    assert register.current_expected_cents() == 6500
    movements = db.session.query(CashMovement).order_by(CashMovement.id).all()
    assert [m.movement_type for m in movements] == ["cash_in", "cash_out"]
    assert all(m.ledger_entry_id for m in movements)


def test_movement_validation(actor):
    register_service.open_register(0, actor)

    with pytest.raises(ValidationError):
        register_service.add_cash_movement("float", 100, "x", actor)
    with pytest.raises(ValidationError):
        register_service.add_cash_movement("cash_in", 0, "x", actor)
    with pytest.raises(ValidationError):
        register_service.add_cash_movement("cash_in", 100, " ", actor)


def test_movement_requires_open_register(actor):
    with pytest.raises(PreconditionFailed) as exc:
        register_service.add_cash_movement("cash_in", 100, "Float", actor)

    assert str(exc.value) == register_service.NO_OPEN_REGISTER_MESSAGE


def test_close_computes_difference(actor):
    register_service.open_register(10000, actor)
    register_service.add_cash_movement("cash_in", 1000, "Change", actor)
    register_service.add_cash_movement("cash_out", 2500, "Petty cash", actor)

    closed = register_service.close_register(8400, actor, close_note="Short by one")

    assert closed.status == "closed"
    assert closed.expected_balance_cents == 8500
    assert closed.difference_cents == -100
    assert closed.open_slot is None
    assert register_service.get_current_register() is None
    assert all(c.ok for c in verify_all("cash_register"))


def test_close_without_open_register(actor):
    with pytest.raises(HolderNotFound) as exc:
        register_service.close_register(0, actor)

    assert str(exc.value) == "No open register found"


def test_reopen_after_close(actor):
    first = register_service.open_register(0, actor)
    register_service.close_register(0, actor)

    second = register_service.open_register(2000, actor)

    assert second.id != first.id
    rows, total = register_service.register_history()
    assert total == 2
    assert rows[0].id == second.id


def test_summary_includes_movements(actor):
    register = register_service.open_register(0, actor)
    register_service.add_cash_movement("cash_in", 300, "Coins", actor)

    summary = register_service.register_summary(register_service.get_register(register.id))

    assert summary["current_expected_cents"] == 300
    assert len(summary["movements"]) == 1
    assert summary["sales_count"] == 0
