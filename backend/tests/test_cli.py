"""Flask CLI commands (system init, users, ledger verify, audit tail)."""

from posledger.extensions import db
from posledger.models import LoyaltyConfig, User


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init", "--admin-username", "boss"])
    second = runner.invoke(args=["system", "init", "--admin-username", "boss"])

    assert first.exit_code == 0, first.output
    assert "PASS Created admin user: boss" in first.output
    assert "already exists" in second.output
    assert db.session.query(User).filter_by(username="boss").count() == 1
    assert db.session.query(LoyaltyConfig).count() == 1


def test_users_list(app, admin_user):
    result = app.test_cli_runner().invoke(args=["users", "list"])

    assert result.exit_code == 0
    assert "admin" in result.output


def test_ledger_verify_passes_and_fails(app, make_product):
    product = make_product("CLI-1", stock=4)
    runner = app.test_cli_runner()

    ok = runner.invoke(args=["ledger", "verify"])
    assert ok.exit_code == 0
    assert "balances match the ledger" in ok.output

    db.session.execute(
        db.text("UPDATE inventory SET available_stock = 1 WHERE product_id = :pid"),
        {"pid": product.id},
    )
    db.session.commit()
    db.session.expire_all()

    bad = runner.invoke(args=["ledger", "verify", "--holder-type", "product_stock"])
    assert bad.exit_code == 1
    assert f"product_stock {product.id} available_stock: stored=1 ledger=4" in bad.output


def test_ledger_verify_unknown_type(app, db_session):
    result = app.test_cli_runner().invoke(args=["ledger", "verify", "--holder-type", "bogus"])

    assert result.exit_code == 2
    assert "Unknown holder type 'bogus'" in result.output


def test_audit_tail(app, make_product):
    make_product("CLI-2", stock=1)

    result = app.test_cli_runner().invoke(args=["audit", "tail", "--limit", "5"])

    assert result.exit_code == 0
    assert "product.create" in result.output
