# Overview: Flask CLI command groups for bootstrap, inspection, and ledger checks.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent bootstrap: tables, admin user, walk-in customer, loyalty config.
#
# Users:
# - python -m flask users list
# - python -m flask users create --username jane --name "Jane" --password "Password123!" --role cashier
#
# Ledger:
# - python -m flask ledger verify [--holder-type gift_card]
#   Compare every stored balance with its newest ledger entry. Exit code 1 on mismatch.
#
# Audit:
# - python -m flask audit tail --limit 20

import sys

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import LoyaltyConfig, User
from .models.auth import ROLE_ADMIN, ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services import audit_service
from .services.balance_service import verify_all
from .services.catalog_service import ensure_walk_in_customer
from .services.holders import UnknownHolderType, all_holder_types, get_holder_type
from .services.loyalty_service import DEFAULT_CONFIG


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', help='Username for the first admin')
@click.option('--admin-password', default='Password123!', help='Password for the first admin')
@with_appcontext
def init_system(admin_username, admin_password):
    """
    Create tables and seed the rows every install needs.

    Creates (only when missing):
    - Admin user (default password "Password123!", change it in production)
    - Walk-in customer (id from WALK_IN_CUSTOMER_ID)
    - Loyalty config row (program inactive)
    """
    click.echo("START Initializing POS ledger...")
    db.create_all()

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        try:
            user = create_user(admin_username, "Administrator", admin_password, role_name=ROLE_ADMIN)
            click.echo(f"PASS Created admin user: {user.username}")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{admin_username}': {e}")

    customer = ensure_walk_in_customer()
    click.echo(f"PASS Walk-in customer: {customer.name} (ID: {customer.id})")

    if not db.session.query(LoyaltyConfig).first():
        db.session.add(LoyaltyConfig(**DEFAULT_CONFIG))
        db.session.commit()
        click.echo("PASS Created loyalty config (inactive)")

    click.echo("DONE POS ledger initialized")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role_name:<8} {status}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', default=None, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, name, email, password, role):
    """
    Create a user.

    Password must be 8+ chars with upper, lower, digit and special character.
    """
    try:
        user = create_user(username, name, password, role_name=role, email=email)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        sys.exit(1)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        sys.exit(1)
    click.echo(f"PASS Created user: {user.username} ({user.role_name})")


@click.group('ledger')
def ledger_group():
    """Balance ledger checks."""


@ledger_group.command('verify')
@click.option('--holder-type', default=None, help='Only check one holder type')
@with_appcontext
def verify_ledger(holder_type):
    """Every holder balance must equal balance_after of its newest ledger entry."""
    if holder_type:
        try:
            get_holder_type(holder_type)
        except UnknownHolderType:
            names = ", ".join(t.name for t in all_holder_types())
            click.echo(f"FAIL Unknown holder type '{holder_type}'. Known: {names}")
            sys.exit(2)

    checks = verify_all(holder_type)
    mismatches = [c for c in checks if not c.ok]
    for check in mismatches:
        click.echo(
            f"FAIL {check.holder_type} {check.holder_key} {check.field}: "
            f"stored={check.balance} ledger={check.ledger_balance} entries={check.entry_count}"
        )
    if mismatches:
        click.echo(f"FAIL {len(mismatches)} of {len(checks)} balances disagree with the ledger")
        sys.exit(1)
    click.echo(f"PASS {len(checks)} balances match the ledger")


@click.group('audit')
def audit_group():
    """Audit log inspection."""


@audit_group.command('tail')
@click.option('--limit', default=20, type=int, help='Number of entries')
@with_appcontext
def audit_tail(limit):
    for row in reversed(audit_service.tail(limit)):
        d = row.to_dict()
        click.echo(
            f"{d['created_at']}  {d['user_name'] or '-':<16} {d['action']:<28} "
            f"{d['entity_type']}/{d['entity_id'] if d['entity_id'] is not None else '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(audit_group)
