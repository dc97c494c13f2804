# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --email admin@shop.local --admin
#   Create a shopper or admin account.
# - python -m flask users issue-token --email admin@shop.local
#   Print a fresh bearer token for a user.
#
# Catalog / inventory:
# - python -m flask catalog receive --product-id 1 --quantity 25
#   Receive stock for a product.
# - python -m flask inventory verify
#   Check every product's stock level against its movement history.
#
# Payments:
# - python -m flask payments process-reversals --limit 50
#   Push pending gateway reversals through the gateway refund API.
# - python -m flask payments reconcile-captured --limit 100 --lookback-hours 72
#   Confirm or reverse ONLINE payments captured without a verified callback.
#
# Wallet:
# - python -m flask wallet credit --email a@b.c --amount-cents 5000 --key goodwill-42
#   Manual wallet adjustment.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StorefrontError
from .models import User
from .services import inventory_service, payment_service, reversal_service, session_service, wallet_service
from .services.referral_service import ensure_referral_code


def _user_by_email(email: str) -> User:
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if user is None:
        raise click.ClickException(f"User {email} not found")
    return user


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', 'full_name', default=None, help='Full name')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant admin access')
@with_appcontext
def create_user_cli(email, full_name, is_admin):
    """Create a user with a referral code."""
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first() is not None:
        raise click.ClickException(f"User {email} already exists")

    user = User(email=email, full_name=full_name, is_admin=is_admin, is_active=True)
    db.session.add(user)
    db.session.flush()
    code = ensure_referral_code(user)
    db.session.commit()

    role = "admin" if is_admin else "shopper"
    click.echo(f"PASS Created {role} {email} (id={user.id}, referral code {code})")


@users_group.command('issue-token')
@click.option('--email', required=True, help='Email address')
@click.option('--ttl-hours', type=int, default=None, help='Session lifetime in hours')
@with_appcontext
def issue_token_cli(email, ttl_hours):
    """Print a bearer token for the user."""
    user = _user_by_email(email)
    try:
        _, token = session_service.create_session(user.id, ttl_hours=ttl_hours)
    except ValueError as exc:
        raise click.ClickException(str(exc))
    click.echo(token)


# =============================================================================
# CATALOG / INVENTORY
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Catalog stock commands."""


@catalog_group.command('receive')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--quantity', type=int, required=True, help='Units received')
@click.option('--note', default=None, help='Free-text note')
@with_appcontext
def receive_cli(product_id, quantity, note):
    try:
        tx = inventory_service.receive_stock(product_id, quantity, note=note)
    except StorefrontError as exc:
        raise click.ClickException(exc.message)
    click.echo(
        f"PASS Received {quantity} of product {product_id} (movement {tx.id}); "
        f"available {inventory_service.get_available(product_id)}"
    )


@click.group('inventory')
def inventory_group():
    """Inventory inspection."""


@inventory_group.command('verify')
@with_appcontext
def verify_inventory_cli():
    """Exit non-zero if any product's stock disagrees with its movements."""
    mismatches = inventory_service.verify_stock_ledger()
    if not mismatches:
        click.echo("PASS Stock levels match movement history.")
        return

    click.echo(f"{'Product':<10} {'Available':<12} {'Ledger sum'}")
    for row in mismatches:
        click.echo(f"{row['product_id']:<10} {row['available']:<12} {row['ledger_sum']}")
    raise click.ClickException(f"{len(mismatches)} product(s) out of balance")


# =============================================================================
# PAYMENTS
# =============================================================================

@click.group('payments')
def payments_group():
    """Payment maintenance jobs."""


@payments_group.command('process-reversals')
@click.option('--limit', type=int, default=50, help='Max reversals to process')
@with_appcontext
def process_reversals_cli(limit):
    summary = reversal_service.process_pending_reversals(limit=limit)
    click.echo(
        f"Reversals: {summary['completed']} completed, "
        f"{summary['retrying']} retrying, {summary['failed']} failed"
    )


@payments_group.command('reconcile-captured')
@click.option('--limit', type=int, default=100, help='Max attempts to check')
@click.option('--lookback-hours', type=int, default=72, help='How far back to recheck failed attempts')
@with_appcontext
def reconcile_captured_cli(limit, lookback_hours):
    summary = payment_service.reconcile_awaiting_captures(limit=limit, lookback_hours=lookback_hours)
    click.echo(
        f"Reconciled: {summary['checked']} checked, "
        f"{summary['confirmed']} confirmed, {summary['failed']} failed"
    )


# =============================================================================
# WALLET
# =============================================================================

@click.group('wallet')
def wallet_group():
    """Wallet adjustments."""


@wallet_group.command('credit')
@click.option('--email', required=True, help='Email address')
@click.option('--amount-cents', type=int, required=True, help='Signed amount in minor units')
@click.option('--key', 'idempotency_key', required=True, help='Idempotency key for this adjustment')
@click.option('--description', default=None, help='Description shown to the user')
@with_appcontext
def wallet_credit_cli(email, amount_cents, idempotency_key, description):
    user = _user_by_email(email)
    try:
        entry = wallet_service.admin_adjust(
            user.id,
            amount_cents,
            idempotency_key=f"adjust:{idempotency_key}",
            description=description,
        )
    except StorefrontError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"PASS Entry {entry.id}; balance {wallet_service.get_balance(user.id)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(wallet_group)
