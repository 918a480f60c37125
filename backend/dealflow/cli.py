# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/dealflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username admin --full-name "Admin" --role ADMIN
#   Create a user with the role's default permissions.
# - python -m flask users permissions [--code close_deals]
#   List permission codes by category.
#
# Inventory (acting user given with --as):
# - python -m flask inventory receive --as admin --product-id 1 --quantity 10
#   Record an IN movement.
# - python -m flask inventory verify
#   Replay every product's movements and report counter mismatches.
# - python -m flask inventory low-stock
#   List active products below their minimum stock.
#
# Finance:
# - python -m flask finance close-day --as admin
#   Batch today's CLOSED deals into the daily closing.
# - python -m flask finance debts --as admin
#   Print open debts with totals.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import DealflowError
from .models import User, MOVEMENT_IN
from .permissions import (
    Actor,
    ALL_ROLES,
    PermissionCategory,
    get_permission_definition,
    get_permissions_by_category,
)
from .services import closing_service, directory_service, inventory_service, payment_service


def _actor_for(username: str) -> Actor:
    user = db.session.query(User).filter_by(username=username).first()
    if user is None or not user.is_active:
        raise click.ClickException(f"User '{username}' not found or inactive")
    return Actor.from_user(user)


def _cents(value: int) -> str:
    return f"{value / 100:.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema created")


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

    click.echo("PASS Database reset complete")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<20} {'Active':<8} {'Full name'}")
    click.echo("="*80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<20} {active_str:<8} {user.full_name}")
    click.echo("="*80 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Unique username')
@click.option('--full-name', prompt=True, help='Display name')
@click.option('--role', type=click.Choice(ALL_ROLES), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, full_name, role):
    """Create a user with the role's default permissions."""
    try:
        user = directory_service.create_user(username=username, full_name=full_name, role=role)
    except DealflowError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('permissions')
@click.option('--code', default=None, help='Show one permission only')
@with_appcontext
def list_permissions(code):
    """List every permission code grouped by category."""
    if code:
        definition = get_permission_definition(code)
        if definition is None:
            raise click.ClickException(f"Unknown permission '{code}'")
        click.echo(f"{definition['code']} ({definition['category']}): {definition['name']}")
        click.echo(f"  {definition['description']}")
        return

    for category in PermissionCategory.ALL:
        click.echo(f"\n{category}")
        for code, name, description, _ in get_permissions_by_category(category):
            click.echo(f"  {code:<22} {name:<24} {description}")
    click.echo("")


@click.group('inventory')
def inventory_group():
    """Stock movements and stock health."""


@inventory_group.command('receive')
@click.option('--as', 'username', required=True, help='Acting username')
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--note', default=None)
@with_appcontext
def receive(username, product_id, quantity, note):
    """Record an IN movement for a product."""
    actor = _actor_for(username)
    try:
        movement = inventory_service.record_movement(actor, product_id, MOVEMENT_IN, quantity, note=note)
    except DealflowError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"PASS Received {movement.quantity} of product {movement.product_id}; "
        f"stock is now {inventory_service.get_stock(movement.product_id)}"
    )


@inventory_group.command('verify')
@with_appcontext
def verify():
    """Compare every product's stock counter with its movement log."""
    mismatches = inventory_service.verify_all_stock()
    if not mismatches:
        click.echo("PASS All stock counters match their movements")
        return
    for row in mismatches:
        click.echo(f"FAIL {row['sku']}: stock={row['stock']} replayed={row['replayed']}")
    raise SystemExit(1)


@inventory_group.command('low-stock')
@with_appcontext
def low_stock():
    """List active products below their minimum stock."""
    products = inventory_service.below_min_stock()
    if not products:
        click.echo("No products below minimum stock.")
        return
    for p in products:
        click.echo(f"{p.sku:<20} {p.name:<40} stock={p.stock} min={p.min_stock}")


@click.group('finance')
def finance_group():
    """Daily closing and debt reports."""


@finance_group.command('close-day')
@click.option('--as', 'username', required=True, help='Acting username')
@with_appcontext
def close_day_cli(username):
    """Batch all CLOSED deals without a closing into today's closing."""
    actor = _actor_for(username)
    try:
        closing = closing_service.close_day(actor)
    except DealflowError as e:
        raise click.ClickException(e.message)
    if closing is None:
        click.echo("Nothing to close today.")
        return
    click.echo(
        f"PASS Closing {closing.business_date.isoformat()}: "
        f"{closing.closed_deals_count} deals, total {_cents(closing.total_amount_cents)}"
    )


@finance_group.command('debts')
@click.option('--as', 'username', required=True, help='Acting username')
@with_appcontext
def debts_cli(username):
    """Print open debts with totals."""
    actor = _actor_for(username)
    try:
        overview = payment_service.debts_overview(actor)
    except DealflowError as e:
        raise click.ClickException(e.message)
    for deal in overview["deals"]:
        click.echo(
            f"{deal['id']:<6} {deal['title'][:40]:<40} "
            f"amount={_cents(deal['amount_cents'])} debt={_cents(deal['debt_cents'])}"
        )
    totals = overview["totals"]
    click.echo(f"\n{totals['count']} open deals, total debt {_cents(totals['debt_cents'])}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(finance_group)
