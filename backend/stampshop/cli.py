# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stampshop/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: tables, default admin, built-in system user,
#   retail agent "Bán lẻ" and walk-in customer "Khách lẻ".
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system cleanup-sessions
#   Delete expired or revoked sessions older than 30 days.
#
# Users:
# - python -m flask users list
# - python -m flask users create --username staff --full-name "Nhân viên" --password "secret1" --role employee
#
# Stock:
# - python -m flask stock low
#   Print active products at or below their minimum stock.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import User
from .services.actor import SYSTEM_USERNAME, ensure_system_user
from .services.agents_service import ensure_default_agent
from .services.customers_service import ensure_default_customer
from .services.products_service import find_low_stock
from .services.session_service import cleanup_expired_sessions
from .services.users_service import create_user, ensure_default_admin
from .validation import USER_ROLES


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the shop back office.

    Creates (only what is missing):
    - All tables
    - Default admin from DEFAULT_ADMIN_USERNAME / DEFAULT_ADMIN_PASSWORD
    - Built-in inactive `system` user for server-initiated stock movements
    - Default retail agent and walk-in customer

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing stamp shop back office...")

    db.create_all()
    click.echo("PASS Tables ready")

    username = current_app.config["DEFAULT_ADMIN_USERNAME"]
    admin = ensure_default_admin(username, current_app.config["DEFAULT_ADMIN_PASSWORD"])
    if admin:
        click.echo(f"PASS Created admin user: {admin.username}")
    else:
        click.echo("PASS Admin user already exists")

    system_user = ensure_system_user()
    agent = ensure_default_agent()
    customer = ensure_default_customer()
    db.session.commit()
    click.echo(f"PASS System user: {system_user.username} (ID: {system_user.id})")
    click.echo(f"PASS Default agent: {agent.name} (ID: {agent.id})")
    click.echo(f"PASS Default customer: {customer.name} (ID: {customer.id})")

    click.echo("\n" + "="*60)
    click.echo("DONE Initialization complete")
    click.echo("="*60)
    if admin:
        click.echo(f"\nDefault credentials (CHANGE IN PRODUCTION!): {username} / DEFAULT_ADMIN_PASSWORD")
    click.echo("")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@system_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions():
    deleted = cleanup_expired_sessions()
    click.echo(f"PASS Deleted {deleted} old session(s)")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their role and active status."""
    users = db.session.query(User).filter(User.username != SYSTEM_USERNAME).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Full name':<30} {'Role':<10} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.full_name:<30} {user.role:<10} {active_str}")

    click.echo("="*90 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Login name')
@click.option('--full-name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password (6+ chars)')
@click.option('--role', type=click.Choice(USER_ROLES), default='employee', show_default=True)
@click.option('--email', default=None, help='Optional email')
@with_appcontext
def create_user_cli(username, full_name, password, role, email):
    """Create a user."""
    try:
        user = create_user(
            patch={"username": username, "full_name": full_name, "role": role, "email": email},
            password=password,
            actor=None,
        )
    except ServiceError as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('low')
@with_appcontext
def low_stock():
    """Print active products at or below their minimum stock."""
    products = find_low_stock()
    if not products:
        click.echo("No low-stock products.")
        return

    click.echo(f"{'Code':<16} {'Name':<40} {'Stock':>8} {'Min':>8}")
    for p in products:
        click.echo(f"{p.code:<16} {p.name[:40]:<40} {p.stock_quantity:>8} {p.min_stock:>8}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
