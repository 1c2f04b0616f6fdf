# Overview: Flask CLI command groups for bootstrap, tokens and stock checks.

# backend/pharmadist/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--tenant "Demo Pharma"]
#   Idempotent bootstrap: demo tenant, LP and SC warehouses with a location each,
#   and an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--tenant-id 1]
#   List users with role and branch city.
# - python -m flask users create --tenant-id 1 --email ana@demo.test --role BRANCH_SELLER --warehouse-id 1
#   Create a user; branch roles need a warehouse to act on a city.
# - python -m flask users issue-token --email admin@pharmadist.local [--hours 24]
#   Issue a bearer token for API calls (printed once, stored hashed).
#
# Stock:
# - python -m flask stock check-invariants [--tenant-id 1]
#   Report balances that break 0 <= reserved_quantity <= quantity. Exits 1 if any.

import sys
from datetime import timedelta

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import Location, Tenant, User, Warehouse
from .permissions import DEFAULT_ROLE_PERMISSIONS, validate_role
from .services import session_service
from .services.stock_service import find_invariant_violations

DEMO_WAREHOUSES = [
    ("LP-01", "Almacen La Paz", "LP"),
    ("SC-01", "Almacen Santa Cruz", "SC"),
]


@click.group("system")
def system_group():
    """System bootstrap commands."""


@system_group.command("init")
@click.option("--tenant", "tenant_name", default="Demo Pharma", help="Tenant name")
@click.option("--tenant-code", default="DEMO", help="Tenant code")
@with_appcontext
def init_system(tenant_name, tenant_code):
    """
    Initialize a demo tenant: warehouses, locations and an admin user.

    Safe to run repeatedly; existing rows are reused.
    """
    click.echo("START Initializing pharmadist...")
    db.create_all()

    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(name=tenant_name, code=tenant_code, is_active=True)
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    for code, name, city in DEMO_WAREHOUSES:
        warehouse = db.session.query(Warehouse).filter_by(tenant_id=tenant.id, code=code).first()
        if not warehouse:
            warehouse = Warehouse(tenant_id=tenant.id, code=code, name=name, city=city, is_active=True)
            db.session.add(warehouse)
            db.session.flush()
            click.echo(f"PASS Created warehouse {code} in {city}")
        if not db.session.query(Location).filter_by(tenant_id=tenant.id, warehouse_id=warehouse.id).first():
            db.session.add(Location(tenant_id=tenant.id, warehouse_id=warehouse.id, code="MAIN", is_active=True))
            click.echo(f"PASS Created location {code}/MAIN")
    db.session.commit()

    email = "admin@pharmadist.local"
    if db.session.query(User).filter_by(tenant_id=tenant.id, email=email).first():
        click.echo(f"WARN  User '{email}' already exists, skipping...")
    else:
        db.session.add(User(tenant_id=tenant.id, email=email, full_name="Administrator", role="ADMIN"))
        db.session.commit()
        click.echo(f"PASS Created user: {email} (ADMIN)")

    click.echo("\nDONE Run 'flask users issue-token --email admin@pharmadist.local' for an API token.")


@system_group.command("reset-db")
@click.option("--yes", is_flag=True, help="Confirm destructive reset")
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        sys.exit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group("users")
def users_group():
    """User inspection and token commands."""


@users_group.command("list")
@click.option("--tenant-id", type=int, default=None, help="Only users of this tenant")
@with_appcontext
def list_users(tenant_id):
    query = db.session.query(User)
    if tenant_id is not None:
        query = query.filter_by(tenant_id=tenant_id)
    users = query.order_by(User.tenant_id.asc(), User.id.asc()).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        city = user.warehouse.city if user.warehouse else "-"
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  tenant={user.tenant_id}  {user.email:<32} {user.role:<18} city={city}  {status}")


@users_group.command("create")
@click.option("--tenant-id", type=int, required=True)
@click.option("--email", required=True)
@click.option("--role", default="SELLER", type=click.Choice(sorted(DEFAULT_ROLE_PERMISSIONS)), show_default=True)
@click.option("--warehouse-id", type=int, default=None, help="Branch warehouse")
@click.option("--name", "full_name", default=None)
@with_appcontext
def create_user(tenant_id, email, role, warehouse_id, full_name):
    """Create a user, optionally assigned to a branch warehouse."""
    if not validate_role(role):
        click.echo(f"FAIL Unknown role {role}")
        sys.exit(1)
    role = role.upper()
    if warehouse_id is not None and not db.session.query(Warehouse).filter_by(id=warehouse_id, tenant_id=tenant_id).first():
        click.echo(f"FAIL Warehouse {warehouse_id} not found in tenant {tenant_id}")
        sys.exit(1)
    user = User(tenant_id=tenant_id, email=email, role=role, warehouse_id=warehouse_id, full_name=full_name)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role {user.role})")


@users_group.command("issue-token")
@click.option("--email", default=None, help="User email")
@click.option("--user-id", type=int, default=None, help="User id")
@click.option("--hours", type=int, default=24, show_default=True, help="Token lifetime")
@with_appcontext
def issue_token(email, user_id, hours):
    """Issue a bearer token for a user."""
    if not email and user_id is None:
        click.echo("FAIL Pass --email or --user-id")
        sys.exit(1)
    query = db.session.query(User)
    user = query.filter_by(id=user_id).first() if user_id is not None else query.filter_by(email=email).first()
    if not user or not user.is_active:
        click.echo("FAIL Active user not found")
        sys.exit(1)
    try:
        session, token = session_service.issue_token(user.id, ttl=timedelta(hours=hours))
    except DomainError as e:
        click.echo(f"FAIL {e.message}")
        sys.exit(1)
    click.echo(f"PASS Token for {user.email} (expires {session.expires_at.isoformat()}):")
    click.echo(token)


@click.group("stock")
def stock_group():
    """Stock consistency commands."""


@stock_group.command("check-invariants")
@click.option("--tenant-id", type=int, default=None)
@with_appcontext
def check_invariants(tenant_id):
    """Report balances where reserved_quantity is negative or above quantity."""
    violations = find_invariant_violations(tenant_id)
    if not violations:
        click.echo("PASS All balances satisfy 0 <= reserved <= quantity")
        return
    for balance in violations:
        click.echo(
            f"FAIL balance {balance.id} tenant={balance.tenant_id} product={balance.product_id} "
            f"location={balance.location_id} quantity={balance.quantity} reserved={balance.reserved_quantity}"
        )
    click.echo(f"{len(violations)} violation(s)")
    sys.exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
