# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create every table that does not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Add demo branches, a warehouse, an online shop, users and products (idempotent).
#
# Ledger maintenance:
# - python -m flask ledger verify
#   Replay every quantity bucket from its ledger entries and report drift.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, OnlineShop, Product, User, Warehouse
from .services.ledger_service import verify_buckets


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the append-only ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


def _get_or_create(model, lookup: dict, **values):
    row = db.session.query(model).filter_by(**lookup).first()
    if row is None:
        row = model(**lookup, **values)
        db.session.add(row)
        db.session.flush()
        return row, True
    return row, False


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotently add demo placements, users and products."""
    central, _ = _get_or_create(Branch, {"code": "BR-01"}, name="Central Branch")
    north, _ = _get_or_create(Branch, {"code": "BR-02"}, name="North Branch")
    warehouse, _ = _get_or_create(Warehouse, {"code": "WH-01"}, name="Main Warehouse")
    shop, _ = _get_or_create(OnlineShop, {"code": "OS-01"}, name="Marketplace Store")

    users = [
        ("owner", "Owner", "owner", {}),
        ("central", "Central Staff", "staff", {"branch_id": central.id}),
        ("north", "North Staff", "staff", {"branch_id": north.id}),
        ("gudang", "Warehouse Staff", "staff", {"warehouse_id": warehouse.id}),
        ("online", "Online Staff", "staff", {"online_shop_id": shop.id}),
    ]
    created_users = 0
    for username, name, role, placement in users:
        _, created = _get_or_create(User, {"username": username}, name=name, role=role, **placement)
        created_users += int(created)

    products = [
        ("PH-A15", "Galaxy A15 8/256", "Samsung", True),
        ("PH-RN13", "Redmi Note 13 8/256", "Xiaomi", True),
        ("AC-CBL-C", "USB-C Cable 1m", "Generic", False),
    ]
    created_products = 0
    for sku, name, brand, tracks_serial in products:
        _, created = _get_or_create(Product, {"sku": sku}, name=name, brand=brand, tracks_serial=tracks_serial)
        created_products += int(created)

    db.session.commit()
    click.echo(f"PASS Demo data ready ({created_users} users, {created_products} products created).")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledger():
    """Replay ledger entries for every quantity bucket and report drift."""
    drift = verify_buckets()
    if not drift:
        click.echo("PASS Every quantity bucket matches its ledger.")
        return

    for row in drift:
        click.echo(
            f"FAIL bucket {row['bucket_id']} product={row['product_id']} at {row['placement']}: "
            f"quantity={row['quantity']} replayed={row['replayed']} "
            f"last_balance_after={row['last_balance_after']}"
        )
    raise click.exceptions.Exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
