# Overview: Flask CLI command group for bootstrap, demo data and period roll-forward.

# backend/rxledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# - python -m flask ledger init-db
#   Create all tables (use "flask db upgrade" when running with migrations).
# - python -m flask ledger reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask ledger seed-demo
#   Create a demo location, products, a customer, an agent and dated batches.
# - python -m flask ledger roll-forward --customer-id 1 --from 2024-03 --to 2024-04
#   Carry a customer's unsold consignment balances into a later month.

from datetime import date, timedelta

import click
from flask import current_app
from flask.cli import with_appcontext

from .config import LedgerSettings
from .errors import LedgerError
from .extensions import db
from .models import Location
from .models.catalog import PARTY_AGENT, PARTY_CUSTOMER
from .services import catalog_service, consignment_service, stock_service


@click.group('ledger')
def ledger_group():
    """Consignment / agent ledger commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@ledger_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask ledger seed-demo' for sample data.")


@ledger_group.command('seed-demo')
@click.option('--code', default='MAIN', show_default=True, help='Location code')
@with_appcontext
def seed_demo(code):
    """Idempotent demo data: one location, two products, a customer, an agent, three batches."""
    db.create_all()
    session = db.session
    settings = LedgerSettings.from_config(current_app.config)

    location = session.query(Location).filter_by(code=code.upper()).first()
    if location is not None:
        click.echo(f"SKIP Location {location.code} already exists (id={location.id}).")
        return

    location = catalog_service.create_location(session, code=code, name="Main Pharmacy")
    amoxicillin = catalog_service.create_product(session, sku="AMX-500", name="Amoxicillin 500mg", unit="capsule")
    paracetamol = catalog_service.create_product(session, sku="PCM-500", name="Paracetamol 500mg", unit="tablet")
    customer = catalog_service.create_party(
        session,
        party_type=PARTY_CUSTOMER,
        name="Santos Drugstore",
        location_id=location.id,
        area="North",
    )
    agent = catalog_service.create_party(
        session,
        party_type=PARTY_AGENT,
        name="R. Cruz",
        location_id=location.id,
        area="South",
    )

    today = date.today()
    for product, batch_no, made_days_ago, qty, cost in (
        (amoxicillin, "AMX-A1", 120, 50, 800),
        (amoxicillin, "AMX-A2", 30, 100, 820),
        (paracetamol, "PCM-P1", 60, 200, 150),
    ):
        made = today - timedelta(days=made_days_ago)
        stock_service.receive_stock(
            session,
            product_id=product.id,
            location_id=location.id,
            quantity=qty,
            unit_cost_cents=cost,
            batch_no=batch_no,
            manufactured_on=made,
            expires_on=made + timedelta(days=730),
            settings=settings,
        )

    click.echo(f"PASS Location {location.code} (id={location.id})")
    click.echo(f"PASS Customer {customer.name} (id={customer.id}), agent {agent.name} (id={agent.id})")
    click.echo(f"PASS Products {amoxicillin.sku} (id={amoxicillin.id}), {paracetamol.sku} (id={paracetamol.id})")


@ledger_group.command('roll-forward')
@click.option('--customer-id', type=int, required=True, help='Consignment customer id')
@click.option('--from', 'from_period', required=True, help='Source month, YYYY-MM')
@click.option('--to', 'to_period', required=True, help='Target month, YYYY-MM')
@click.option('--note', default=None, help='Note for the history log')
@with_appcontext
def roll_forward(customer_id, from_period, to_period, note):
    """Carry unsold balances into a later month and close the source month."""
    try:
        row = consignment_service.roll_period_forward(
            db.session,
            party_id=customer_id,
            from_period=from_period,
            to_period=to_period,
            note=note,
            settings=LedgerSettings.from_config(current_app.config),
        )
    except LedgerError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    click.echo(
        f"PASS {row.consignment_number}: previous balance {row.previous_balance_qty}, "
        f"current balance {row.current_balance_qty}"
    )
    for line in row.lines:
        click.echo(f"  product {line.product_id}: previous {line.previous_balance}, current {line.current_balance}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
