# Overview: Flask CLI command groups for bootstrap, ledger rebuild and inventory reconciliation.

# backend/retailops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system seed-demo
#   Create two demo outlets, a product and a batch admitted at the first outlet.
#
# Accounting:
# - python -m flask accounting rebuild [--json]
#   Regenerate the ledger from all sources and print the income statement.
#
# Inventory:
# - python -m flask inventory reconcile
#   List dispatch/unit inconsistencies for manual reconciliation (exit code 1 if any).
# - python -m flask inventory scan-admit --store-id 2
#   Read raw scanner keystrokes from stdin and admit each scanned barcode.

import json
import sys

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import OperationError
from .models import Store
from .services import accounting_service, catalog_service, transfer_service
from .services.concurrency import commit_with_retry
from .services.scanner import BarcodeScanBuffer


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('seed-demo')
@click.option('--quantity', default=5, show_default=True, help='Units in the demo batch')
@with_appcontext
def seed_demo(quantity):
    """
    Seed demo data: outlets "Main Outlet" and "Branch Outlet", one product,
    and a paid batch admitted at the main outlet.
    """
    if db.session.query(Store).count():
        click.echo("WARN  Stores already exist, skipping demo seed")
        return

    main = catalog_service.create_store("Main Outlet", code="MAIN", location="Dhaka")
    branch = catalog_service.create_store("Branch Outlet", code="BR1", location="Chattogram")
    product = catalog_service.create_product(
        "Cotton Panjabi",
        attributes={"Colour": "White", "Size": ["M", "L", "XL"]},
    )
    batch, units = catalog_service.create_batch(
        product_id=product.id,
        cost_price=800,
        selling_price=1200,
        quantity=quantity,
        store_id=main.id,
    )
    commit_with_retry()

    click.echo(f"PASS Stores: {main.name} (ID: {main.id}), {branch.name} (ID: {branch.id})")
    click.echo(f"PASS Product: {product.name} (ID: {product.id})")
    click.echo(f"PASS Batch {batch.base_code}: {len(units)} units at {main.name}")


@click.group('accounting')
def accounting_group():
    """Ledger derivation commands."""


@accounting_group.command('rebuild')
@click.option('--json', 'as_json', is_flag=True, help='Print the full report as JSON')
@with_appcontext
def rebuild_ledger(as_json):
    """Regenerate the ledger from all sources and print the income statement."""
    report = accounting_service.rebuild()
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    statement = report.income_statement.to_dict()
    click.echo(f"Journal entries: {len(report.journal_entries)}")
    click.echo(f"Skipped:         {len(report.skipped)}")
    for item in report.skipped:
        click.echo(f"  WARN {item['sourceType']} {item['sourceId']}: {item['reason']}")
    click.echo("")
    click.echo(f"Revenue:            {statement['revenue']:>14,.2f}")
    click.echo(f"Cost of goods sold: {statement['cogs']:>14,.2f}")
    click.echo(f"Gross profit:       {statement['grossProfit']:>14,.2f}")
    click.echo(f"Operating expenses: {statement['operatingExpenses']:>14,.2f}")
    click.echo(f"Net income:         {statement['netIncome']:>14,.2f}")


@click.group('inventory')
def inventory_group():
    """Inventory consistency commands."""


@inventory_group.command('reconcile')
@with_appcontext
def reconcile():
    """List dispatch/unit inconsistencies (never repairs them)."""
    issues = transfer_service.find_inconsistencies()
    if not issues:
        click.echo("PASS No inconsistencies found")
        return
    for issue in issues:
        click.echo(f"FAIL {json.dumps(issue, sort_keys=True)}")
    sys.exit(1)


@inventory_group.command('scan-admit')
@click.option('--store-id', required=True, type=int, help='Admitting store')
@with_appcontext
def scan_admit(store_id):
    """Admit every barcode scanned on stdin (keystrokes terminated by Enter)."""
    scanner = BarcodeScanBuffer(idle_timeout_ms=current_app.config.get("SCANNER_IDLE_TIMEOUT_MS", 100))
    for line in sys.stdin:
        for barcode in scanner.feed_many(line):
            try:
                record = transfer_service.admit_unit(store_id=store_id, barcode=barcode)
                commit_with_retry()
                click.echo(f"PASS {barcode} admitted (dispatch {record.id})")
            except OperationError as e:
                db.session.rollback()
                click.echo(f"FAIL {barcode}: {e.message}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(accounting_group)
    app.cli.add_command(inventory_group)
