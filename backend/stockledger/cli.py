# Overview: Flask CLI command groups for bootstrap, inspection, and ledger maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Company management:
# - python -m flask companies list
# - python -m flask companies create --name "Acme Foods" [--gst-number X]
#
# Ledger inspection/repair:
# - python -m flask ledger balance 12 [--as-of 2024-03-31]
#   Net stock of a product, derived from the ledger.
# - python -m flask ledger audit --product-id 12 | --company-id 1
#   Orphans, document/entry count reconciliation and balance recomputation.
# - python -m flask ledger orphans [--company-id 1]
#   Entries whose sale/purchase/production log no longer exists.
# - python -m flask ledger reverse sale 42 --yes
#   Remove every ledger entry of one document. The only sanctioned way to
#   delete ledger rows; logged.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .exceptions import StockLedgerError
from .extensions import db
from .models import Company, Product
from .services import audit_service, inventory_service, products_service
from .time_utils import parse_iso_date


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

    This will DELETE ALL DATA, ledger included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    current_app.logger.warning("Database reset: all tables dropped and recreated")
    click.echo("PASS Database reset complete.")


@click.group('companies')
def companies_group():
    """Company management commands."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    """List all companies."""
    companies = db.session.query(Company).order_by(Company.id.asc()).all()

    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'GST':<18} {'Active':<8} {'Products'}")
    click.echo("="*70)

    for company in companies:
        product_count = db.session.query(Product).filter_by(company_id=company.id).count()
        active_str = "Yes" if company.is_active else "No"
        click.echo(f"{company.id:<5} {company.name:<30} {company.gst_number or '-':<18} {active_str:<8} {product_count}")

    click.echo("="*70 + "\n")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--gst-number', default=None, help='GST registration number')
@click.option('--address', default=None, help='Postal address')
@with_appcontext
def create_company_cli(name, gst_number, address):
    """Create a new company."""
    created = products_service.create_company(
        patch={"name": name, "gst_number": gst_number, "address": address},
    )
    click.echo(f"PASS Created company: {created['name']} (ID: {created['id']})")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection and repair commands."""


@ledger_group.command('balance')
@click.argument('product_id', type=int)
@click.option('--as-of', default=None, help='Business date YYYY-MM-DD (inclusive)')
@with_appcontext
def balance_cli(product_id, as_of):
    """Show a product's stock position."""
    try:
        as_of_date = parse_iso_date(as_of)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")

    try:
        summary = inventory_service.get_stock_summary(product_id, as_of=as_of_date)
    except StockLedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    line = (
        f"Product {product_id}: in={summary['quantity_in']:g} out={summary['quantity_out']:g} "
        f"net={summary['net']:g} {summary['primary_unit']}"
    )
    if summary["net_secondary"] is not None:
        line += f" ({summary['net_secondary']:g} {summary['secondary_unit']})"
    if summary["as_of"]:
        line += f" as of {summary['as_of']}"
    click.echo(line)


@ledger_group.command('audit')
@click.option('--product-id', type=int, default=None, help='Audit one product')
@click.option('--company-id', type=int, default=None, help='Audit every stock product of a company')
@click.option('--json', 'as_json', is_flag=True, help='Print the full report as JSON')
@with_appcontext
def audit_cli(product_id, company_id, as_json):
    """
    Read-only integrity audit. Findings are reported, never repaired.

    Exits with status 1 when anything is found.
    """
    if (product_id is None) == (company_id is None):
        raise click.UsageError("Pass exactly one of --product-id or --company-id")

    try:
        if product_id is not None:
            reports = [audit_service.audit_product(product_id)]
        else:
            reports = audit_service.audit_company(company_id)["products"]
    except StockLedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(reports, indent=2, default=str))

    findings = 0
    for r in reports:
        ok = not (r["orphans"] or r["count_mismatch"] or r["balance_diverged"])
        if not ok:
            findings += 1
        if not as_json:
            status = "PASS" if ok else "FAIL"
            click.echo(
                f"{status} Product {r['product_id']} ({r['product_name']}): "
                f"net={r['recomputed_balance']['net']:g} orphans={len(r['orphans'])} "
                f"count_mismatch={'yes' if r['count_mismatch'] else 'no'} "
                f"diverged={'yes' if r['balance_diverged'] else 'no'}"
            )

    if findings:
        raise SystemExit(1)


@ledger_group.command('orphans')
@click.option('--company-id', type=int, default=None, help='Filter by company')
@with_appcontext
def orphans_cli(company_id):
    """List ledger entries whose source document no longer exists."""
    orphans = audit_service.find_orphans(company_id=company_id)

    if not orphans:
        click.echo("PASS No orphaned ledger entries.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Entry':<8} {'Product':<9} {'Type':<13} {'Source':<12} {'Related ID'}")
    click.echo("="*70)
    for o in orphans:
        click.echo(f"{o.entry_id:<8} {o.product_id:<9} {o.transaction_type:<13} {o.source_type:<12} {o.related_id}")
    click.echo("="*70 + "\n")
    click.echo(f"WARN {len(orphans)} orphaned entries. Use 'flask ledger reverse' to remove them.")


@ledger_group.command('reverse')
@click.argument('source_type', type=click.Choice(sorted(inventory_service.REVERSIBLE_TYPES)))
@click.argument('source_id', type=int)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reverse_cli(source_type, source_id, yes):
    """
    Remove every ledger entry of one source document, as one batch.
    """
    if not yes:
        click.confirm(f"WARN This removes all ledger entries of {source_type} {source_id}. Continue?", abort=True)

    try:
        removed = inventory_service.reverse(source_type, source_id)
    except StockLedgerError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Removed {removed} ledger entries of {source_type} {source_id}.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(companies_group)
    app.cli.add_command(ledger_group)
