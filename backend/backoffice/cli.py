# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="backoffice:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger:
# - python -m flask ledger reconcile
#   Compare every customer's balance column with the sum of their entries.
#
# Cash:
# - python -m flask cash status [--date 2025-01-31]
#   Print the session report for a day (default today).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import ledger_service, cash_service
from .time_utils import business_today, parse_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that don't exist yet."""
    click.echo("BUILD  Creating missing tables...")
    db.create_all()
    click.echo("PASS Database ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """Drop every table and create the schema again (all data is lost)."""
    if not yes:
        click.confirm("WARN Every order, session and ledger entry will be deleted. Continue?", abort=True)

    click.echo("DELETE  Dropping tables...")
    db.drop_all()

    click.echo("BUILD  Creating tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('ledger')
def ledger_group():
    """Customer ledger inspection."""


@ledger_group.command('reconcile')
@with_appcontext
def reconcile_ledger():
    """
    Check Customer.balance_cents against the ledger entries.

    Exits with status 1 when any customer is out of step.
    """
    mismatches = ledger_service.find_balance_mismatches()
    if not mismatches:
        click.echo("PASS All customer balances match their ledger entries.")
        return

    for row in mismatches:
        click.echo(
            f"FAIL customer={row['customer_id']} ({row['name']}) "
            f"balance={row['balance_cents']} ledger={row['ledger_cents']} "
            f"diff={row['difference_cents']}"
        )
    current_app.logger.error("Ledger reconciliation found %s mismatched customers", len(mismatches))
    raise SystemExit(1)


@click.group('cash')
def cash_group():
    """Cash session inspection."""


@cash_group.command('status')
@click.option('--date', 'day', default=None, help='Business date YYYY-MM-DD (default today)')
@with_appcontext
def cash_status(day):
    """Print a day's session report."""
    try:
        business_date = parse_iso_date(day) if day else business_today()
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--date")

    report = cash_service.get_report(business_date)
    if report["session"] is None:
        click.echo(f"INFO No cash session for {report['date']}")
        return

    state = "OPEN" if report["is_open"] else "CLOSED"
    click.echo(f"{state} {report['date']}")
    click.echo(f"   opening : {report['opening_cents']}")
    click.echo(f"   income  : {report['total_income_cents']}")
    click.echo(f"   sales   : {report['total_sales_cents']}")
    click.echo(f"   expense : {report['total_expense_cents']}")
    click.echo(f"   balance : {report['balance_cents']}")
    if not report["is_open"]:
        click.echo(f"   closing : {report['closing_cents']}")
    click.echo(f"   movements: {len(report['movements'])}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(cash_group)
