# Overview: Flask CLI command groups for catalog bootstrap and receivables maintenance.

# backend/ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Catalog bootstrap:
# - python -m flask catalog seed
#   Idempotent: creates the fixed catalog products that are missing.
#
# Receivables inspection/repair:
# - python -m flask receivables health
#   Read-only sweep: stored vs canonical paid amounts, orphan allocations, invalid payments.
# - python -m flask receivables repair --yes
#   Apply canonical paid amounts to every mismatched receipt.

import click
from flask.cli import with_appcontext

from .services import catalog_service, reconciliation_service
from .services.audit_service import log_audit


@click.group('catalog')
def catalog_group():
    """Product catalog bootstrap commands."""


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    """Create the fixed catalog products (skips existing names)."""
    click.echo("START Seeding product catalog...")
    created = catalog_service.seed_fixed_catalog()
    if not created:
        click.echo("PASS Catalog already complete, nothing to create")
        return
    for name in created:
        click.echo(f"PASS Created product: {name}")
    click.echo(f"DONE {len(created)} products created")


@click.group('receivables')
def receivables_group():
    """Receivables inspection and repair commands."""


@receivables_group.command('health')
@with_appcontext
def receivables_health():
    """Report receipts whose stored paid amount disagrees with their payment sources."""
    report = reconciliation_service.receivables_health()

    click.echo(f"LIST Scanned {report['receipts_scanned']} receipts")

    mismatched = report["mismatched_receipts"]
    if mismatched:
        click.echo(f"WARN {len(mismatched)} mismatched receipts:")
        for row in mismatched:
            click.echo(
                f"  #{row['id']} {row['receipt_no']}: stored {row['stored_paid']:.2f}"
                f" canonical {row['canonical_paid']:.2f} total {row['total']:.2f}"
                f" is_paid {row['stored_is_paid']} -> {row['should_be_paid']}"
            )
    else:
        click.echo("PASS No mismatched receipts")

    orphans = report["orphan_receipt_payments"]
    if orphans:
        click.echo(f"WARN {len(orphans)} orphan allocation rows:")
        for row in orphans:
            click.echo(f"  allocation {row['id']}: receipt {row['receipt_id']} payment {row['payment_id']} amount {row['amount']:.2f}")
    else:
        click.echo("PASS No orphan allocation rows")

    invalid = report["invalid_payments"]
    if invalid:
        click.echo(f"WARN {len(invalid)} invalid payments:")
        for row in invalid:
            click.echo(f"  payment {row['id']} ({row['type']}) amount {row['amount']:.2f}")
    else:
        click.echo("PASS No invalid payments")

    if report["top_outstanding"]:
        click.echo("\nLIST Top outstanding customers:")
        for row in report["top_outstanding"]:
            click.echo(f"  customer {row['customer_id']}: {row['outstanding']:.2f}")


@receivables_group.command('repair')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def receivables_repair(yes):
    """Apply canonical paid amounts to every mismatched receipt."""
    if not yes:
        click.confirm("WARN This will rewrite amount_paid/is_paid on mismatched receipts. Continue?", abort=True)

    result = reconciliation_service.repair_receivables()
    if not result["count"]:
        click.echo("PASS Nothing to repair")
        return

    for row in result["repaired"]:
        click.echo(f"PASS Receipt {row['id']}: paid {row['new_paid']:.2f} is_paid {row['is_paid']}")
    log_audit(
        action="RECEIVABLES_REPAIRED",
        entity_type="receipt",
        description=f"Repaired {result['count']} receipt balances from CLI",
        user="cli",
        metadata={"receipt_ids": [row["id"] for row in result["repaired"]]},
    )
    click.echo(f"DONE Repaired {result['count']} receipts")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(catalog_group)
    app.cli.add_command(receivables_group)
