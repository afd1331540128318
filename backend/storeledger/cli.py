# Overview: Flask CLI command group for schema bootstrap, drift audit and unit reference.

# backend/storeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the app factory (bash: export FLASK_APP="storeledger:create_app").
# - Use: python -m flask recon <command> [options]
#
# - python -m flask recon init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask recon audit [--invoice-id 12] [--customer-id 3] [--repair] [--json]
#   Recompute balances from source records and report drift; --repair rewrites caches.
# - python -m flask recon units
#   List registered quantity unit types.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .domain.units import UNIT_TYPES
from .services import reconciliation_service
from .validation import NotFoundError


@click.group('recon')
def recon_group():
    """Reconciliation, audit and schema commands."""


@recon_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401
    db.create_all()
    click.echo("PASS Tables created")


@recon_group.command('audit')
@click.option('--invoice-id', type=int, default=None, help='Audit a single invoice')
@click.option('--customer-id', type=int, default=None, help='Audit a single customer')
@click.option('--repair', is_flag=True, help='Rewrite drifted caches from recomputed values')
@click.option('--json', 'as_json', is_flag=True, help='Print the report as JSON')
@with_appcontext
def audit(invoice_id, customer_id, repair, as_json):
    """
    Re-derive invoice and customer balances from items, returns, payments and
    the ledger, and report anything that drifted beyond tolerance.

    Exit code is 1 when drift remains unrepaired, so the command can gate a
    deploy or a nightly job.
    """
    try:
        if invoice_id is None and customer_id is None:
            report = reconciliation_service.audit_all(repair=repair)
        else:
            report = reconciliation_service.AuditReport()
            if invoice_id is not None:
                report.merge(reconciliation_service.audit_invoice(invoice_id, repair=repair))
            if customer_id is not None:
                report.merge(reconciliation_service.audit_customer(customer_id, repair=repair))
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(2)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        click.echo(f"LIST Checked {report.invoices_checked} invoices, {report.customers_checked} customers")
        for finding in report.findings:
            status = "FIXED" if finding.repaired else ("WARN" if finding.kind == "ANOMALY" else "FAIL")
            click.echo(
                f"{status} {finding.entity_type} {finding.id}: {finding.field} "
                f"persisted={finding.persisted_value} recomputed={finding.recomputed_value} "
                f"delta={finding.delta} hint={finding.hint}"
            )
            for entry in finding.entries:
                click.echo(f"      -> {entry}")
        if report.is_clean:
            click.echo("PASS No drift found")

    unrepaired = [f for f in report.drift_findings if not f.repaired]
    if unrepaired:
        raise SystemExit(1)


@recon_group.command('units')
def list_units():
    """List registered quantity unit types."""
    for unit in UNIT_TYPES.values():
        kind = "compound" if unit.is_compound else "scalar"
        click.echo(f"{unit.code:<10} {kind:<9} {unit.label} (canonical per unit: {unit.canonical_per_unit})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(recon_group)
