# Overview: Flask CLI command group for bootstrap and inspection.

# backend/laundry/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# - python -m flask laundry init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask laundry balances --owner-id <uid>
#   Print per-product sent/returned/pending for an owner.
# - python -m flask laundry tickets --owner-id <uid> [--pending-only]
#   Print return tickets (per-product, with contributing shipments).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import return_service


@click.group('laundry')
def laundry_group():
    """Laundry tracking bootstrap and inspection commands."""


@laundry_group.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables."""
    from . import models  # noqa: F401
    db.create_all()
    click.echo("Database tables created.")


@laundry_group.command('balances')
@click.option('--owner-id', required=True, help='Owner (identity provider uid).')
@with_appcontext
def balances_command(owner_id):
    """Print per-product balances for an owner."""
    balances = return_service.get_balances(owner_id)
    if not balances:
        click.echo("No shipments.")
        return
    for item in balances:
        click.echo(
            f"{item['product_name']:<30} sent={item['total_sent']:>5} "
            f"returned={item['total_returned']:>5} pending={item['pending']:>5} "
            f"last_sent={item['last_sent_at'] or '-'} last_returned={item['last_returned_at'] or '-'}"
        )


@laundry_group.command('tickets')
@click.option('--owner-id', required=True, help='Owner (identity provider uid).')
@click.option('--pending-only', is_flag=True, default=False, help='Only products with pending pieces.')
@with_appcontext
def tickets_command(owner_id, pending_only):
    """Print return tickets for an owner, oldest shipment first."""
    tickets = return_service.get_return_tickets(owner_id, pending_only=pending_only)
    if not tickets:
        click.echo("No return tickets.")
        return
    for ticket in tickets:
        click.echo(f"{ticket['product_name']} (pending {ticket['pending']} of {ticket['total_sent']})")
        for shipment in ticket['shipments']:
            click.echo(
                f"  {shipment['sent_at']}  {shipment['shipment_id']}  "
                f"sent={shipment['quantity_sent']} returned={shipment['quantity_returned']} "
                f"pending={shipment['pending']}"
            )


def register_commands(app):
    app.cli.add_command(laundry_group)
