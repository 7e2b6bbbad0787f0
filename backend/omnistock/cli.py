# Overview: Flask CLI command groups for schema setup, sequence counters and stock alerts.

# backend/omnistock/cli.py
# Commands Legend (run from the backend directory):
# - flask --app omnistock system init-db
#   Create all tables (idempotent).
# - flask --app omnistock system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Sequence counters:
# - flask --app omnistock sequences show [--domain order]
#   List counters with their last issued value.
# - flask --app omnistock sequences next order [--date 2025-06-15]
#   Issue the next document number for the date's period.
# - flask --app omnistock sequences reset order 2025-06 --value 0
#   Administrative override; the next issued value is VALUE + 1.
#
# Inventory:
# - flask --app omnistock inventory low-stock [--store-id 1]
# - flask --app omnistock inventory exhausted [--store-id 1]

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import inventory_service, number_service, sequence_service
from .services.errors import DomainError


@click.group('system')
def system_group():
    """Schema setup commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('sequences')
def sequences_group():
    """Document number counters."""


@sequences_group.command('show')
@click.option('--domain', type=click.Choice(sorted(sequence_service.VALID_DOMAINS)), default=None)
@with_appcontext
def show_sequences(domain):
    counters = sequence_service.list_counters(domain)
    if not counters:
        click.echo("No counters yet.")
        return
    for counter in counters:
        click.echo(f"{counter.domain:<10} {counter.period_key:<10} {counter.last_sequence}")


@sequences_group.command('next')
@click.argument('domain', type=click.Choice(sorted(sequence_service.VALID_DOMAINS)))
@click.option('--date', 'value', default=None, help='Business date (YYYY-MM-DD); default today UTC')
@click.option('--count', default=1, show_default=True, type=int)
@with_appcontext
def next_number(domain, value, count):
    """Issue document numbers (consumes counter values)."""
    try:
        numbers = number_service.generate_batch(domain, count, value)
    except (DomainError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    for number in numbers:
        click.echo(number)


@sequences_group.command('reset')
@click.argument('domain', type=click.Choice(sorted(sequence_service.VALID_DOMAINS)))
@click.argument('period_key')
@click.option('--value', default=0, show_default=True, type=int)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_counter(domain, period_key, value, yes):
    """Set a counter so the next issued value is VALUE + 1."""
    if not yes:
        click.confirm(
            f"WARN Resetting {domain}:{period_key} to {value} can re-issue existing numbers. Continue?",
            abort=True,
        )
    try:
        sequence_service.reset_sequence(domain, period_key, value)
    except DomainError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"PASS {domain}:{period_key} reset to {value}")


@click.group('inventory')
def inventory_group():
    """Stock level inspection."""


@inventory_group.command('low-stock')
@click.option('--store-id', type=int, default=None)
@with_appcontext
def low_stock(store_id):
    alerts = inventory_service.check_low_stock(store_id)
    if not alerts:
        click.echo("No low stock.")
        return
    for alert in alerts:
        click.echo(
            f"store={alert['store_id']} sku={alert['sku']} "
            f"quantity={alert['current_quantity']} threshold={alert['threshold']}"
        )


@inventory_group.command('exhausted')
@click.option('--store-id', type=int, default=None)
@with_appcontext
def exhausted(store_id):
    alerts = inventory_service.check_exhausted_stock(store_id)
    if not alerts:
        click.echo("Nothing exhausted.")
        return
    for alert in alerts:
        click.echo(f"store={alert['store_id']} sku={alert['sku']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(inventory_group)
