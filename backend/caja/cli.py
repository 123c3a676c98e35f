# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/caja/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and seeds default settings.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tables:
# - python -m flask tables create --name "Mesa 1" --area Salon --capacity 4
# - python -m flask tables list [--all]
#
# Shifts:
# - python -m flask shifts list [--terminal caja-1] [--status OPEN]
# - python -m flask shifts summary 3
#
# Settings:
# - python -m flask settings show
# - python -m flask settings set tax_rate 8

import json

import click
from flask.cli import with_appcontext

from .errors import CajaError
from .extensions import db


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the register database.

    Creates missing tables and stores the default value of every setting
    that has never been set. Safe to run more than once.
    """
    from .services import settings_service

    click.echo("START Initializing caja...")
    db.create_all()
    click.echo("PASS Tables ready")

    added = settings_service.ensure_defaults_seeded()
    click.echo(f"PASS Seeded {added} default settings")
    click.echo("DONE Caja initialized")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to seed settings.")


# =============================================================================
# TABLES
# =============================================================================

@click.group('tables')
def tables_group():
    """Dining table bootstrap and inspection."""


@tables_group.command('create')
@click.option('--name', required=True, help='Table name, e.g. "Mesa 4"')
@click.option('--area', help='Area (Salon, Terraza, ...)')
@click.option('--capacity', type=int, default=4, help='Seats')
@with_appcontext
def create_table_cli(name, area, capacity):
    """
    Create a dining table.

    Example:
        flask tables create --name "Mesa 4" --area Terraza --capacity 6
    """
    from .services import order_service

    try:
        table = order_service.create_table(name, area=area, capacity=capacity)
    except CajaError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created table: {table.name} (ID: {table.id}, capacity {table.capacity})")


@tables_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive tables too')
@with_appcontext
def list_tables_cli(show_all):
    from .services import order_service

    tables = order_service.list_tables(include_inactive=show_all)
    if not tables:
        click.echo("No tables found")
        return

    click.echo(f"\n{'ID':<5} {'Name':<20} {'Area':<15} {'Seats':<6} {'Status':<10}")
    click.echo("-" * 60)
    for t in tables:
        click.echo(f"{t.id:<5} {t.name:<20} {(t.area or '-'):<15} {t.capacity:<6} {t.status:<10}")


# =============================================================================
# SHIFTS
# =============================================================================

@click.group('shifts')
def shifts_group():
    """Shift inspection."""


@shifts_group.command('list')
@click.option('--terminal', 'terminal_id', help='Filter by terminal')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(terminal_id, status, limit):
    """
    List recent shifts, newest first.

    Example:
        flask shifts list --status OPEN
    """
    from .services import shift_service

    shifts = shift_service.list_shifts(terminal_id=terminal_id, status=status, limit=limit)
    if not shifts:
        click.echo("No shifts found")
        return

    click.echo(f"\n{'ID':<5} {'Terminal':<12} {'Operator':<15} {'Status':<8} {'Opening':>10} {'Cash':>10} {'Diff':>8}")
    click.echo("-" * 75)
    for s in shifts:
        diff = "-" if s.difference is None else str(s.difference)
        click.echo(
            f"{s.id:<5} {s.terminal_id:<12} {s.operator_id:<15} {s.status:<8} "
            f"{s.opening_amount:>10} {s.cash_sales or 0:>10} {diff:>8}"
        )


@shifts_group.command('summary')
@click.argument('shift_id', type=int)
@with_appcontext
def shift_summary_cli(shift_id):
    """Print a shift summary as JSON."""
    from .services import shift_service

    try:
        summary = shift_service.get_shift_summary(shift_id)
    except CajaError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(json.dumps(summary, indent=2, default=str))


# =============================================================================
# SETTINGS
# =============================================================================

@click.group('settings')
def settings_group():
    """Restaurant settings (tax, tip, printers)."""


@settings_group.command('show')
@with_appcontext
def show_settings_cli():
    from .services import settings_service

    for key, value in settings_service.get_all_settings().items():
        click.echo(f"{key:<18} {json.dumps(value)}")


@settings_group.command('set')
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_setting_cli(key, value):
    """
    Set one setting. VALUE is parsed as JSON when possible.

    Example:
        flask settings set tax_rate 8
        flask settings set tax_enabled false
    """
    from .services import settings_service

    try:
        parsed = json.loads(value)
    except ValueError:
        parsed = value

    try:
        stored = settings_service.set_setting(key, parsed, updated_by="cli")
    except CajaError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS {key} = {json.dumps(stored)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tables_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(settings_group)
