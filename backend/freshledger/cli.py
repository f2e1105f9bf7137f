# Overview: Flask CLI command groups for schema setup, day boundaries, and expiry maintenance.

# backend/freshledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to freshledger (PowerShell: $env:FLASK_APP="freshledger").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask system create-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Day boundaries (dates are YYYY-MM-DD in BUSINESS_TIMEZONE, default today):
# - python -m flask days status [--date 2024-05-01]
# - python -m flask days end [--date 2024-05-01] [--actor admin]
# - python -m flask days start [--date 2024-05-02] [--actor admin]
#   Requires the previous day to be ended; carries forward unexpired batches.
#
# Expiry maintenance:
# - python -m flask expiry sweep
#   Write off every expired item that still holds stock.
# - python -m flask expiry mark-status
#   Flip status to expired on empty past-expiry items.
# - python -m flask expiry run-scheduler
#   Run both sweeps in the foreground on the configured intervals.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import FreshLedgerError
from .extensions import db
from .services import day_service, expiry_service


@click.group('system')
def system_group():
    """Schema setup commands."""


@system_group.command('create-db')
@with_appcontext
def create_db():
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


@click.group('days')
def days_group():
    """Trading day boundary commands."""


@days_group.command('status')
@click.option('--date', 'day', default=None, help='Calendar day (YYYY-MM-DD), default today')
@with_appcontext
def day_status_cli(day):
    """Show whether a day is open or ended."""
    try:
        status = day_service.get_day_status(day)
    except FreshLedgerError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return
    state = "ENDED" if status["is_ended"] else "OPEN"
    suffix = f" at {status['ended_at']} by {status['ended_by'] or 'system'}" if status["is_ended"] else ""
    click.echo(f"{status['date']}: {state}{suffix}")


@days_group.command('end')
@click.option('--date', 'day', default=None, help='Calendar day (YYYY-MM-DD), default today')
@click.option('--actor', default='cli', show_default=True)
@with_appcontext
def end_day_cli(day, actor):
    """End a trading day; no further intake is accepted for it."""
    try:
        status = day_service.end_day(day, actor=actor)
    except FreshLedgerError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return
    click.echo(f"PASS Day {status.date.isoformat()} ended.")


@days_group.command('start')
@click.option('--date', 'day', default=None, help='Calendar day (YYYY-MM-DD), default today')
@click.option('--actor', default='cli', show_default=True)
@with_appcontext
def start_day_cli(day, actor):
    """Start a trading day, carrying forward yesterday's unexpired batches."""
    try:
        result = day_service.start_new_day(day, actor=actor)
    except FreshLedgerError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    click.echo(f"PASS Day {result['date']} started; carried forward {result['carried_forward_count']} batches.")
    for row in result["carried_forward"]:
        click.echo(f"  - {row['stock_item_name']}: {row['quantity']} (from entry {row['carried_from_entry_id']})")


@click.group('expiry')
def expiry_group():
    """Expiry reconciliation commands."""


@expiry_group.command('sweep')
@click.option('--actor', default='cli', show_default=True)
@with_appcontext
def sweep_cli(actor):
    """Convert expired stock into waste records."""
    result = expiry_service.run_expiry_sweep(actor=actor)
    click.echo(
        f"PASS Processed {result['processed_count']} expired items "
        f"(waste cost {result['total_waste_cost']})."
    )
    for row in result["processed_items"]:
        click.echo(f"  - {row['name']}: {row['quantity']} {row['unit']} (cost {row['waste_cost']})")


@expiry_group.command('mark-status')
@with_appcontext
def mark_status_cli():
    """Mark empty past-expiry items as expired."""
    updated = expiry_service.mark_expired_status()
    click.echo(f"PASS Marked {updated} items as expired.")


@expiry_group.command('run-scheduler')
@with_appcontext
def run_scheduler_cli():
    """Run the expiry sweeps in the foreground until interrupted."""
    from apscheduler.schedulers.blocking import BlockingScheduler

    from .scheduler import ExpirySweepScheduler

    app = current_app._get_current_object()
    runner = ExpirySweepScheduler(app)
    scheduler = runner.add_jobs(BlockingScheduler())
    click.echo(
        f"START Expiry scheduler: sweep every {app.config['EXPIRY_SWEEP_INTERVAL_MINUTES']} min, "
        f"status check every {app.config['EXPIRY_STATUS_INTERVAL_MINUTES']} min. Ctrl+C to stop."
    )
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        click.echo("STOP Expiry scheduler stopped.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(days_group)
    app.cli.add_command(expiry_group)
