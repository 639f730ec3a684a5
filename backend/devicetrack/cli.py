# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/devicetrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to devicetrack (PowerShell: $env:FLASK_APP="devicetrack").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User bootstrap:
# - python -m flask users create-superadmin --name "Owner" --email owner@example.com
#   Create the first superadmin; the generated password is printed once.
#
# EMI inspection:
# - python -m flask emis overdue [--as-of 2024-05-01]
#   List active EMIs whose next due date has passed.
#
# Device inspection:
# - python -m flask devices history GAL-20240101120000-1A2B3C
#   Print a device's history, newest first (works for deleted devices).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import EmiDetail, Sale
from .services import audit_service, user_service
from .time_utils import parse_iso_date, today, to_utc_z
from .validation import DeviceTrackError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask users create-superadmin' next.")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create-superadmin')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Login email')
@with_appcontext
def create_superadmin(name, email):
    """Create a superadmin and print its one-shot password."""
    try:
        user, creds = user_service.create_superadmin(name=name, email=email)
    except DeviceTrackError as exc:
        raise click.ClickException(exc.message)

    click.echo(f"PASS Created superadmin {user.email} (ID: {user.id})")
    click.echo(f"     Password: {creds.password}")
    click.echo("     Shown once. The user must change it at first login.")


@click.group('emis')
def emis_group():
    """EMI inspection commands."""


@emis_group.command('overdue')
@click.option('--as-of', 'as_of', default=None, help='Cutoff date YYYY-MM-DD (default: today)')
@with_appcontext
def list_overdue(as_of):
    """List active EMIs whose next due date is before the cutoff."""
    try:
        cutoff = parse_iso_date(as_of) or today()
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")

    rows = (
        db.session.query(EmiDetail, Sale)
        .join(Sale, Sale.id == EmiDetail.sale_id)
        .filter(
            EmiDetail.is_active.is_(True),
            EmiDetail.installments_paid < EmiDetail.total_installments,
            EmiDetail.next_emi_date < cutoff,
        )
        .order_by(EmiDetail.next_emi_date.asc(), EmiDetail.id.asc())
        .all()
    )

    if not rows:
        click.echo(f"No overdue EMIs as of {cutoff.isoformat()}.")
        return

    click.echo(f"\nOverdue EMIs as of {cutoff.isoformat()} ({len(rows)}):\n")
    click.echo(f"{'EMI':<6} {'Invoice':<24} {'Customer':<24} {'Phone':<14} {'Due':<12} {'Paid':<8} {'Remaining':>12}")
    click.echo("-" * 106)
    for emi, sale in rows:
        click.echo(
            f"{emi.id:<6} {sale.invoice_number:<24} {sale.customer_name[:24]:<24} "
            f"{sale.customer_phone:<14} {emi.next_emi_date.isoformat():<12} "
            f"{emi.installments_paid}/{emi.total_installments:<6} {emi.remaining_amount_cents():>12}"
        )


@click.group('devices')
def devices_group():
    """Device inspection commands."""


@devices_group.command('history')
@click.argument('device_code')
@with_appcontext
def device_history(device_code):
    """Print a device's audit log, newest first."""
    entries = audit_service.device_logs_by_code(device_code)
    if not entries:
        raise click.ClickException(f"No history for device {device_code}")

    click.echo(f"\nHistory for {device_code} ({len(entries)} entries):\n")
    for entry in entries:
        performer = entry.performed_by if entry.performed_by is not None else "-"
        click.echo(f"{to_utc_z(entry.created_at)}  {entry.action:<20} by {performer:<6} {entry.description}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(emis_group)
    app.cli.add_command(devices_group)
