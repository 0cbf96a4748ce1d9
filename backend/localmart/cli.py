# Overview: Flask CLI command groups for bootstrap and scheduled jobs.

# backend/localmart/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --name "Admin" --email admin@localmart.local --password "Password123" --role admin
#   Create a user (prompts if options are omitted). Admins can only be created here.
# - python -m flask users list
#
# Scheduled jobs (cron):
# - python -m flask jobs expire-bargains [--now 2026-01-01T00:00:00Z]
#   Every few minutes: expire overdue pending/countered bargains.
# - python -m flask jobs settle [--now 2026-01-01T00:00:00Z]
#   Daily: release held settlements past the hold window.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import MarketplaceError
from .extensions import db
from .models import User
from .models.users import VALID_ROLES
from .services.auth_service import register_user, PasswordValidationError
from . import jobs
from .time_utils import parse_iso_datetime


def _parse_now(value):
    if not value:
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter(f"Not an ISO-8601 timestamp: {value}", param_hint="--now")


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Database tables created")


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
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--phone', default=None, help='10-digit phone number')
@with_appcontext
def create_user_cli(name, email, password, role, phone):
    """
    Create a user account.

    Password must be 8+ characters with an uppercase letter, a lowercase
    letter and a digit.
    """
    try:
        user = register_user(
            name=name,
            email=email,
            password=password,
            role=role,
            phone=phone,
            allow_admin=True,
        )
        click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{user.role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
    except MarketplaceError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<8} {'Active'}")
    for user in users:
        click.echo(f"{user.id:<5} {user.email:<35} {user.role:<8} {'Yes' if user.is_active else 'No'}")


@click.group('jobs')
def jobs_group():
    """Scheduled sweeps (idempotent; safe to run more than once)."""


@jobs_group.command('expire-bargains')
@click.option('--now', 'now_value', default=None, help='Override the clock (ISO-8601, UTC)')
@with_appcontext
def expire_bargains_cli(now_value):
    """Expire every overdue pending/countered bargain."""
    expired = jobs.on_periodic_bargain_expiry_sweep(_parse_now(now_value))
    click.echo(f"PASS Expired {expired} bargain(s)")


@jobs_group.command('settle')
@click.option('--now', 'now_value', default=None, help='Override the clock (ISO-8601, UTC)')
@with_appcontext
def settle_cli(now_value):
    """Release held settlements past the hold window."""
    summary = jobs.on_daily_settlement_tick(
        _parse_now(now_value),
        current_app.extensions["payout_gateway"],
    )
    click.echo(
        f"PASS Settlement sweep: processed={summary['processed']} "
        f"transferred={summary['transferred']} failed={summary['failed']} "
        f"skipped={summary['skipped']}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(jobs_group)
