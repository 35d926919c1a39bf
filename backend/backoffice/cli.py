# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: default owner/staff users and one safe per branch.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username sara --password "Password123!" --role customer_service
#
# Outbox (deferred safe postings and audit rows):
# - python -m flask outbox dispatch [--limit 100]
#   Retry pending events.
# - python -m flask outbox failed
#   List events that were given up on.
#
# Safes:
# - python -m flask safes reconcile [--safe-id 1] [--fix]
#   Compare cached balances with the ledger (and rebuild them with --fix).
#
# Idempotency keys:
# - python -m flask idempotency purge --days 7
#   Delete completed keys older than N days.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Safe, User
from .models.auth import VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError, UserError
from .services import idempotency_service, outbox_service, safe_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create default users and a safe per branch when missing.

    Users: owner, stock, clerk, all with password "Password123!".
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing back office...")

    default_password = "Password123!"
    default_users = [
        ("owner", "owner"),
        ("stock", "stock_manager"),
        ("clerk", "customer_service"),
    ]

    for username, role in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username=username, password=default_password, role=role)
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except (PasswordValidationError, UserError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    for branch in current_app.config["BRANCHES"]:
        code = f"SAFE-{branch.upper()}"
        if db.session.query(Safe).filter_by(code=code).first():
            click.echo(f"WARN  Safe '{code}' already exists, skipping...")
            continue
        db.session.add(Safe(name=f"{branch} cash", code=code))
        db.session.commit()
        click.echo(f"PASS Created safe: {code}")

    click.echo("DONE Back office initialized. Default password: Password123! (CHANGE IN PRODUCTION!)")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<20} {'Active':<8}")
    click.echo("="*70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<20} {active_str:<8}")
    click.echo("="*70 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES), default='customer_service', show_default=True)
@click.option('--first-name', default=None)
@click.option('--last-name', default=None)
@with_appcontext
def create_user_command(username, password, role, first_name, last_name):
    """Create a staff account."""
    try:
        user = create_user(
            username=username,
            password=password,
            role=role,
            first_name=first_name,
            last_name=last_name,
        )
    except (PasswordValidationError, UserError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}) with role '{user.role}'")


@click.group('outbox')
def outbox_group():
    """Deferred secondary effects (safe postings, audit rows)."""


@outbox_group.command('dispatch')
@click.option('--limit', type=int, default=100, show_default=True)
@with_appcontext
def dispatch_outbox(limit):
    """Run pending outbox events."""
    result = outbox_service.dispatch_pending(limit=limit)
    click.echo(f"PASS Dispatched {result['processed']} event(s), {result['failed']} failed")


@outbox_group.command('failed')
@click.option('--limit', type=int, default=200, show_default=True)
@with_appcontext
def list_failed_outbox(limit):
    """List events that exhausted their attempts."""
    events = outbox_service.list_events(status=outbox_service.STATUS_FAILED, limit=limit)
    if not events:
        click.echo("No failed events.")
        return
    for event in events:
        click.echo(f"{event.id:<6} {event.event_type:<12} attempts={event.attempts} {event.last_error}")


@click.group('safes')
def safes_group():
    """Safe ledger maintenance."""


@safes_group.command('reconcile')
@click.option('--safe-id', type=int, default=None, help='Only this safe')
@click.option('--fix', is_flag=True, help='Rebuild cached balances from the ledger')
@with_appcontext
def reconcile_safes(safe_id, fix):
    """
    Compare each safe's cached balance with the sum of its transactions.
    """
    safes = [safe_service.get_safe(safe_id)] if safe_id else safe_service.list_safes()
    mismatches = 0
    for safe in safes:
        usd, lyd = safe_service.ledger_balance(safe.id)
        if (usd, lyd) == (safe.balance_usd_cents, safe.balance_lyd_cents):
            click.echo(f"PASS {safe.code}: usd={usd} lyd={lyd}")
            continue
        mismatches += 1
        click.echo(
            f"FAIL {safe.code}: cached usd={safe.balance_usd_cents} lyd={safe.balance_lyd_cents}, "
            f"ledger usd={usd} lyd={lyd}"
        )
        if fix:
            safe_service.recompute_balance(safe.id)
            click.echo(f"FIXED {safe.code}")

    if mismatches and not fix:
        raise click.ClickException(f"{mismatches} safe(s) out of balance; rerun with --fix")


@click.group('idempotency')
def idempotency_group():
    """Idempotency key maintenance."""


@idempotency_group.command('purge')
@click.option('--days', type=int, default=7, show_default=True)
@with_appcontext
def purge_idempotency(days):
    """Delete completed idempotency keys older than --days."""
    deleted = idempotency_service.purge_completed(days)
    click.echo(f"PASS Purged {deleted} idempotency key(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(outbox_group)
    app.cli.add_command(safes_group)
    app.cli.add_command(idempotency_group)
