# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/orderdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--demo-users]
#   Idempotent: seeds column definitions and role permission maps, optionally demo users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --email admin@orderdesk.local --display-name Admin --role super_admin
# - python -m flask users deactivate 3
#
# Maintenance (schedule these; each is idempotent and safe to overlap):
# - python -m flask maintenance expire-pendings
#   Expire pending changes older than 7 days.
# - python -m flask maintenance purge-deleted
#   Permanently delete records soft-deleted more than 30 days ago.
# - python -m flask maintenance cleanup-sessions
# - python -m flask maintenance cleanup-login-attempts
# - python -m flask maintenance cleanup-security-events --retention-days 90

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import ValidationError
from .extensions import db
from .models import User
from .permissions import ALL_ROLES, Roles
from .services.auth_service import create_user, deactivate_user, PasswordValidationError
from .services import column_service
from .services import maintenance_service


DEMO_PASSWORD = "Password123!"

DEMO_USERS = [
    ("admin@orderdesk.local", "Admin", Roles.SUPER_ADMIN),
    ("manager@orderdesk.local", "Manager", Roles.MANAGER),
    ("senior@orderdesk.local", "Senior Sales", Roles.SR_SALES),
    ("junior@orderdesk.local", "Junior Sales", Roles.JR_SALES),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo-users', is_flag=True, help='Also create one demo user per role')
@with_appcontext
def init_system(demo_users):
    """
    Seed column definitions and role permissions (idempotent).

    With --demo-users, creates one account per role, all with password
    "Password123!". Change them immediately outside development.
    """
    click.echo("START Initializing OrderDesk...")

    created = column_service.seed_defaults()
    click.echo(f"PASS Seeded {created['columns']} column(s) and {created['roles']} role permission map(s)")

    if demo_users:
        click.echo("\nUSERS Creating demo users...")
        for email, display_name, role in DEMO_USERS:
            if db.session.query(User).filter_by(email=email).first():
                click.echo(f"WARN  User '{email}' already exists, skipping...")
                continue
            try:
                create_user(email, DEMO_PASSWORD, display_name, role, email_verified=True)
                click.echo(f"PASS Created user: {email} with role '{role}'")
            except ValidationError as e:
                click.echo(f"FAIL Failed to create user '{email}': {e.message}")

        click.echo(f"\nDemo password for all users: {DEMO_PASSWORD} (CHANGE IN PRODUCTION!)")

    click.echo("DONE OrderDesk initialized")


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
    click.echo("PASS Database reset. Run 'flask system init' to seed defaults.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address (login identity)')
@click.option('--display-name', prompt=True, help='Name shown in audit logs')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ALL_ROLES), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, display_name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(email, password, display_name, role)
        click.echo(f"PASS Created user: {user.email} with role '{user.role}' (ID: {user.id})")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValidationError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")


@users_group.command('deactivate')
@click.argument('user_id', type=int)
@with_appcontext
def deactivate_user_cli(user_id):
    """Deactivate a user and revoke all their sessions."""
    try:
        user = deactivate_user(user_id)
        click.echo(f"PASS Deactivated {user.email}; sessions revoked")
    except ValidationError as e:
        click.echo(f"FAIL {e.message}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<32} {'Name':<20} {'Role':<12} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<32} {user.display_name:<20} {user.role:<12} {active_str}")

    click.echo("="*90 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('expire-pendings')
@with_appcontext
def expire_pendings_cli():
    """Expire pending changes past their 7-day window."""
    count = maintenance_service.expire_pending_changes()
    click.echo(f"Expired {count} pending change(s).")


@maintenance_group.command('purge-deleted')
@with_appcontext
def purge_deleted_cli():
    """Permanently delete soft-deleted records past retention."""
    purged = maintenance_service.purge_expired_records()
    for collection, count in purged.items():
        click.echo(f"Purged {count} {collection} record(s).")


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired and revoked sessions older than 30 days."""
    deleted = maintenance_service.cleanup_sessions()
    click.echo(f"Deleted {deleted} session(s).")


@maintenance_group.command('cleanup-login-attempts')
@with_appcontext
def cleanup_login_attempts_cli():
    """Delete login attempts outside the rate window and ended lockouts."""
    deleted = maintenance_service.cleanup_login_attempts()
    click.echo(f"Deleted {deleted} login attempt(s).")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=None, help='Defaults to SECURITY_EVENT_RETENTION_DAYS')
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    if retention_days is None:
        retention_days = current_app.config.get("SECURITY_EVENT_RETENTION_DAYS", 90)
    deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
