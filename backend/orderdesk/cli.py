# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/orderdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--with-users]
#   Idempotent bootstrap: roles, permissions, editable status policies (and demo users).
# - python -m flask system init-permissions
#   Initialize permissions and assign defaults to roles.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users create --username ana --email ana@orderdesk.local --password "Password123" --role seller
#   Create a user (prompts if options are omitted).
#
# Document numbering:
# - python -m flask sequences list
#   Show every counter (prefix, year, last number).
# - python -m flask sequences sync ORDER [--year 2026]
#   Align a counter with the highest number already stored.
# - python -m flask sequences reset ORDER --yes
#   Restart a counter at 0001 (repair only).
#
# Grant expiry:
# - python -m flask scheduler run [--interval 60]
#   Run the expiry sweep forever (one dedicated process).
# - python -m flask scheduler sweep
#   Run a single sweep and print the result.
#
# Finance:
# - python -m flask finance verify [--kind order]
#   Recompute totals and report aggregates whose stored values drift.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import OrderDeskError
from .extensions import db
from .models import Role, User
from .permissions import DEFAULT_ROLES
from .scheduler import ExpiryScheduler
from .services import (
    editable_status_service,
    expiry_service,
    financial_service,
    permission_service,
    sequence_service,
)
from .services.auth_service import PasswordValidationError, create_default_roles, create_user


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


def _bootstrap() -> None:
    click.echo("LIST Creating roles...")
    create_default_roles()
    roles = db.session.query(Role).order_by(Role.name).all()
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")

    click.echo("\nSECURITY Initializing permissions...")
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nPOLICY Seeding editable status policies...")
    created = editable_status_service.seed_default_policies()
    click.echo(f"PASS Created {created} policies")


@system_group.command('init')
@click.option('--with-users', is_flag=True, help='Also create admin/manager/seller demo users')
@with_appcontext
def init_system(with_users):
    """
    Initialize roles, permissions and editable status policies.

    With --with-users, also creates admin, manager and seller accounts
    (password "Password123"). Change them immediately outside development.
    """
    click.echo("START Initializing OrderDesk...")
    _bootstrap()

    if with_users:
        click.echo("\nUSERS Creating default users...")
        for username in ("admin", "manager", "seller"):
            if db.session.query(User).filter_by(username=username).first():
                click.echo(f"WARN  User '{username}' already exists, skipping...")
                continue
            try:
                create_user(username, f"{username}@orderdesk.local", "Password123", role_name=username)
                click.echo(f"PASS Created user: {username} with role '{username}'")
            except OrderDeskError as e:
                click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    click.echo("\nDONE OrderDesk initialized")


@system_group.command('init-permissions')
@with_appcontext
def init_permissions():
    """Initialize permissions and assign defaults to roles."""
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")


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


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--full-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(sorted(DEFAULT_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, password, full_name, role):
    """
    Create a new user.

    Password must be at least 8 characters and contain a letter and a digit.
    """
    try:
        user = create_user(username, email, password, full_name=full_name, role_name=role)
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
    except OrderDeskError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("=" * 90)
    for user in users:
        roles_str = ", ".join(permission_service.get_user_role_names(user.id)) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {roles_str}")
    click.echo("=" * 90 + "\n")


# =============================================================================
# DOCUMENT SEQUENCES
# =============================================================================

@click.group('sequences')
def sequences_group():
    """Document number counters."""


@sequences_group.command('list')
@with_appcontext
def list_sequences_cli():
    sequences = sequence_service.list_sequences()
    if not sequences:
        click.echo("No sequences yet (created on first use).")
        return
    for seq in sequences:
        next_preview = sequence_service.format_number(seq.prefix, seq.year, seq.last_number + 1)
        click.echo(f"{seq.document_type:<12} {seq.prefix:<6} {seq.year:<6} last={seq.last_number:<6} next={next_preview}")


@sequences_group.command('sync')
@click.argument('document_type')
@click.option('--year', type=int, help='Year to sync (defaults to the current year)')
@with_appcontext
def sync_sequence_cli(document_type, year):
    """Set last_number to the highest number already stored for DOCUMENT_TYPE."""
    try:
        seq = sequence_service.sync_sequence(document_type, year=year)
        click.echo(f"PASS {seq.document_type} {seq.year}: last_number = {seq.last_number}")
    except OrderDeskError as e:
        click.echo(f"FAIL {e.message}")


@sequences_group.command('reset')
@click.argument('document_type')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_sequence_cli(document_type, yes):
    """Restart numbering for DOCUMENT_TYPE (repair only)."""
    if not yes:
        click.confirm(f"WARN Reissued {document_type} numbers will collide with existing ones. Continue?", abort=True)
    try:
        seq = sequence_service.reset_sequence(document_type)
        click.echo(f"PASS {seq.document_type} reset; next number is {seq.prefix}-{seq.year}-0001")
    except OrderDeskError as e:
        click.echo(f"FAIL {e.message}")


# =============================================================================
# EXPIRY SCHEDULER
# =============================================================================

@click.group('scheduler')
def scheduler_group():
    """Grant expiry sweep."""


@scheduler_group.command('run')
@click.option('--interval', type=int, help='Seconds between sweeps (default EXPIRY_SWEEP_INTERVAL_SECONDS)')
@with_appcontext
def run_scheduler_cli(interval):
    """Run the expiry sweep until interrupted."""
    scheduler = ExpiryScheduler(current_app._get_current_object(), interval_seconds=interval)
    click.echo(f"START Expiry scheduler running every {scheduler.interval_seconds}s (Ctrl+C to stop)")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        click.echo("\nSTOP Expiry scheduler stopped")


@scheduler_group.command('sweep')
@with_appcontext
def sweep_cli():
    """Run one expiry sweep."""
    results = expiry_service.run_sweep()
    for name, result in results.items():
        click.echo(f"{name:<10} {result.to_dict()}")


# =============================================================================
# FINANCE
# =============================================================================

@click.group('finance')
def finance_group():
    """Financial consistency checks."""


@finance_group.command('verify')
@click.option('--kind', type=click.Choice(sorted(financial_service.AGGREGATES)), help='Limit to one aggregate kind')
@with_appcontext
def verify_finance_cli(kind):
    """Recompute every aggregate and report stored totals that disagree."""
    report = financial_service.verify_all([kind] if kind else None)
    problems = 0
    for aggregate_kind, mismatches in report.items():
        if not mismatches:
            click.echo(f"PASS {aggregate_kind}: consistent")
            continue
        for aggregate_id, lines in mismatches.items():
            problems += 1
            click.echo(f"FAIL {aggregate_kind} {aggregate_id}:")
            for line in lines:
                click.echo(f"     - {line}")
    if problems:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(scheduler_group)
    app.cli.add_command(finance_group)
