# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/vms/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Prefer `flask db upgrade` once migrations are in use.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role SECURITY_GUARD]
#   List users with role and active status.
# - python -m flask users create --email guard@vms.local --first-name Gate --last-name Guard --role SECURITY_GUARD
#   Create a user (prompts if options are omitted).
#
# Visitor blacklist:
# - python -m flask visitors blacklist <visitor_id> --actor-id <admin user id> --reason "..."
#   Blacklist a visitor and cancel their pending/future visits.
# - python -m flask visitors unblacklist <visitor_id> --actor-id <admin user id>
#   Remove a visitor from the blacklist.
#
# Pass codec:
# - python -m flask passes verify '<token>'
#   Verify a scanned pass token against PASS_QR_SECRET and print its claims.
# - python -m flask passes new-number
#   Print a freshly generated pass number (format check only, nothing is stored).

import click
from flask import current_app
from flask.cli import with_appcontext

from .constants import VALID_ROLES, ROLE_HOST_EMPLOYEE
from .errors import VisitError
from .extensions import db
from .models import User
from .services import pass_codec, visit_intake_service
from .services.visit_state_machine import Actor, PassSettings
from .services.visit_store import VisitStore


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables ensured.")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--first-name', prompt=True, help='First name')
@click.option('--last-name', prompt=True, help='Last name')
@click.option('--department', default=None, help='Department')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), default=ROLE_HOST_EMPLOYEE, show_default=True, help='Role')
@with_appcontext
def create_user_cli(email, first_name, last_name, department, role):
    """Create a user that can host visits or act on them."""
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User with email {email} already exists")
        return

    try:
        user = User(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            department=department,
            role=role,
        )
        db.session.add(user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        click.echo(f"FAIL Error creating user: {e}")
        return

    click.echo(f"PASS Created user: {user.email} (ID: {user.id}, Role: {user.role})")


@users_group.command('list')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)

    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.email).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<38} {'Email':<30} {'Name':<24} {'Active':<8} {'Role'}")
    click.echo("="*110)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<38} {user.email:<30} {user.full_name:<24} {active_str:<8} {user.role}")

    click.echo("="*110 + "\n")


@click.group('visitors')
def visitors_group():
    """Visitor blacklist commands."""


def _cli_actor(actor_id: str) -> Actor:
    user = VisitStore().load_user(actor_id)
    return Actor(actor_id=user.id, role=user.role)


@visitors_group.command('blacklist')
@click.argument('visitor_id')
@click.option('--actor-id', required=True, help='User ID performing the action (ADMIN or SECURITY_MANAGER)')
@click.option('--reason', default=None, help='Reason recorded on the visitor')
@with_appcontext
def blacklist_visitor_cli(visitor_id, actor_id, reason):
    """Blacklist a visitor and cancel their pending/future visits."""
    try:
        result = visit_intake_service.blacklist_visitor(visitor_id, _cli_actor(actor_id), reason)
    except VisitError as e:
        click.echo(f"FAIL {e.kind}: {e.message}")
        return

    click.echo(f"PASS Blacklisted {result.visitor.email}; cancelled {result.cancelled_visits} visit(s)")


@visitors_group.command('unblacklist')
@click.argument('visitor_id')
@click.option('--actor-id', required=True, help='User ID performing the action (ADMIN)')
@with_appcontext
def unblacklist_visitor_cli(visitor_id, actor_id):
    """Remove a visitor from the blacklist."""
    try:
        visitor = visit_intake_service.unblacklist_visitor(visitor_id, _cli_actor(actor_id))
    except VisitError as e:
        click.echo(f"FAIL {e.kind}: {e.message}")
        return

    click.echo(f"PASS Removed {visitor.email} from the blacklist")


@click.group('passes')
def passes_group():
    """Pass codec inspection commands."""


@passes_group.command('verify')
@click.argument('token')
@with_appcontext
def verify_pass_cli(token):
    """Verify a pass token and print the visit it is bound to."""
    settings = PassSettings.from_config(current_app.config)
    try:
        claims = pass_codec.verify_token(
            token,
            secret=settings.secret,
            max_age=settings.max_age,
            signature_length=settings.signature_length,
        )
    except VisitError as e:
        click.echo(f"FAIL {e.kind} ({e.details.get('reason')}): {e.message}")
        return

    click.echo(f"PASS visit={claims.visit_id} pass={claims.pass_number} issued_at={claims.issued_at.isoformat()}Z")


@passes_group.command('new-number')
@with_appcontext
def new_pass_number_cli():
    """Print a freshly generated pass number."""
    click.echo(pass_codec.generate_pass_number(current_app.config["PASS_NUMBER_PREFIX"]))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(visitors_group)
    app.cli.add_command(passes_group)
