# Overview: Flask CLI command groups for bootstrap and the expiry/overdue sweep.

# backend/docflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--org "Org Name"] [--org-code CODE]
#   Idempotent bootstrap: creates an organization and its admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organizations and users (MULTI-TENANT):
# - python -m flask orgs list
# - python -m flask orgs create --name "Acme Garage" --code "ACME"
# - python -m flask users create --org-id 1 --username clerk --email clerk@docflow.local --password "Password123!"
#
# Sweeper (schedule this, e.g. hourly cron):
# - python -m flask sweep run [--org-id 1]
#   Expire stale quotations and mark past-due invoices OVERDUE.

import click
from flask.cli import with_appcontext

from .errors import DocumentError
from .extensions import db
from .models import Organization, User
from .services.auth_service import create_user
from .services.sweep_service import run_sweep
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--admin-password', default='Password123!', help='Password for the admin user')
@with_appcontext
def init_system(org_name, org_code, admin_password):
    """
    Create the organization and its admin user if they don't exist.

    SECURITY: Change the default password immediately in production!
    """
    db.create_all()

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    existing = db.session.query(User).filter_by(org_id=org.id, username="admin").first()
    if existing:
        click.echo("WARN  User 'admin' already exists in org, skipping...")
        return

    try:
        create_user(
            username="admin",
            email=f"admin@{org_code.lower()}.local",
            password=admin_password,
            org_id=org.id,
        )
    except DocumentError as e:
        raise click.ClickException(f"Failed to create admin user: {e.message}")
    click.echo(f"PASS Created user: admin (org {org.id})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    orgs = db.session.query(Organization).order_by(Organization.id).all()
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {user_count}")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    if db.session.query(Organization).filter_by(code=code).first():
        raise click.ClickException(f"Organization with code '{code}' already exists")

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True)
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_user_cli(org_id, username, email, password):
    try:
        user = create_user(username=username, email=email, password=password, org_id=org_id)
    except DocumentError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, Org: {org_id})")


@click.group('sweep')
def sweep_group():
    """Expiry/overdue sweeper."""


@sweep_group.command('run')
@click.option('--org-id', type=int, default=None, help='Only sweep this organization')
@click.option('--now', 'now_value', default=None, help='Clock override (ISO-8601, UTC)')
@with_appcontext
def run_sweep_cli(org_id, now_value):
    """Expire stale quotations and mark past-due invoices OVERDUE."""
    try:
        now = parse_iso_datetime(now_value) if now_value else None
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--now")

    result = run_sweep(org_id=org_id, now=now)
    click.echo(
        f"PASS Sweep complete: {len(result.expired_quotation_ids)} quotation(s) expired, "
        f"{len(result.overdue_invoice_ids)} invoice(s) overdue"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sweep_group)
