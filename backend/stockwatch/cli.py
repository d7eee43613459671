# Overview: Flask CLI command groups for bootstrap, imports, audit export, and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Users:
# - python -m flask users create --username admin --name "Store Admin" --role admin
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#   List all users with roles.
# - python -m flask users issue-token admin
#   Print a new bearer token for the user. Only its hash is stored.
# - python -m flask users revoke-token <token>
#   Revoke a bearer token.
#
# Products:
# - python -m flask products import stock.xlsx --mode reset --user admin
#   Reconcile a CSV / JSON / XLSX file into the catalogue.
#
# Audit:
# - python -m flask audit export --start 2026-01-01 --end 2026-01-31 [--user ID] [--start-hour 8 --end-hour 18] [--output FILE]
#   Export filtered audit entries as CSV (stdout when --output is omitted).
#
# Maintenance:
# - python -m flask maintenance cleanup-quotas --retention-days 30
#   Delete daily edit counters older than the retention window.
# - python -m flask maintenance cleanup-sessions
#   Delete expired or revoked session tokens.

import click
from flask.cli import with_appcontext

from .models import ROLES
from .services import audit_service, maintenance_service, reconciliation_service, session_service, users_service
from .services.audit_service import AuditFilter, AuditQueryError
from .services.import_schemas import RowParseError, parse_rows, read_upload
from .services.reconciliation_service import ReconcileMode, ReconciliationError
from .validation import ConflictError, ValidationError
from .time_utils import parse_day


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--name', default='', help='Display name (defaults to username)')
@click.option('--role', type=click.Choice(ROLES), prompt=True)
@with_appcontext
def create_user_cli(username, name, role):
    """Create a user. System-initiated: the audit entry has no actor."""
    try:
        user = users_service.create_user(name=name, username=username, role=role)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} ({user.role}) id={user.id}")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with their roles."""
    users = users_service.list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<34} {'Username':<20} {'Role':<10} {'Name'}")
    click.echo("=" * 80)
    for user in users:
        click.echo(f"{user.id:<34} {user.username:<20} {user.role:<10} {user.name}")
    click.echo("=" * 80 + "\n")


@users_group.command('issue-token')
@click.argument('username')
@with_appcontext
def issue_token_cli(username):
    """Issue a bearer token for USERNAME and print it once."""
    user = users_service.get_user_by_username(username)
    if user is None:
        raise click.ClickException(f"User not found: {username}")
    session, token = session_service.create_session(user.id)
    click.echo(token)
    click.echo(f"Expires at {session.expires_at.isoformat()}Z", err=True)


@users_group.command('revoke-token')
@click.argument('token')
@with_appcontext
def revoke_token_cli(token):
    """Revoke a bearer token so it no longer authenticates."""
    if not session_service.revoke_session(token):
        raise click.ClickException("Token not found or already revoked")
    click.echo("PASS Token revoked")


@click.group('products')
def products_group():
    """Catalogue commands."""


@products_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--mode', type=click.Choice([m.value for m in ReconcileMode]), default='merge', show_default=True)
@click.option('--user', 'username', required=True, help='Username the import is attributed to')
@with_appcontext
def import_products_cli(path, mode, username):
    """Reconcile a CSV, JSON or XLSX file into the catalogue."""
    user = users_service.get_user_by_username(username)
    if user is None:
        raise click.ClickException(f"User not found: {username}")

    try:
        with open(path, 'rb') as fh:
            parsed = parse_rows(read_upload(fh, path))
        result = reconciliation_service.reconcile(
            parsed.rows, mode, user_id=user.id, warnings=parsed.warnings,
        )
    except (RowParseError, ReconciliationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS {mode}: {result.added} added, {result.updated} updated, {result.removed} removed")
    for w in result.warnings:
        click.echo(f"WARN row {w['row']} {w['field']}: {w['message']}")


@click.group('audit')
def audit_group():
    """Audit trail commands."""


@audit_group.command('export')
@click.option('--start', 'start_date', required=True, help='First local day (YYYY-MM-DD)')
@click.option('--end', 'end_date', required=True, help='Last local day (YYYY-MM-DD)')
@click.option('--user', 'user_id', default=None, help='Filter by user id')
@click.option('--start-hour', type=int, default=None)
@click.option('--end-hour', type=int, default=None)
@click.option('--output', type=click.File('w', encoding='utf-8'), default='-', help='Output file (default stdout)')
@with_appcontext
def export_audit_cli(start_date, end_date, user_id, start_hour, end_hour, output):
    """Export audit entries as CSV."""
    try:
        flt = AuditFilter(
            start_day=parse_day(start_date),
            end_day=parse_day(end_date),
            user_id=user_id,
            start_hour=start_hour,
            end_hour=end_hour,
        )
        entries = audit_service.query(flt)
    except (AuditQueryError, ValueError, TypeError) as e:
        raise click.ClickException(str(e))
    output.write(audit_service.to_csv(entries))
    click.echo(f"Exported {len(entries)} audit entries.", err=True)


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-quotas')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_quotas_cli(retention_days):
    """Delete daily edit counters older than the retention window."""
    deleted = maintenance_service.cleanup_daily_counts(retention_days=retention_days)
    click.echo(f"Deleted {deleted} daily edit counters older than {retention_days} days.")


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired or revoked session tokens."""
    deleted = maintenance_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(audit_group)
    app.cli.add_command(maintenance_group)
