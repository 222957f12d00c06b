"""Typer CLI for OpenGather."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import create_member
from .database import get_session
from .errors import ValidationFailed
from .seed import seed_fake_data
from .storage import (
    ensure_root_token,
    fetch_root_token,
    init_db,
    rotate_root_token,
    upgrade_database,
)

app = typer.Typer(help="OpenGather command-line interface")


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure the process can write to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("admin-token")
def admin_token() -> None:
    """Print the current root admin token."""
    init_db()
    token = fetch_root_token()
    typer.echo(token)


@app.command("rotate-admin-token")
def rotate_admin_token() -> None:
    """Rotate the root admin token."""
    try:
        init_db()
        token = rotate_root_token()
    except OperationalError as exc:
        _exit_if_readonly(exc, "rotate the root admin token")
        raise
    typer.echo(token)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    ensure_root_token()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI app under uvicorn."""
    init_db()
    config = uvicorn.Config(
        "opengather.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting OpenGather on {host}:{port}")
    server.run()


@app.command("seed-data")
def seed_data(
    venues: int = typer.Option(
        settings.seed_venues, "--venues", min=0, help="Number of venues to create"
    ),
    members: int = typer.Option(
        settings.seed_members, "--members", min=0, help="Number of members to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of event proposals"
    ),
    max_rsvps: int = typer.Option(
        5, "--max-rsvps", min=0, help="Maximum RSVPs on each approved event"
    ),
):
    """Populate the database with fake members, venues and events for testing."""
    try:
        stats = seed_fake_data(
            venue_count=venues,
            member_count=members,
            event_count=events,
            max_rsvps_per_event=max_rsvps,
        )
    except ValueError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(
        f"Seed complete: {stats['members']} members, {stats['venues']} venues, "
        f"{stats['events']} events, {stats['rsvps']} RSVPs created."
    )


@app.command("add-member")
def add_member(
    email: str = typer.Argument(..., help="Member email address"),
    name: str | None = typer.Option(None, "--name", help="Display name"),
    simple: bool = typer.Option(
        False, "--simple", help="Create an email-only (simple) member"
    ),
    is_admin: bool = typer.Option(False, "--admin", help="Grant admin rights"),
) -> None:
    """Create a member and print their access token."""
    init_db()
    try:
        with get_session() as session:
            member = create_member(
                session,
                email=email,
                display_name=name,
                kind="simple" if simple else "full",
                is_admin=is_admin,
            )
            token = member.access_token
    except ValidationFailed as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(token)


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None,
        "--config-path",
        help="Path to opengather.toml (default: ./opengather.toml)",
    ),
    admin_events_per_page: int | None = typer.Option(
        None, "--admin-events-per-page", min=1, help="Admin review page size"
    ),
    public_base_url: str | None = typer.Option(
        None, "--public-base-url", help="Base URL used in RSVP links"
    ),
    mail_from: str | None = typer.Option(
        None, "--mail-from", help="Sender address for outgoing email"
    ),
    resend_api_key: str | None = typer.Option(
        None, "--resend-api-key", help="Resend API key (empty disables sending)"
    ),
    mail_max_workers: int | None = typer.Option(
        None, "--mail-max-workers", min=1, help="Concurrent sends per batch"
    ),
    community_name: str | None = typer.Option(
        None, "--community-name", help="Name shown in emails and pages"
    ),
    seed_venues: int | None = typer.Option(
        None, "--seed-venues", min=0, help="Default seed-data venues"
    ),
    seed_members: int | None = typer.Option(
        None, "--seed-members", min=0, help="Default seed-data members"
    ),
    seed_events: int | None = typer.Option(
        None, "--seed-events", min=0, help="Default seed-data events"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "admin_events_per_page": admin_events_per_page,
        "public_base_url": public_base_url,
        "mail_from": mail_from,
        "resend_api_key": resend_api_key,
        "mail_max_workers": mail_max_workers,
        "community_name": community_name,
        "seed_venues": seed_venues,
        "seed_members": seed_members,
        "seed_events": seed_events,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    settings_ref = settings
    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
