# Stratus CLI — main entry point
"""stratus CLI — inspect and manage workspaces from the terminal."""

from __future__ import annotations

import asyncio
import logging

import click

from ..config import settings


@click.group()
@click.version_option(version=settings.app_version, prog_name="stratus")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to the log file")
def cli(verbose: bool):
    """Stratus — lifecycle orchestration for remote workspaces and deployments."""
    from ..common import init_logging
    init_logging(level=logging.DEBUG if verbose else logging.INFO)


@cli.command()
def status():
    """Show engine configuration and tracked resource counts."""
    from sqlalchemy import func, select

    from ..common import console
    from ..db import SessionLocal, init_db
    from ..models.resource import ManagedResource

    init_db()
    console.print(f"[bold blue]Stratus Engine[/] v{settings.app_version}")
    console.print(f"Database: {settings.effective_database_url}")
    console.print(f"Environment: {settings.environment}")
    console.print(f"Machines API: {settings.machines_api_url} (org: {settings.machines_org or 'not set'})")
    console.print(f"Deploy platform: {settings.deploy_api_url} (org: {settings.deploy_org or 'not set'})")

    db = SessionLocal()
    try:
        counts = db.execute(
            select(ManagedResource.kind, func.count()).group_by(ManagedResource.kind)
        ).all()
        if counts:
            for kind, n in counts:
                console.print(f"  {kind}: {n}")
        else:
            console.print("[dim]No resources tracked yet.[/dim]")
    finally:
        db.close()


@cli.command()
def serve():
    """Start the Stratus API server."""
    import uvicorn
    uvicorn.run(
        "stratus.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


# ---------------------------------------------------------------------------
# Workspace commands
# ---------------------------------------------------------------------------


async def _with_control_plane(fn):
    """Run *fn(db, control_plane)* with a fresh session and client, closing both."""
    from ..db import SessionLocal, init_db
    from ..providers.fly.client import MachinesClient

    init_db()
    db = SessionLocal()
    control_plane = MachinesClient.from_settings(settings)
    try:
        return await fn(db, control_plane)
    finally:
        await control_plane.aclose()
        db.close()


@cli.group()
def workspaces():
    """Manage dev workspaces."""
    pass


@workspaces.command("list")
@click.option("--principal", "-p", required=True, help="Principal whose workspaces to list")
def workspaces_list(principal: str):
    """List workspaces the principal belongs to, with live machine state."""
    from rich.table import Table

    from ..common import console
    from ..services.reconciler import list_workspaces

    rows = asyncio.run(_with_control_plane(lambda db, cp: list_workspaces(db, cp, principal)))
    if not rows:
        console.print("[dim]No workspaces.[/dim]")
        return
    table = Table(title=f"Workspaces for {principal}")
    table.add_column("Name", style="cyan")
    table.add_column("Remote name")
    table.add_column("Role")
    table.add_column("State", style="green")
    table.add_column("URL")
    for row in rows:
        table.add_row(row["name"], row["remote_name"], row["role"], row["remote_state"], row["url"] or "")
    console.print(table)


@workspaces.command("status")
@click.argument("name")
@click.option("--principal", "-p", required=True)
def workspaces_status(name: str, principal: str):
    """Show reconciled status of one workspace."""
    from ..common import console
    from ..services.reconciler import HealthProbe, workspace_status

    probe = HealthProbe.from_settings(settings)
    result = asyncio.run(
        _with_control_plane(lambda db, cp: workspace_status(db, cp, probe, principal, name))
    )
    console.print(f"[bold]{name}[/bold]: {result['status']}")
    if result.get("url"):
        console.print(f"  URL: {result['url']}")
    if result.get("error"):
        console.print(f"  [red]{result['error']}[/red]")


@workspaces.command("destroy")
@click.argument("name")
@click.option("--principal", "-p", required=True)
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
def workspaces_destroy(name: str, principal: str, yes: bool):
    """Destroy a workspace (owner only)."""
    from ..common import die, print_success
    from ..errors import StratusError
    from ..models.resource import KIND_WORKSPACE
    from ..services.teardown import destroy_resource

    if not yes:
        click.confirm(f"Destroy workspace '{name}' and all its data?", abort=True)
    try:
        asyncio.run(
            _with_control_plane(
                lambda db, cp: destroy_resource(db, cp, principal, KIND_WORKSPACE, name)
            )
        )
    except StratusError as e:
        die(str(e))
    print_success(f"Workspace '{name}' destroyed")


if __name__ == "__main__":
    cli()
