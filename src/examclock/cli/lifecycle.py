"""Lifecycle maintenance CLI commands.

This module provides commands that run one reconciliation sweep or one
planning pass against the configured database, outside the web server.
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from examclock.lifecycle.notifications import NullObserver, StatusChange
from examclock.lifecycle.scheduler import ScheduledTransition
from examclock.lifecycle.service import WindowLifecycleService

app = typer.Typer(help="Lifecycle maintenance commands")
console = Console()


@app.command()
def sweep(
    owner: Annotated[
        Optional[str],
        typer.Option("--owner", "-o", help="Only reconcile this owner's windows"),
    ] = None,
) -> None:
    """Run one reconciliation sweep and print the applied changes.

    Changes are persisted but not pushed to dashboards; subscribers of a
    running server pick them up on their next refresh.
    """
    from examclock.main import get_app_context

    ctx = get_app_context()

    owner_id = None
    if owner is not None:
        try:
            owner_id = UUID(owner)
        except ValueError:
            console.print(f"[red]Invalid owner UUID:[/red] {owner}")
            raise typer.Exit(code=1)

    async def _sweep() -> list[StatusChange]:
        service = WindowLifecycleService(
            ctx.config, ctx.session_factory, observer=NullObserver()
        )
        try:
            return await service.trigger_sweep(owner_id)
        finally:
            await ctx.engine.dispose()

    try:
        changes = asyncio.run(_sweep())
    except Exception as e:
        console.print(f"[red]Error running sweep:[/red] {e}")
        raise typer.Exit(code=1)

    if not changes:
        console.print("[green]All windows are in their correct state[/green]")
        return

    table = Table(title=f"Applied Transitions ({len(changes)})")
    table.add_column("Window", style="cyan", no_wrap=True)
    table.add_column("Owner", style="dim", no_wrap=True)
    table.add_column("From", style="yellow")
    table.add_column("To", style="green")
    table.add_column("At", style="dim")

    for change in changes:
        table.add_row(
            str(change.window_id),
            str(change.owner_id),
            change.previous_state.value,
            change.new_state.value,
            change.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command()
def plan() -> None:
    """Run one planning pass and print the timers it would arm.

    The timers are discarded when the command exits; only a running
    server keeps them.
    """
    from examclock.main import get_app_context

    ctx = get_app_context()

    async def _plan() -> list[ScheduledTransition]:
        service = WindowLifecycleService(
            ctx.config, ctx.session_factory, observer=NullObserver()
        )
        try:
            await service.plan()
            return service.scheduler.pending()
        finally:
            service.scheduler.cancel_all()
            await ctx.engine.dispose()

    try:
        pending = asyncio.run(_plan())
    except Exception as e:
        console.print(f"[red]Error running planning pass:[/red] {e}")
        raise typer.Exit(code=1)

    horizon = ctx.config.scheduler.horizon_hours
    if not pending:
        console.print(f"[yellow]No transitions due within {horizon:g}h[/yellow]")
        return

    table = Table(title=f"Timers Within {horizon:g}h Horizon")
    table.add_column("Window", style="cyan", no_wrap=True)
    table.add_column("Kind", style="magenta")
    table.add_column("Target (UTC)", style="bold")

    for handle in pending:
        table.add_row(
            str(handle.window_id),
            handle.kind.value,
            handle.target.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
        )

    console.print(table)
