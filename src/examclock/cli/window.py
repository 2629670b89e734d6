"""Exam window CLI commands.

This module provides CLI commands for listing windows and their current
lifecycle states.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from examclock.database.models.window import ExamWindow, WindowStatus
from examclock.database.queries.window import (
    count_active_enrollments_by_window,
    list_windows,
)

app = typer.Typer(help="Exam window commands")
console = Console()

STATUS_COLORS = {
    "scheduled": "green",
    "enrollment_closed": "yellow",
    "in_progress": "cyan",
    "finished": "dim",
}


@app.command("list")
def list_command(
    owner: Annotated[
        Optional[str],
        typer.Option("--owner", "-o", help="Only list this owner's windows"),
    ] = None,
    status: Annotated[
        Optional[str],
        typer.Option(
            "--status",
            "-s",
            help="Filter by status (scheduled, enrollment_closed, in_progress, finished)",
        ),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List exam windows with their current state and enrollment count."""
    from examclock.main import get_app_context

    ctx = get_app_context()

    owner_id = None
    if owner is not None:
        try:
            owner_id = UUID(owner)
        except ValueError:
            console.print(f"[red]Invalid owner UUID:[/red] {owner}")
            raise typer.Exit(code=1)

    statuses = None
    if status is not None:
        try:
            statuses = [WindowStatus(status)]
        except ValueError:
            console.print(
                f"[red]Invalid status:[/red] {status}. "
                f"Valid values: {', '.join(s.value for s in WindowStatus)}"
            )
            raise typer.Exit(code=1)

    async def _list() -> tuple[list[ExamWindow], dict[UUID, int]]:
        try:
            async with ctx.session_factory() as session:
                windows = await list_windows(session, owner_id=owner_id, statuses=statuses)
                counts = await count_active_enrollments_by_window(
                    session, [w.id for w in windows]
                )
            return windows, counts
        finally:
            await ctx.engine.dispose()

    try:
        windows, counts = asyncio.run(_list())
    except Exception as e:
        console.print(f"[red]Error listing windows:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        output = [
            {
                "id": str(w.id),
                "owner_id": str(w.owner_id),
                "mode": w.mode.value,
                "status": w.status.value,
                "starts_at": w.start_instant.isoformat() if w.start_instant else None,
                "duration_minutes": w.duration_minutes,
                "capacity": w.capacity,
                "enrolled": counts.get(w.id, 0),
                "active": w.active,
            }
            for w in windows
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not windows:
        console.print("[yellow]No windows found[/yellow]")
        return

    table = Table(title="Exam Windows")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Mode")
    table.add_column("Starts (UTC)", style="dim")
    table.add_column("Minutes", justify="right")
    table.add_column("Enrolled", justify="right")
    table.add_column("Status")
    table.add_column("Active")

    for w in windows:
        color = STATUS_COLORS.get(w.status.value, "white")
        start = w.start_instant
        table.add_row(
            str(w.id),
            w.mode.value,
            start.strftime("%Y-%m-%d %H:%M") if start else "-",
            str(w.duration_minutes) if w.duration_minutes is not None else "-",
            f"{counts.get(w.id, 0)}/{w.capacity}",
            f"[{color}]{w.status.value}[/{color}]",
            "yes" if w.active else "no",
        )

    console.print(table)
