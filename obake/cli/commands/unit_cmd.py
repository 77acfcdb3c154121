"""``obake unit`` — start and stop systemd user units."""

from __future__ import annotations

import typer
from rich.console import Console

from obake.launcher.units import UnitCommandError, UnitManager

console = Console()

unit_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")


@unit_app.command(name="start", help="Start a unit.")
def start_cmd(name: str = typer.Argument(..., help="Name of the unit to start.")) -> None:
    try:
        UnitManager().start(name)
    except UnitCommandError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[green]Started[/green] {name}")


@unit_app.command(name="stop", help="Stop a unit.")
def stop_cmd(name: str = typer.Argument(..., help="Name of the unit to stop.")) -> None:
    try:
        UnitManager().stop(name)
    except UnitCommandError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[green]Stopped[/green] {name}")
