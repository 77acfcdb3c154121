"""``obake setup`` — bring a whole setup up or down, list setup files."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from obake.config import (
    ConfigInvalidError,
    ConfigNotFoundError,
    load_host_config,
    load_settings,
    load_setup,
)
from obake.launcher.containers import ContainerError, ContainerLauncher
from obake.launcher.setups import SetupError, SetupRunner, list_setups
from obake.launcher.units import UnitCommandError, UnitManager

console = Console()

setup_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")

_SETUP_ERRORS = (
    ConfigNotFoundError,
    ConfigInvalidError,
    SetupError,
    UnitCommandError,
    ContainerError,
    FileNotFoundError,
)

_FILE_OPTION = typer.Option(Path("setup.toml"), "--file", "-f", help="Setup file to use.")


def _runner() -> SetupRunner:
    settings = load_settings()
    host = load_host_config(settings)
    containers = ContainerLauncher(settings.container_runtime, host.data.data_dir / "run")
    return SetupRunner(host, UnitManager(), containers)


@setup_app.command(name="start", help="Start a setup.")
def start_cmd(file: Path = _FILE_OPTION) -> None:
    """Start the setup's interface unit, then its shapes in order."""
    try:
        setup = load_setup(file)
        started = _runner().start(setup)
    except _SETUP_ERRORS as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(
        f"[green]Setup started[/green] on {setup.setup.interface}: "
        f"{', '.join(started) or 'no shapes launched'}"
    )


@setup_app.command(name="stop", help="Stop a setup.")
def stop_cmd(file: Path = _FILE_OPTION) -> None:
    """Stop the setup's shapes in reverse order, then its interface unit."""
    try:
        setup = load_setup(file)
        stopped = _runner().stop(setup)
    except _SETUP_ERRORS as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[green]Setup stopped[/green]: {', '.join(stopped) or 'nothing was running'}")


@setup_app.command(name="list", help="List available setups.")
def list_cmd() -> None:
    try:
        host = load_host_config(load_settings())
        setups = list_setups(host.data.setups_dir)
    except _SETUP_ERRORS as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title="Setups")
    table.add_column("Setup", style="cyan")
    table.add_column("Interface")
    table.add_column("Shapes")
    for path in setups:
        try:
            setup = load_setup(path)
        except ConfigInvalidError as exc:
            table.add_row(path.stem, "[red]invalid[/red]", str(exc).splitlines()[0])
            continue
        table.add_row(path.stem, setup.setup.interface, ", ".join(setup.managed_shapes))
    console.print(table)
