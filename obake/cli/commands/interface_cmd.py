"""``obake interface`` — audio interfaces from the host config."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from obake.config import ConfigInvalidError, ConfigNotFoundError, load_host_config, load_settings

console = Console()

interface_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")


@interface_app.command(name="list", help="List available audio interfaces.")
def list_cmd() -> None:
    try:
        host = load_host_config(load_settings())
    except (ConfigNotFoundError, ConfigInvalidError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title="Audio interfaces")
    table.add_column("Interface", style="cyan")
    table.add_column("Type")
    table.add_column("Unit")
    table.add_column("Default", justify="center")
    for name in host.list_audio_interfaces():
        interface = host.get_audio_interface(name)
        table.add_row(
            name,
            interface.interface_type,
            interface.unit or "[dim]-[/dim]",
            "[green]*[/green]" if name == host.audio.default_interface else "",
        )
    console.print(table)
