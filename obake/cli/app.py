"""Main Typer application — imports and registers all CLI commands.

Entry point: ``obake`` (configured via pyproject.toml console scripts).

Command groups: shape, unit, setup, interface.
"""

from __future__ import annotations

import logging

import typer

from obake import __version__
from obake.cli.commands.interface_cmd import interface_app
from obake.cli.commands.setup_cmd import setup_app
from obake.cli.commands.shape_cmd import shape_app
from obake.cli.commands.unit_cmd import unit_app
from obake.logs import LogLevel, configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="obake",
    help="obake: build and launch minimal runtime images for live audio shapes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: LogLevel = typer.Option(
        LogLevel.INFO,
        "--log-level",
        envvar="OBAKE_LOG_LEVEL",
        case_sensitive=False,
        help="Set the logging level.",
    ),
) -> None:
    """Configure logging once for the whole invocation."""
    configure_logging(log_level)
    logger.debug("starting obake %s", __version__)


# Register subcommands
app.add_typer(shape_app, name="shape", help="Manage shapes.")
app.add_typer(unit_app, name="unit", help="Manage units.")
app.add_typer(setup_app, name="setup", help="Manage setups.")
app.add_typer(interface_app, name="interface", help="Manage audio interfaces.")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
