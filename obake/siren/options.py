"""siren's command-line options — one closed, typed schema.

Accepted: ``--log-level {info,warn,error,debug,trace}``, overridable with
``$SIREN_LOG_LEVEL``; default ``info``.  Anything else is a parse error
raised before logging, sockets or the backend are touched.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from typing import Optional

import click
import typer
from pydantic import BaseModel, ConfigDict

from obake.logs import LogLevel, parse_level

LOG_LEVEL_ENV = "SIREN_LOG_LEVEL"
PROG_NAME = "siren"


class ControlPlaneParseError(RuntimeError):
    """Raised for an unknown option or an out-of-range value."""

    def __init__(self, message: str, usage: str = "") -> None:
        super().__init__(message)
        self.usage = usage


class OptionsExit(Exception):
    """Raised when parsing already answered the invocation (``--help``)."""

    def __init__(self, code: int) -> None:
        super().__init__(code)
        self.code = code


class SirenOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    log_level: LogLevel = LogLevel.INFO


schema = typer.Typer(add_completion=False)


@schema.command()
def siren(
    log_level: Optional[LogLevel] = typer.Option(
        None,
        "--log-level",
        "-l",
        case_sensitive=False,
        help=f"Logging verbosity (env: {LOG_LEVEL_ENV}, default: info).",
    ),
) -> None:
    """Start the live-coding control plane."""


def parse_options(
    argv: Sequence[str],
    environ: Mapping[str, str] | None = None,
) -> SirenOptions:
    """Validate *argv* against the schema.

    An explicit ``--log-level`` wins over ``$SIREN_LOG_LEVEL``.  Raises
    :class:`ControlPlaneParseError` on any invalid input and
    :class:`OptionsExit` after printing help.
    """
    environ = os.environ if environ is None else environ
    command = typer.main.get_command(schema)
    try:
        ctx = command.make_context(PROG_NAME, list(argv))
    except click.exceptions.Exit as exc:
        raise OptionsExit(exc.exit_code) from None
    except click.ClickException as exc:
        usage = exc.ctx.get_usage() if getattr(exc, "ctx", None) else f"Usage: {PROG_NAME} [OPTIONS]"
        raise ControlPlaneParseError(exc.format_message(), usage) from None

    value = ctx.params.get("log_level")
    source = "--log-level"
    if value is None:
        value = environ.get(LOG_LEVEL_ENV) or LogLevel.INFO.value
        source = LOG_LEVEL_ENV
    try:
        level = parse_level(value if isinstance(value, str) else value.value)
    except ValueError as exc:
        raise ControlPlaneParseError(f"{source}: {exc}", ctx.get_usage()) from None
    return SirenOptions(log_level=level)
