"""Command runners — the only place obake starts external processes.

Defines the ``CommandRunner`` Protocol the build executor, package
installers and unit manager depend on, along with two implementations:

1. **SubprocessRunner** — runs commands for real and captures their output.
2. **DryRunRunner** — records commands without running anything, for
   ``obake shape plan`` and tests.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from obake.logs import trace

logger = logging.getLogger(__name__)

# Lines of output kept on a CommandResult for error reports.
OUTPUT_TAIL_LINES = 40


class CommandResult(BaseModel):
    """Outcome of one command."""

    model_config = ConfigDict(frozen=True)

    argv: list[str]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    def tail(self, lines: int = OUTPUT_TAIL_LINES) -> str:
        return "\n".join(self.output.splitlines()[-lines:])


@runtime_checkable
class CommandRunner(Protocol):
    """Anything that can run an argv and report its exit status."""

    def run(
        self,
        argv: list[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        ...


class SubprocessRunner:
    """Runs commands with ``subprocess.run``, stdout and stderr merged.

    Parameters
    ----------
    timeout:
        Per-command timeout in seconds; ``None`` waits indefinitely.
    inherit_env:
        Start from ``os.environ`` and overlay the per-call ``env``.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        inherit_env: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._timeout = timeout
        self._inherit_env = inherit_env
        self._log = logger or logging.getLogger(__name__)

    def run(
        self,
        argv: list[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        full_env = dict(os.environ) if self._inherit_env else {}
        full_env.update(env or {})
        self._log.debug("run: %s (cwd=%s)", shlex.join(argv), cwd or ".")
        try:
            proc = subprocess.run(
                argv,
                cwd=cwd,
                env=full_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:
            return CommandResult(argv=list(argv), returncode=127, output=str(exc))
        except subprocess.TimeoutExpired as exc:
            output = exc.output if isinstance(exc.output, str) else ""
            return CommandResult(
                argv=list(argv),
                returncode=124,
                output=f"{output}\ntimed out after {self._timeout}s",
            )
        for line in proc.stdout.splitlines():
            trace(self._log, "| %s", line)
        return CommandResult(argv=list(argv), returncode=proc.returncode, output=proc.stdout)


class DryRunRunner:
    """Records every command and reports success without running it."""

    def __init__(self) -> None:
        self.calls: list[tuple[list[str], Path | None, dict[str, str]]] = []

    def run(
        self,
        argv: list[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        self.calls.append((list(argv), cwd, dict(env or {})))
        return CommandResult(argv=list(argv), returncode=0)

    @property
    def commands(self) -> list[list[str]]:
        return [argv for argv, _, _ in self.calls]


def expand_template(template: str, packages: list[str], **fields: str) -> list[str]:
    """Split a command template into argv.

    A token that is exactly ``{packages}`` becomes one argument per package;
    other tokens are formatted with *fields* (e.g. ``{root}``).
    """
    argv: list[str] = []
    for token in shlex.split(template):
        if token == "{packages}":
            argv.extend(packages)
        else:
            argv.append(token.format(**fields) if fields else token)
    return argv
