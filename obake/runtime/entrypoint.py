"""Entrypoint Dispatcher — the fixed entrypoint of every runtime image.

``obake-entrypoint`` resolves the image's one binary, warns about missing
device bindings, and forwards every argument to the binary unchanged.  It
has no options of its own: ``obake-entrypoint --help`` runs ``binary --help``.

The binary comes from ``$OBAKE_ENTRYPOINT`` when set, otherwise from the
declaration written at assembly time (``$OBAKE_ENTRYPOINT_FILE``, default
``/.obake/entrypoint.json``).
"""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from obake.logs import LogLevel, configure_logging, current_config
from obake.models.manifest import DECLARATION_DIR, DECLARATION_FILE, EntrypointDeclaration
from obake.runtime.bindings import check_bindings

logger = logging.getLogger(__name__)

ENTRYPOINT_ENV = "OBAKE_ENTRYPOINT"
DECLARATION_ENV = "OBAKE_ENTRYPOINT_FILE"
LOG_LEVEL_ENV = "OBAKE_LOG_LEVEL"
DEFAULT_DECLARATION = Path("/") / DECLARATION_DIR / DECLARATION_FILE

EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class LaunchError(RuntimeError):
    """Raised when the declared binary cannot be started.

    ``exit_code`` follows the shell convention: 127 for a missing binary,
    126 for one that cannot be executed.
    """

    def __init__(self, message: str, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def exit_status(returncode: int) -> int:
    """Map a ``Popen.returncode`` to a process exit status (signal N -> 128 + N)."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class EntrypointDispatcher:
    """Runs one binary with caller-supplied arguments, verbatim."""

    def __init__(self, binary: str | Path) -> None:
        self.binary = str(binary)

    def check(self) -> None:
        path = Path(self.binary)
        if not path.exists():
            raise LaunchError(f"{self.binary}: not found", EXIT_NOT_FOUND)
        if not path.is_file() or not os.access(path, os.X_OK):
            raise LaunchError(f"{self.binary}: permission denied", EXIT_NOT_EXECUTABLE)

    def argv(self, args: Sequence[str]) -> list[str]:
        return [self.binary, *args]

    def run(self, args: Sequence[str]) -> int:
        """Start the binary, forward signals to it, and return its exit status."""
        self.check()
        try:
            child = subprocess.Popen(self.argv(args))
        except PermissionError as exc:
            raise LaunchError(f"{self.binary}: {exc.strerror}", EXIT_NOT_EXECUTABLE) from exc
        except FileNotFoundError as exc:
            raise LaunchError(f"{self.binary}: {exc.strerror}", EXIT_NOT_FOUND) from exc

        def _forward(signum, _frame):
            logger.debug("forwarding signal %d to pid %d", signum, child.pid)
            child.send_signal(signum)

        previous = {}
        if threading.current_thread() is threading.main_thread():
            for signum in FORWARDED_SIGNALS:
                previous[signum] = signal.signal(signum, _forward)
        try:
            returncode = child.wait()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
        return exit_status(returncode)

    def exec(self, args: Sequence[str]) -> None:
        """Replace the current process with the binary."""
        self.check()
        try:
            os.execv(self.binary, self.argv(args))
        except PermissionError as exc:
            raise LaunchError(f"{self.binary}: {exc.strerror}", EXIT_NOT_EXECUTABLE) from exc
        except OSError as exc:
            raise LaunchError(f"{self.binary}: {exc.strerror}", EXIT_NOT_FOUND) from exc


def load_declaration(path: Path) -> EntrypointDeclaration:
    try:
        return EntrypointDeclaration.model_validate(json.loads(Path(path).read_text()))
    except FileNotFoundError:
        raise LaunchError(f"entrypoint declaration not found: {path}", EXIT_NOT_FOUND) from None
    except (OSError, ValueError, ValidationError) as exc:
        raise LaunchError(f"{path}: invalid entrypoint declaration: {exc}", EXIT_NOT_FOUND) from exc


def resolve_dispatcher(environ: dict[str, str] | None = None) -> EntrypointDispatcher:
    """Build the dispatcher from the environment and declared bindings."""
    environ = os.environ if environ is None else environ
    override = environ.get(ENTRYPOINT_ENV)
    if override:
        return EntrypointDispatcher(override)
    declaration = load_declaration(Path(environ.get(DECLARATION_ENV) or DEFAULT_DECLARATION))
    check_bindings(declaration.bindings)
    return EntrypointDispatcher(declaration.binary)


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point for ``obake-entrypoint``."""
    args = list(sys.argv[1:] if argv is None else argv)
    if current_config() is None:
        try:
            configure_logging(os.environ.get(LOG_LEVEL_ENV, LogLevel.WARN.value))
        except ValueError:
            configure_logging(LogLevel.WARN)
    try:
        return resolve_dispatcher().run(args)
    except LaunchError as exc:
        print(f"obake-entrypoint: {exc}", file=sys.stderr)
        return exc.exit_code


if __name__ == "__main__":
    sys.exit(main())
