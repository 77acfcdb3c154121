"""siren bootstrap — the fixed start-up order of the control plane.

::

    start -> parse_options -> configure_logging -> start_remote_listener
          -> run_command_handler -> exit
                 (any phase) ---------------------> crash

Options are validated before anything observable happens; logging is
configured before any component logs; the listener is up before commands
are handled.  Exit codes: 0 on a clean stop, 2 for invalid options, 1 when
a later phase fails.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from collections.abc import Mapping, Sequence
from enum import Enum

from rich.console import Console

from obake.logs import LogConfig, LoggingAlreadyConfiguredError, configure_logging
from obake.siren.backend import DEFAULT_BACKEND_HOST, DEFAULT_BACKEND_PORT, BackendConnection
from obake.siren.listener import (
    DEFAULT_LISTENER_HOST,
    DEFAULT_LISTENER_PORT,
    ControlPlaneListenerError,
)
from obake.siren.options import ControlPlaneParseError, OptionsExit, SirenOptions, parse_options
from obake.siren.session import ControlPlaneSession

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


class BootstrapPhase(str, Enum):
    START = "start"
    PARSE_OPTIONS = "parse_options"
    CONFIGURE_LOGGING = "configure_logging"
    START_REMOTE_LISTENER = "start_remote_listener"
    RUN_COMMAND_HANDLER = "run_command_handler"
    EXIT = "exit"
    CRASH = "crash"


class Bootstrap:
    """Runs the control plane from argv to exit status.

    Parameters
    ----------
    argv, environ:
        Command-line arguments (without the program name) and environment.
    listener_host, listener_port:
        Remote listener address; the port is fixed in production.
    stop_event:
        Set to end the command handler; SIGINT and SIGTERM set it when
        running on the main thread.
    stderr, log_console:
        Where usage errors and log records are written; both default to
        standard error.
    """

    def __init__(
        self,
        argv: Sequence[str],
        environ: Mapping[str, str] | None = None,
        *,
        listener_host: str = DEFAULT_LISTENER_HOST,
        listener_port: int = DEFAULT_LISTENER_PORT,
        backend: BackendConnection | None = None,
        stop_event: threading.Event | None = None,
        stderr: Console | None = None,
        log_console: Console | None = None,
    ) -> None:
        self.argv = list(argv)
        self.environ = os.environ if environ is None else environ
        self.listener_host = listener_host
        self.listener_port = listener_port
        self.backend = backend or BackendConnection(DEFAULT_BACKEND_HOST, DEFAULT_BACKEND_PORT)
        self.stop_event = stop_event or threading.Event()
        self.stderr = stderr or Console(stderr=True)
        self.log_console = log_console

        self.phase = BootstrapPhase.START
        self.history: list[BootstrapPhase] = [BootstrapPhase.START]
        self.options: SirenOptions | None = None
        self.log_config: LogConfig | None = None
        self.session: ControlPlaneSession | None = None

    def _enter(self, phase: BootstrapPhase) -> None:
        self.phase = phase
        self.history.append(phase)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def run(self) -> int:
        self._enter(BootstrapPhase.PARSE_OPTIONS)
        try:
            self.options = parse_options(self.argv, self.environ)
        except OptionsExit as exc:
            self._enter(BootstrapPhase.EXIT)
            return exc.code
        except ControlPlaneParseError as exc:
            self._enter(BootstrapPhase.CRASH)
            self.stderr.print(exc.usage, markup=False, highlight=False)
            self.stderr.print(f"siren: error: {exc}", markup=False, highlight=False)
            return EXIT_USAGE

        self._enter(BootstrapPhase.CONFIGURE_LOGGING)
        try:
            self.log_config = configure_logging(self.options.log_level, console=self.log_console)
        except LoggingAlreadyConfiguredError as exc:
            self._enter(BootstrapPhase.CRASH)
            self.stderr.print(f"siren: error: {exc}", markup=False, highlight=False)
            return EXIT_FAILURE
        logger.debug("options: %s", self.options.model_dump(mode="json"))

        self._enter(BootstrapPhase.START_REMOTE_LISTENER)
        self.session = ControlPlaneSession(
            self.log_config,
            listener_host=self.listener_host,
            listener_port=self.listener_port,
            backend=self.backend,
        )
        try:
            self.session.open()
        except ControlPlaneListenerError as exc:
            logger.error("%s", exc)
            self.session.close()
            self._enter(BootstrapPhase.CRASH)
            return EXIT_FAILURE

        self._enter(BootstrapPhase.RUN_COMMAND_HANDLER)
        try:
            self._run_command_handler()
        except Exception:
            logger.exception("command handler crashed")
            self._enter(BootstrapPhase.CRASH)
            return EXIT_FAILURE
        finally:
            self.session.close()

        self._enter(BootstrapPhase.EXIT)
        return EXIT_OK

    def _run_command_handler(self) -> None:
        previous = {}
        if threading.current_thread() is threading.main_thread():
            for signum in (signal.SIGINT, signal.SIGTERM):
                previous[signum] = signal.signal(signum, self._request_stop)
        logger.info("siren ready (log level %s)", self.log_config.level.value)
        try:
            while not self.stop_event.wait(timeout=0.5):
                pass
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
        logger.info("stop requested")

    def _request_stop(self, signum, _frame) -> None:
        logger.debug("received signal %d", signum)
        self.stop_event.set()


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point for ``siren``."""
    return Bootstrap(sys.argv[1:] if argv is None else argv).run()


if __name__ == "__main__":
    sys.exit(main())
