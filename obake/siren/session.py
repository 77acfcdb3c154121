"""Control-plane session — owns the log config, listener and backend.

Everything the session holds is torn down by :meth:`ControlPlaneSession.close`;
nothing lives in module globals.
"""

from __future__ import annotations

import logging
import shlex

from obake.logs import LogConfig
from obake.siren.backend import BackendConnection, BackendConnectionError
from obake.siren.listener import RemoteListener
from obake.siren.osc import OscError, coerce_argument

logger = logging.getLogger(__name__)

COMMAND_HELP = {
    "ping": "check that the control plane answers",
    "status": "log level, listener and synthesis server state",
    "log-level": "the level logging was configured with",
    "send": "send /address [args...] to the synthesis server",
    "help": "this list",
    "quit": "close this connection",
}


class ControlPlaneSession:
    """The running control plane of one ``siren`` process.

    Parameters
    ----------
    log_config:
        The configuration logging was set up with; read-only from here on.
    listener_host, listener_port:
        Where the remote listener binds.
    backend:
        Connection to the synthesis server, attempted once by :meth:`open`.
    """

    def __init__(
        self,
        log_config: LogConfig,
        *,
        listener_host: str,
        listener_port: int,
        backend: BackendConnection,
        logger: logging.Logger | None = None,
    ) -> None:
        self.log_config = log_config
        self.backend = backend
        self._log = logger or logging.getLogger(__name__)
        self.listener = RemoteListener(
            self.handle, listener_host, listener_port, logger=logger
        )
        self._handlers = {
            "ping": self._ping,
            "status": self._status,
            "log-level": self._log_level,
            "send": self._send,
            "help": self._help,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Start the listener, then try the backend once.

        A listener failure propagates (``ControlPlaneListenerError``); a
        backend failure is logged and the session continues without it.
        """
        self.listener.start()
        try:
            self.backend.connect()
        except BackendConnectionError as exc:
            self._log.error("synthesis server unavailable: %s", exc)

    def close(self) -> None:
        self.listener.close()
        self.backend.close()
        self._log.info("control plane closed")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def handle(self, line: str) -> str:
        """Run one command line and return the reply."""
        try:
            words = shlex.split(line)
        except ValueError as exc:
            return f"error: {exc}"
        if not words:
            return ""
        name, args = words[0], words[1:]
        handler = self._handlers.get(name)
        if handler is None:
            return f"error: unknown command {name!r}; try help"
        self._log.debug("command %s %s", name, args)
        return handler(args)

    def _ping(self, args: list[str]) -> str:
        return "pong"

    def _log_level(self, args: list[str]) -> str:
        return self.log_config.level.value

    def _status(self, args: list[str]) -> str:
        host, port = self.listener.address
        parts = [f"log-level={self.log_config.level.value}", f"listener={host}:{port}"]
        if not self.backend.connected:
            parts.append("backend=unavailable")
            return " ".join(parts)
        try:
            status = self.backend.status()
        except BackendConnectionError as exc:
            self._log.warning("status query failed: %s", exc)
            parts.append(f"backend={self.backend.address} (no reply)")
            return " ".join(parts)
        parts.extend(
            [
                f"backend={self.backend.address}",
                f"synths={status.synths}",
                f"ugens={status.ugens}",
                f"cpu={status.avg_cpu:.1f}%",
                f"sr={status.actual_sample_rate:.0f}",
            ]
        )
        return " ".join(parts)

    def _send(self, args: list[str]) -> str:
        if not args:
            return "error: usage: send /address [args...]"
        address, values = args[0], [coerce_argument(a) for a in args[1:]]
        try:
            self.backend.send(address, *values)
        except (BackendConnectionError, OscError) as exc:
            return f"error: {exc}"
        return "ok"

    def _help(self, args: list[str]) -> str:
        width = max(len(name) for name in COMMAND_HELP)
        return "\n".join(f"{name.ljust(width)}  {text}" for name, text in COMMAND_HELP.items())
