"""Remote listener — a line-based TCP endpoint for editors and tools.

One client is served at a time.  Each received line goes to the command
handler and the reply is written back followed by a newline.  ``quit``
closes the connection; the listener keeps accepting new ones.
"""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_LISTENER_HOST = "127.0.0.1"
DEFAULT_LISTENER_PORT = 4005

_ACCEPT_POLL_SECONDS = 0.2
_CLOSE_COMMANDS = frozenset({"quit", "exit"})


class ControlPlaneListenerError(RuntimeError):
    """Raised when the listener cannot bind its port."""


class RemoteListener:
    """Accepts remote sessions on a fixed port in a daemon thread.

    Parameters
    ----------
    handler:
        Called with each command line (without the newline); returns the
        reply text.
    host, port:
        Bind address.  Port ``0`` picks a free port (see :attr:`address`).
    """

    def __init__(
        self,
        handler: Callable[[str], str],
        host: str = DEFAULT_LISTENER_HOST,
        port: int = DEFAULT_LISTENER_PORT,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._handler = handler
        self.host = host
        self.port = port
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._log = logger or logging.getLogger(__name__)

    @property
    def address(self) -> tuple[str, int]:
        """The bound ``(host, port)``; only meaningful after :meth:`start`."""
        if self._sock is None:
            return self.host, self.port
        host, port = self._sock.getsockname()[:2]
        return host, port

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Bind and start serving.  Raises ``ControlPlaneListenerError`` on bind failure."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(1)
        except OSError as exc:
            sock.close()
            raise ControlPlaneListenerError(
                f"cannot listen on {self.host}:{self.port}: {exc.strerror or exc}"
            ) from exc
        sock.settimeout(_ACCEPT_POLL_SECONDS)
        self._sock = sock
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._serve, name="siren-listener", daemon=True
        )
        self._thread.start()
        host, port = self.address
        self._log.info("remote listener on %s:%d", host, port)

    def close(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def _serve(self) -> None:
        assert self._sock is not None
        while not self._stop.is_set():
            try:
                conn, peer = self._sock.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._stop.is_set():
                    self._log.error("listener accept failed: %s", exc)
                return
            self._log.info("remote session from %s:%d", peer[0], peer[1])
            try:
                self._serve_connection(conn)
            except OSError as exc:
                self._log.warning("remote session from %s:%d ended: %s", peer[0], peer[1], exc)
            finally:
                conn.close()
            self._log.info("remote session from %s:%d closed", peer[0], peer[1])

    def _serve_connection(self, conn: socket.socket) -> None:
        conn.settimeout(_ACCEPT_POLL_SECONDS)
        buffer = b""
        while not self._stop.is_set():
            try:
                chunk = conn.recv(4096)
            except socket.timeout:
                continue
            if not chunk:
                return
            buffer += chunk
            while b"\n" in buffer:
                raw, buffer = buffer.split(b"\n", 1)
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                if line in _CLOSE_COMMANDS:
                    conn.sendall(b"bye\n")
                    return
                conn.sendall(self._dispatch(line).encode("utf-8") + b"\n")

    def _dispatch(self, line: str) -> str:
        try:
            return self._handler(line)
        except Exception as exc:
            self._log.exception("command %r failed", line)
            return f"error: {exc}"
