"""Connection to the synthesis server over UDP/OSC.

The connection is made once when the session starts.  There is no
reconnection: when the server is down or goes away, commands that need it
fail and the control plane keeps serving everything else.
"""

from __future__ import annotations

import logging
import socket
from typing import Any

from pydantic import BaseModel, ConfigDict

from obake.siren.osc import OscError, build_message, parse_message

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_HOST = "127.0.0.1"
DEFAULT_BACKEND_PORT = 57110
_SOCKET_TIMEOUT = 2.0


class BackendConnectionError(RuntimeError):
    """Raised when the synthesis server cannot be reached or answers badly."""


class BackendStatus(BaseModel):
    """Decoded ``/status.reply``."""

    model_config = ConfigDict(frozen=True)

    ugens: int
    synths: int
    groups: int
    synthdefs: int
    avg_cpu: float
    peak_cpu: float
    nominal_sample_rate: float
    actual_sample_rate: float

    @classmethod
    def from_reply(cls, args: list[Any]) -> BackendStatus:
        if len(args) < 9:
            raise BackendConnectionError(f"short /status.reply: {args!r}")
        return cls(
            ugens=args[1],
            synths=args[2],
            groups=args[3],
            synthdefs=args[4],
            avg_cpu=args[5],
            peak_cpu=args[6],
            nominal_sample_rate=args[7],
            actual_sample_rate=args[8],
        )


class BackendConnection:
    """A UDP socket to the synthesis server plus the ``/status`` handshake.

    Parameters
    ----------
    host, port:
        Server address; ``scsynth`` listens on UDP 57110 by default.
    timeout:
        Seconds to wait for a reply.
    """

    def __init__(
        self,
        host: str = DEFAULT_BACKEND_HOST,
        port: int = DEFAULT_BACKEND_PORT,
        *,
        timeout: float = _SOCKET_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._timeout = timeout
        self._sock: socket.socket | None = None
        self._log = logger or logging.getLogger(__name__)

    @property
    def connected(self) -> bool:
        return self._sock is not None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def connect(self) -> BackendStatus:
        """Open the socket and confirm the server answers ``/status``."""
        if self._sock is not None:
            raise BackendConnectionError(f"already connected to {self.address}")
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.settimeout(self._timeout)
        try:
            sock.connect((self.host, self.port))
            status = self._query_status(sock)
        except BackendConnectionError:
            sock.close()
            raise
        except (OSError, OscError) as exc:
            sock.close()
            raise BackendConnectionError(f"synthesis server at {self.address}: {exc}") from exc
        self._sock = sock
        self._log.info(
            "connected to synthesis server at %s (%d synths)", self.address, status.synths
        )
        return status

    def _query_status(self, sock: socket.socket) -> BackendStatus:
        sock.send(build_message("/status"))
        while True:
            try:
                data = sock.recv(65536)
            except socket.timeout:
                raise BackendConnectionError(
                    f"no /status reply from {self.address} within {self._timeout}s"
                ) from None
            address, args = parse_message(data)
            if address == "/status.reply":
                return BackendStatus.from_reply(args)
            self._log.debug("ignoring %s while waiting for /status.reply", address)

    def status(self) -> BackendStatus:
        sock = self._require()
        try:
            return self._query_status(sock)
        except (OSError, OscError) as exc:
            raise BackendConnectionError(f"{self.address}: {exc}") from exc

    def send(self, address: str, *args: Any) -> None:
        """Send one OSC message to the server."""
        sock = self._require()
        try:
            sock.send(build_message(address, *args))
        except OSError as exc:
            raise BackendConnectionError(f"{self.address}: {exc}") from exc

    def _require(self) -> socket.socket:
        if self._sock is None:
            raise BackendConnectionError("not connected to the synthesis server")
        return self._sock

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
