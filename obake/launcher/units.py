"""systemd user units — start and stop through ``systemctl --user``."""

from __future__ import annotations

import logging

from obake.core.runner import CommandRunner, SubprocessRunner

logger = logging.getLogger(__name__)


class UnitCommandError(RuntimeError):
    """Raised when systemctl reports a failure for a unit."""


class UnitManager:
    """Starts and stops units in the user's systemd session.

    Parameters
    ----------
    runner:
        Runs ``systemctl``; tests pass a :class:`DryRunRunner`.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner(timeout=60)
        self._log = logger or logging.getLogger(__name__)

    def _systemctl(self, action: str, name: str) -> None:
        result = self._runner.run(["systemctl", "--user", action, name])
        if not result.ok:
            raise UnitCommandError(
                f"systemctl --user {action} {name} failed ({result.returncode}): "
                f"{result.tail(5)}"
            )

    def start(self, name: str) -> None:
        self._systemctl("start", name)
        self._log.info("started unit: %s", name)

    def stop(self, name: str) -> None:
        self._systemctl("stop", name)
        self._log.info("stopped unit: %s", name)
