"""Detached container instances, one per shape, tracked by pid file."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

logger = logging.getLogger(__name__)


class ContainerError(RuntimeError):
    """Raised when an instance cannot be started."""


class ContainerLauncher:
    """Runs an image in the background.

    With an entrypoint the instance is ``<runtime> exec <image> <entrypoint>
    <args...>``; without one it is ``<runtime> run <image> <args...>`` and the
    image's runscript decides what starts.

    Parameters
    ----------
    runtime:
        Container runtime executable, e.g. ``apptainer`` or ``singularity``.
    run_dir:
        Holds ``<shape>.pid`` and ``<shape>.log`` for every started instance.
    """

    def __init__(
        self,
        runtime: str,
        run_dir: Path,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.runtime = runtime
        self.run_dir = Path(run_dir)
        self._log = logger or logging.getLogger(__name__)

    @property
    def bind_variable(self) -> str:
        """Environment variable the runtime reads bind mounts from."""
        if Path(self.runtime).name == "singularity":
            return "SINGULARITY_BIND"
        return "APPTAINER_BIND"

    def argv(
        self,
        image: Path,
        *,
        entrypoint: str | None = None,
        args: Sequence[str] = (),
    ) -> list[str]:
        if entrypoint:
            return [self.runtime, "exec", str(image), entrypoint, *args]
        return [self.runtime, "run", str(image), *args]

    def pid_file(self, shape: str) -> Path:
        return self.run_dir / f"{shape}.pid"

    def running_pid(self, shape: str) -> int | None:
        """The recorded pid of *shape* if that process is still alive."""
        try:
            pid = int(self.pid_file(shape).read_text().strip())
        except (FileNotFoundError, ValueError):
            return None
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return None
        except PermissionError:
            return pid
        return pid

    def start(
        self,
        shape: str,
        image: Path,
        env: Mapping[str, str] | None = None,
        *,
        entrypoint: str | None = None,
        args: Sequence[str] = (),
    ) -> int:
        """Start *image* for *shape*; return the pid."""
        existing = self.running_pid(shape)
        if existing is not None:
            raise ContainerError(f"{shape} is already running (pid {existing})")

        self.run_dir.mkdir(parents=True, exist_ok=True)
        argv = self.argv(image, entrypoint=entrypoint, args=args)
        full_env = {**os.environ, **(env or {})}
        self._log.debug("starting %s: %s", shape, " ".join(argv))
        try:
            with open(self.run_dir / f"{shape}.log", "ab") as log_file:
                proc = subprocess.Popen(
                    argv,
                    env=full_env,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as exc:
            raise ContainerError(f"cannot start {shape}: {exc}") from exc
        self.pid_file(shape).write_text(f"{proc.pid}\n")
        self._log.info("started shape %s (pid %d)", shape, proc.pid)
        return proc.pid

    def stop(self, shape: str) -> bool:
        """Send SIGTERM to *shape*'s instance.  ``False`` when it was not running."""
        pid_file = self.pid_file(shape)
        pid = self.running_pid(shape)
        if pid is None:
            self._log.info("shape %s is not running", shape)
            pid_file.unlink(missing_ok=True)
            return False
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self._log.info("shape %s exited before it was stopped", shape)
        pid_file.unlink(missing_ok=True)
        self._log.info("stopped shape %s (pid %d)", shape, pid)
        return True
