"""Setups — an audio interface plus an ordered list of shapes.

Starting a setup brings up the interface's unit, then each shape in the
listed order.  Stopping walks the shapes in reverse and takes the interface
down last.
"""

from __future__ import annotations

import logging
from pathlib import Path

from obake.launcher.containers import ContainerLauncher
from obake.launcher.images import resolve_image
from obake.launcher.units import UnitManager
from obake.models.host import HostConfig, SetupConfig, ShapeLaunch
from obake.runtime.bindings import bind_spec

logger = logging.getLogger(__name__)


class SetupError(RuntimeError):
    """Raised when a setup names an interface the host does not know."""


def list_setups(setups_dir: Path) -> list[Path]:
    """Setup files in *setups_dir*.  Raises ``FileNotFoundError`` when there are none."""
    setups_dir = Path(setups_dir)
    logger.debug("setups directory: %s", setups_dir)
    try:
        found = sorted(p for p in setups_dir.iterdir() if p.suffix == ".toml")
    except OSError as exc:
        raise FileNotFoundError(f"Failed to read setups directory: {setups_dir}") from exc
    if not found:
        raise FileNotFoundError(f"No setups found in directory: {setups_dir}")
    return found


class SetupRunner:
    """Starts and stops setups against one host configuration."""

    def __init__(
        self,
        host: HostConfig,
        units: UnitManager,
        containers: ContainerLauncher,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.host = host
        self.units = units
        self.containers = containers
        self._log = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Shapes
    # ------------------------------------------------------------------

    def launch_env(self, launch: ShapeLaunch, bindings_spec: str) -> dict[str, str]:
        """The shape's env with the image's present bindings appended."""
        env = dict(launch.env or {})
        if bindings_spec:
            var = self.containers.bind_variable
            env[var] = f"{env[var]},{bindings_spec}" if env.get(var) else bindings_spec
        return env

    def start_shape(self, name: str, launch: ShapeLaunch) -> int | None:
        if not launch.image:
            self._log.info("shape %s has no container image", name)
            return None
        image = resolve_image(launch.image, self.host.data.images_dir)
        bindings = image.manifest.bindings if image.manifest else []
        env = self.launch_env(launch, bind_spec(bindings))
        if env:
            self._log.debug("shape %s environment: %s", name, env)
        entrypoint = image.manifest.entrypoint if image.manifest else None
        return self.containers.start(
            name, image.run_target, env, entrypoint=entrypoint, args=launch.args
        )

    # ------------------------------------------------------------------
    # Setups
    # ------------------------------------------------------------------

    def start(self, setup: SetupConfig) -> list[str]:
        """Start the interface and every listed shape; return the shapes started."""
        interface_name = setup.setup.interface
        interface = self.host.get_audio_interface(interface_name)
        if interface is None:
            raise SetupError(f"Interface {interface_name!r} not found in configuration")
        self._log.info("using interface %s (%s)", interface_name, interface.interface_type)
        if interface.unit:
            self.units.start(interface.unit)
        else:
            self._log.info("interface %s has no systemd unit to start", interface_name)

        started: list[str] = []
        for name in setup.managed_shapes:
            launch = setup.get_shape(name)
            if launch is None:
                self._log.info("shape %r not found in setup, skipping", name)
                continue
            self._log.info("starting shape: %s", name)
            if self.start_shape(name, launch) is not None:
                started.append(name)
        self._log.info("setup started")
        return started

    def stop(self, setup: SetupConfig) -> list[str]:
        """Stop shapes in reverse order, then the interface; return the shapes stopped."""
        stopped: list[str] = []
        for name in reversed(setup.managed_shapes):
            launch = setup.get_shape(name)
            if launch is None:
                self._log.info("shape %r not found in setup, skipping", name)
                continue
            if not launch.image:
                self._log.info("shape %s has no container to stop", name)
                continue
            if self.containers.stop(name):
                stopped.append(name)

        interface_name = setup.setup.interface
        interface = self.host.get_audio_interface(interface_name)
        if interface is None:
            self._log.info("interface %r not found in configuration", interface_name)
        elif interface.unit:
            self.units.stop(interface.unit)
        else:
            self._log.info("interface %s has no systemd unit to stop", interface_name)
        self._log.info("setup stopped")
        return stopped
