"""Device bindings — host paths a running instance expects to see.

A missing binding never stops an instance from starting: the feature that
depends on it degrades and a ``DegradedModeWarning`` says which one.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable
from pathlib import Path

from obake.models.shape import DeviceBinding

logger = logging.getLogger(__name__)


class DegradedModeWarning(UserWarning):
    """A declared binding is absent; the named feature will not work."""


def _host_path(binding: DeviceBinding, root: Path) -> Path:
    return Path(root) / binding.host_path.lstrip("/")


def check_bindings(
    bindings: Iterable[DeviceBinding],
    root: Path | str = "/",
) -> list[DeviceBinding]:
    """Return the bindings whose host path does not exist under *root*.

    Each missing binding is logged at warning level and emitted as a
    :class:`DegradedModeWarning`.
    """
    missing: list[DeviceBinding] = []
    for binding in bindings:
        if _host_path(binding, Path(root)).exists():
            logger.debug("binding %s present at %s", binding.name, binding.host_path)
            continue
        feature = binding.feature or binding.name
        message = f"{binding.host_path} is missing; running without {feature}"
        logger.warning("degraded mode: %s", message)
        warnings.warn(message, DegradedModeWarning, stacklevel=2)
        missing.append(binding)
    return missing


def bind_spec(bindings: Iterable[DeviceBinding], root: Path | str = "/") -> str:
    """``host:target`` pairs for present bindings, as ``APPTAINER_BIND`` expects."""
    return ",".join(
        f"{binding.host_path}:{binding.target}"
        for binding in bindings
        if _host_path(binding, Path(root)).exists()
    )
