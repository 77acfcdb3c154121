"""Process configuration — env-driven settings plus the host config file.

``ObakeSettings`` reads ``OBAKE_*`` environment variables (and an optional
``.env`` file).  The host configuration (audio interfaces, data directories)
lives in a TOML file found through ``OBAKE_CONFIG_FILE`` or the standard
search path.

Examples
--------
Override via environment::

    export OBAKE_LOG_LEVEL=debug
    export OBAKE_SHAPES_DIR=/srv/obake/shapes
    export OBAKE_CONFIG_FILE=/srv/obake/config.toml
"""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from pathlib import Path

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from obake.models.host import HostConfig, SetupConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "OBAKE_CONFIG_FILE"


class ConfigNotFoundError(RuntimeError):
    """Raised when no configuration file exists at any searched location."""


class ConfigInvalidError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


class ObakeSettings(BaseSettings):
    """Settings with environment variable overrides.

    ``images_dir`` is optional here; when unset the host config file's
    ``data.images-dir`` is used.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="OBAKE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "info"
    config_file: Path | None = None

    # Build inputs and outputs
    shapes_dir: Path = Path("shapes")
    images_dir: Path | None = None
    work_dir: Path = Path(tempfile.gettempdir()) / "obake"
    cache_dir: Path = Path.home() / ".cache" / "obake"

    # Package installation; {packages} expands to one argument per package and
    # {root} to the target root.  Unset: apt-get download + dpkg-deb -x.
    build_install_command: str | None = None
    runtime_install_command: str | None = None

    # Fetching and building
    fetch_timeout_seconds: int = 300
    max_parallel_builds: int = 2

    # Launching
    container_runtime: str = "apptainer"


def load_settings() -> ObakeSettings:
    """Build settings from the current environment."""
    return ObakeSettings()


def config_search_paths() -> list[Path]:
    """Host config locations, most specific first."""
    return [
        Path.home() / ".config" / "obake" / "config.toml",
        Path("/etc/obake/config.toml"),
    ]


def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError:
        raise ConfigNotFoundError(f"Configuration file not found: {path}") from None
    except tomllib.TOMLDecodeError as exc:
        raise ConfigInvalidError(f"{path}: {exc}") from exc


def load_host_config_from_path(path: Path) -> HostConfig:
    """Load and validate a host config file."""
    data = _read_toml(Path(path))
    try:
        config = HostConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigInvalidError(f"{path}: {exc}") from exc
    logger.debug("loaded config from path: %s", path)
    return config


def load_host_config(settings: ObakeSettings | None = None) -> HostConfig:
    """Find and load the host config.

    Order: explicit ``settings.config_file``, ``$OBAKE_CONFIG_FILE``, then
    :func:`config_search_paths`.
    """
    explicit = settings.config_file if settings else None
    if explicit is None and os.environ.get(CONFIG_FILE_ENV):
        explicit = Path(os.environ[CONFIG_FILE_ENV])
    if explicit is not None:
        logger.debug("%s set to: %s", CONFIG_FILE_ENV, explicit)
        return load_host_config_from_path(explicit)

    searched = config_search_paths()
    for path in searched:
        logger.debug("checking config path: %s", path)
        if path.exists():
            return load_host_config_from_path(path)

    raise ConfigNotFoundError(
        "No configuration file found. Searched in: "
        + ", ".join(str(p) for p in searched)
    )


def load_setup(path: Path) -> SetupConfig:
    """Load and validate a setup file."""
    logger.debug("loading setup configuration from path: %s", path)
    data = _read_toml(Path(path))
    try:
        return SetupConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigInvalidError(f"{path}: {exc}") from exc


def resolve_images_dir(settings: ObakeSettings) -> Path:
    """``settings.images_dir`` if set, else the host config's images dir."""
    if settings.images_dir is not None:
        return settings.images_dir
    return load_host_config(settings).data.images_dir
