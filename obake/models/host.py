"""Host-side configuration models: audio interfaces, data dirs, setups.

Both files are TOML with kebab-case keys; the models accept those keys
through aliases and also the snake_case field names.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class AudioInterface(BaseModel):
    """An audio interface and the systemd unit that brings it up, if any."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    interface_type: str = Field(alias="type")
    unit: str | None = None


class AudioConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    default_interface: str = Field(alias="default-interface")
    interfaces: dict[str, AudioInterface] = {}


class DataConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    images_dir: Path = Field(alias="images-dir")
    setups_dir: Path = Field(alias="setups-dir")
    data_dir: Path = Field(alias="data-dir")


class HostConfig(BaseModel):
    """The host configuration file (``config.toml``)."""

    model_config = ConfigDict(frozen=True)

    audio: AudioConfig
    data: DataConfig

    def get_audio_interface(self, name: str) -> AudioInterface | None:
        return self.audio.interfaces.get(name)

    def get_default_audio_interface(self) -> AudioInterface | None:
        return self.audio.interfaces.get(self.audio.default_interface)

    def list_audio_interfaces(self) -> list[str]:
        return sorted(self.audio.interfaces)


class SetupSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    interface: str
    shapes: list[str] = []


class ShapeLaunch(BaseModel):
    """How a setup launches one shape: its image, arguments and extra environment.

    ``args`` are appended to the image's entrypoint unchanged.
    """

    model_config = ConfigDict(frozen=True)

    image: str | None = None
    args: list[str] = []
    env: dict[str, str] | None = None


class SetupConfig(BaseModel):
    """A setup file: which interface to bring up and which shapes to run."""

    model_config = ConfigDict(frozen=True)

    setup: SetupSection
    shapes: dict[str, ShapeLaunch] = {}

    def get_shape(self, name: str) -> ShapeLaunch | None:
        return self.shapes.get(name)

    def list_shapes(self) -> list[str]:
        return sorted(self.shapes)

    @property
    def managed_shapes(self) -> list[str]:
        return list(self.setup.shapes)
