"""obake data models — all Pydantic v2, frozen where they describe inputs."""

from obake.models.host import (
    AudioConfig,
    AudioInterface,
    DataConfig,
    HostConfig,
    SetupConfig,
    SetupSection,
    ShapeLaunch,
)
from obake.models.manifest import EntrypointDeclaration, RuntimeManifest
from obake.models.shape import (
    BuildStep,
    DeviceBinding,
    FixupKind,
    PinnedReference,
    ReferenceKind,
    RuntimeFixup,
    Shape,
)
from obake.models.stages import (
    STAGE_ORDER,
    VALID_TRANSITIONS,
    BuildReport,
    BuildStage,
    StageState,
    StageTransition,
)

__all__ = [
    # shape recipes
    "ReferenceKind",
    "PinnedReference",
    "BuildStep",
    "FixupKind",
    "RuntimeFixup",
    "DeviceBinding",
    "Shape",
    # runtime images
    "EntrypointDeclaration",
    "RuntimeManifest",
    # build stages
    "BuildStage",
    "StageState",
    "StageTransition",
    "BuildReport",
    "STAGE_ORDER",
    "VALID_TRANSITIONS",
    # host configuration
    "AudioInterface",
    "AudioConfig",
    "DataConfig",
    "HostConfig",
    "SetupSection",
    "ShapeLaunch",
    "SetupConfig",
]
