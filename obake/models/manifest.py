"""Runtime image manifest models (immutable once published)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from obake.models.shape import DeviceBinding, PinnedReference

# Location of the entrypoint declaration inside every runtime root.
DECLARATION_DIR = ".obake"
DECLARATION_FILE = "entrypoint.json"
# Run by `<runtime> run <rootfs>`; execs the entrypoint with the caller's arguments.
RUNSCRIPT = ".singularity.d/runscript"
MANIFEST_FILE = "manifest.json"
ROOTFS_DIR = "rootfs"


class EntrypointDeclaration(BaseModel):
    """What ``obake-entrypoint`` needs at instance start, nothing more."""

    model_config = ConfigDict(frozen=True)

    shape: str
    version: str
    binary: str
    bindings: list[DeviceBinding] = []


class RuntimeManifest(BaseModel):
    """Describes a published runtime image.

    ``files`` maps every path in the runtime root to its SHA-256 digest
    (``symlink:<target>`` for symbolic links).  ``artifact_digest`` covers
    only the allow-listed artifacts, so two builds of the same recipe can be
    compared without the package-installed files.
    """

    model_config = ConfigDict(frozen=True)

    shape: str
    version: str
    reference: PinnedReference
    recipe_hash: str
    entrypoint: str
    runscript: str | None = None
    artifacts: list[str]
    artifact_digest: str
    packages: list[str] = []
    package_files: list[str] = []
    files: dict[str, str] = {}
    bindings: list[DeviceBinding] = []
    fixups_applied: list[str] = []
    built_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def image_name(self) -> str:
        return f"{self.shape}-{self.version}"
