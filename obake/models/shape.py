"""Shape recipe models — the declarative description of one runtime image.

A Shape pins an upstream source, lists the ordered build steps that turn it
into an output tree, and names exactly which files of that tree survive into
the runtime image.  Build-time and runtime dependency lists are kept apart:
nothing from the build environment reaches the runtime image unless it is
re-declared as a runtime dependency.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")
_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
_VERSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+~-]*$")

# Reference names that move over time and can never pin a build.
MOVING_REFERENCES: frozenset[str] = frozenset(
    {"HEAD", "main", "master", "develop", "trunk", "latest"}
)


def _image_path(value: str, what: str) -> str:
    """Check that *value* is an absolute in-image path that cannot leave the root."""
    if not value.startswith("/"):
        raise ValueError(f"{what} must be absolute: {value!r}")
    if ".." in value.split("/"):
        raise ValueError(f"{what} may not traverse upwards: {value!r}")
    return value


def _escapes(directory: str, relative: str) -> bool:
    depth = len([part for part in directory.split("/") if part])
    for part in relative.split("/"):
        if part == "..":
            depth -= 1
            if depth < 0:
                return True
        elif part not in ("", "."):
            depth += 1
    return False


class ReferenceKind(str, Enum):
    """How an upstream source is pinned."""

    TARBALL = "tarball"
    GIT = "git"


class PinnedReference(BaseModel):
    """An exact, reproducible upstream reference.

    Tarballs are pinned by SHA-256 and must use a versioned URL.  Git sources
    are pinned by commit hash, by tag, or by both (the tag is then verified
    to resolve to the commit).  Branches are rejected.
    """

    model_config = ConfigDict(frozen=True)

    kind: ReferenceKind
    url: str
    version: str
    sha256: str | None = None
    commit: str | None = None
    tag: str | None = None
    submodules: bool = False

    @field_validator("sha256", "commit")
    @classmethod
    def _lowercase_hex(cls, value: str | None) -> str | None:
        return value.lower() if value else value

    @model_validator(mode="after")
    def _check_pin(self) -> PinnedReference:
        if self.kind == ReferenceKind.TARBALL:
            if not self.sha256 or not _SHA256_RE.match(self.sha256):
                raise ValueError("tarball references require a 64-hex sha256")
            if self.version not in self.url:
                raise ValueError(
                    f"tarball url {self.url!r} does not carry version {self.version!r}"
                )
            if self.commit or self.tag or self.submodules:
                raise ValueError("tarball references take no commit, tag or submodules")
        else:
            if not self.commit and not self.tag:
                raise ValueError("git references require a commit, a tag, or both")
            if self.commit and not _COMMIT_RE.match(self.commit):
                raise ValueError(f"git commit must be a full 40-hex hash, got {self.commit!r}")
            if self.tag and (
                self.tag in MOVING_REFERENCES or self.tag.startswith("refs/heads/")
            ):
                raise ValueError(f"{self.tag!r} is a moving reference, not a pin")
            if self.sha256:
                raise ValueError("git references take no sha256")
        return self

    @property
    def pin(self) -> str:
        """The exact value the fetcher verifies."""
        if self.kind == ReferenceKind.TARBALL:
            return f"sha256:{self.sha256}"
        return self.commit or f"tag:{self.tag}"


class BuildStep(BaseModel):
    """One opaque command line of a build, run with ``/bin/sh -c``."""

    model_config = ConfigDict(frozen=True)

    name: str
    run: str
    env: dict[str, str] = {}

    @field_validator("run")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("build step command is empty")
        return value


class FixupKind(str, Enum):
    SYMLINK = "symlink"
    RENAME = "rename"
    REPLACE = "replace"


class RuntimeFixup(BaseModel):
    """A documented adjustment applied to the runtime root after install.

    ``symlink``: create ``path`` pointing at ``target``.
    ``rename``:  move ``path`` to ``target``.
    ``replace``: substitute ``old`` with ``new`` inside the text file ``path``.
    """

    model_config = ConfigDict(frozen=True)

    kind: FixupKind
    path: str
    target: str | None = None
    old: str | None = None
    new: str | None = None
    reason: str = ""

    @model_validator(mode="after")
    def _check_fields(self) -> RuntimeFixup:
        _image_path(self.path, "fixup path")
        if self.kind in (FixupKind.SYMLINK, FixupKind.RENAME) and not self.target:
            raise ValueError(f"{self.kind.value} fixup requires a target")
        if self.kind == FixupKind.RENAME:
            _image_path(self.target, "rename fixup target")
        elif self.kind == FixupKind.SYMLINK:
            if self.target.startswith("/"):
                _image_path(self.target, "symlink fixup target")
            elif _escapes(self.path.rsplit("/", 1)[0], self.target):
                raise ValueError(f"symlink fixup target leaves the image: {self.target!r}")
        if self.kind == FixupKind.REPLACE and (self.old is None or self.new is None):
            raise ValueError("replace fixup requires old and new")
        return self


class DeviceBinding(BaseModel):
    """A host path that must be made visible to a running instance.

    Declared at build time, checked at launch.  When the path is missing the
    named feature degrades; the instance still starts.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    host_path: str
    target_path: str | None = None
    feature: str = ""

    @field_validator("host_path", "target_path")
    @classmethod
    def _check_paths(cls, value: str | None) -> str | None:
        return value if value is None else _image_path(value, "binding path")

    @property
    def target(self) -> str:
        return self.target_path or self.host_path


class Shape(BaseModel):
    """A named, versioned, independently buildable runtime image recipe."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    reference: PinnedReference
    build_dependencies: list[str] = []
    build_steps: list[BuildStep] = Field(min_length=1)
    artifacts: list[str] = Field(min_length=1)
    runtime_dependencies: list[str] = []
    fixups: list[RuntimeFixup] = []
    bindings: list[DeviceBinding] = []
    entrypoint: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(f"invalid shape name {value!r}")
        return value

    @field_validator("artifacts")
    @classmethod
    def _absolute_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            if not pattern.startswith("/"):
                raise ValueError(f"artifact pattern must be absolute: {pattern!r}")
            if ".." in pattern.split("/"):
                raise ValueError(f"artifact pattern may not traverse upwards: {pattern!r}")
        return value

    @field_validator("entrypoint")
    @classmethod
    def _absolute_entrypoint(cls, value: str) -> str:
        return _image_path(value, "entrypoint")

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not _VERSION_RE.match(value):
            raise ValueError(f"invalid shape version {value!r}")
        return value

    @model_validator(mode="after")
    def _check_version_matches_reference(self) -> Shape:
        if self.reference.version != self.version:
            raise ValueError(
                f"shape version {self.version!r} does not match "
                f"pinned reference version {self.reference.version!r}"
            )
        return self

    @property
    def image_name(self) -> str:
        return f"{self.name}-{self.version}"
