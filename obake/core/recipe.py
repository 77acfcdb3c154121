"""Shape recipe loading and validation.

A recipe is one TOML file per shape::

    name = "scsynth"
    version = "3.13.0"
    entrypoint = "/usr/local/bin/scsynth"
    build_dependencies = ["build-essential", "cmake"]
    artifacts = ["/usr/local/bin/scsynth", "/usr/local/lib/SuperCollider/plugins"]
    runtime_dependencies = ["libjack-jackd2-0", "libfftw3-single3"]

    [reference]
    kind = "git"
    url = "https://github.com/supercollider/supercollider.git"
    tag = "Version-3.13.0"

    [[build_steps]]
    name = "configure"
    run = "cmake -S . -B build -DCMAKE_INSTALL_PREFIX=/usr/local"

The reference's ``version`` defaults to the shape's own ``version``.
"""

from __future__ import annotations

import logging
import tomllib
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Any

from pydantic import ValidationError

from obake.models.shape import Shape

logger = logging.getLogger(__name__)

# Binaries that only belong in a build environment.
BUILD_TOOLS: frozenset[str] = frozenset(
    {
        "as",
        "autoconf",
        "automake",
        "c++",
        "cc",
        "clang",
        "clang++",
        "cmake",
        "g++",
        "gcc",
        "git",
        "ld",
        "libtool",
        "make",
        "meson",
        "ninja",
        "pkg-config",
    }
)


class RecipeError(RuntimeError):
    """Raised when a recipe cannot be loaded or violates a pinning rule."""


def parse_shape(data: dict[str, Any], *, source: str = "<recipe>") -> Shape:
    """Validate a recipe mapping into a :class:`Shape`."""
    data = dict(data)
    reference = dict(data.get("reference") or {})
    if "version" in data:
        reference.setdefault("version", data["version"])
    data["reference"] = reference
    try:
        shape = Shape.model_validate(data)
    except ValidationError as exc:
        raise RecipeError(f"{source}: invalid recipe:\n{exc}") from exc
    validate_shape(shape, source=source)
    return shape


def load_shape(path: Path) -> Shape:
    """Load one recipe file."""
    path = Path(path)
    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError:
        raise RecipeError(f"recipe not found: {path}") from None
    except tomllib.TOMLDecodeError as exc:
        raise RecipeError(f"{path}: {exc}") from exc
    shape = parse_shape(data, source=str(path))
    logger.debug("loaded recipe %s from %s", shape.image_name, path)
    return shape


def load_shapes(directory: Path) -> dict[str, Shape]:
    """Load every ``*.toml`` recipe in *directory*, keyed by shape name."""
    directory = Path(directory)
    if not directory.is_dir():
        raise RecipeError(f"shapes directory not found: {directory}")
    shapes: dict[str, Shape] = {}
    for path in sorted(directory.glob("*.toml")):
        shape = load_shape(path)
        if shape.name in shapes:
            raise RecipeError(f"duplicate shape name {shape.name!r} in {path}")
        shapes[shape.name] = shape
    return shapes


def _covered(entrypoint: str, pattern: str) -> bool:
    """Whether an allow-list pattern selects the entrypoint path.

    A pattern that matches a directory selects its whole subtree, so every
    ancestor of the entrypoint is tried as well.
    """
    path = PurePosixPath(entrypoint)
    candidates = [path, *path.parents]
    pattern = pattern.rstrip("/") or "/"
    return any(fnmatchcase(str(candidate), pattern) for candidate in candidates)


def validate_shape(shape: Shape, *, source: str = "<recipe>") -> list[str]:
    """Check cross-field rules; return non-fatal advisories.

    Fatal: the entrypoint is not selected by any allow-list pattern (it could
    never reach the runtime image).
    """
    if not any(_covered(shape.entrypoint, pattern) for pattern in shape.artifacts):
        raise RecipeError(
            f"{source}: entrypoint {shape.entrypoint} is not covered by any artifact pattern"
        )

    advisories: list[str] = []
    redeclared = sorted(set(shape.build_dependencies) & set(shape.runtime_dependencies))
    for package in redeclared:
        advisories.append(f"{package} is both a build and a runtime dependency")
    for name in sorted(BUILD_TOOLS & set(shape.runtime_dependencies)):
        advisories.append(f"build tool {name} is re-declared as a runtime dependency")
    for advisory in advisories:
        logger.info("%s: %s", shape.name, advisory)
    return advisories
