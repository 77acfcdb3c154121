"""Artifact Selector — copies allow-listed paths out of a build's output tree.

The allow-list is closed: a file reaches the runtime root only when one of
the shape's patterns selects it (directly, or through a selected directory).
A pattern that selects nothing is recorded but is not an error; a missing
*required* path is reported through :meth:`ArtifactSelector.require`.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class SelectionError(RuntimeError):
    """Raised when a required artifact is absent from the runtime root."""


class SelectionResult(BaseModel):
    """Paths copied into the runtime root, as absolute in-image paths."""

    model_config = ConfigDict(frozen=True)

    files: list[str]
    empty_patterns: list[str] = []


def _walk_files(directory: Path) -> list[Path]:
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(directory):
        base = Path(dirpath)
        for name in list(dirnames):
            # Symlinked directories are copied as links, not descended into.
            if (base / name).is_symlink():
                found.append(base / name)
                dirnames.remove(name)
        found.extend(base / name for name in filenames)
    return found


class ArtifactSelector:
    """Matches allow-list patterns against an output tree and copies matches."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(__name__)

    def match(self, output_tree: Path, pattern: str) -> list[Path]:
        """Files of *output_tree* selected by one absolute pattern."""
        relative = pattern.lstrip("/")
        if not relative:
            return _walk_files(output_tree)
        selected: list[Path] = []
        for path in sorted(output_tree.glob(relative)):
            if path.is_dir() and not path.is_symlink():
                selected.extend(_walk_files(path))
            else:
                selected.append(path)
        return selected

    def select(self, output_tree: Path, patterns: list[str], runtime_root: Path) -> SelectionResult:
        """Copy exactly the matched files, preserving relative structure."""
        output_tree = Path(output_tree)
        runtime_root = Path(runtime_root)
        runtime_root.mkdir(parents=True, exist_ok=True)

        chosen: dict[str, Path] = {}
        empty: list[str] = []
        for pattern in patterns:
            matches = self.match(output_tree, pattern)
            if not matches:
                self._log.debug("artifact pattern %s matched nothing", pattern)
                empty.append(pattern)
            for path in matches:
                chosen["/" + path.relative_to(output_tree).as_posix()] = path

        for image_path, source in sorted(chosen.items()):
            dest = runtime_root / image_path.lstrip("/")
            dest.parent.mkdir(parents=True, exist_ok=True)
            if source.is_symlink():
                os.symlink(os.readlink(source), dest)
            else:
                shutil.copy2(source, dest)

        self._log.info("selected %d artifact(s) from %s", len(chosen), output_tree)
        return SelectionResult(files=sorted(chosen), empty_patterns=empty)

    @staticmethod
    def require(runtime_root: Path, image_path: str, *, executable: bool = False) -> Path:
        """Return the runtime-root path for *image_path* or raise ``SelectionError``."""
        path = Path(runtime_root) / image_path.lstrip("/")
        if not path.exists():
            raise SelectionError(f"required artifact {image_path} is missing from the runtime image")
        if executable and not (path.is_file() and os.access(path, os.X_OK)):
            raise SelectionError(f"required artifact {image_path} is not an executable file")
        return path
