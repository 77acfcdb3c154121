"""Runtime Assembler — turns selected artifacts into a minimal runtime image.

Image layout (``{images_dir}/{name}-{version}``)::

    manifest.json           RuntimeManifest
    rootfs/                 the runtime root
        .obake/entrypoint.json
        .singularity.d/runscript   exec <entrypoint> "$@"
        <allow-listed artifacts, runtime packages, fixups>

Assembly happens in a staging directory; :meth:`RuntimeAssembler.publish`
renames it into place in one step.  An image is never modified once
published.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shlex
from pathlib import Path

from obake.core.fsutil import make_read_only
from obake.core.hasher import artifact_digest, path_digest
from obake.core.packages import PackageInstaller, PackageInstallError
from obake.core.recipe import BUILD_TOOLS
from obake.core.selector import ArtifactSelector, SelectionResult
from obake.models.manifest import (
    DECLARATION_DIR,
    DECLARATION_FILE,
    MANIFEST_FILE,
    ROOTFS_DIR,
    RUNSCRIPT,
    EntrypointDeclaration,
    RuntimeManifest,
)
from obake.models.shape import FixupKind, RuntimeFixup, Shape

logger = logging.getLogger(__name__)

_BIN_DIRS = ("bin", "sbin", "usr/bin", "usr/sbin", "usr/local/bin", "usr/local/sbin")
# gcc-12, cmake3, x86_64-linux-gnu-gcc ...
_VERSION_SUFFIX_RE = re.compile(r"-?[0-9][0-9.]*$")


class AssemblyError(RuntimeError):
    """Raised when a runtime image cannot be assembled or would be unclean."""


class ImageExistsError(AssemblyError):
    """Raised when publishing over an existing image."""


def _tool_name(filename: str) -> str:
    base = _VERSION_SUFFIX_RE.sub("", filename)
    for tool in BUILD_TOOLS:
        if base.endswith(f"-{tool}"):
            return tool
    return base


def _inside(root: Path, image_path: str) -> Path:
    if ".." in image_path.split("/"):
        raise AssemblyError(f"{image_path} leaves the runtime root")
    return root / image_path.lstrip("/")


def runscript_text(binary: str) -> str:
    """Shell runscript that replaces itself with *binary* and its arguments."""
    return f"#!/bin/sh\nexec {shlex.quote(binary)} \"$@\"\n"


class RuntimeAssembler:
    """Installs runtime dependencies, applies fixups and checks hygiene.

    Parameters
    ----------
    installer:
        Installs ``runtime_dependencies`` into the runtime root.  Build
        dependencies are never passed to it.
    """

    def __init__(
        self,
        installer: PackageInstaller,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._installer = installer
        self._log = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(
        self,
        shape: Shape,
        image_dir: Path,
        selection: SelectionResult,
        *,
        recipe_hash: str,
    ) -> RuntimeManifest:
        """Finish the runtime root under ``image_dir/rootfs`` and write the manifest.

        *selection* must already have been copied into ``image_dir/rootfs``.
        """
        image_dir = Path(image_dir)
        root = image_dir / ROOTFS_DIR
        if not root.is_dir():
            raise AssemblyError(f"{shape.image_name}: runtime root {root} does not exist")

        artifact_files = {
            path: path_digest(_inside(root, path)) for path in selection.files
        }

        package_files = self._install_runtime_dependencies(shape, root)
        applied = [self._apply_fixup(shape, root, fixup) for fixup in shape.fixups]

        ArtifactSelector.require(root, shape.entrypoint, executable=True)
        self.check_hygiene(shape, root)

        for binding in shape.bindings:
            self._log.debug(
                "%s: expects %s at %s (%s)",
                shape.image_name,
                binding.host_path,
                binding.target,
                binding.feature or binding.name,
            )

        declaration = EntrypointDeclaration(
            shape=shape.name,
            version=shape.version,
            binary=shape.entrypoint,
            bindings=shape.bindings,
        )
        declaration_dir = root / DECLARATION_DIR
        declaration_dir.mkdir(exist_ok=True)
        (declaration_dir / DECLARATION_FILE).write_text(
            declaration.model_dump_json(indent=2) + "\n"
        )
        runscript = root / RUNSCRIPT
        runscript.parent.mkdir(parents=True, exist_ok=True)
        runscript.write_text(runscript_text(shape.entrypoint))
        runscript.chmod(0o755)

        manifest = RuntimeManifest(
            shape=shape.name,
            version=shape.version,
            reference=shape.reference,
            recipe_hash=recipe_hash,
            entrypoint=shape.entrypoint,
            runscript="/" + RUNSCRIPT,
            artifacts=sorted(artifact_files),
            artifact_digest=artifact_digest(artifact_files),
            packages=list(shape.runtime_dependencies),
            package_files=package_files,
            files=self.digest_tree(root),
            bindings=shape.bindings,
            fixups_applied=applied,
        )
        (image_dir / MANIFEST_FILE).write_text(manifest.model_dump_json(indent=2) + "\n")
        self._log.info(
            "%s: assembled %d file(s), %d runtime package(s)",
            shape.image_name,
            len(manifest.files),
            len(manifest.packages),
        )
        return manifest

    def _install_runtime_dependencies(self, shape: Shape, root: Path) -> list[str]:
        if not shape.runtime_dependencies:
            return []
        self._log.info(
            "%s: installing runtime dependencies: %s",
            shape.image_name,
            ", ".join(shape.runtime_dependencies),
        )
        try:
            return self._installer.install(list(shape.runtime_dependencies), root)
        except PackageInstallError as exc:
            raise AssemblyError(f"{shape.image_name}: {exc}") from exc

    def _apply_fixup(self, shape: Shape, root: Path, fixup: RuntimeFixup) -> str:
        path = _inside(root, fixup.path)
        if fixup.kind == FixupKind.SYMLINK:
            if path.exists() or path.is_symlink():
                raise AssemblyError(f"{shape.image_name}: symlink fixup {fixup.path} already exists")
            target = fixup.target or ""
            resolved = _inside(root, target) if target.startswith("/") else path.parent / target
            if not (resolved.exists() or resolved.is_symlink()):
                raise AssemblyError(
                    f"{shape.image_name}: symlink fixup target {target} is missing"
                )
            path.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(target, path)
            summary = f"symlink {fixup.path} -> {target}"
        elif fixup.kind == FixupKind.RENAME:
            if not (path.exists() or path.is_symlink()):
                raise AssemblyError(f"{shape.image_name}: rename fixup source {fixup.path} is missing")
            dest = _inside(root, fixup.target or "")
            if dest.exists() or dest.is_symlink():
                raise AssemblyError(f"{shape.image_name}: rename fixup target {fixup.target} exists")
            dest.parent.mkdir(parents=True, exist_ok=True)
            path.rename(dest)
            summary = f"rename {fixup.path} -> {fixup.target}"
        else:
            if not path.is_file():
                raise AssemblyError(f"{shape.image_name}: replace fixup file {fixup.path} is missing")
            text = path.read_text()
            if fixup.old not in text:
                raise AssemblyError(
                    f"{shape.image_name}: {fixup.old!r} not found in {fixup.path}"
                )
            path.write_text(text.replace(fixup.old or "", fixup.new or ""))
            summary = f"replace in {fixup.path}"

        if fixup.reason:
            summary = f"{summary} ({fixup.reason})"
        self._log.info("%s: fixup %s", shape.image_name, summary)
        return summary

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @staticmethod
    def check_hygiene(shape: Shape, root: Path) -> None:
        """Reject images that carry a source checkout or build tooling.

        A build tool is accepted only when the shape re-declares it as a
        runtime dependency.
        """
        redeclared = set(shape.runtime_dependencies)
        problems: list[str] = []
        for dirpath, dirnames, _filenames in os.walk(root):
            if ".git" in dirnames:
                problems.append(
                    "/" + (Path(dirpath) / ".git").relative_to(root).as_posix()
                )
                dirnames.remove(".git")

        for bin_dir in _BIN_DIRS:
            directory = root / bin_dir
            if not directory.is_dir():
                continue
            for entry in sorted(directory.iterdir()):
                tool = _tool_name(entry.name)
                if tool in BUILD_TOOLS and tool not in redeclared:
                    problems.append(f"/{bin_dir}/{entry.name}")

        if problems:
            raise AssemblyError(
                f"{shape.image_name}: build tooling or source checkout in runtime image: "
                + ", ".join(problems)
            )

    @staticmethod
    def digest_tree(root: Path) -> dict[str, str]:
        """Per-file digests of every non-directory entry under *root*."""
        files: dict[str, str] = {}
        for dirpath, dirnames, filenames in os.walk(root):
            base = Path(dirpath)
            for name in list(dirnames):
                if (base / name).is_symlink():
                    files["/" + (base / name).relative_to(root).as_posix()] = path_digest(base / name)
                    dirnames.remove(name)
            for name in filenames:
                path = base / name
                files["/" + path.relative_to(root).as_posix()] = path_digest(path)
        return dict(sorted(files.items()))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, staging: Path, images_dir: Path, manifest: RuntimeManifest) -> Path:
        """Rename a fully assembled staging image to ``images_dir/{name}-{version}``."""
        images_dir = Path(images_dir)
        images_dir.mkdir(parents=True, exist_ok=True)
        dest = images_dir / manifest.image_name
        if dest.exists():
            raise ImageExistsError(f"image {manifest.image_name} already exists at {dest}")
        make_read_only(staging)
        try:
            os.rename(staging, dest)
        except OSError as exc:
            if dest.exists():
                raise ImageExistsError(
                    f"image {manifest.image_name} already exists at {dest}"
                ) from exc
            raise AssemblyError(f"cannot publish {manifest.image_name}: {exc}") from exc
        self._log.info("published %s", dest)
        return dest


def read_manifest(image_dir: Path) -> RuntimeManifest:
    """Load the manifest of a published image."""
    path = Path(image_dir) / MANIFEST_FILE
    return RuntimeManifest.model_validate(json.loads(path.read_text()))
