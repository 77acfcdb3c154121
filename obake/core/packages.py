"""Package installers.

Defines the ``PackageInstaller`` Protocol the assembler depends on and two
backends, used for runtime roots and for build environments alike:

1. **DebPackageInstaller** — downloads each ``.deb`` with ``apt-get
   download`` and unpacks it into the target root with ``dpkg-deb -x``.
   Package maintainer scripts never run and nothing touches the host.
2. **CommandPackageInstaller** — runs a configured command template with
   ``{root}`` and ``{packages}`` placeholders.

Both report the files they added by diffing the root before and after.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from obake.core.runner import CommandResult, CommandRunner, SubprocessRunner, expand_template

logger = logging.getLogger(__name__)


class PackageInstallError(RuntimeError):
    """Raised when a package cannot be installed.

    ``result`` is the failed command, when there was one.
    """

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


def snapshot(root: Path) -> set[str]:
    """Every non-directory entry under *root* as an absolute in-image path."""
    root = Path(root)
    if not root.exists():
        return set()
    return {
        "/" + path.relative_to(root).as_posix()
        for path in root.rglob("*")
        if path.is_symlink() or not path.is_dir()
    }


@runtime_checkable
class PackageInstaller(Protocol):
    """Installs packages into a root directory and reports the added files."""

    def install(self, packages: list[str], root: Path) -> list[str]:
        ...


class DebPackageInstaller:
    """Unpacks Debian packages into a root without running their scripts."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._log = logger or logging.getLogger(__name__)

    def plan(self, packages: list[str], root: Path | str) -> list[list[str]]:
        """The commands ``install`` runs, with download names as globs."""
        return [["apt-get", "download", *packages]] + [
            ["dpkg-deb", "-x", f"{package}_*.deb", str(root)] for package in packages
        ]

    def install(self, packages: list[str], root: Path) -> list[str]:
        if not packages:
            return []
        before = snapshot(root)
        with tempfile.TemporaryDirectory(prefix="obake-debs-") as tmp:
            download = Path(tmp)
            result = self._runner.run(["apt-get", "download", *packages], cwd=download)
            if not result.ok:
                raise PackageInstallError(
                    f"apt-get download failed ({result.returncode}):\n{result.tail()}",
                    result,
                )
            debs = sorted(download.glob("*.deb"))
            if len(debs) < len(packages):
                raise PackageInstallError(
                    f"expected {len(packages)} package(s), downloaded {len(debs)}"
                )
            for deb in debs:
                self._log.debug("unpacking %s", deb.name)
                result = self._runner.run(["dpkg-deb", "-x", str(deb), str(root)])
                if not result.ok:
                    raise PackageInstallError(
                        f"dpkg-deb -x {deb.name} failed:\n{result.tail()}", result
                    )
        return sorted(snapshot(root) - before)


class CommandPackageInstaller:
    """Installs packages with a user-supplied command template.

    Example template: ``my-installer --root {root} {packages}``.
    """

    def __init__(
        self,
        template: str,
        runner: CommandRunner | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._template = template
        self._runner = runner or SubprocessRunner()
        self._log = logger or logging.getLogger(__name__)

    def plan(self, packages: list[str], root: Path | str) -> list[list[str]]:
        return [expand_template(self._template, packages, root=str(root))]

    def install(self, packages: list[str], root: Path) -> list[str]:
        if not packages:
            return []
        before = snapshot(root)
        argv = expand_template(self._template, packages, root=str(root))
        result = self._runner.run(argv)
        if not result.ok:
            raise PackageInstallError(
                f"{result.command_line} failed ({result.returncode}):\n{result.tail()}",
                result,
            )
        return sorted(snapshot(root) - before)


def make_installer(
    template: str | None, runner: CommandRunner | None = None
) -> DebPackageInstaller | CommandPackageInstaller:
    """Installer for a settings value: a template, or ``None`` for Debian packages."""
    if template:
        return CommandPackageInstaller(template, runner)
    return DebPackageInstaller(runner)
