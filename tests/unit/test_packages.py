"""Tests for runtime package installers."""

from __future__ import annotations

import pytest

from obake.core.packages import (
    CommandPackageInstaller,
    DebPackageInstaller,
    PackageInstaller,
    PackageInstallError,
    make_installer,
    snapshot,
)
from obake.core.runner import DryRunRunner

INSTALL_BODY = (
    'root="$1"; shift; mkdir -p "$root/usr/lib"; '
    'for p in "$@"; do echo "$p" > "$root/usr/lib/$p.so"; done'
)


class TestCommandPackageInstaller:
    def test_reports_added_files(self, tmp_path, write_script):
        script = write_script("install-pkgs", INSTALL_BODY)
        root = tmp_path / "root"
        (root / "etc").mkdir(parents=True)
        (root / "etc" / "existing").write_text("x")

        installer = CommandPackageInstaller(f"{script} {{root}} {{packages}}")
        added = installer.install(["libjack", "liblo"], root)

        assert added == ["/usr/lib/libjack.so", "/usr/lib/liblo.so"]
        assert (root / "usr/lib/liblo.so").read_text() == "liblo\n"

    def test_template_expansion(self, tmp_path):
        runner = DryRunRunner()
        installer = CommandPackageInstaller("fetch-pkgs --root {root} {packages}", runner)
        installer.install(["a", "b"], tmp_path)
        assert runner.commands == [["fetch-pkgs", "--root", str(tmp_path), "a", "b"]]

    def test_nothing_to_install(self, tmp_path):
        runner = DryRunRunner()
        assert CommandPackageInstaller("x {packages}", runner).install([], tmp_path) == []
        assert runner.calls == []

    def test_failure(self, tmp_path, write_script):
        script = write_script("broken", "echo 'no such package' >&2; exit 100")
        with pytest.raises(PackageInstallError, match="no such package") as excinfo:
            CommandPackageInstaller(f"{script} {{packages}}").install(["nope"], tmp_path)
        assert excinfo.value.result.returncode == 100


class TestDebPackageInstaller:
    def test_missing_downloads(self, tmp_path):
        installer = DebPackageInstaller(DryRunRunner())
        with pytest.raises(PackageInstallError, match="downloaded 0"):
            installer.install(["libjack"], tmp_path)

    def test_plan(self):
        assert DebPackageInstaller(DryRunRunner()).plan(["libjack"], "/r") == [
            ["apt-get", "download", "libjack"],
            ["dpkg-deb", "-x", "libjack_*.deb", "/r"],
        ]


class TestHelpers:
    def test_make_installer(self):
        assert isinstance(make_installer("x {packages}"), CommandPackageInstaller)
        assert isinstance(make_installer(None), DebPackageInstaller)
        assert isinstance(make_installer(None), PackageInstaller)

    def test_snapshot(self, tmp_path):
        (tmp_path / "a" / "b").mkdir(parents=True)
        (tmp_path / "a" / "b" / "f").write_text("f")
        (tmp_path / "link").symlink_to("a/b/f")
        assert snapshot(tmp_path) == {"/a/b/f", "/link"}
        assert snapshot(tmp_path / "missing") == set()
