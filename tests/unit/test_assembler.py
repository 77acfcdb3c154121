"""Tests for the RuntimeAssembler: packages, fixups, hygiene, publishing."""

from __future__ import annotations

import json
import os

import pytest

from obake.core.assembler import (
    AssemblyError,
    ImageExistsError,
    RuntimeAssembler,
    read_manifest,
    runscript_text,
)
from obake.core.packages import PackageInstallError
from obake.core.selector import ArtifactSelector, SelectionError
from obake.models.manifest import RuntimeManifest


def _stage(tmp_path, shape, files):
    """Lay out an output tree, select it into a staging image, return (staging, selection)."""
    out = tmp_path / "out"
    for rel, (content, mode) in files.items():
        path = out / rel.lstrip("/")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        path.chmod(mode)
    staging = tmp_path / "images" / ".staging"
    selection = ArtifactSelector().select(out, shape.artifacts, staging / "rootfs")
    return staging, selection


HELLO = {"/usr/local/bin/hello": ("#!/bin/sh\necho hi\n", 0o755)}


class TestAssemble:
    def test_manifest_and_declaration(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(
            runtime_dependencies=["libjack"],
            build_dependencies=["gcc"],
            bindings=[{"name": "udev", "host_path": "/run/udev", "feature": "hotplug"}],
        )
        staging, selection = _stage(tmp_path, shape, HELLO)

        manifest = RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r" * 64)

        assert fake_installer.calls == [["libjack"]]
        assert manifest.packages == ["libjack"]
        assert manifest.package_files == ["/usr/lib/libjack.so"]
        assert manifest.artifacts == ["/usr/local/bin/hello"]
        assert "/usr/local/bin/hello" in manifest.files
        assert "/.obake/entrypoint.json" in manifest.files
        assert manifest.bindings[0].feature == "hotplug"

        declaration = json.loads((staging / "rootfs/.obake/entrypoint.json").read_text())
        assert declaration["binary"] == "/usr/local/bin/hello"
        assert declaration["bindings"][0]["host_path"] == "/run/udev"
        assert read_manifest(staging) == manifest

    def test_runscript_execs_entrypoint(self, tmp_path, make_shape, fake_installer):
        shape = make_shape()
        staging, selection = _stage(tmp_path, shape, HELLO)
        manifest = RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")

        runscript = staging / "rootfs/.singularity.d/runscript"
        assert manifest.runscript == "/.singularity.d/runscript"
        assert "/.singularity.d/runscript" in manifest.files
        assert runscript.read_text() == '#!/bin/sh\nexec /usr/local/bin/hello "$@"\n'
        assert os.access(runscript, os.X_OK)

    def test_runscript_quotes_entrypoint(self):
        assert runscript_text("/opt/my app/bin") == '#!/bin/sh\nexec \'/opt/my app/bin\' "$@"\n'

    def test_build_dependencies_never_installed(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(build_dependencies=["cmake", "libfoo-dev"])
        staging, selection = _stage(tmp_path, shape, HELLO)
        RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")
        assert fake_installer.calls == []

    def test_artifact_digest_excludes_package_files(self, tmp_path, make_shape, fake_installer):
        plain = make_shape()
        with_pkgs = make_shape(runtime_dependencies=["libjack"])
        staging_a, sel_a = _stage(tmp_path / "a", plain, HELLO)
        staging_b, sel_b = _stage(tmp_path / "b", with_pkgs, HELLO)
        assembler = RuntimeAssembler(fake_installer)
        a = assembler.assemble(plain, staging_a, sel_a, recipe_hash="r")
        b = assembler.assemble(with_pkgs, staging_b, sel_b, recipe_hash="r")
        assert a.artifact_digest == b.artifact_digest
        assert a.files != b.files

    def test_package_failure_is_assembly_error(self, tmp_path, make_shape):
        class Broken:
            def install(self, packages, root):
                raise PackageInstallError("apt-get download failed")

        shape = make_shape(runtime_dependencies=["libjack"])
        staging, selection = _stage(tmp_path, shape, HELLO)
        with pytest.raises(AssemblyError, match="apt-get download failed"):
            RuntimeAssembler(Broken()).assemble(shape, staging, selection, recipe_hash="r")

    def test_entrypoint_must_be_executable(self, tmp_path, make_shape, fake_installer):
        shape = make_shape()
        staging, selection = _stage(tmp_path, shape, {"/usr/local/bin/hello": ("data", 0o644)})
        with pytest.raises(SelectionError, match="not an executable"):
            RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")


class TestFixups:
    def test_symlink_rename_replace(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(
            artifacts=["/usr/local"],
            fixups=[
                {"kind": "rename", "path": "/usr/local/etc/hello.conf.dist", "target": "/usr/local/etc/hello.conf"},
                {"kind": "replace", "path": "/usr/local/etc/hello.conf", "old": "/build/prefix", "new": "/usr/local"},
                {"kind": "symlink", "path": "/usr/local/bin/hi", "target": "hello", "reason": "legacy name"},
            ],
        )
        staging, selection = _stage(
            tmp_path,
            shape,
            {**HELLO, "/usr/local/etc/hello.conf.dist": ("prefix=/build/prefix\n", 0o644)},
        )
        manifest = RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")

        root = staging / "rootfs"
        assert (root / "usr/local/etc/hello.conf").read_text() == "prefix=/usr/local\n"
        assert not (root / "usr/local/etc/hello.conf.dist").exists()
        assert os.readlink(root / "usr/local/bin/hi") == "hello"
        assert manifest.files["/usr/local/bin/hi"] == "symlink:hello"
        assert manifest.fixups_applied[2] == "symlink /usr/local/bin/hi -> hello (legacy name)"

    def test_missing_rename_source(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(fixups=[{"kind": "rename", "path": "/etc/nope", "target": "/etc/yes"}])
        staging, selection = _stage(tmp_path, shape, HELLO)
        with pytest.raises(AssemblyError, match="missing"):
            RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")

    def test_missing_symlink_target(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(fixups=[{"kind": "symlink", "path": "/usr/lib/libx.so", "target": "/usr/lib/libx.so.1"}])
        staging, selection = _stage(tmp_path, shape, HELLO)
        with pytest.raises(AssemblyError, match="missing"):
            RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")

    def test_replace_text_absent(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(fixups=[{"kind": "replace", "path": "/usr/local/bin/hello", "old": "nope", "new": "x"}])
        staging, selection = _stage(tmp_path, shape, HELLO)
        with pytest.raises(AssemblyError, match="not found"):
            RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")


class TestHygiene:
    def test_compiler_rejected(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(artifacts=["/usr/local/bin"])
        staging, selection = _stage(
            tmp_path, shape, {**HELLO, "/usr/local/bin/gcc-12": ("elf", 0o755)}
        )
        with pytest.raises(AssemblyError, match="/usr/local/bin/gcc-12"):
            RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")

    def test_source_checkout_rejected(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(artifacts=["/usr/local"])
        staging, selection = _stage(
            tmp_path, shape, {**HELLO, "/usr/local/src/demo/.git/HEAD": ("ref", 0o644)}
        )
        with pytest.raises(AssemblyError, match=r"\.git"):
            RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")

    def test_redeclared_tool_allowed(self, tmp_path, make_shape, fake_installer):
        shape = make_shape(artifacts=["/usr/local/bin"], runtime_dependencies=["make"])
        staging, selection = _stage(tmp_path, shape, {**HELLO, "/usr/local/bin/make": ("elf", 0o755)})
        RuntimeAssembler(fake_installer).assemble(shape, staging, selection, recipe_hash="r")


class TestPublish:
    def _assembled(self, tmp_path, make_shape, fake_installer):
        shape = make_shape()
        staging, selection = _stage(tmp_path, shape, HELLO)
        assembler = RuntimeAssembler(fake_installer)
        return assembler, staging, assembler.assemble(shape, staging, selection, recipe_hash="r")

    def test_publish_renames_into_place(self, tmp_path, make_shape, fake_installer):
        assembler, staging, manifest = self._assembled(tmp_path, make_shape, fake_installer)
        image = assembler.publish(staging, tmp_path / "images", manifest)
        assert image == tmp_path / "images" / "demo-1.0"
        assert not staging.exists()
        assert isinstance(read_manifest(image), RuntimeManifest)
        assert not (image / "rootfs/usr/local/bin/hello").stat().st_mode & 0o222

    def test_existing_image_is_immutable(self, tmp_path, make_shape, fake_installer):
        assembler, staging, manifest = self._assembled(tmp_path, make_shape, fake_installer)
        existing = tmp_path / "images" / "demo-1.0"
        existing.mkdir(parents=True)
        (existing / "marker").write_text("original")
        with pytest.raises(ImageExistsError):
            assembler.publish(staging, tmp_path / "images", manifest)
        assert (existing / "marker").read_text() == "original"
