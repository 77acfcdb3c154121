"""Tests for the shape, manifest and host configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from obake.models.host import HostConfig, SetupConfig
from obake.models.shape import (
    BuildStep,
    DeviceBinding,
    FixupKind,
    PinnedReference,
    ReferenceKind,
    RuntimeFixup,
    Shape,
)

COMMIT = "a" * 40
SHA = "b" * 64


def _shape(**overrides):
    data = {
        "name": "scsynth",
        "version": "3.13.0",
        "entrypoint": "/usr/local/bin/scsynth",
        "artifacts": ["/usr/local/bin/scsynth"],
        "build_steps": [{"name": "build", "run": "make"}],
        "reference": {
            "kind": "git",
            "url": "https://example.org/sc.git",
            "version": "3.13.0",
            "tag": "Version-3.13.0",
        },
    }
    data.update(overrides)
    return Shape.model_validate(data)


class TestPinnedReference:
    def test_tarball_requires_sha256(self):
        with pytest.raises(ValidationError, match="sha256"):
            PinnedReference(kind=ReferenceKind.TARBALL, url="https://x/y-1.0.tar.gz", version="1.0")

    def test_tarball_url_must_carry_version(self):
        with pytest.raises(ValidationError, match="does not carry version"):
            PinnedReference(
                kind=ReferenceKind.TARBALL, url="https://x/y-latest.tar.gz", version="1.0", sha256=SHA
            )

    def test_tarball_pin(self):
        ref = PinnedReference(
            kind=ReferenceKind.TARBALL, url="https://x/y-1.0.tar.gz", version="1.0", sha256=SHA.upper()
        )
        assert ref.pin == f"sha256:{SHA}"

    def test_git_requires_commit_or_tag(self):
        with pytest.raises(ValidationError, match="commit, a tag"):
            PinnedReference(kind=ReferenceKind.GIT, url="https://x/y.git", version="1.0")

    @pytest.mark.parametrize("tag", ["main", "master", "HEAD", "latest", "refs/heads/release"])
    def test_git_rejects_moving_references(self, tag):
        with pytest.raises(ValidationError, match="moving reference"):
            PinnedReference(kind=ReferenceKind.GIT, url="https://x/y.git", version="1.0", tag=tag)

    def test_git_short_commit_rejected(self):
        with pytest.raises(ValidationError, match="40-hex"):
            PinnedReference(kind=ReferenceKind.GIT, url="https://x/y.git", version="1.0", commit="abc123")

    def test_git_commit_preferred_as_pin(self):
        ref = PinnedReference(
            kind=ReferenceKind.GIT, url="https://x/y.git", version="1.0", commit=COMMIT, tag="v1.0"
        )
        assert ref.pin == COMMIT

    def test_git_tag_pin(self):
        ref = PinnedReference(kind=ReferenceKind.GIT, url="https://x/y.git", version="1.0", tag="v1.0")
        assert ref.pin == "tag:v1.0"

    def test_frozen(self):
        ref = PinnedReference(kind=ReferenceKind.GIT, url="https://x/y.git", version="1.0", tag="v1.0")
        with pytest.raises(ValidationError):
            ref.tag = "v2.0"


class TestShape:
    def test_valid_shape(self):
        shape = _shape()
        assert shape.image_name == "scsynth-3.13.0"
        assert shape.build_steps == [BuildStep(name="build", run="make")]

    def test_version_must_match_reference(self):
        with pytest.raises(ValidationError, match="does not match"):
            _shape(version="3.14.0")

    def test_build_steps_required(self):
        with pytest.raises(ValidationError):
            _shape(build_steps=[])

    def test_blank_step_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            _shape(build_steps=[{"name": "nothing", "run": "   "}])

    def test_relative_artifact_rejected(self):
        with pytest.raises(ValidationError, match="absolute"):
            _shape(artifacts=["usr/bin/scsynth"])

    def test_artifact_traversal_rejected(self):
        with pytest.raises(ValidationError, match="upwards"):
            _shape(artifacts=["/usr/../etc/passwd"])

    def test_relative_entrypoint_rejected(self):
        with pytest.raises(ValidationError, match="absolute"):
            _shape(entrypoint="scsynth")

    def test_bad_name_rejected(self):
        with pytest.raises(ValidationError, match="invalid shape name"):
            _shape(name="Bad Name")

    @pytest.mark.parametrize("version", ["1/../../../escaped", "..", "1.0/x", ""])
    def test_version_must_be_filename_safe(self, version):
        with pytest.raises(ValidationError, match="invalid shape version"):
            Shape(
                name="demo",
                version=version,
                reference=PinnedReference(
                    kind=ReferenceKind.GIT, url="https://x/y.git", version=version, tag="v1"
                ),
                build_steps=[BuildStep(name="make", run="make")],
                artifacts=["/usr/bin/demo"],
                entrypoint="/usr/bin/demo",
            )

    def test_entrypoint_traversal_rejected(self):
        with pytest.raises(ValidationError, match="upwards"):
            _shape(entrypoint="/usr/bin/../../../bin/sh")


class TestFixupsAndBindings:
    def test_symlink_needs_target(self):
        with pytest.raises(ValidationError, match="requires a target"):
            RuntimeFixup(kind=FixupKind.SYMLINK, path="/usr/lib/libfoo.so")

    def test_replace_needs_old_and_new(self):
        with pytest.raises(ValidationError, match="old and new"):
            RuntimeFixup(kind=FixupKind.REPLACE, path="/etc/foo.conf", old="a")

    def test_fixup_path_absolute(self):
        with pytest.raises(ValidationError, match="absolute"):
            RuntimeFixup(kind=FixupKind.RENAME, path="etc/foo", target="/etc/bar")

    @pytest.mark.parametrize(
        "path, target",
        [("/../../escaped-link", "/usr/bin/x"), ("/usr/lib/a", "/../etc/passwd")],
    )
    def test_fixup_traversal_rejected(self, path, target):
        with pytest.raises(ValidationError, match="upwards"):
            RuntimeFixup(kind=FixupKind.RENAME, path=path, target=target)
        with pytest.raises(ValidationError, match="upwards"):
            RuntimeFixup(kind=FixupKind.SYMLINK, path=path, target=target)

    def test_relative_symlink_target(self):
        fixup = RuntimeFixup(kind=FixupKind.SYMLINK, path="/usr/lib/libfoo.so", target="../lib64/libfoo.so.1")
        assert fixup.target == "../lib64/libfoo.so.1"
        with pytest.raises(ValidationError, match="leaves the image"):
            RuntimeFixup(kind=FixupKind.SYMLINK, path="/usr/lib/libfoo.so", target="../../../etc/passwd")

    def test_binding_paths_checked(self):
        with pytest.raises(ValidationError, match="absolute"):
            DeviceBinding(name="udev", host_path="run/udev")
        with pytest.raises(ValidationError, match="upwards"):
            DeviceBinding(name="udev", host_path="/run/udev", target_path="/../../udev")

    def test_binding_target_defaults_to_host_path(self):
        binding = DeviceBinding(name="udev", host_path="/run/udev")
        assert binding.target == "/run/udev"
        assert DeviceBinding(name="x", host_path="/a", target_path="/b").target == "/b"


class TestHostConfig:
    def test_kebab_case_keys(self):
        config = HostConfig.model_validate(
            {
                "audio": {
                    "default-interface": "mixpre",
                    "interfaces": {
                        "mixpre": {"type": "jack", "unit": "jack@mixpre.service"},
                        "builtin": {"type": "alsa"},
                    },
                },
                "data": {
                    "images-dir": "/var/lib/obake/images",
                    "setups-dir": "/var/lib/obake/setups",
                    "data-dir": "/var/lib/obake/data",
                },
            }
        )
        assert config.get_default_audio_interface().unit == "jack@mixpre.service"
        assert config.get_audio_interface("builtin").unit is None
        assert config.get_audio_interface("missing") is None
        assert config.list_audio_interfaces() == ["builtin", "mixpre"]
        assert str(config.data.images_dir) == "/var/lib/obake/images"

    def test_setup_config(self):
        setup = SetupConfig.model_validate(
            {
                "setup": {"interface": "mixpre", "shapes": ["serialosc", "siren"]},
                "shapes": {
                    "serialosc": {
                        "image": "serialosc.sif",
                        "env": {"SINGULARITY_BIND": "/run/udev:/run/udev"},
                    },
                    "siren": {},
                },
            }
        )
        assert setup.managed_shapes == ["serialosc", "siren"]
        assert setup.get_shape("serialosc").env == {"SINGULARITY_BIND": "/run/udev:/run/udev"}
        assert setup.get_shape("siren").image is None
        assert setup.get_shape("nope") is None
        assert setup.list_shapes() == ["serialosc", "siren"]
