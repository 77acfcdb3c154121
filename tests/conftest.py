"""Shared test fixtures for obake."""

from __future__ import annotations

import os
import tarfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from obake.config import ObakeSettings
from obake.core.assembler import RuntimeAssembler
from obake.core.executor import BuildExecutor
from obake.core.fetcher import ArtifactFetcher
from obake.core.hasher import file_sha256
from obake.core.pipeline import ShapeBuilder
from obake.core.recipe import parse_shape
from obake.core.runner import SubprocessRunner
from obake.logs import reset_logging
from obake.models.shape import Shape

HELLO_SCRIPT = "#!/bin/sh\necho \"hello $*\"\n"

COMPILE_STEP = (
    'mkdir -p "$DESTDIR/usr/local/bin" '
    '&& cp hello.sh "$DESTDIR/usr/local/bin/hello" '
    '&& chmod 755 "$DESTDIR/usr/local/bin/hello"'
)
DOCS_STEP = (
    'mkdir -p "$DESTDIR/usr/local/share/doc" '
    '&& echo docs > "$DESTDIR/usr/local/share/doc/README"'
)


@pytest.fixture(autouse=True)
def _reset_logging():
    """Every test starts and ends with logging unconfigured."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable ``/bin/sh`` script and return its path."""

    def _write(name: str, body: str, *, directory: Path | None = None, mode: int = 0o755) -> Path:
        target = (directory or tmp_path) / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("#!/bin/sh\n" + body + "\n")
        target.chmod(mode)
        return target

    return _write


@pytest.fixture
def source_tarball(tmp_path: Path) -> tuple[str, str]:
    """A ``demo-1.0.tar.gz`` upstream source as ``(file:// url, sha256)``."""
    src = tmp_path / "upstream" / "demo-1.0"
    src.mkdir(parents=True)
    (src / "hello.sh").write_text(HELLO_SCRIPT)
    (src / "hello.sh").chmod(0o755)
    (src / "README").write_text("demo upstream\n")
    archive = tmp_path / "upstream" / "demo-1.0.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(src, arcname="demo-1.0")
    return archive.as_uri(), file_sha256(archive)


@pytest.fixture
def recipe_data(source_tarball: tuple[str, str]) -> dict[str, Any]:
    """A valid recipe mapping for the ``demo`` shape."""
    url, digest = source_tarball
    return {
        "name": "demo",
        "version": "1.0",
        "entrypoint": "/usr/local/bin/hello",
        "artifacts": ["/usr/local/bin/hello"],
        "reference": {"kind": "tarball", "url": url, "sha256": digest},
        "build_steps": [
            {"name": "compile", "run": COMPILE_STEP},
            {"name": "docs", "run": DOCS_STEP},
        ],
    }


@pytest.fixture
def make_shape(recipe_data: dict[str, Any]) -> Callable[..., Shape]:
    """Build a ``Shape`` from the demo recipe with top-level overrides."""

    def _make(**overrides: Any) -> Shape:
        return parse_shape({**recipe_data, **overrides}, source="<test>")

    return _make


@pytest.fixture
def demo_shape(make_shape: Callable[..., Shape]) -> Shape:
    return make_shape()


class FakeInstaller:
    """Records runtime installs and drops one library file per package."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def install(self, packages: list[str], root: Path) -> list[str]:
        self.calls.append(list(packages))
        added = []
        for package in packages:
            lib = root / "usr" / "lib" / f"{package}.so"
            lib.parent.mkdir(parents=True, exist_ok=True)
            lib.write_text(package)
            added.append(f"/usr/lib/{package}.so")
        return added


@pytest.fixture
def fake_installer() -> FakeInstaller:
    return FakeInstaller()


@pytest.fixture
def settings(tmp_path: Path) -> ObakeSettings:
    """Settings rooted in the test's temporary directory."""
    return ObakeSettings(
        shapes_dir=tmp_path / "shapes",
        images_dir=tmp_path / "images",
        work_dir=tmp_path / "work",
        cache_dir=tmp_path / "cache",
        build_install_command="true {packages}",
    )


@pytest.fixture
def builder(settings: ObakeSettings, fake_installer: FakeInstaller) -> ShapeBuilder:
    """A ShapeBuilder running real shell steps with a fake package installer."""
    runner = SubprocessRunner(timeout=60)
    return ShapeBuilder(
        images_dir=settings.images_dir,
        work_dir=settings.work_dir,
        fetcher=ArtifactFetcher(settings.cache_dir, runner=runner),
        executor=BuildExecutor(runner, install_command=settings.build_install_command),
        assembler=RuntimeAssembler(fake_installer),
    )


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every OBAKE_/SIREN_ variable from the environment."""
    for key in list(os.environ):
        if key.startswith(("OBAKE_", "SIREN_")):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
