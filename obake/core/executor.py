"""Build Executor — runs a shape's ordered build steps in a disposable environment.

Lifecycle of a build environment::

    create (fresh dir) -> copy source -> install build deps into deps/
        -> step 1 .. step N (fail fast) -> [caller selects artifacts] -> destroy

The environment is destroyed when its context exits, whether the build
succeeded or not.  The fetched source tree is copied, never built in place,
and build dependencies are unpacked into the environment, never onto the host.
"""

from __future__ import annotations

import logging
import os
import shutil
import sysconfig
import uuid
from pathlib import Path
from types import TracebackType

from pydantic import BaseModel, ConfigDict

from obake.core.fsutil import make_writable, remove_tree
from obake.core.packages import PackageInstallError, make_installer
from obake.core.runner import CommandRunner, CommandResult, SubprocessRunner
from obake.models.shape import BuildStep, Shape

logger = logging.getLogger(__name__)

# Shown in plans where the build environment does not exist yet.
DEPS_DIR_PLACEHOLDER = "$OBAKE_DEPS_DIR"


class BuildStepError(RuntimeError):
    """Raised when a build command exits non-zero; remaining steps never run."""

    def __init__(self, shape: str, step: str, result: CommandResult) -> None:
        self.shape = shape
        self.step = step
        self.returncode = result.returncode
        self.output = result.tail()
        super().__init__(
            f"{shape}: step {step!r} failed with exit code {result.returncode}: "
            f"{result.command_line}\n{self.output}"
        )


class BuildEnvironmentError(RuntimeError):
    """Raised when a build environment is used outside its lifetime."""


class PlannedCommand(BaseModel):
    """One command a build would run, for dry runs."""

    model_config = ConfigDict(frozen=True)

    step: str
    argv: list[str]


class BuildResult(BaseModel):
    """What a successful build produced."""

    model_config = ConfigDict(frozen=True)

    shape: str
    output_dir: Path
    steps: list[str]


class BuildEnvironment:
    """A fresh, private build directory for exactly one build.

    Layout::

        {work_dir}/build-{shape}-{random}/
            src/   writable copy of the fetched source tree
            deps/  build dependencies; on PATH and the library paths of every step
            out/   output tree; exported to build steps as DESTDIR

    Use as a context manager; the directory is removed on exit.
    """

    def __init__(self, work_dir: Path, shape: Shape) -> None:
        self._work_dir = Path(work_dir)
        self.shape = shape
        self.root = self._work_dir / f"build-{shape.name}-{uuid.uuid4().hex[:12]}"
        self._active = False

    @property
    def source_dir(self) -> Path:
        return self.root / "src"

    @property
    def deps_dir(self) -> Path:
        return self.root / "deps"

    @property
    def output_dir(self) -> Path:
        return self.root / "out"

    @property
    def active(self) -> bool:
        return self._active

    def __enter__(self) -> BuildEnvironment:
        self._work_dir.mkdir(parents=True, exist_ok=True)
        self.root.mkdir()
        self.output_dir.mkdir()
        self.deps_dir.mkdir()
        self._active = True
        logger.debug("%s: created build environment %s", self.shape.image_name, self.root)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.destroy()

    def destroy(self) -> None:
        self._active = False
        if self.root.exists():
            remove_tree(self.root)
            logger.debug("%s: destroyed build environment %s", self.shape.image_name, self.root)

    def populate(self, source_tree: Path) -> None:
        """Copy the fetched tree into ``src/`` with write permission restored."""
        if not self._active:
            raise BuildEnvironmentError("build environment is not active")
        shutil.copytree(source_tree, self.source_dir, symlinks=True)
        make_writable(self.source_dir)

    def deps_search_paths(self) -> dict[str, str]:
        """Search paths with the dependency root in front of the inherited ones."""
        deps = self.deps_dir
        lib_dirs = [deps / "usr/local/lib", deps / "usr/lib", deps / "lib"]
        multiarch = sysconfig.get_config_var("MULTIARCH")
        if multiarch:
            lib_dirs += [deps / "usr/lib" / multiarch, deps / "lib" / multiarch]
        prefixes = {
            "PATH": [deps / "usr/local/bin", deps / "usr/bin", deps / "bin"],
            "LD_LIBRARY_PATH": lib_dirs,
            "LIBRARY_PATH": lib_dirs,
            "CPATH": [deps / "usr/local/include", deps / "usr/include"],
            "PKG_CONFIG_PATH": [d / "pkgconfig" for d in lib_dirs] + [deps / "usr/share/pkgconfig"],
        }
        paths = {}
        for var, dirs in prefixes.items():
            inherited = os.environ.get(var) or (os.defpath if var == "PATH" else "")
            paths[var] = os.pathsep.join([*map(str, dirs), *filter(None, [inherited])])
        return paths

    def step_env(self, step: BuildStep | None = None) -> dict[str, str]:
        env = {
            "OBAKE_SHAPE": self.shape.name,
            "OBAKE_VERSION": self.shape.version,
            "OBAKE_SOURCE_DIR": str(self.source_dir),
            "OBAKE_OUTPUT_DIR": str(self.output_dir),
            "OBAKE_DEPS_DIR": str(self.deps_dir),
            "DESTDIR": str(self.output_dir),
            **self.deps_search_paths(),
        }
        if step is not None:
            env.update(step.env)
        return env


class BuildExecutor:
    """Executes build steps strictly in order with fail-fast semantics.

    Parameters
    ----------
    runner:
        Runs every command; a :class:`DryRunRunner` turns a build into a plan.
    install_command:
        Template for installing build dependencies into the environment;
        ``{packages}`` expands to one argument per package and ``{root}`` to
        the environment's ``deps/`` directory.  ``None`` unpacks Debian
        packages there.  Skipped when the shape declares none.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        install_command: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._installer = make_installer(install_command, self._runner)
        self._log = logger or logging.getLogger(__name__)

    @staticmethod
    def step_argv(step: BuildStep) -> list[str]:
        return ["/bin/sh", "-c", step.run]

    def plan(self, shape: Shape) -> list[PlannedCommand]:
        """Every command ``execute`` would run, in order, without running any."""
        planned: list[PlannedCommand] = []
        if shape.build_dependencies:
            planned.extend(
                PlannedCommand(step="install build dependencies", argv=argv)
                for argv in self._installer.plan(
                    list(shape.build_dependencies), DEPS_DIR_PLACEHOLDER
                )
            )
        planned.extend(
            PlannedCommand(step=step.name, argv=self.step_argv(step)) for step in shape.build_steps
        )
        return planned

    def install_dependencies(self, env: BuildEnvironment) -> None:
        packages = env.shape.build_dependencies
        if not packages:
            return
        self._log.info("%s: installing build dependencies: %s", env.shape.image_name, ", ".join(packages))
        try:
            added = self._installer.install(list(packages), env.deps_dir)
        except PackageInstallError as exc:
            result = exc.result or CommandResult(argv=list(packages), returncode=1, output=str(exc))
            raise BuildStepError(env.shape.image_name, "install build dependencies", result) from exc
        self._log.debug("%s: %d build dependency file(s) in %s", env.shape.image_name, len(added), env.deps_dir)

    def execute(self, env: BuildEnvironment, source_tree: Path) -> BuildResult:
        """Populate *env* from *source_tree* and run every step in order."""
        shape = env.shape
        env.populate(source_tree)
        self.install_dependencies(env)

        completed: list[str] = []
        total = len(shape.build_steps)
        for index, step in enumerate(shape.build_steps, start=1):
            self._log.info("%s: [%d/%d] %s", shape.image_name, index, total, step.name)
            result = self._runner.run(
                self.step_argv(step), cwd=env.source_dir, env=env.step_env(step)
            )
            if not result.ok:
                self._log.error(
                    "%s: step %r exited %d", shape.image_name, step.name, result.returncode
                )
                raise BuildStepError(shape.image_name, step.name, result)
            completed.append(step.name)

        return BuildResult(shape=shape.name, output_dir=env.output_dir, steps=completed)
