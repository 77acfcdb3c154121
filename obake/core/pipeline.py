"""Build pipeline — the coordinator for shape builds.

``ShapeBuilder`` wires the ArtifactFetcher, BuildExecutor, ArtifactSelector,
RuntimeAssembler and VersionPinner into one strictly ordered pass::

    fetch -> build -> select -> assemble -> publish

A build is all-or-nothing: the image is assembled in a staging directory
next to ``images_dir`` and only renamed into place by the publish stage.
Every failure leaves the images directory as it was.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from obake.config import ObakeSettings, resolve_images_dir
from obake.core.assembler import RuntimeAssembler
from obake.core.executor import BuildEnvironment, BuildExecutor, PlannedCommand
from obake.core.fetcher import ArtifactFetcher
from obake.core.fsutil import remove_tree
from obake.core.hasher import artifact_digest, compute_stage_hash, recipe_hash
from obake.core.packages import make_installer
from obake.core.runner import CommandRunner, SubprocessRunner
from obake.core.selector import ArtifactSelector
from obake.core.stage_machine import StageMachine
from obake.core.version_pinner import VersionPinner
from obake.models.manifest import ROOTFS_DIR
from obake.models.shape import Shape
from obake.models.stages import BuildReport, BuildStage

logger = logging.getLogger(__name__)

__all__ = ["ShapeBuilder", "artifact_digest"]


class ShapeBuilder:
    """Builds shapes into published runtime images.

    Parameters
    ----------
    images_dir:
        Where published images live.  Staging directories are created
        beside them so publishing is a single rename.
    work_dir:
        Parent of the ephemeral build environments.
    fetcher, executor, assembler:
        The pipeline components; ``selector`` defaults to a plain
        :class:`ArtifactSelector`.
    """

    def __init__(
        self,
        *,
        images_dir: Path,
        work_dir: Path,
        fetcher: ArtifactFetcher,
        executor: BuildExecutor,
        assembler: RuntimeAssembler,
        selector: ArtifactSelector | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.images_dir = Path(images_dir)
        self.work_dir = Path(work_dir)
        self.fetcher = fetcher
        self.executor = executor
        self.assembler = assembler
        self.selector = selector or ArtifactSelector()
        self.pinner = VersionPinner(self.images_dir)
        self._log = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: ObakeSettings,
        *,
        runner: CommandRunner | None = None,
        images_dir: Path | None = None,
    ) -> ShapeBuilder:
        """Wire the default components from process settings."""
        runner = runner or SubprocessRunner()
        return cls(
            images_dir=images_dir or resolve_images_dir(settings),
            work_dir=settings.work_dir,
            fetcher=ArtifactFetcher(
                settings.cache_dir,
                timeout=settings.fetch_timeout_seconds,
            ),
            executor=BuildExecutor(runner, install_command=settings.build_install_command),
            assembler=RuntimeAssembler(make_installer(settings.runtime_install_command, runner)),
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, shape: Shape) -> list[PlannedCommand]:
        """The commands a build of *shape* would run, without running any."""
        return self.executor.plan(shape)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build(self, shape: Shape, *, raise_on_failure: bool = False) -> BuildReport:
        """Run every stage for *shape* and report the outcome.

        On failure the failing stage is marked ``failed``, the remaining
        stages ``skipped``, and the exception is kept on the report.
        """
        machine = StageMachine(shape.name, shape.version)
        rhash = recipe_hash(shape)
        staging: Path | None = None
        self._log.info("%s: build started (recipe %s)", shape.image_name, rhash[:12])

        try:
            machine.start(
                BuildStage.FETCH,
                input_hash=compute_stage_hash(
                    BuildStage.FETCH.value,
                    {"url": shape.reference.url, "pin": shape.reference.pin},
                ),
            )
            self.pinner.ensure_unpublished(shape, rhash)
            source = self.fetcher.fetch(shape)
            machine.passed(
                BuildStage.FETCH,
                output_hash=compute_stage_hash(
                    BuildStage.FETCH.value, {"resolved": source.resolved}
                ),
                detail=str(source.path),
            )

            with BuildEnvironment(self.work_dir, shape) as env:
                machine.start(BuildStage.BUILD, input_hash=rhash)
                result = self.executor.execute(env, source.path)
                machine.passed(
                    BuildStage.BUILD,
                    output_hash=compute_stage_hash(
                        BuildStage.BUILD.value, {"steps": result.steps}
                    ),
                )

                machine.start(
                    BuildStage.SELECT,
                    input_hash=compute_stage_hash(
                        BuildStage.SELECT.value, {"patterns": shape.artifacts}
                    ),
                )
                self.images_dir.mkdir(parents=True, exist_ok=True)
                staging = self.images_dir / f".staging-{shape.image_name}-{uuid.uuid4().hex[:8]}"
                selection = self.selector.select(
                    env.output_dir, shape.artifacts, staging / ROOTFS_DIR
                )
                machine.passed(
                    BuildStage.SELECT,
                    output_hash=compute_stage_hash(
                        BuildStage.SELECT.value, {"files": selection.files}
                    ),
                    detail=(
                        f"unmatched: {', '.join(selection.empty_patterns)}"
                        if selection.empty_patterns
                        else ""
                    ),
                )

            machine.start(BuildStage.ASSEMBLE, input_hash=rhash)
            manifest = self.assembler.assemble(shape, staging, selection, recipe_hash=rhash)
            machine.passed(BuildStage.ASSEMBLE, output_hash=manifest.artifact_digest)

            machine.start(BuildStage.PUBLISH, input_hash=manifest.artifact_digest)
            image_path = self.assembler.publish(staging, self.images_dir, manifest)
            staging = None
            machine.passed(BuildStage.PUBLISH, detail=str(image_path))
        except Exception as exc:
            stage = machine.running_stage()
            if stage is not None:
                machine.failed(stage, exc)
            report = machine.report()
            report.failed_stage = stage
            report.error = str(exc)
            report._exception = exc
            self._log.error(
                "%s: build failed at %s: %s",
                shape.image_name,
                stage.value if stage else "setup",
                exc,
            )
            if raise_on_failure:
                raise
            return report
        finally:
            if staging is not None and staging.exists():
                remove_tree(staging)

        report = machine.report()
        report.image_path = image_path
        report.manifest = manifest
        self._log.info("%s: published %s", shape.image_name, image_path)
        return report

    def build_many(
        self,
        shapes: Iterable[Shape],
        *,
        max_workers: int = 2,
    ) -> dict[str, BuildReport]:
        """Build independent shapes concurrently.

        Each build owns its environment and staging directory; a failure is
        recorded on that shape's report and does not cancel the others.
        """
        shapes = list(shapes)
        if not shapes:
            return {}
        with ThreadPoolExecutor(
            max_workers=max(1, min(max_workers, len(shapes))),
            thread_name_prefix="obake-build",
        ) as pool:
            futures = {shape.name: pool.submit(self.build, shape) for shape in shapes}
            reports = {name: future.result() for name, future in futures.items()}

        failed = sorted(name for name, report in reports.items() if not report.succeeded)
        if failed:
            self._log.warning("%d of %d build(s) failed: %s", len(failed), len(reports), ", ".join(failed))
        return reports
