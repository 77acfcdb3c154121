"""Build stage state models — one strictly ordered pass per shape build."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from obake.models.manifest import RuntimeManifest


class BuildStage(str, Enum):
    FETCH = "fetch"
    BUILD = "build"
    SELECT = "select"
    ASSEMBLE = "assemble"
    PUBLISH = "publish"


# Execution order; a stage never starts before its predecessor passed.
STAGE_ORDER: list[BuildStage] = [
    BuildStage.FETCH,
    BuildStage.BUILD,
    BuildStage.SELECT,
    BuildStage.ASSEMBLE,
    BuildStage.PUBLISH,
]


class StageState(str, Enum):
    """State of a single stage within one build."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Builds are never retried in place, so FAILED is terminal like PASSED.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.SKIPPED},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.PASSED: set(),
    StageState.FAILED: set(),
    StageState.SKIPPED: set(),
}


class StageTransition(BaseModel):
    """Records a single state transition for the build report."""

    model_config = ConfigDict(frozen=True)

    stage: BuildStage
    from_state: StageState
    to_state: StageState
    input_hash: str = ""
    output_hash: str = ""
    detail: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class BuildReport(BaseModel):
    """Outcome of one shape build.

    A failed build carries the failing stage and error text; the original
    exception is kept so callers can re-raise it with ``raise_for_failure``.
    """

    shape: str
    version: str
    states: dict[BuildStage, StageState]
    transitions: list[StageTransition] = []
    image_path: Path | None = None
    manifest: RuntimeManifest | None = None
    failed_stage: BuildStage | None = None
    error: str | None = None

    _exception: BaseException | None = PrivateAttr(default=None)

    @property
    def succeeded(self) -> bool:
        return self.error is None and all(
            state == StageState.PASSED for state in self.states.values()
        )

    def raise_for_failure(self) -> None:
        """Re-raise the exception that failed this build, if any."""
        if self._exception is not None:
            raise self._exception
        if self.error is not None:
            raise RuntimeError(self.error)
