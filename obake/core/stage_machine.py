"""Per-build stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Strict stage order: a stage starts only after its predecessor passed
- Cascade skipping of every later stage when one fails
- Every transition recorded for the build report
"""

from __future__ import annotations

from obake.models.stages import (
    STAGE_ORDER,
    VALID_TRANSITIONS,
    BuildReport,
    BuildStage,
    StageState,
    StageTransition,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StageMachine:
    """Tracks the stage states of a single shape build.

    Parameters
    ----------
    shape, version:
        Identify the build in the report.
    """

    def __init__(self, shape: str, version: str) -> None:
        self.shape = shape
        self.version = version
        self._states: dict[BuildStage, StageState] = {
            stage: StageState.NOT_STARTED for stage in STAGE_ORDER
        }
        self._transitions: list[StageTransition] = []

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def state(self, stage: BuildStage) -> StageState:
        return self._states[stage]

    @property
    def states(self) -> dict[BuildStage, StageState]:
        return dict(self._states)

    @property
    def transitions(self) -> list[StageTransition]:
        return list(self._transitions)

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        stage: BuildStage,
        target: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        detail: str = "",
    ) -> StageTransition:
        """Move *stage* to *target*, validating against the transition table."""
        current = self._states[stage]
        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage.value} from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target == StageState.RUNNING:
            index = STAGE_ORDER.index(stage)
            for earlier in STAGE_ORDER[:index]:
                if self._states[earlier] != StageState.PASSED:
                    raise InvalidTransitionError(
                        f"Cannot start {stage.value}: {earlier.value} is "
                        f"{self._states[earlier].value}"
                    )

        record = StageTransition(
            stage=stage,
            from_state=current,
            to_state=target,
            input_hash=input_hash,
            output_hash=output_hash,
            detail=detail,
        )
        self._transitions.append(record)
        self._states[stage] = target

        if target == StageState.FAILED:
            self._skip_after(stage)
        return record

    def _skip_after(self, stage: BuildStage) -> None:
        index = STAGE_ORDER.index(stage)
        for later in STAGE_ORDER[index + 1:]:
            if self._states[later] == StageState.NOT_STARTED:
                self.transition(later, StageState.SKIPPED, detail=f"{stage.value} failed")

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    def start(self, stage: BuildStage, *, input_hash: str = "") -> StageTransition:
        return self.transition(stage, StageState.RUNNING, input_hash=input_hash)

    def passed(self, stage: BuildStage, *, output_hash: str = "", detail: str = "") -> StageTransition:
        return self.transition(stage, StageState.PASSED, output_hash=output_hash, detail=detail)

    def failed(self, stage: BuildStage, error: BaseException) -> StageTransition:
        return self.transition(stage, StageState.FAILED, detail=f"{type(error).__name__}: {error}")

    def running_stage(self) -> BuildStage | None:
        for stage in STAGE_ORDER:
            if self._states[stage] == StageState.RUNNING:
                return stage
        return None

    def report(self) -> BuildReport:
        """Snapshot the build as a :class:`BuildReport`."""
        return BuildReport(
            shape=self.shape,
            version=self.version,
            states=self.states,
            transitions=self.transitions,
        )
