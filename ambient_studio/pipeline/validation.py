"""
Per-stage gates deciding whether the workflow may move forward.

Every gate is a pure function of the live ProjectModel; nothing here performs
I/O or mutates the model.
"""

from typing import Callable, Dict, List

from pydantic import BaseModel, Field

from ambient_studio.models import ContinuityStatus, ProjectModel, Stage, TransportMode
from ambient_studio.pipeline.error_handler import ErrorCode, ValidationFailure, WorkflowError

SETTINGS_CHANGED = "settings changed since description was created"
DESCRIPTION_MISSING = "mood description has not been generated"


class GateResult(BaseModel):
    """Outcome of evaluating one stage gate"""
    stage: int
    passed: bool
    unmet: List[str] = Field(default_factory=list)
    missing_shots: List[str] = Field(default_factory=list)


def _atmosphere_gate(model: ProjectModel) -> GateResult:
    unmet = []
    if not model.atmosphere.moodDescription.strip():
        unmet.append(DESCRIPTION_MISSING)
    elif model.settings_changed_since_description():
        unmet.append(SETTINGS_CHANGED)
    return GateResult(stage=Stage.ATMOSPHERE, passed=not unmet, unmet=unmet)


def _open_gate(stage: int) -> Callable[[ProjectModel], GateResult]:
    def gate(model: ProjectModel) -> GateResult:
        return GateResult(stage=stage, passed=True)
    return gate


def _flow_design_gate(model: ProjectModel) -> GateResult:
    if not TransportMode.requires_continuity(model.transport_mode):
        return GateResult(stage=Stage.FLOW_DESIGN, passed=True)

    groups = [group for groups in model.continuity_groups.values() for group in groups]
    unmet = []
    if not groups:
        unmet.append("continuity groups have not been generated")
    else:
        if not model.continuity_locked:
            unmet.append("continuity is not locked")
        proposed = [g for g in groups if g.status == ContinuityStatus.PROPOSED]
        if proposed:
            unmet.append(f"{len(proposed)} continuity group(s) still awaiting review")
        if not any(g.status == ContinuityStatus.APPROVED for g in groups):
            unmet.append("no continuity group has been approved")
    return GateResult(stage=Stage.FLOW_DESIGN, passed=not unmet, unmet=unmet)


def _composition_gate(model: ProjectModel) -> GateResult:
    required = TransportMode.required_media(model.transport_mode)
    unmet = []
    missing_shots = []
    for scene in model.scenes:
        for shot in model.shots.get(scene.id, []):
            version = model.current_version(shot.id) or model.latest_version(shot.id)
            missing = [
                field for field in required
                if version is None or not getattr(version, field)
            ]
            if missing:
                missing_shots.append(shot.id)
                unmet.append(
                    f"scene {scene.sceneNumber} shot {shot.shotNumber} is missing {', '.join(missing)}"
                )
    return GateResult(
        stage=Stage.COMPOSITION,
        passed=not unmet,
        unmet=unmet,
        missing_shots=missing_shots,
    )


def _soundscape_gate(model: ProjectModel) -> GateResult:
    atmosphere = model.atmosphere
    soundscape = model.soundscape
    unmet = []
    missing_shots = []

    if atmosphere.loopMode and not soundscape.loopSettingsLocked:
        unmet.append("loop settings are not locked")
    if atmosphere.voiceoverEnabled and not soundscape.voiceoverAudioUrl:
        unmet.append("voiceover audio has not been generated")
    if atmosphere.backgroundMusicEnabled:
        has_music = model.visual_world.customMusicUrl or soundscape.generatedMusicUrl
        if not has_music:
            unmet.append("background music has not been uploaded or generated")
    if TransportMode.uses_video_clips(model.transport_mode):
        for scene in model.scenes:
            for shot in model.shots.get(scene.id, []):
                if not shot.soundEffectUrl:
                    missing_shots.append(shot.id)
                    unmet.append(
                        f"scene {scene.sceneNumber} shot {shot.shotNumber} has no sound effect"
                    )
    return GateResult(
        stage=Stage.SOUNDSCAPE,
        passed=not unmet,
        unmet=unmet,
        missing_shots=missing_shots,
    )


GATES: Dict[int, Callable[[ProjectModel], GateResult]] = {
    Stage.ATMOSPHERE: _atmosphere_gate,
    Stage.VISUAL_WORLD: _open_gate(Stage.VISUAL_WORLD),
    Stage.FLOW_DESIGN: _flow_design_gate,
    Stage.COMPOSITION: _composition_gate,
    Stage.SOUNDSCAPE: _soundscape_gate,
    Stage.PREVIEW: _open_gate(Stage.PREVIEW),
    Stage.EXPORT: _open_gate(Stage.EXPORT),
}


class ValidationGate:
    """Evaluates the forward-navigation predicate of a stage."""

    def evaluate(self, stage: int, model: ProjectModel) -> GateResult:
        """
        Evaluate the gate for leaving a stage.

        Args:
            stage: Stage being left (1-7)
            model: Live project model

        Returns:
            GateResult with the unmet requirements in display order

        Raises:
            WorkflowError: If the stage number is out of range
        """
        gate = GATES.get(stage)
        if gate is None:
            raise WorkflowError(
                ErrorCode.INVALID_STAGE, f"Unknown stage {stage}", {"stage": stage}
            )
        return gate(model)

    def can_advance(self, stage: int, model: ProjectModel) -> bool:
        return self.evaluate(stage, model).passed

    def require(self, stage: int, model: ProjectModel) -> GateResult:
        """Evaluate and raise ValidationFailure when the gate is closed."""
        result = self.evaluate(stage, model)
        if not result.passed:
            raise ValidationFailure(stage, result.unmet)
        return result
