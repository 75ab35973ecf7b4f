"""
Restoration of the live project model from persisted stage snapshots.

Restoration runs as an ordered list of steps, one per stage 1-5. A step only
runs once every earlier stage has been restored for the current project. Each
step is applied to a copy of the live model; the live model is only touched
when the copy differs from it, which makes re-running a step a no-op unless a
snapshot has actually changed.

Field ownership:
- scenes, shots: stage 4 copy when non-empty, each falling back to stage 3
- soundEffectUrl, soundEffectDescription, loopCount: stage 5 only
- shot versions: stage 4 (stage 3 until stage 4 exists)
- continuity groups and lock state: stage 3 only
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import structlog
from pydantic import BaseModel, Field

from ambient_studio.models import (
    AUDIO_FIELDS,
    LOOP_FIELDS,
    AtmosphereSettings,
    ProjectModel,
    Scene,
    Shot,
    ShotVersion,
    SoundscapeSettings,
    Stage,
    VisualWorldSettings,
)
from ambient_studio.pipeline.error_handler import RestorationConflict, WorkflowError
from ambient_studio.schemas import StageSnapshots

logger = structlog.get_logger(__name__)

RESTORABLE_STAGES = (
    Stage.ATMOSPHERE,
    Stage.VISUAL_WORLD,
    Stage.FLOW_DESIGN,
    Stage.COMPOSITION,
    Stage.SOUNDSCAPE,
)


class RestorationOutcome:
    """Constants for the result of one restoration step"""
    APPLIED = "applied"        # first restoration, model changed
    UNCHANGED = "unchanged"    # snapshot already reflected in the model
    RESYNCED = "resynced"      # re-run found a mismatch and overwrote the model
    EMPTY = "empty"            # no snapshot for the stage
    BLOCKED = "blocked"        # an earlier stage has not been restored
    FAILED = "failed"          # the step raised


class StepResult(BaseModel):
    stage: int
    outcome: str
    changed_fields: List[str] = Field(default_factory=list)


# ===== Helpers =====

def _copy_scenes(scenes: List[Scene]) -> List[Scene]:
    return [scene.model_copy(deep=True) for scene in scenes]


def _copy_shots(shots: Dict[str, List[Shot]]) -> Dict[str, List[Shot]]:
    return {
        scene_id: [shot.model_copy(deep=True) for shot in scene_shots]
        for scene_id, scene_shots in shots.items()
    }


def _copy_versions(versions: Dict[str, List[ShotVersion]]) -> Dict[str, List[ShotVersion]]:
    return {
        shot_id: sorted(
            (version.model_copy(deep=True) for version in shot_versions),
            key=lambda v: v.versionNumber,
        )
        for shot_id, shot_versions in versions.items()
    }


def _shot_index(shots: Optional[Dict[str, List[Shot]]]) -> Dict[str, Shot]:
    return {shot.id: shot for scene_shots in (shots or {}).values() for shot in scene_shots}


def _valid_pointer(pointer: Optional[str], versions: List[ShotVersion]) -> bool:
    return pointer is not None and any(v.id == pointer for v in versions)


def _reconcile_current_versions(
    model: ProjectModel,
    preferred: Dict[str, Shot],
    fallback: Dict[str, Shot],
) -> None:
    """
    Point every shot at a version it owns.

    Order: the preferred snapshot's pointer, then the fallback snapshot's
    pointer, then the highest versionNumber. Shots without versions get None.
    """
    for shot in model.all_shots():
        versions = model.versions_for(shot.id)
        if not versions:
            shot.currentVersionId = None
            continue
        preferred_pointer = preferred[shot.id].currentVersionId if shot.id in preferred else None
        fallback_pointer = fallback[shot.id].currentVersionId if shot.id in fallback else None
        if _valid_pointer(preferred_pointer, versions):
            resolved = preferred_pointer
        elif _valid_pointer(fallback_pointer, versions):
            resolved = fallback_pointer
        else:
            resolved = max(versions, key=lambda v: v.versionNumber).id
            logger.info(
                "current_version_fallback_to_latest",
                shot_id=shot.id,
                preferred=preferred_pointer,
                fallback=fallback_pointer,
                resolved=resolved,
            )
        if (
            preferred_pointer and fallback_pointer
            and preferred_pointer != fallback_pointer
            and _valid_pointer(fallback_pointer, versions)
        ):
            RestorationConflict(
                Stage.COMPOSITION,
                f"shots[{shot.id}].currentVersionId",
                fallback_pointer,
                preferred_pointer,
                resolution=resolved,
            ).log_error()
        shot.currentVersionId = resolved


# ===== Steps =====

def restore_atmosphere(model: ProjectModel, snapshots: StageSnapshots) -> None:
    model.atmosphere = AtmosphereSettings.model_validate(snapshots.step1.model_dump())
    if model.atmosphere.moodDescription.strip():
        model.description_snapshot = model.atmosphere.snapshot()
    else:
        model.description_snapshot = None


def restore_visual_world(model: ProjectModel, snapshots: StageSnapshots) -> None:
    model.visual_world = VisualWorldSettings.model_validate(snapshots.step2.model_dump())


def restore_flow_design(model: ProjectModel, snapshots: StageSnapshots) -> None:
    step3 = snapshots.step3
    step4 = snapshots.step4

    # Each of scenes and shots falls back to stage 3 on its own
    has_step4_scenes = step4 is not None and bool(step4.scenes)
    has_step4_shots = step4 is not None and bool(step4.shots)
    scenes = _copy_scenes(step4.scenes if has_step4_scenes else step3.scenes)
    shots = _copy_shots(step4.shots if has_step4_shots else step3.shots)

    # Audio and loop fields stay as the live model has them
    live_scenes = {scene.id: scene for scene in model.scenes}
    live_shots = _shot_index(model.shots)
    for scene in scenes:
        live = live_scenes.get(scene.id)
        for field in LOOP_FIELDS:
            setattr(scene, field, getattr(live, field) if live else None)
    for shot in _shot_index(shots).values():
        live = live_shots.get(shot.id)
        for field in AUDIO_FIELDS + LOOP_FIELDS:
            setattr(shot, field, getattr(live, field) if live else None)
        if step4 is not None:
            # Reconciled by the composition step
            shot.currentVersionId = live.currentVersionId if live else None

    model.set_scenes_and_shots(scenes, shots)
    known_scenes = {scene.id for scene in model.scenes}
    model.continuity_groups = {
        scene_id: [group.model_copy(deep=True) for group in groups]
        for scene_id, groups in step3.continuityGroups.items()
        if scene_id in known_scenes
    }
    model.continuity_locked = step3.continuityLocked
    model.continuity_generated = step3.continuityGenerated or bool(step3.continuityGroups)

    if step4 is None:
        known_shots = {shot.id for shot in model.all_shots()}
        model.shot_versions = {
            shot_id: versions
            for shot_id, versions in _copy_versions(step3.shotVersions).items()
            if shot_id in known_shots
        }
        _reconcile_current_versions(model, _shot_index(step3.shots), {})
        model.apply_continuity_inheritance()


def restore_composition(model: ProjectModel, snapshots: StageSnapshots) -> None:
    step3 = snapshots.step3
    step4 = snapshots.step4
    known_shots = {shot.id for shot in model.all_shots()}
    model.shot_versions = {
        shot_id: versions
        for shot_id, versions in _copy_versions(step4.shotVersions).items()
        if shot_id in known_shots
    }
    # The backend updates stage 3 shots after prompt synthesis; stage 4 can lag
    _reconcile_current_versions(
        model,
        _shot_index(step3.shots if step3 else None),
        _shot_index(step4.shots),
    )
    model.apply_continuity_inheritance()


def restore_soundscape(model: ProjectModel, snapshots: StageSnapshots) -> None:
    step5 = snapshots.step5
    model.soundscape = SoundscapeSettings.model_validate(
        step5.model_dump(exclude={"scenesWithLoops", "shotsWithLoops"})
    )
    if step5.scenesWithLoops:
        loops = {scene.id: scene for scene in step5.scenesWithLoops}
        for scene in model.scenes:
            if scene.id in loops:
                scene.loopCount = loops[scene.id].loopCount
    if step5.shotsWithLoops:
        incoming = _shot_index(step5.shotsWithLoops)
        for shot in model.all_shots():
            source = incoming.get(shot.id)
            if source is None:
                continue
            for field in AUDIO_FIELDS + LOOP_FIELDS:
                setattr(shot, field, getattr(source, field))


RestorationStep = Callable[[ProjectModel, StageSnapshots], None]

STEPS: List[Tuple[int, RestorationStep]] = [
    (Stage.ATMOSPHERE, restore_atmosphere),
    (Stage.VISUAL_WORLD, restore_visual_world),
    (Stage.FLOW_DESIGN, restore_flow_design),
    (Stage.COMPOSITION, restore_composition),
    (Stage.SOUNDSCAPE, restore_soundscape),
]


def _diff(live: Any, incoming: Any, path: str) -> Iterator[Tuple[str, Any, Any]]:
    """Yield (path, live, incoming) for every leaf that differs."""
    if isinstance(live, BaseModel) and isinstance(incoming, BaseModel):
        live, incoming = live.model_dump(), incoming.model_dump()
    if isinstance(live, dict) and isinstance(incoming, dict):
        for key in sorted(set(live) | set(incoming), key=str):
            yield from _diff(live.get(key), incoming.get(key), f"{path}.{key}")
    elif isinstance(live, list) and isinstance(incoming, list) and len(live) == len(incoming):
        for index, (a, b) in enumerate(zip(live, incoming)):
            label = a.get("id", index) if isinstance(a, dict) else index
            yield from _diff(a, b, f"{path}[{label}]")
    elif live != incoming:
        yield path, live, incoming


class RestorationEngine:
    """
    Merges per-stage snapshots into the live ProjectModel.

    The caller owns the set of restored stages; it must be cleared when the
    project changes.

    Example:
        >>> engine = RestorationEngine()
        >>> restored = set()
        >>> results = engine.restore(model, snapshots, restored)
        >>> restored
        {1, 2, 3, 4, 5}
    """

    def __init__(self, steps: List[Tuple[int, RestorationStep]] = None):
        self.steps = steps or STEPS

    def is_ready(self, stage: int, restored: Set[int]) -> bool:
        return all(s in restored for s, _ in self.steps if s < stage)

    def restore(
        self,
        model: ProjectModel,
        snapshots: StageSnapshots,
        restored: Set[int],
        resync: Optional[Iterable[int]] = None,
    ) -> List[StepResult]:
        """
        Run every step in stage order, stopping at the first failure.

        Args:
            model: Live project model, mutated in place
            snapshots: Snapshots fetched for this project
            restored: Stages already restored for this project (updated in place)
            resync: When given, already restored stages are skipped unless listed

        Returns:
            One StepResult per step that ran
        """
        log = logger.bind(project_id=snapshots.video_id)
        resync = None if resync is None else set(resync)
        results = []
        for stage, step in self.steps:
            if resync is not None and stage in restored and stage not in resync:
                continue
            result = self.restore_stage(stage, model, snapshots, restored, step)
            results.append(result)
            if result.outcome in (RestorationOutcome.FAILED, RestorationOutcome.BLOCKED):
                log.warning("restoration_halted", stage=stage, outcome=result.outcome)
                break
        log.info(
            "restoration_completed",
            outcomes={r.stage: r.outcome for r in results},
        )
        return results

    def restore_stage(
        self,
        stage: int,
        model: ProjectModel,
        snapshots: StageSnapshots,
        restored: Set[int],
        step: RestorationStep = None,
    ) -> StepResult:
        """
        Restore a single stage.

        Returns:
            StepResult describing whether the live model changed
        """
        log = logger.bind(project_id=snapshots.video_id, stage=stage)
        step = step or dict(self.steps)[stage]

        if not self.is_ready(stage, restored):
            return StepResult(stage=stage, outcome=RestorationOutcome.BLOCKED)

        if snapshots.for_stage(stage) is None:
            restored.add(stage)
            return StepResult(stage=stage, outcome=RestorationOutcome.EMPTY)

        candidate = model.model_copy(deep=True)
        try:
            step(candidate, snapshots)
        except (WorkflowError, ValueError, KeyError) as e:
            log.error("restoration_step_failed", error=str(e), error_type=type(e).__name__)
            return StepResult(stage=stage, outcome=RestorationOutcome.FAILED)

        already_restored = stage in restored
        restored.add(stage)

        if candidate == model:
            return StepResult(stage=stage, outcome=RestorationOutcome.UNCHANGED)

        changed = [
            name for name in ProjectModel.model_fields
            if getattr(candidate, name) != getattr(model, name)
        ]
        if already_restored:
            for name in changed:
                for path, live, incoming in _diff(getattr(model, name), getattr(candidate, name), name):
                    RestorationConflict(stage, path, live, incoming).log_error()
        for name in changed:
            setattr(model, name, getattr(candidate, name))

        outcome = RestorationOutcome.RESYNCED if already_restored else RestorationOutcome.APPLIED
        log.info("restoration_step_applied", outcome=outcome, changed_fields=changed)
        return StepResult(stage=stage, outcome=outcome, changed_fields=changed)
