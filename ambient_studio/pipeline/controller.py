"""
Workflow Controller - stage state machine

Coordinates the seven-stage ambient visual workflow:
1. Atmosphere
2. Visual world (leaving it generates the flow design when there are no scenes)
3. Flow design (leaving it synthesizes prompts for every shot)
4. Composition (per-shot images/videos)
5. Soundscape (loops, sound effects, voiceover, music)
6. Preview
7. Export

Features:
- Restoration of the live model from persisted stage snapshots on load
- Validation gates evaluated before any transition write
- Immediate writes for transitions and lock actions, debounced writes for edits
- Generation jobs tracked with polling and typed completion results
"""

from typing import Any, Dict, List, Optional, Set

import structlog
from pydantic import BaseModel, Field, ValidationError

from ambient_studio.logging_config import configure_logging
from ambient_studio.models import (
    ContinuityStatus,
    ProjectModel,
    ShotVersion,
    Stage,
    TransportMode,
    VersionStatus,
)
from ambient_studio.pipeline.error_handler import (
    ApiError,
    ErrorCode,
    GenerationFailure,
    ModelIntegrityError,
    PersistenceFailure,
    ValidationFailure,
    WorkflowError,
)
from ambient_studio.pipeline.jobs import (
    GenerationJob,
    GenerationJobTracker,
    ItemStatus,
    JobKind,
    JobResult,
)
from ambient_studio.pipeline.persistence import PersistenceGateway, WriteTarget
from ambient_studio.pipeline.restoration import RestorationEngine, StepResult
from ambient_studio.pipeline.validation import GateResult, ValidationGate
from ambient_studio.schemas import StageSnapshots
from ambient_studio.services.api_client import StudioApiClient

logger = structlog.get_logger(__name__)

DEFAULT_SOUND_EFFECT_PROMPT = "Generate a Soundeffect for The Following Video"

# Shot/scene fields persisted through the stage 4 settings target
COMPOSITION_FIELDS = {
    "imageModel",
    "videoModel",
    "cameraMotion",
    "cameraMovement",
    "shotType",
    "transition",
    "duration",
    "description",
    "title",
    "currentVersionId",
}
# Shot/scene fields persisted through the stage 5 settings target
SOUNDSCAPE_FIELDS = {"loopCount", "soundEffectDescription", "soundEffectUrl"}

BATCH_KINDS = (JobKind.BATCH_IMAGES, JobKind.BATCH_VIDEOS)

# Stages merged from the server again when a restored project is re-entered
RESYNC_ON_REENTRY = (Stage.SOUNDSCAPE,)


class TransitionResult(BaseModel):
    """Outcome of WorkflowController.advance()"""
    advanced: bool
    from_stage: int
    to_stage: int
    unmet: List[str] = Field(default_factory=list)
    missing_shots: List[str] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None


class WorkflowState(BaseModel):
    """Controller state for the loaded project"""
    project_id: Optional[str] = None
    current_stage: int = Stage.ATMOSPHERE
    restored_stages: Set[int] = Field(default_factory=set)


# ===== Snapshot probes =====

def snapshot_versions(snapshots: StageSnapshots, shot_id: str) -> List[ShotVersion]:
    if snapshots.step4 is not None:
        return snapshots.step4.shotVersions.get(shot_id, [])
    if snapshots.step3 is not None:
        return snapshots.step3.shotVersions.get(shot_id, [])
    return []


def snapshot_current_version(snapshots: StageSnapshots, shot_id: str) -> Optional[ShotVersion]:
    """The version a snapshot considers current, falling back to the latest one."""
    versions = snapshot_versions(snapshots, shot_id)
    if not versions:
        return None
    pointers = []
    for slice_ in (snapshots.step3, snapshots.step4):
        shots = getattr(slice_, "shots", None) or {}
        for scene_shots in shots.values():
            pointers.extend(s.currentVersionId for s in scene_shots if s.id == shot_id)
    by_id = {v.id: v for v in versions}
    for pointer in pointers:
        if pointer in by_id:
            return by_id[pointer]
    return max(versions, key=lambda v: v.versionNumber)


def snapshot_shot_audio(snapshots: StageSnapshots, shot_id: str) -> Optional[str]:
    step5 = snapshots.step5
    if step5 is None or not step5.shotsWithLoops:
        return None
    for scene_shots in step5.shotsWithLoops.values():
        for shot in scene_shots:
            if shot.id == shot_id:
                return shot.soundEffectUrl
    return None


def media_probe(fields: tuple):
    """Build a probe reporting an item complete once its version carries every field."""
    def probe(snapshots: StageSnapshots, shot_id: str) -> str:
        version = snapshot_current_version(snapshots, shot_id)
        if version is None:
            return ItemStatus.PENDING
        if all(getattr(version, field) for field in fields):
            return ItemStatus.COMPLETED
        if version.status == VersionStatus.FAILED:
            return ItemStatus.FAILED
        return ItemStatus.PENDING
    return probe


class WorkflowController:
    """
    Top-level state machine for one ambient visual project.

    Holds the live ProjectModel, runs restoration on load and stage re-entry,
    gates transitions, persists slices and dispatches generation jobs.

    Example:
        >>> async with StudioApiClient() as client:
        ...     controller = WorkflowController(client)
        ...     await controller.load("video-123")
        ...     controller.set_mood_description("A quiet misty forest at dawn")
        ...     result = await controller.advance()
        ...     result.advanced
        True
    """

    def __init__(
        self,
        client: StudioApiClient = None,
        poll_interval: float = None,
        poll_timeout: float = None,
        debounce_seconds: float = None,
    ):
        """
        Initialize controller and its collaborators.

        Args:
            client: Transport client (created and owned when omitted, in which
                case logging is configured unless structlog already is)
            poll_interval: Job poll cadence override (seconds)
            poll_timeout: Job poll ceiling override (seconds)
            debounce_seconds: Debounced write quiet period override (seconds)
        """
        self._owns_client = client is None
        if self._owns_client and not structlog.is_configured():
            configure_logging()
        self.client = client or StudioApiClient()
        self.state = WorkflowState()
        self.model = ProjectModel()
        self.snapshots: Optional[StageSnapshots] = None

        self.gate = ValidationGate()
        self.restoration = RestorationEngine()
        self.persistence = PersistenceGateway(
            self.client,
            stage_provider=lambda: self.state.current_stage,
            debounce_seconds=debounce_seconds,
        )
        self.tracker = GenerationJobTracker(
            fetch_project=self.fetch_snapshots,
            poll_interval=poll_interval,
            poll_timeout=poll_timeout,
        )
        self.logger = logger

    @property
    def current_stage(self) -> int:
        return self.state.current_stage

    def _require_project(self) -> str:
        if not self.state.project_id:
            raise PersistenceFailure(
                "project", "No video is loaded", code=ErrorCode.NO_PROJECT_LOADED
            )
        return self.state.project_id

    # ===== Loading and restoration =====

    async def fetch_snapshots(self) -> StageSnapshots:
        """
        Fetch the project record and parse its stage slices.

        Raises:
            ApiError: If the record cannot be fetched or does not parse
        """
        video_id = self._require_project()
        record = await self.client.get_video(video_id)
        try:
            return StageSnapshots.from_video(record)
        except (ValidationError, KeyError, AttributeError) as e:
            path = f"/videos/{video_id}"
            raise ApiError(
                f"Malformed response from {path}: {e}",
                path=path,
                code=ErrorCode.API_MALFORMED_RESPONSE,
            ) from e

    async def load(self, video_id: str) -> List[StepResult]:
        """
        Load a project and restore the live model from its snapshots.

        A different project id resets the model and the per-stage restoration state.

        Raises:
            ApiError: If the project cannot be fetched
        """
        if video_id != self.state.project_id:
            await self.tracker.shutdown()
            self.persistence.cancel_pending()
            self.state = WorkflowState(project_id=video_id)
            self.model = ProjectModel(video_id=video_id)
            self.persistence.video_id = video_id
        self.logger = logger.bind(project_id=video_id)

        self.snapshots = await self.fetch_snapshots()
        self.state.current_stage = min(max(self.snapshots.current_step, Stage.ATMOSPHERE), Stage.EXPORT)
        results = self.restoration.restore(self.model, self.snapshots, self.state.restored_stages)
        self.logger.info(
            "project_loaded",
            stage=self.state.current_stage,
            scenes=len(self.model.scenes),
            shots=len(self.model.all_shots()),
        )
        return results

    async def select_stage(self, stage: int) -> List[StepResult]:
        """
        Jump directly to a stage.

        Pending debounced writes are flushed first, then the snapshots are
        re-fetched. Stages already restored keep the live model, which holds
        local edits not yet persisted; only stages never restored and the
        stage 5 loop/audio data are merged from the server.

        Raises:
            WorkflowError: If the stage number is out of range
        """
        if stage not in Stage.all_stages():
            raise WorkflowError(ErrorCode.INVALID_STAGE, f"Unknown stage {stage}", {"stage": stage})
        self._require_project()

        await self.persistence.flush_all()
        previous = self.state.current_stage
        self.state.current_stage = stage
        self.logger.info("stage_selected", from_stage=previous, to_stage=stage)

        try:
            self.snapshots = await self.fetch_snapshots()
        except ApiError as e:
            e.log_error()
            return []
        return self.restoration.restore(
            self.model,
            self.snapshots,
            self.state.restored_stages,
            resync=RESYNC_ON_REENTRY,
        )

    # ===== Transitions =====

    def evaluate_gate(self, stage: int = None) -> GateResult:
        return self.gate.evaluate(stage or self.state.current_stage, self.model)

    async def advance(self) -> TransitionResult:
        """
        Move from the current stage to the next one.

        Steps:
        1. Evaluate the current stage's gate; stop with the unmet list if closed
        2. Persist the stage slice immediately; stop on failure
        3. Stage 2 without scenes: generate the flow design
        4. Stage 3: synthesize prompts and merge the returned versions
        5. Stage 4: finalize and apply the server's loop initialization
        6. Stage 5: finalize the soundscape

        Returns:
            TransitionResult; the model and stage are unchanged when not advanced
        """
        from_stage = self.state.current_stage
        log = self.logger.bind(stage=from_stage)

        if from_stage >= Stage.EXPORT:
            error = WorkflowError(ErrorCode.INVALID_STAGE, "Export is the last stage", {"stage": from_stage})
            return TransitionResult(
                advanced=False, from_stage=from_stage, to_stage=from_stage, error=error.to_dict()
            )

        log.info("stage_transition_started")
        try:
            self._require_project()
            gate = self.gate.evaluate(from_stage, self.model)
            if not gate.passed:
                failure = ValidationFailure(from_stage, gate.unmet)
                failure.log_error()
                return TransitionResult(
                    advanced=False,
                    from_stage=from_stage,
                    to_stage=from_stage,
                    unmet=gate.unmet,
                    missing_shots=gate.missing_shots,
                    error=failure.to_dict(),
                )

            if from_stage == Stage.VISUAL_WORLD:
                await self.persistence.save_stage(from_stage, self.model)
                if not self.model.scenes:
                    await self._generate_flow_design()
            elif from_stage == Stage.FLOW_DESIGN:
                await self.persistence.save_stage(from_stage, self.model)
                await self._synthesize_prompts()
            elif from_stage == Stage.COMPOSITION:
                await self._leave_composition()
            elif from_stage == Stage.SOUNDSCAPE:
                self.persistence.writer.discard(WriteTarget.STEP5_SETTINGS)
                await self.persistence.finalize_soundscape(self.model)
            elif from_stage == Stage.ATMOSPHERE:
                await self.persistence.save_stage(from_stage, self.model)
            else:
                await self.persistence.save_stage(from_stage, self.model, payload={})
        except WorkflowError as e:
            e.log_error()
            log.warning("stage_transition_aborted", error_code=e.code.value)
            return TransitionResult(
                advanced=False, from_stage=from_stage, to_stage=from_stage, error=e.to_dict()
            )

        self.state.current_stage = from_stage + 1
        log.info("stage_transition_completed", to_stage=self.state.current_stage)
        return TransitionResult(advanced=True, from_stage=from_stage, to_stage=from_stage + 1)

    async def _generate_flow_design(self) -> None:
        video_id = self._require_project()
        self.logger.info("flow_design_started")
        try:
            response = await self.client.generate_flow_design(video_id, {})
        except ApiError as e:
            raise GenerationFailure(
                "flow-design", f"Flow design failed: {e.message}", code=ErrorCode.FLOW_DESIGN_FAILED
            ) from e
        if not response.scenes:
            raise GenerationFailure(
                "flow-design", "Flow design returned no scenes", code=ErrorCode.FLOW_DESIGN_FAILED
            )

        self.model.set_scenes_and_shots(response.scenes, response.shots)
        known_shots = {shot.id for shot in self.model.all_shots()}
        self.model.shot_versions = {
            shot_id: list(versions)
            for shot_id, versions in response.shotVersions.items()
            if shot_id in known_shots
        }
        for shot in self.model.all_shots():
            if shot.currentVersionId and not self.model.get_version(shot.id, shot.currentVersionId):
                shot.currentVersionId = None
        self.model.set_continuity_groups(response.continuityGroups)
        self.model.continuity_locked = False
        self.logger.info(
            "flow_design_completed",
            scenes=len(self.model.scenes),
            shots=len(self.model.all_shots()),
            continuity_groups=sum(len(g) for g in response.continuityGroups.values()),
        )

    async def _synthesize_prompts(self) -> None:
        """Generate prompts for every shot, activate stage 4 and merge the new versions."""
        video_id = self._require_project()
        self.logger.info("prompt_synthesis_started", shots=len(self.model.all_shots()))
        try:
            result = await self.client.generate_all_prompts(video_id)
        except ApiError as e:
            raise GenerationFailure(
                "prompts", f"Prompt generation failed: {e.message}", code=ErrorCode.PROMPT_GENERATION_FAILED
            ) from e
        await self.persistence.save_stage(Stage.COMPOSITION, self.model, payload={})

        try:
            self.snapshots = await self.fetch_snapshots()
        except ApiError as e:
            raise GenerationFailure(
                "prompts", f"Generated prompts could not be loaded: {e.message}",
                code=ErrorCode.PROMPT_GENERATION_FAILED,
            ) from e

        # Fresh merge of stage 3 pointers against stage 4 versions
        self.state.restored_stages.discard(Stage.COMPOSITION)
        self.restoration.restore_stage(
            Stage.COMPOSITION, self.model, self.snapshots, self.state.restored_stages
        )
        self.logger.info(
            "prompt_synthesis_completed",
            generated=result.success_count,
            failed=result.failure_count,
        )

    async def _leave_composition(self) -> None:
        await self.persistence.save_settings(WriteTarget.STEP4_SETTINGS, self.model)
        await self.persistence.save_stage(Stage.COMPOSITION, self.model)
        init = await self.persistence.finalize_composition()

        loops = {scene.id: scene.loopCount for scene in init.scenesWithLoops}
        for scene in self.model.scenes:
            if scene.id in loops:
                scene.loopCount = loops[scene.id]
        incoming = {
            shot.id: shot
            for scene_shots in init.shotsWithLoops.values()
            for shot in scene_shots
        }
        for shot in self.model.all_shots():
            if shot.id in incoming:
                shot.loopCount = incoming[shot.id].loopCount
        self.model.soundscape.loopSettingsLocked = init.loopSettingsLocked
        self.logger.info(
            "loop_settings_initialized",
            scenes=len(loops),
            shots=len(incoming),
            total_duration=self.model.total_duration(),
        )

    # ===== Editing =====

    def _schedule_for(self, fields) -> None:
        keys = set(fields)
        if keys & COMPOSITION_FIELDS and self.state.current_stage == Stage.COMPOSITION:
            self.persistence.schedule_settings(WriteTarget.STEP4_SETTINGS, self.model)
        if keys & SOUNDSCAPE_FIELDS:
            self.persistence.schedule_settings(WriteTarget.STEP5_SETTINGS, self.model)

    def update_atmosphere(self, **changes: Any) -> None:
        self.model.update_atmosphere(**changes)

    def set_mood_description(self, description: str) -> None:
        self.model.set_mood_description(description)

    def update_visual_world(self, **changes: Any) -> None:
        for key, value in changes.items():
            setattr(self.model.visual_world, key, value)

    def update_soundscape(self, **changes: Any) -> None:
        for key, value in changes.items():
            setattr(self.model.soundscape, key, value)
        self.persistence.schedule_settings(WriteTarget.STEP5_SETTINGS, self.model)

    def add_scene(self, after_index: int, **fields: Any):
        return self.model.add_scene(after_index, **fields)

    def delete_scene(self, scene_id: str) -> None:
        self.model.delete_scene(scene_id)

    def update_scene(self, scene_id: str, **updates: Any):
        scene = self.model.update_scene(scene_id, **updates)
        self._schedule_for(updates)
        return scene

    def add_shot(self, scene_id: str, after_index: int, **fields: Any):
        return self.model.add_shot(scene_id, after_index, **fields)

    def delete_shot(self, shot_id: str) -> None:
        self.model.delete_shot(shot_id)

    def reorder_shots(self, scene_id: str, shot_ids: List[str]) -> None:
        self.model.reorder_shots(scene_id, shot_ids)

    def update_shot(self, shot_id: str, **updates: Any):
        shot = self.model.update_shot(shot_id, **updates)
        self._schedule_for(updates)
        return shot

    def select_version(self, shot_id: str, version_id: str) -> None:
        self.model.select_version(shot_id, version_id)
        self.model.apply_continuity_inheritance()
        self._schedule_for({"currentVersionId"})

    def update_version(self, shot_id: str, version_id: str, **updates: Any) -> ShotVersion:
        return self.model.update_version(shot_id, version_id, **updates)

    def delete_version(self, shot_id: str, version_id: str) -> None:
        self.model.delete_version(shot_id, version_id)

    def approve_continuity_group(self, group_id: str) -> None:
        self.model.set_group_status(group_id, ContinuityStatus.APPROVED)

    def reject_continuity_group(self, group_id: str) -> None:
        self.model.set_group_status(group_id, ContinuityStatus.REJECTED)

    async def lock_continuity(self) -> None:
        """
        Lock the continuity proposal and persist stage 3 immediately.

        Raises:
            PersistenceFailure: If the write fails (the lock is reverted)
        """
        previous = self.model.continuity_locked
        self.model.continuity_locked = True
        try:
            await self.persistence.save_stage(Stage.FLOW_DESIGN, self.model)
        except PersistenceFailure:
            self.model.continuity_locked = previous
            raise
        self.model.apply_continuity_inheritance()
        self.logger.info("continuity_locked", approved=len(self.model.approved_groups()))

    async def lock_loop_settings(self) -> None:
        """
        Lock loop settings and persist the soundscape settings immediately.

        Raises:
            PersistenceFailure: If the write fails (the lock is reverted)
        """
        previous = self.model.soundscape.loopSettingsLocked
        self.model.soundscape.loopSettingsLocked = True
        try:
            await self.persistence.save_settings(WriteTarget.STEP5_SETTINGS, self.model)
        except PersistenceFailure:
            self.model.soundscape.loopSettingsLocked = previous
            raise
        self.logger.info("loop_settings_locked", total_duration=self.model.total_duration())

    # ===== Generation =====

    def _merge_snapshot_version(self, shot_id: str, status: str, snapshots: Any) -> None:
        """Merge a shot's persisted versions as soon as a batch reports it."""
        if status != ItemStatus.COMPLETED or snapshots is None or not self.model.has_shot(shot_id):
            return
        for version in snapshot_versions(snapshots, shot_id):
            self.model.upsert_version(version.model_copy(deep=True))
        current = snapshot_current_version(snapshots, shot_id)
        if current is not None:
            self.model.select_version(shot_id, current.id)
        self.model.apply_continuity_inheritance()

    def _apply_shot_response(self, job: GenerationJob, response: Any, required: tuple) -> None:
        if response.shotVersion is not None and self.model.has_shot(response.shotVersion.shotId):
            version = self.model.upsert_version(response.shotVersion)
            shot = self.model.get_shot(version.shotId)
            if shot.currentVersionId is None:
                shot.currentVersionId = version.id
        if response.nextShotId and response.nextShotVersion is not None and self.model.has_shot(response.nextShotId):
            self.model.upsert_version(response.nextShotVersion)
        self.model.apply_continuity_inheritance()

        version = response.shotVersion
        if response.skipped or (version is not None and all(getattr(version, f) for f in required)):
            job.observe(job.item_ids[0], ItemStatus.COMPLETED)

    def _frame_fields(self, frame: str) -> tuple:
        if self.model.transport_mode == TransportMode.IMAGE_TRANSITIONS:
            return ("imageUrl",)
        return ("endFrameUrl",) if frame == "end" else ("startFrameUrl",)

    async def generate_image(self, shot_id: str, frame: str = "start", regenerate: bool = False) -> GenerationJob:
        """
        Generate (or regenerate) one frame of a shot.

        Raises:
            ModelIntegrityError: For an inherited start frame or an unknown shot
        """
        video_id = self._require_project()
        self.model.get_shot(shot_id)
        if frame == "start" and self.model.is_start_frame_inherited(shot_id):
            raise ModelIntegrityError(
                ErrorCode.INHERITED_FRAME_READ_ONLY,
                f"Start frame of shot '{shot_id}' is inherited from the previous shot",
                {"shot_id": shot_id},
            )
        required = self._frame_fields(frame)
        send = self.client.regenerate_image if regenerate else self.client.generate_image
        return await self.tracker.submit(
            JobKind.IMAGE,
            JobKind.key(JobKind.IMAGE, shot_id),
            [shot_id],
            request=lambda: send(video_id, shot_id, frame),
            probe=media_probe(required),
            on_item=self._merge_snapshot_version,
            on_response=lambda job, response: self._apply_shot_response(job, response, required),
        )

    async def generate_video(self, shot_id: str) -> GenerationJob:
        video_id = self._require_project()
        self.model.get_shot(shot_id)
        if not TransportMode.uses_video_clips(self.model.transport_mode):
            raise GenerationFailure(
                JobKind.key(JobKind.VIDEO, shot_id),
                "Video clips are not generated in image-transitions mode",
                item_id=shot_id,
                code=ErrorCode.VIDEO_GENERATION_FAILED,
            )
        return await self.tracker.submit(
            JobKind.VIDEO,
            JobKind.key(JobKind.VIDEO, shot_id),
            [shot_id],
            request=lambda: self.client.generate_video(video_id, shot_id),
            probe=media_probe(("videoUrl",)),
            on_item=self._merge_snapshot_version,
            on_response=lambda job, response: self._apply_shot_response(job, response, ("videoUrl",)),
        )

    def _shots_missing(self, fields: tuple) -> List[str]:
        missing = []
        for shot in self.model.all_shots():
            version = self.model.current_version(shot.id) or self.model.latest_version(shot.id)
            if version is None or not all(getattr(version, f) for f in fields):
                missing.append(shot.id)
        return missing

    async def generate_all_images(self) -> GenerationJob:
        video_id = self._require_project()
        required = TransportMode.required_media(self.model.transport_mode)
        return await self.tracker.submit(
            JobKind.BATCH_IMAGES,
            JobKind.key(JobKind.BATCH_IMAGES),
            self._shots_missing(required),
            request=lambda: self.client.generate_all_images(video_id),
            probe=media_probe(required),
            on_item=self._merge_snapshot_version,
        )

    async def generate_all_videos(self) -> GenerationJob:
        video_id = self._require_project()
        if not TransportMode.uses_video_clips(self.model.transport_mode):
            raise GenerationFailure(
                JobKind.BATCH_VIDEOS,
                "Video clips are not generated in image-transitions mode",
                code=ErrorCode.VIDEO_GENERATION_FAILED,
            )
        return await self.tracker.submit(
            JobKind.BATCH_VIDEOS,
            JobKind.key(JobKind.BATCH_VIDEOS),
            self._shots_missing(("videoUrl",)),
            request=lambda: self.client.generate_all_videos(video_id),
            probe=media_probe(("videoUrl",)),
            on_item=self._merge_snapshot_version,
        )

    async def recommend_sound_effect(self, shot_id: str) -> str:
        """
        Ask for a sound effect description and store it on the shot.

        Raises:
            GenerationFailure: If the recommendation request fails
        """
        video_id = self._require_project()
        self.model.get_shot(shot_id)
        try:
            recommendation = await self.client.recommend_sound_effect(video_id, shot_id)
        except ApiError as e:
            raise GenerationFailure(
                JobKind.key(JobKind.SOUND_EFFECT, shot_id),
                f"Sound effect recommendation failed: {e.message}",
                item_id=shot_id,
                code=ErrorCode.AUDIO_GENERATION_FAILED,
            ) from e
        self.update_shot(shot_id, soundEffectDescription=recommendation.prompt)
        return recommendation.prompt

    async def generate_sound_effect(self, shot_id: str, description: str = None) -> GenerationJob:
        video_id = self._require_project()
        shot = self.model.get_shot(shot_id)
        prompt = (description or shot.soundEffectDescription or "").strip() or DEFAULT_SOUND_EFFECT_PROMPT
        previous_url = shot.soundEffectUrl

        def apply(job: GenerationJob, response: Any) -> None:
            if self.model.has_shot(shot_id):
                self.update_shot(shot_id, soundEffectUrl=response.audioUrl, soundEffectDescription=prompt)
            job.observe(shot_id, ItemStatus.COMPLETED)

        def probe(snapshots: StageSnapshots, item_id: str) -> str:
            url = snapshot_shot_audio(snapshots, item_id)
            return ItemStatus.COMPLETED if url and url != previous_url else ItemStatus.PENDING

        return await self.tracker.submit(
            JobKind.SOUND_EFFECT,
            JobKind.key(JobKind.SOUND_EFFECT, shot_id),
            [shot_id],
            request=lambda: self.client.generate_sound_effect(video_id, shot_id, prompt, previous_url),
            probe=probe,
            on_response=apply,
        )

    async def generate_voiceover_script(self) -> GenerationJob:
        video_id = self._require_project()
        key = JobKind.key(JobKind.VOICEOVER_SCRIPT)

        def apply(job: GenerationJob, response: Any) -> None:
            self.model.soundscape.voiceoverScript = response.script
            self.model.soundscape.voiceoverAudioUrl = None
            self.persistence.schedule_settings(WriteTarget.STEP5_SETTINGS, self.model)
            job.observe(key, ItemStatus.COMPLETED)

        return await self.tracker.submit(
            JobKind.VOICEOVER_SCRIPT,
            key,
            [key],
            request=lambda: self.client.generate_voiceover_script(video_id),
            probe=lambda snapshots, item_id: (
                ItemStatus.COMPLETED
                if snapshots.step5 is not None and snapshots.step5.voiceoverScript
                else ItemStatus.PENDING
            ),
            on_response=apply,
        )

    async def generate_voiceover_audio(self, script: str = None) -> GenerationJob:
        video_id = self._require_project()
        key = JobKind.key(JobKind.VOICEOVER_AUDIO)
        text = script if script is not None else self.model.soundscape.voiceoverScript
        if not text or not text.strip():
            raise GenerationFailure(
                key, "A voiceover script is required", code=ErrorCode.AUDIO_GENERATION_FAILED
            )

        def apply(job: GenerationJob, response: Any) -> None:
            self.model.soundscape.voiceoverScript = text
            self.model.soundscape.voiceoverAudioUrl = response.audioUrl
            self.model.soundscape.voiceoverDuration = response.duration
            self.model.soundscape.voiceoverStatus = "completed"
            job.observe(key, ItemStatus.COMPLETED)

        return await self.tracker.submit(
            JobKind.VOICEOVER_AUDIO,
            key,
            [key],
            request=lambda: self.client.generate_voiceover_audio(video_id, text),
            probe=lambda snapshots, item_id: (
                ItemStatus.COMPLETED
                if snapshots.step5 is not None and snapshots.step5.voiceoverAudioUrl
                else ItemStatus.PENDING
            ),
            on_response=apply,
        )

    async def generate_music(self, style: str = None) -> GenerationJob:
        video_id = self._require_project()
        key = JobKind.key(JobKind.MUSIC)
        music_style = style or self.model.visual_world.musicStyle

        def apply(job: GenerationJob, response: Any) -> None:
            self.model.soundscape.generatedMusicUrl = response.musicUrl
            self.model.soundscape.generatedMusicDuration = response.duration
            self.model.soundscape.generatedMusicStyle = response.style or music_style
            job.observe(key, ItemStatus.COMPLETED)

        return await self.tracker.submit(
            JobKind.MUSIC,
            key,
            [key],
            request=lambda: self.client.generate_music(video_id, music_style),
            probe=lambda snapshots, item_id: (
                ItemStatus.COMPLETED
                if snapshots.step5 is not None and snapshots.step5.generatedMusicUrl
                else ItemStatus.PENDING
            ),
            on_response=apply,
        )

    async def complete(self, job: GenerationJob) -> JobResult:
        """
        Wait for a job and, for batch jobs, refresh the model from the server.

        Raises:
            GenerationFailure: If the job failed
        """
        result = await self.tracker.wait(job)
        if job.kind in BATCH_KINDS:
            await self.refresh_versions()
        return result

    async def refresh_versions(self) -> None:
        """Re-fetch the project and re-merge shot versions."""
        try:
            self.snapshots = await self.fetch_snapshots()
        except ApiError as e:
            e.log_error()
            return
        self.state.restored_stages.discard(Stage.COMPOSITION)
        self.restoration.restore_stage(
            Stage.COMPOSITION, self.model, self.snapshots, self.state.restored_stages
        )

    def job_progress(self, key: str) -> Optional[str]:
        job = self.tracker.get(key)
        return job.progress if job else None

    # ===== Teardown =====

    async def teardown(self) -> None:
        """Flush pending debounced writes (stage-gated) and stop polling."""
        flushed = await self.persistence.flush_all()
        await self.tracker.shutdown()
        self.persistence.cancel_pending()
        if self._owns_client:
            await self.client.close()
        self.logger.info("workflow_teardown", flushed_writes=flushed)
