"""
Persistence of stage slices.

Two write policies:
- Immediate: awaited by the caller, failures raised as PersistenceFailure.
  Used for stage transitions, lock actions and teardown.
- Debounced: coalesced per write target through CoalescingWriter; a new edit
  restarts the quiet period and failures are only logged.

Stage 5 settings are only written while the workflow is on stage 5.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ambient_studio.config import settings
from ambient_studio.models import ProjectModel, Stage
from ambient_studio.pipeline.error_handler import ApiError, ErrorCode, PersistenceFailure
from ambient_studio.schemas import Stage5InitResponse
from ambient_studio.services.api_client import StudioApiClient

logger = structlog.get_logger(__name__)

WriteFactory = Callable[[], Awaitable[Any]]


class WriteTarget:
    """Constants for debounced write targets"""
    STEP4_SETTINGS = "step4-settings"
    STEP5_SETTINGS = "step5-settings"

    # Target -> stage the workflow must be on for the write to run
    STAGE_GATED = {STEP5_SETTINGS: Stage.SOUNDSCAPE}


class CoalescingWriter:
    """
    Debounced writes keyed by target.

    Only the latest write per target survives the quiet period. The write
    factory is called when the timer fires, so it reads the model state at
    that moment rather than at scheduling time.
    """

    def __init__(self, delay: float = None, guard: Callable[[str], bool] = None):
        """
        Args:
            delay: Quiet period in seconds (default: DEBOUNCE_SECONDS)
            guard: Returns False when writes for a target must be suppressed
        """
        self.delay = delay if delay is not None else settings.DEBOUNCE_SECONDS
        self.guard = guard or (lambda target: True)
        self._timers: Dict[str, asyncio.Task] = {}
        self._writes: Dict[str, WriteFactory] = {}

    def has_pending(self, target: str) -> bool:
        return target in self._writes

    def schedule(self, target: str, write: WriteFactory) -> bool:
        """
        Schedule (or reschedule) the write for a target.

        Returns:
            False if the write was suppressed by the guard
        """
        if not self.guard(target):
            self.discard(target)
            logger.debug("debounced_write_suppressed", target=target, phase="schedule")
            return False

        timer = self._timers.pop(target, None)
        if timer is not None:
            timer.cancel()
        self._writes[target] = write
        self._timers[target] = asyncio.create_task(self._fire_after_delay(target))
        return True

    def discard(self, target: str) -> None:
        timer = self._timers.pop(target, None)
        if timer is not None:
            timer.cancel()
        self._writes.pop(target, None)

    async def _fire_after_delay(self, target: str) -> None:
        await asyncio.sleep(self.delay)
        self._timers.pop(target, None)
        await self._run(target)

    async def _run(self, target: str) -> bool:
        write = self._writes.pop(target, None)
        if write is None:
            return False
        if not self.guard(target):
            logger.info("debounced_write_suppressed", target=target, phase="fire")
            return False
        try:
            await write()
            logger.debug("debounced_write_completed", target=target)
            return True
        except Exception as e:
            logger.error(
                "debounced_write_failed",
                target=target,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def flush(self, target: str) -> bool:
        """Run a pending write now instead of waiting for its timer."""
        timer = self._timers.pop(target, None)
        if timer is not None:
            timer.cancel()
        return await self._run(target)

    async def flush_all(self) -> int:
        """
        Run every pending write now.

        Returns:
            Number of writes that completed
        """
        flushed = 0
        for target in list(self._writes):
            if await self.flush(target):
                flushed += 1
        return flushed

    def cancel_all(self) -> None:
        for target in list(self._writes):
            self.discard(target)


class PersistenceGateway:
    """
    Writes stage-scoped slices of the project model.

    Usage:
        gateway = PersistenceGateway(client, stage_provider=lambda: state.current_stage)
        gateway.video_id = "video-123"
        await gateway.save_stage(Stage.ATMOSPHERE, model)
        gateway.schedule_settings(WriteTarget.STEP4_SETTINGS, model)
    """

    def __init__(
        self,
        client: StudioApiClient,
        stage_provider: Callable[[], int],
        debounce_seconds: float = None,
    ):
        self.client = client
        self.stage_provider = stage_provider
        self.video_id: Optional[str] = None
        self.writer = CoalescingWriter(debounce_seconds, guard=self._target_allowed)
        self.logger = logger.bind(service="persistence_gateway")

    def _target_allowed(self, target: str) -> bool:
        required_stage = WriteTarget.STAGE_GATED.get(target)
        return required_stage is None or self.stage_provider() == required_stage

    def _require_video(self, target: str) -> str:
        if not self.video_id:
            raise PersistenceFailure(
                target,
                "No video is loaded",
                code=ErrorCode.NO_PROJECT_LOADED,
            )
        return self.video_id

    # ===== Slices =====

    @staticmethod
    def stage_payload(stage: int, model: ProjectModel) -> Dict[str, Any]:
        """Serialize the slice of the model owned by a stage."""
        if stage == Stage.ATMOSPHERE:
            return model.atmosphere.model_dump(mode="json")
        if stage == Stage.VISUAL_WORLD:
            return model.visual_world.model_dump(mode="json")
        if stage == Stage.FLOW_DESIGN:
            return {
                "scenes": model.dump_scenes(),
                "shots": model.dump_shots(),
                "continuityLocked": model.continuity_locked,
                "continuityGroups": model.dump_continuity_groups(),
                "continuityGenerated": model.continuity_generated,
            }
        if stage == Stage.COMPOSITION:
            return {
                "scenes": model.dump_scenes(),
                "shots": model.dump_shots(),
                "shotVersions": model.dump_shot_versions(),
            }
        if stage == Stage.SOUNDSCAPE:
            return {
                **model.soundscape.model_dump(mode="json"),
                "scenesWithLoops": model.dump_scenes(),
                "shotsWithLoops": model.dump_shots(),
            }
        return {}

    @staticmethod
    def settings_payload(target: str, model: ProjectModel) -> Dict[str, Any]:
        if target == WriteTarget.STEP4_SETTINGS:
            return {"scenes": model.dump_scenes(), "shots": model.dump_shots()}
        if target == WriteTarget.STEP5_SETTINGS:
            return PersistenceGateway.stage_payload(Stage.SOUNDSCAPE, model)
        raise ValueError(f"Unknown write target: {target}")

    # ===== Immediate policy =====

    async def _immediate(self, target: str, call: Callable[[str], Awaitable[Any]], code: ErrorCode) -> Any:
        video_id = self._require_video(target)
        try:
            result = await call(video_id)
        except ApiError as e:
            self.logger.error(
                "immediate_write_failed",
                target=target,
                project_id=video_id,
                status_code=e.status_code,
                error=e.message,
            )
            raise PersistenceFailure(target, e.message, status_code=e.status_code, code=code) from e
        self.logger.info("immediate_write_completed", target=target, project_id=video_id)
        return result

    async def save_stage(self, stage: int, model: ProjectModel, payload: Dict[str, Any] = None) -> Any:
        """
        Persist a stage slice (PATCH step/{n}/continue).

        Raises:
            PersistenceFailure: If the write is rejected or the server is unreachable
        """
        body = self.stage_payload(stage, model) if payload is None else payload
        return await self._immediate(
            f"step{stage}",
            lambda video_id: self.client.continue_stage(video_id, stage, body),
            ErrorCode.STAGE_SAVE_FAILED,
        )

    async def finalize_composition(self) -> Stage5InitResponse:
        """Finalize stage 4; the response initializes stage 5 loop counts."""
        return await self._immediate(
            "step4-finalize",
            lambda video_id: self.client.continue_to_stage5(video_id),
            ErrorCode.STAGE_SAVE_FAILED,
        )

    async def finalize_soundscape(self, model: ProjectModel) -> Any:
        body = self.stage_payload(Stage.SOUNDSCAPE, model)
        return await self._immediate(
            "step5-finalize",
            lambda video_id: self.client.continue_to_stage6(video_id, body),
            ErrorCode.STAGE_SAVE_FAILED,
        )

    async def save_settings(self, target: str, model: ProjectModel) -> Any:
        """Write a settings target immediately, dropping any pending debounced write."""
        self.writer.discard(target)
        body = self.settings_payload(target, model)
        if target == WriteTarget.STEP4_SETTINGS:
            call = lambda video_id: self.client.patch_step4_settings(video_id, body)
        else:
            call = lambda video_id: self.client.patch_step5_settings(video_id, body)
        return await self._immediate(target, call, ErrorCode.SETTINGS_SAVE_FAILED)

    # ===== Debounced policy =====

    def schedule_settings(self, target: str, model: ProjectModel) -> bool:
        """
        Schedule a debounced settings write.

        Returns:
            False if the write was suppressed (stage 5 target off stage 5, or no video)
        """
        if not self.video_id:
            return False
        video_id = self.video_id

        async def write() -> Any:
            body = self.settings_payload(target, model)
            if target == WriteTarget.STEP4_SETTINGS:
                return await self.client.patch_step4_settings(video_id, body)
            return await self.client.patch_step5_settings(video_id, body)

        return self.writer.schedule(target, write)

    async def flush_all(self) -> int:
        return await self.writer.flush_all()

    def cancel_pending(self) -> None:
        self.writer.cancel_all()
