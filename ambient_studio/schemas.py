"""
Persisted stage slices and transport response shapes.

Every shape keeps unknown keys so a slice can be fetched, edited and written
back without losing fields owned by the server.
"""

from typing import Any, ClassVar, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from ambient_studio.models import (
    AtmosphereSettings,
    ContinuityGroup,
    Scene,
    Shot,
    ShotVersion,
    SoundscapeSettings,
    VisualWorldSettings,
)


class ResponseModel(BaseModel):
    model_config = ConfigDict(extra="allow")


# ===== Stage slices =====

class Step1Snapshot(AtmosphereSettings):
    """Persisted stage 1 slice"""
    pass


class Step2Snapshot(VisualWorldSettings):
    """Persisted stage 2 slice"""
    pass


class Step3Snapshot(ResponseModel):
    """Persisted stage 3 slice: flow design plus continuity proposal"""
    scenes: List[Scene] = Field(default_factory=list)
    shots: Dict[str, List[Shot]] = Field(default_factory=dict)
    shotVersions: Dict[str, List[ShotVersion]] = Field(default_factory=dict)
    continuityLocked: bool = False
    continuityGroups: Dict[str, List[ContinuityGroup]] = Field(default_factory=dict)
    continuityGenerated: bool = False


class Step4Snapshot(ResponseModel):
    """
    Persisted stage 4 slice.

    scenes/shots are only present once per-shot model overrides were saved.
    """
    scenes: Optional[List[Scene]] = None
    shots: Optional[Dict[str, List[Shot]]] = None
    shotVersions: Dict[str, List[ShotVersion]] = Field(default_factory=dict)


class Step5Snapshot(SoundscapeSettings):
    """Persisted stage 5 slice: loop-expanded scenes/shots plus audio layers"""
    scenesWithLoops: Optional[List[Scene]] = None
    shotsWithLoops: Optional[Dict[str, List[Shot]]] = None


class StageSnapshots(BaseModel):
    """The per-stage snapshots of one project as returned by GET /videos/{id}"""
    video_id: str
    current_step: int = 1
    completed_steps: List[int] = Field(default_factory=list)
    step1: Optional[Step1Snapshot] = None
    step2: Optional[Step2Snapshot] = None
    step3: Optional[Step3Snapshot] = None
    step4: Optional[Step4Snapshot] = None
    step5: Optional[Step5Snapshot] = None

    SLICE_TYPES: ClassVar[Dict[int, Type[BaseModel]]] = {
        1: Step1Snapshot,
        2: Step2Snapshot,
        3: Step3Snapshot,
        4: Step4Snapshot,
        5: Step5Snapshot,
    }

    @classmethod
    def from_video(cls, payload: Dict[str, Any]) -> "StageSnapshots":
        """
        Build snapshots from a raw video record.

        Args:
            payload: JSON body of GET /videos/{id}

        Returns:
            StageSnapshots with one parsed slice per stage that has data
        """
        slices = {}
        for stage, slice_type in cls.SLICE_TYPES.items():
            raw = payload.get(f"step{stage}Data")
            slices[f"step{stage}"] = slice_type.model_validate(raw) if raw else None
        return cls(
            video_id=str(payload["id"]),
            current_step=payload.get("currentStep") or 1,
            completed_steps=payload.get("completedSteps") or [],
            **slices,
        )

    def for_stage(self, stage: int) -> Optional[BaseModel]:
        return getattr(self, f"step{stage}", None)


# ===== Generation responses =====

class FlowDesignResponse(ResponseModel):
    """Response of POST /flow-design/generate"""
    scenes: List[Scene] = Field(default_factory=list)
    shots: Dict[str, List[Shot]] = Field(default_factory=dict)
    shotVersions: Dict[str, List[ShotVersion]] = Field(default_factory=dict)
    continuityGroups: Dict[str, List[ContinuityGroup]] = Field(default_factory=dict)
    totalDuration: Optional[float] = None
    cost: Optional[float] = None


class BatchGenerationResponse(ResponseModel):
    """Response of the generate-all-* batch submissions"""
    success: bool = True
    message: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None
    totalShots: Optional[int] = None
    imagesGenerated: Optional[int] = None
    videosGenerated: Optional[int] = None
    promptsGenerated: Optional[int] = None
    failedShots: Any = None
    failedCount: Optional[int] = None
    skippedCount: Optional[int] = None
    totalCost: Optional[float] = None

    @property
    def success_count(self) -> int:
        for value in (self.imagesGenerated, self.videosGenerated, self.promptsGenerated):
            if value is not None:
                return value
        return 0

    @property
    def failure_count(self) -> int:
        if self.failedCount is not None:
            return self.failedCount
        if isinstance(self.failedShots, list):
            return len(self.failedShots)
        if isinstance(self.failedShots, int):
            return self.failedShots
        return 0


class ShotGenerationResponse(ResponseModel):
    """
    Response of a single-shot image or video submission.

    nextShotId/nextShotVersion are present when the generated end frame was
    propagated to the following shot of a continuity group.
    """
    success: bool = True
    shotId: Optional[str] = None
    frame: Optional[str] = None
    shotVersion: Optional[ShotVersion] = None
    nextShotId: Optional[str] = None
    nextShotVersion: Optional[ShotVersion] = None
    videoUrl: Optional[str] = None
    actualDuration: Optional[float] = None
    skipped: bool = False
    message: Optional[str] = None


class SoundEffectRecommendation(ResponseModel):
    prompt: str


class AudioResponse(ResponseModel):
    """Response of sound effect and voiceover audio generation"""
    audioUrl: str
    duration: Optional[float] = None


class VoiceoverScriptResponse(ResponseModel):
    script: str
    estimatedDuration: Optional[float] = None


class MusicResponse(ResponseModel):
    musicUrl: str
    duration: Optional[float] = None
    style: Optional[str] = None


class Stage5InitResponse(ResponseModel):
    """
    Response of PATCH step/4/continue-to-5.

    Canonical initialization of loop counts; applied as returned.
    """
    scenesWithLoops: List[Scene] = Field(default_factory=list)
    shotsWithLoops: Dict[str, List[Shot]] = Field(default_factory=dict)
    loopSettingsLocked: bool = False
