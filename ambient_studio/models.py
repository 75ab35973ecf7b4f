"""
Project data model for the ambient visual workflow.

Scenes, shots, shot versions and continuity groups mirror the persisted JSON
shapes (camelCase attributes, unknown keys kept so they round-trip on save).
ProjectModel owns all of them:
- scenes: ordered list, sceneNumber contiguous from 1
- shots: keyed by scene id, shotNumber contiguous from 1 within each scene
- shot_versions: keyed by shot id, grows independently of shot edits
- continuity_groups: keyed by scene id
"""

import random
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ambient_studio.pipeline.error_handler import ErrorCode, ModelIntegrityError

logger = structlog.get_logger(__name__)


LoopSetting = Union[int, str]  # positive int or "auto"


# Workflow stage constants
class Stage:
    """Constants for the seven workflow stages"""
    ATMOSPHERE = 1
    VISUAL_WORLD = 2
    FLOW_DESIGN = 3
    COMPOSITION = 4
    SOUNDSCAPE = 5
    PREVIEW = 6
    EXPORT = 7

    NAMES = {
        1: "atmosphere",
        2: "visual_world",
        3: "flow_design",
        4: "composition",
        5: "soundscape",
        6: "preview",
        7: "export",
    }

    @classmethod
    def all_stages(cls) -> List[int]:
        """Get list of all stages in order"""
        return list(range(cls.ATMOSPHERE, cls.EXPORT + 1))

    @classmethod
    def name(cls, stage: int) -> str:
        return cls.NAMES.get(stage, f"stage_{stage}")


class AnimationMode:
    """Constants for the atmosphere animation mode"""
    IMAGE_TRANSITIONS = "image-transitions"
    VIDEO_ANIMATION = "video-animation"


class VideoGenerationMode:
    """Constants for the video generation mode"""
    IMAGE_REFERENCE = "image-reference"
    START_END_FRAME = "start-end-frame"


class TransportMode:
    """
    How shots are stitched together.

    Determines which media fields every shot must carry before composition
    can be left.
    """
    IMAGE_TRANSITIONS = "image-transitions"   # single image per shot
    IMAGE_REFERENCE = "image-reference"       # start frame only
    START_END_FRAME = "start-end-frame"       # start and end frames

    REQUIRED_MEDIA = {
        IMAGE_TRANSITIONS: ("imageUrl",),
        IMAGE_REFERENCE: ("startFrameUrl",),
        START_END_FRAME: ("startFrameUrl", "endFrameUrl"),
    }

    @classmethod
    def resolve(cls, animation_mode: str, video_generation_mode: Optional[str]) -> str:
        if animation_mode != AnimationMode.VIDEO_ANIMATION:
            return cls.IMAGE_TRANSITIONS
        if video_generation_mode == VideoGenerationMode.START_END_FRAME:
            return cls.START_END_FRAME
        return cls.IMAGE_REFERENCE

    @classmethod
    def required_media(cls, mode: str) -> Tuple[str, ...]:
        return cls.REQUIRED_MEDIA[mode]

    @classmethod
    def requires_continuity(cls, mode: str) -> bool:
        return mode == cls.START_END_FRAME

    @classmethod
    def uses_video_clips(cls, mode: str) -> bool:
        return mode != cls.IMAGE_TRANSITIONS


class VersionStatus:
    """Constants for shot version status values"""
    PENDING = "pending"
    PROMPT_GENERATED = "prompt_generated"
    IMAGES_GENERATED = "images_generated"
    COMPLETED = "completed"
    FAILED = "failed"


class ContinuityStatus:
    """Constants for continuity group status values"""
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


class WireModel(BaseModel):
    """Base for persisted shapes: keeps unknown keys, validates on assignment."""
    model_config = ConfigDict(extra="allow", validate_assignment=True)


class Scene(WireModel):
    """Ordered segment of the video."""
    id: str
    videoId: Optional[str] = None
    sceneNumber: int = Field(1, ge=1)
    title: str = ""
    description: Optional[str] = None
    duration: Optional[float] = None
    imageModel: Optional[str] = None
    videoModel: Optional[str] = None
    cameraMotion: Optional[str] = None
    loopCount: Optional[int] = Field(None, ge=1)
    createdAt: Optional[datetime] = None


class Shot(WireModel):
    """Ordered unit within a scene."""
    id: str
    sceneId: str
    shotNumber: int = Field(1, ge=1)
    shotType: str = "Medium Shot"
    cameraMovement: str = "Static"
    duration: float = 5
    description: Optional[str] = None
    imageModel: Optional[str] = None
    videoModel: Optional[str] = None
    transition: Optional[str] = None
    currentVersionId: Optional[str] = None
    loopCount: Optional[int] = Field(None, ge=1)
    soundEffectDescription: Optional[str] = None
    soundEffectUrl: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# Shot fields owned by the soundscape stage; never sourced from flow design or composition
AUDIO_FIELDS = ("soundEffectUrl", "soundEffectDescription")
LOOP_FIELDS = ("loopCount",)


class ShotVersion(WireModel):
    """One generated artifact attempt for a shot."""
    id: str
    shotId: str
    versionNumber: int = Field(1, ge=1)

    # Prompts
    imagePrompt: Optional[str] = None
    videoPrompt: Optional[str] = None
    negativePrompt: Optional[str] = None
    startFramePrompt: Optional[str] = None
    endFramePrompt: Optional[str] = None

    # Media
    imageUrl: Optional[str] = None
    startFrameUrl: Optional[str] = None
    endFrameUrl: Optional[str] = None
    startFrameInherited: bool = False
    videoUrl: Optional[str] = None
    videoDuration: Optional[float] = None
    soundEffectPrompt: Optional[str] = None

    status: str = VersionStatus.PENDING
    needsRerender: bool = False
    errorMessage: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ContinuityGroup(WireModel):
    """Scene-scoped run of shots forming one unbroken visual sequence."""
    id: str
    sceneId: str
    groupNumber: int = 1
    shotIds: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    transitionType: Optional[str] = None
    status: str = ContinuityStatus.PROPOSED
    editedBy: Optional[str] = None
    editedAt: Optional[datetime] = None
    approvedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v):
        """The backend writes "declined" for rejected groups."""
        if v == "declined":
            return ContinuityStatus.REJECTED
        if v not in (ContinuityStatus.PROPOSED, ContinuityStatus.APPROVED, ContinuityStatus.REJECTED):
            raise ValueError(f"unknown continuity status: {v}")
        return v


class DescriptionSnapshot(BaseModel):
    """Atmosphere settings captured when the mood description was produced."""
    mood: str
    theme: str
    timeContext: str
    season: str
    duration: str


class AtmosphereSettings(WireModel):
    """Stage 1 settings."""
    mood: str = "calm"
    theme: str = "nature"
    timeContext: str = "sunset"
    season: str = "neutral"
    duration: str = "1min"
    aspectRatio: str = "16:9"
    userStory: str = ""
    moodDescription: str = ""

    animationMode: str = AnimationMode.IMAGE_TRANSITIONS
    videoGenerationMode: Optional[str] = None
    imageModel: str = "nano-banana"
    imageResolution: str = "auto"
    videoModel: Optional[str] = None
    videoResolution: Optional[str] = None
    motionPrompt: str = ""
    defaultEasingStyle: str = "smooth"
    transitionStyle: str = "auto"
    cameraMotion: str = "auto"

    pacing: int = 30
    segmentEnabled: bool = True
    segmentCount: LoopSetting = "auto"
    shotsPerSegment: LoopSetting = "auto"

    loopMode: bool = True
    loopType: str = "seamless"
    segmentLoopEnabled: bool = False
    segmentLoopCount: LoopSetting = "auto"
    shotLoopEnabled: bool = False
    shotLoopCount: LoopSetting = "auto"

    backgroundMusicEnabled: bool = False
    voiceoverEnabled: bool = False
    language: str = "en"
    textOverlayEnabled: bool = False
    textOverlayStyle: str = "modern"

    def snapshot(self) -> DescriptionSnapshot:
        return DescriptionSnapshot(
            mood=self.mood,
            theme=self.theme,
            timeContext=self.timeContext,
            season=self.season,
            duration=self.duration,
        )


class VisualWorldSettings(WireModel):
    """Stage 2 settings."""
    artStyle: str = "cinematic"
    visualElements: List[str] = Field(default_factory=list)
    visualRhythm: str = "breathing"
    referenceImages: List[str] = Field(default_factory=list)
    imageCustomInstructions: str = ""
    musicStyle: Optional[str] = None
    customMusicUrl: Optional[str] = None
    customMusicDuration: Optional[float] = None
    hasCustomMusic: bool = False


class SoundscapeSettings(WireModel):
    """Stage 5 settings (audio layers and loop lock)."""
    voiceoverScript: Optional[str] = None
    voiceoverAudioUrl: Optional[str] = None
    voiceoverDuration: Optional[float] = None
    voiceoverStatus: str = "pending"
    generatedMusicUrl: Optional[str] = None
    generatedMusicDuration: Optional[float] = None
    generatedMusicStyle: Optional[str] = None
    loopSettingsLocked: bool = False


def resolve_loop_count(enabled: bool, setting: LoopSetting, rng: random.Random = None) -> int:
    """
    Resolve a loop setting into a concrete loop count.

    Args:
        enabled: Whether looping is enabled for this level
        setting: A positive count or "auto"
        rng: Random source for "auto" (defaults to module random)

    Returns:
        1 when disabled, the count when numeric, a random count in [2, 10] for "auto"
    """
    if not enabled:
        return 1
    if setting == "auto":
        return (rng or random).randint(2, 10)
    return int(setting)


def calculate_total_duration(scenes: Iterable[Scene], shots: Dict[str, List[Shot]]) -> float:
    """
    Total duration with loop expansion.

    Each shot contributes duration × loopCount, each scene multiplies the sum
    of its shots by its own loopCount. Undefined loop counts read as 1.
    """
    total = 0.0
    for scene in scenes:
        scene_total = sum(
            shot.duration * (shot.loopCount or 1)
            for shot in shots.get(scene.id, [])
        )
        total += scene_total * (scene.loopCount or 1)
    return total


class ProjectModel(BaseModel):
    """
    Live in-memory project model.

    Mutated only by the workflow controller and the observations merged back
    from generation jobs.
    """
    model_config = ConfigDict(validate_assignment=False)

    video_id: Optional[str] = None
    atmosphere: AtmosphereSettings = Field(default_factory=AtmosphereSettings)
    description_snapshot: Optional[DescriptionSnapshot] = None
    visual_world: VisualWorldSettings = Field(default_factory=VisualWorldSettings)
    soundscape: SoundscapeSettings = Field(default_factory=SoundscapeSettings)

    scenes: List[Scene] = Field(default_factory=list)
    shots: Dict[str, List[Shot]] = Field(default_factory=dict)
    shot_versions: Dict[str, List[ShotVersion]] = Field(default_factory=dict)
    continuity_groups: Dict[str, List[ContinuityGroup]] = Field(default_factory=dict)
    continuity_locked: bool = False
    continuity_generated: bool = False

    # ===== Derived values =====

    @property
    def transport_mode(self) -> str:
        return TransportMode.resolve(
            self.atmosphere.animationMode, self.atmosphere.videoGenerationMode
        )

    def all_shots(self) -> List[Shot]:
        """All shots in scene order, then shot order."""
        result = []
        for scene in self.scenes:
            result.extend(self.shots.get(scene.id, []))
        return result

    def base_duration(self) -> float:
        return sum(shot.duration for shot in self.all_shots())

    def total_duration(self) -> float:
        return calculate_total_duration(self.scenes, self.shots)

    def settings_changed_since_description(self) -> bool:
        if self.description_snapshot is None:
            return False
        return self.description_snapshot != self.atmosphere.snapshot()

    # ===== Lookups =====

    def get_scene(self, scene_id: str) -> Scene:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        raise ModelIntegrityError(
            ErrorCode.UNKNOWN_ENTITY, f"Unknown scene '{scene_id}'", {"scene_id": scene_id}
        )

    def get_shot(self, shot_id: str) -> Shot:
        for scene_shots in self.shots.values():
            for shot in scene_shots:
                if shot.id == shot_id:
                    return shot
        raise ModelIntegrityError(
            ErrorCode.UNKNOWN_ENTITY, f"Unknown shot '{shot_id}'", {"shot_id": shot_id}
        )

    def has_shot(self, shot_id: str) -> bool:
        return any(shot.id == shot_id for shot in self.all_shots())

    def versions_for(self, shot_id: str) -> List[ShotVersion]:
        return self.shot_versions.get(shot_id, [])

    def get_version(self, shot_id: str, version_id: str) -> Optional[ShotVersion]:
        for version in self.versions_for(shot_id):
            if version.id == version_id:
                return version
        return None

    def current_version(self, shot_id: str) -> Optional[ShotVersion]:
        shot = self.get_shot(shot_id)
        if not shot.currentVersionId:
            return None
        return self.get_version(shot_id, shot.currentVersionId)

    def latest_version(self, shot_id: str) -> Optional[ShotVersion]:
        versions = self.versions_for(shot_id)
        if not versions:
            return None
        return max(versions, key=lambda v: v.versionNumber)

    # ===== Atmosphere =====

    def update_atmosphere(self, **changes: Any) -> None:
        for key, value in changes.items():
            if key == "moodDescription":
                self.set_mood_description(value)
            else:
                setattr(self.atmosphere, key, value)

    def set_mood_description(self, description: str) -> None:
        """Store a new description and capture the settings it was produced from."""
        self.atmosphere.moodDescription = description
        if description.strip():
            self.description_snapshot = self.atmosphere.snapshot()
        else:
            self.description_snapshot = None

    # ===== Scenes =====

    def _renumber_scenes(self) -> None:
        for index, scene in enumerate(self.scenes):
            scene.sceneNumber = index + 1

    def _renumber_shots(self, scene_id: str) -> None:
        for index, shot in enumerate(self.shots.get(scene_id, [])):
            shot.shotNumber = index + 1

    def add_scene(self, after_index: int, **fields: Any) -> Scene:
        """
        Insert a new scene after the scene at after_index (-1 inserts first).

        Returns:
            The new scene, numbered in place
        """
        scene = Scene(
            id=fields.pop("id", None) or _new_id("scene"),
            videoId=self.video_id,
            title=fields.pop("title", "New Scene"),
            description=fields.pop("description", "New scene description"),
            duration=fields.pop("duration", 10),
            createdAt=_now(),
            **fields,
        )
        position = max(0, min(after_index + 1, len(self.scenes)))
        self.scenes.insert(position, scene)
        self.shots.setdefault(scene.id, [])
        self._renumber_scenes()
        return scene

    def delete_scene(self, scene_id: str) -> None:
        self.get_scene(scene_id)
        self.scenes = [s for s in self.scenes if s.id != scene_id]
        for shot in self.shots.pop(scene_id, []):
            self.shot_versions.pop(shot.id, None)
        self.continuity_groups.pop(scene_id, None)
        self._renumber_scenes()
        self.apply_continuity_inheritance()

    def update_scene(self, scene_id: str, **updates: Any) -> Scene:
        scene = self.get_scene(scene_id)
        for key, value in updates.items():
            setattr(scene, key, value)
        return scene

    def set_scenes_and_shots(self, scenes: List[Scene], shots: Dict[str, List[Shot]]) -> None:
        """Replace the scene/shot structure, restoring contiguous numbering."""
        self.scenes = sorted(scenes, key=lambda s: s.sceneNumber)
        incoming_numbers = [scene.sceneNumber for scene in self.scenes]
        self._renumber_scenes()
        if incoming_numbers != [scene.sceneNumber for scene in self.scenes]:
            logger.warning("scene_numbers_repaired", incoming=incoming_numbers)
        self.shots = {}
        for scene in self.scenes:
            self.shots[scene.id] = sorted(shots.get(scene.id, []), key=lambda s: s.shotNumber)
            self._renumber_shots(scene.id)

    # ===== Shots =====

    def add_shot(self, scene_id: str, after_index: int, **fields: Any) -> Shot:
        self.get_scene(scene_id)
        now = _now()
        shot = Shot(
            id=fields.pop("id", None) or _new_id("shot"),
            sceneId=scene_id,
            description=fields.pop("description", "New shot"),
            createdAt=now,
            updatedAt=now,
            **fields,
        )
        scene_shots = self.shots.setdefault(scene_id, [])
        position = max(0, min(after_index + 1, len(scene_shots)))
        scene_shots.insert(position, shot)
        self._renumber_shots(scene_id)
        return shot

    def delete_shot(self, shot_id: str) -> None:
        shot = self.get_shot(shot_id)
        self.shots[shot.sceneId] = [s for s in self.shots[shot.sceneId] if s.id != shot_id]
        self.shot_versions.pop(shot_id, None)
        for group in self.continuity_groups.get(shot.sceneId, []):
            if shot_id in group.shotIds:
                group.shotIds = [sid for sid in group.shotIds if sid != shot_id]
        self._renumber_shots(shot.sceneId)
        self.apply_continuity_inheritance()

    def reorder_shots(self, scene_id: str, shot_ids: List[str]) -> None:
        """Reorder a scene's shots; the id list must be a permutation of the scene's shots."""
        current = {shot.id: shot for shot in self.shots.get(scene_id, [])}
        if sorted(shot_ids) != sorted(current):
            raise ModelIntegrityError(
                ErrorCode.UNKNOWN_ENTITY,
                f"Reorder for scene '{scene_id}' does not match its shots",
                {"scene_id": scene_id, "shot_ids": shot_ids},
            )
        self.shots[scene_id] = [current[shot_id] for shot_id in shot_ids]
        self._renumber_shots(scene_id)
        self.apply_continuity_inheritance()

    def update_shot(self, shot_id: str, **updates: Any) -> Shot:
        shot = self.get_shot(shot_id)
        if "currentVersionId" in updates:
            self.select_version(shot_id, updates.pop("currentVersionId"))
        for key, value in updates.items():
            setattr(shot, key, value)
        shot.updatedAt = _now()
        return shot

    # ===== Versions =====

    def select_version(self, shot_id: str, version_id: Optional[str]) -> None:
        shot = self.get_shot(shot_id)
        if version_id is not None and self.get_version(shot_id, version_id) is None:
            raise ModelIntegrityError(
                ErrorCode.FOREIGN_VERSION,
                f"Version '{version_id}' is not owned by shot '{shot_id}'",
                {"shot_id": shot_id, "version_id": version_id},
            )
        shot.currentVersionId = version_id

    def upsert_version(self, version: ShotVersion) -> ShotVersion:
        """Replace a version in place by id, or append it to the shot's history."""
        versions = self.shot_versions.setdefault(version.shotId, [])
        for index, existing in enumerate(versions):
            if existing.id == version.id:
                versions[index] = version
                return version
        versions.append(version)
        return version

    def update_version(self, shot_id: str, version_id: str, **updates: Any) -> ShotVersion:
        version = self.get_version(shot_id, version_id)
        if version is None:
            raise ModelIntegrityError(
                ErrorCode.UNKNOWN_ENTITY,
                f"Unknown version '{version_id}' for shot '{shot_id}'",
                {"shot_id": shot_id, "version_id": version_id},
            )
        if "startFramePrompt" in updates and self.is_start_frame_inherited(shot_id):
            raise ModelIntegrityError(
                ErrorCode.INHERITED_FRAME_READ_ONLY,
                f"Start frame of shot '{shot_id}' is inherited and read-only",
                {"shot_id": shot_id},
            )
        for key, value in updates.items():
            setattr(version, key, value)
        version.updatedAt = _now()
        # Followers pick up a changed end frame
        self.apply_continuity_inheritance()
        return version

    def delete_version(self, shot_id: str, version_id: str) -> None:
        shot = self.get_shot(shot_id)
        if shot.currentVersionId == version_id:
            raise ModelIntegrityError(
                ErrorCode.CURRENT_VERSION_DELETE,
                f"Version '{version_id}' is the current version of shot '{shot_id}'",
                {"shot_id": shot_id, "version_id": version_id},
            )
        if self.get_version(shot_id, version_id) is None:
            raise ModelIntegrityError(
                ErrorCode.UNKNOWN_ENTITY,
                f"Unknown version '{version_id}' for shot '{shot_id}'",
                {"shot_id": shot_id, "version_id": version_id},
            )
        self.shot_versions[shot_id] = [v for v in self.versions_for(shot_id) if v.id != version_id]

    # ===== Continuity =====

    def approved_groups(self) -> List[ContinuityGroup]:
        return [
            group
            for groups in self.continuity_groups.values()
            for group in groups
            if group.status == ContinuityStatus.APPROVED
        ]

    def is_start_frame_inherited(self, shot_id: str) -> bool:
        """True when the shot follows another shot inside an approved group."""
        for group in self.approved_groups():
            if shot_id in group.shotIds[1:]:
                return True
        return False

    def inheritance_source(self, shot_id: str) -> Optional[str]:
        """The predecessor shot whose end frame this shot's start frame inherits."""
        for group in self.approved_groups():
            if shot_id in group.shotIds[1:]:
                return group.shotIds[group.shotIds.index(shot_id) - 1]
        return None

    def next_in_group(self, shot_id: str) -> Optional[str]:
        for group in self.approved_groups():
            if shot_id in group.shotIds[:-1]:
                return group.shotIds[group.shotIds.index(shot_id) + 1]
        return None

    def set_continuity_groups(self, groups: Dict[str, List[ContinuityGroup]]) -> None:
        self.continuity_groups = {scene_id: list(items) for scene_id, items in groups.items()}
        if groups:
            self.continuity_generated = True
        self.apply_continuity_inheritance()

    def _find_group(self, group_id: str) -> ContinuityGroup:
        for groups in self.continuity_groups.values():
            for group in groups:
                if group.id == group_id:
                    return group
        raise ModelIntegrityError(
            ErrorCode.UNKNOWN_ENTITY, f"Unknown continuity group '{group_id}'", {"group_id": group_id}
        )

    def set_group_status(self, group_id: str, status: str) -> ContinuityGroup:
        """
        Approve, reject or re-propose a continuity group.

        A shot may belong to at most one approved group within its scene.
        """
        group = self._find_group(group_id)
        if status == ContinuityStatus.APPROVED:
            for other in self.continuity_groups.get(group.sceneId, []):
                if other.id == group.id or other.status != ContinuityStatus.APPROVED:
                    continue
                overlap = set(other.shotIds) & set(group.shotIds)
                if overlap:
                    raise ModelIntegrityError(
                        ErrorCode.CONTINUITY_OVERLAP,
                        f"Shots {sorted(overlap)} already belong to approved group '{other.id}'",
                        {"group_id": group_id, "conflicting_group_id": other.id},
                    )
            group.approvedAt = _now()
        group.status = status
        group.editedAt = _now()
        self.apply_continuity_inheritance()
        return group

    def apply_continuity_inheritance(self) -> int:
        """
        Mark inherited start frames and copy them from the predecessor's end frame.

        Every version of a non-first shot in an approved group is flagged as
        inherited; the current version takes the predecessor's current end frame
        by reference. Shots outside that position are unflagged.

        Returns:
            Number of versions whose fields changed
        """
        changed = 0
        for shot in self.all_shots():
            source_id = self.inheritance_source(shot.id)
            inherited = source_id is not None
            for version in self.versions_for(shot.id):
                if version.startFrameInherited != inherited:
                    version.startFrameInherited = inherited
                    changed += 1
            if not inherited:
                continue
            source_version = self.current_version(source_id)
            target_version = self.current_version(shot.id)
            if source_version and target_version and source_version.endFrameUrl:
                if target_version.startFrameUrl != source_version.endFrameUrl:
                    target_version.startFrameUrl = source_version.endFrameUrl
                    changed += 1
        return changed

    # ===== Serialization =====

    def dump_scenes(self) -> List[Dict[str, Any]]:
        return [scene.model_dump(mode="json") for scene in self.scenes]

    def dump_shots(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            scene_id: [shot.model_dump(mode="json") for shot in scene_shots]
            for scene_id, scene_shots in self.shots.items()
        }

    def dump_shot_versions(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            shot_id: [version.model_dump(mode="json") for version in versions]
            for shot_id, versions in self.shot_versions.items()
        }

    def dump_continuity_groups(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            scene_id: [group.model_dump(mode="json") for group in groups]
            for scene_id, groups in self.continuity_groups.items()
        }
