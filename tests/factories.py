"""
Builders for project entities and raw video records used across tests.
"""

from typing import Any, Dict, List, Optional

from ambient_studio.models import (
    ContinuityGroup,
    ProjectModel,
    Scene,
    Shot,
    ShotVersion,
)


def make_scene(scene_id: str, number: int, **fields: Any) -> Scene:
    return Scene(id=scene_id, sceneNumber=number, title=f"Scene {number}", **fields)


def make_shot(shot_id: str, scene_id: str, number: int, duration: float = 5, **fields: Any) -> Shot:
    return Shot(id=shot_id, sceneId=scene_id, shotNumber=number, duration=duration, **fields)


def make_version(version_id: str, shot_id: str, number: int = 1, **fields: Any) -> ShotVersion:
    return ShotVersion(id=version_id, shotId=shot_id, versionNumber=number, **fields)


def make_group(group_id: str, scene_id: str, shot_ids: List[str], status: str = "proposed") -> ContinuityGroup:
    return ContinuityGroup(id=group_id, sceneId=scene_id, shotIds=shot_ids, status=status)


def make_project(video_id: str = "video-1") -> ProjectModel:
    """Two scenes with two 5 second shots each, one version per shot."""
    model = ProjectModel(video_id=video_id)
    model.scenes = [make_scene("sc1", 1), make_scene("sc2", 2)]
    model.shots = {
        "sc1": [
            make_shot("s1", "sc1", 1, currentVersionId="v1"),
            make_shot("s2", "sc1", 2, currentVersionId="v2"),
        ],
        "sc2": [
            make_shot("s3", "sc2", 1, currentVersionId="v3"),
            make_shot("s4", "sc2", 2, currentVersionId="v4"),
        ],
    }
    model.shot_versions = {
        f"s{i}": [make_version(f"v{i}", f"s{i}")] for i in range(1, 5)
    }
    return model


def dump_shots(shots: Dict[str, List[Shot]]) -> Dict[str, List[Dict[str, Any]]]:
    return {
        scene_id: [shot.model_dump(mode="json", exclude_none=True) for shot in scene_shots]
        for scene_id, scene_shots in shots.items()
    }


def dump_versions(versions: Dict[str, List[ShotVersion]]) -> Dict[str, List[Dict[str, Any]]]:
    return {
        shot_id: [version.model_dump(mode="json", exclude_none=True) for version in items]
        for shot_id, items in versions.items()
    }


def video_record(
    video_id: str = "video-1",
    current_step: int = 1,
    step1: Optional[Dict[str, Any]] = None,
    step2: Optional[Dict[str, Any]] = None,
    step3: Optional[Dict[str, Any]] = None,
    step4: Optional[Dict[str, Any]] = None,
    step5: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Raw body of GET /videos/{id}."""
    return {
        "id": video_id,
        "currentStep": current_step,
        "completedSteps": list(range(1, current_step)),
        "step1Data": step1,
        "step2Data": step2,
        "step3Data": step3,
        "step4Data": step4,
        "step5Data": step5,
    }


def step3_data(model: ProjectModel, **overrides: Any) -> Dict[str, Any]:
    data = {
        "scenes": [scene.model_dump(mode="json", exclude_none=True) for scene in model.scenes],
        "shots": dump_shots(model.shots),
        "continuityLocked": model.continuity_locked,
        "continuityGroups": {
            scene_id: [group.model_dump(mode="json", exclude_none=True) for group in groups]
            for scene_id, groups in model.continuity_groups.items()
        },
        "continuityGenerated": model.continuity_generated,
    }
    data.update(overrides)
    return data


def step4_data(model: ProjectModel, include_structure: bool = False, **overrides: Any) -> Dict[str, Any]:
    data = {"shotVersions": dump_versions(model.shot_versions)}
    if include_structure:
        data["scenes"] = [scene.model_dump(mode="json", exclude_none=True) for scene in model.scenes]
        data["shots"] = dump_shots(model.shots)
    data.update(overrides)
    return data
