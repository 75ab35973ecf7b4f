"""
Unit tests for the project data model

Tests numbering invariants, duration derivations, version ownership and
continuity inheritance.
"""

import random

import pytest

from ambient_studio.models import (
    AnimationMode,
    ContinuityGroup,
    ContinuityStatus,
    ProjectModel,
    TransportMode,
    VideoGenerationMode,
    calculate_total_duration,
    resolve_loop_count,
)
from ambient_studio.pipeline.error_handler import ErrorCode, ModelIntegrityError
from tests.factories import make_group, make_scene, make_shot, make_version


def scene_numbers(model: ProjectModel):
    return [scene.sceneNumber for scene in model.scenes]


def shot_numbers(model: ProjectModel, scene_id: str):
    return [shot.shotNumber for shot in model.shots[scene_id]]


class TestSceneNumbering:
    """Test sceneNumber contiguity after structural edits"""

    def test_add_scene_in_middle_renumbers(self, project):
        scene = project.add_scene(0, title="Inserted")

        assert [s.id for s in project.scenes] == ["sc1", scene.id, "sc2"]
        assert scene_numbers(project) == [1, 2, 3]
        assert project.shots[scene.id] == []

    def test_add_scene_first(self, project):
        scene = project.add_scene(-1)

        assert project.scenes[0].id == scene.id
        assert scene_numbers(project) == [1, 2, 3]

    def test_add_scene_past_end_appends(self, project):
        scene = project.add_scene(99)

        assert project.scenes[-1].id == scene.id
        assert scene_numbers(project) == [1, 2, 3]

    def test_delete_scene_drops_shots_versions_and_groups(self, project):
        project.continuity_groups = {"sc1": [make_group("g1", "sc1", ["s1", "s2"])]}

        project.delete_scene("sc1")

        assert [s.id for s in project.scenes] == ["sc2"]
        assert scene_numbers(project) == [1]
        assert "sc1" not in project.shots
        assert "s1" not in project.shot_versions
        assert "sc1" not in project.continuity_groups

    def test_delete_unknown_scene_raises(self, project):
        with pytest.raises(ModelIntegrityError) as exc_info:
            project.delete_scene("missing")
        assert exc_info.value.code == ErrorCode.UNKNOWN_ENTITY

    def test_set_scenes_and_shots_repairs_gaps(self):
        model = ProjectModel()
        model.set_scenes_and_shots(
            [make_scene("b", 5), make_scene("a", 2)],
            {"a": [make_shot("x2", "a", 7), make_shot("x1", "a", 3)]},
        )

        assert [s.id for s in model.scenes] == ["a", "b"]
        assert scene_numbers(model) == [1, 2]
        assert [s.id for s in model.shots["a"]] == ["x1", "x2"]
        assert shot_numbers(model, "a") == [1, 2]
        assert model.shots["b"] == []


class TestShotNumbering:
    """Test shotNumber contiguity within a scene"""

    def test_add_shot_renumbers_within_scene(self, project):
        shot = project.add_shot("sc1", 0)

        assert [s.id for s in project.shots["sc1"]] == ["s1", shot.id, "s2"]
        assert shot_numbers(project, "sc1") == [1, 2, 3]
        assert shot_numbers(project, "sc2") == [1, 2]

    def test_delete_shot_renumbers_and_leaves_groups(self, project):
        project.continuity_groups = {"sc1": [make_group("g1", "sc1", ["s1", "s2"])]}

        project.delete_shot("s1")

        assert [s.id for s in project.shots["sc1"]] == ["s2"]
        assert shot_numbers(project, "sc1") == [1]
        assert "s1" not in project.shot_versions
        assert project.continuity_groups["sc1"][0].shotIds == ["s2"]

    def test_reorder_shots(self, project):
        project.reorder_shots("sc1", ["s2", "s1"])

        assert [s.id for s in project.shots["sc1"]] == ["s2", "s1"]
        assert shot_numbers(project, "sc1") == [1, 2]

    def test_reorder_with_foreign_shot_rejected(self, project):
        with pytest.raises(ModelIntegrityError):
            project.reorder_shots("sc1", ["s1", "s3"])

        assert [s.id for s in project.shots["sc1"]] == ["s1", "s2"]

    def test_repeated_edits_stay_contiguous(self, project):
        first = project.add_shot("sc2", -1)
        project.add_shot("sc2", 1)
        project.delete_shot("s3")
        project.delete_shot(first.id)
        project.add_shot("sc2", 5)

        assert shot_numbers(project, "sc2") == [1, 2, 3]


class TestDurations:
    """Test duration derivations with loop expansion"""

    def test_base_duration(self, project):
        assert project.base_duration() == 20

    def test_total_duration_without_loops(self, project):
        assert project.total_duration() == 20

    def test_scene_loop_count_multiplies_scene(self, project):
        project.scenes[0].loopCount = 2

        assert project.total_duration() == 30

    def test_shot_and_scene_loops_combine(self, project):
        project.shots["sc1"][0].loopCount = 3
        project.scenes[0].loopCount = 2

        # sc1: (5*3 + 5) * 2 = 40, sc2: 10
        assert project.total_duration() == 50

    def test_calculate_total_duration_ignores_orphan_shots(self):
        scenes = [make_scene("a", 1)]
        shots = {"a": [make_shot("x", "a", 1, duration=4)], "gone": [make_shot("y", "gone", 1)]}

        assert calculate_total_duration(scenes, shots) == 4


class TestResolveLoopCount:
    """Test loop setting resolution"""

    def test_disabled_is_one(self):
        assert resolve_loop_count(False, 5) == 1

    def test_numeric(self):
        assert resolve_loop_count(True, 4) == 4

    def test_auto_in_range(self):
        rng = random.Random(7)
        counts = {resolve_loop_count(True, "auto", rng) for _ in range(50)}

        assert counts <= set(range(2, 11))


class TestAtmosphere:
    """Test description snapshot tracking"""

    def test_description_captures_snapshot(self, project):
        project.set_mood_description("Calm waves at sunset")

        assert project.description_snapshot.mood == "calm"
        assert not project.settings_changed_since_description()

    def test_changed_setting_detected(self, project):
        project.set_mood_description("Calm waves at sunset")
        project.update_atmosphere(mood="tense")

        assert project.settings_changed_since_description()

    def test_clearing_description_clears_snapshot(self, project):
        project.set_mood_description("Calm waves")
        project.set_mood_description("  ")

        assert project.description_snapshot is None

    def test_transport_mode_derivation(self, project):
        assert project.transport_mode == TransportMode.IMAGE_TRANSITIONS

        project.update_atmosphere(animationMode=AnimationMode.VIDEO_ANIMATION)
        assert project.transport_mode == TransportMode.IMAGE_REFERENCE

        project.update_atmosphere(videoGenerationMode=VideoGenerationMode.START_END_FRAME)
        assert project.transport_mode == TransportMode.START_END_FRAME


class TestVersions:
    """Test version ownership rules"""

    def test_delete_current_version_rejected(self, project):
        with pytest.raises(ModelIntegrityError) as exc_info:
            project.delete_version("s1", "v1")

        assert exc_info.value.code == ErrorCode.CURRENT_VERSION_DELETE
        assert [v.id for v in project.versions_for("s1")] == ["v1"]

    def test_delete_other_version(self, project):
        project.upsert_version(make_version("v1b", "s1", 2))

        project.delete_version("s1", "v1b")

        assert [v.id for v in project.versions_for("s1")] == ["v1"]

    def test_select_foreign_version_rejected(self, project):
        with pytest.raises(ModelIntegrityError) as exc_info:
            project.select_version("s1", "v2")

        assert exc_info.value.code == ErrorCode.FOREIGN_VERSION
        assert project.get_shot("s1").currentVersionId == "v1"

    def test_upsert_replaces_in_place(self, project):
        project.upsert_version(make_version("v1", "s1", 1, imageUrl="https://cdn/1.png"))

        versions = project.versions_for("s1")
        assert len(versions) == 1
        assert versions[0].imageUrl == "https://cdn/1.png"

    def test_upsert_appends_new_version(self, project):
        project.upsert_version(make_version("v1b", "s1", 2))

        assert [v.id for v in project.versions_for("s1")] == ["v1", "v1b"]
        assert project.latest_version("s1").id == "v1b"


class TestContinuity:
    """Test continuity groups and start frame inheritance"""

    @pytest.fixture
    def linked(self, project):
        project.update_version("s1", "v1", endFramePrompt="end", endFrameUrl="https://cdn/end1.png")
        project.continuity_groups = {
            "sc1": [make_group("g1", "sc1", ["s1", "s2"], status=ContinuityStatus.APPROVED)]
        }
        project.apply_continuity_inheritance()
        return project

    def test_non_first_shot_inherits(self, linked):
        follower = linked.current_version("s2")

        assert follower.startFrameInherited is True
        assert follower.startFrameUrl == "https://cdn/end1.png"
        assert linked.current_version("s1").startFrameInherited is False

    def test_all_versions_of_follower_flagged(self, linked):
        linked.upsert_version(make_version("v2b", "s2", 2))
        linked.apply_continuity_inheritance()

        assert all(v.startFrameInherited for v in linked.versions_for("s2"))

    def test_inherited_start_prompt_read_only(self, linked):
        with pytest.raises(ModelIntegrityError) as exc_info:
            linked.update_version("s2", "v2", startFramePrompt="my own start")

        assert exc_info.value.code == ErrorCode.INHERITED_FRAME_READ_ONLY

    def test_other_fields_still_editable(self, linked):
        version = linked.update_version("s2", "v2", endFramePrompt="closing frame")

        assert version.endFramePrompt == "closing frame"

    def test_rejecting_group_clears_inheritance(self, linked):
        linked.set_group_status("g1", ContinuityStatus.REJECTED)

        assert linked.current_version("s2").startFrameInherited is False
        linked.update_version("s2", "v2", startFramePrompt="free again")

    def test_predecessor_end_frame_edit_propagates(self, linked):
        linked.update_version("s1", "v1", endFrameUrl="https://cdn/end1b.png")

        assert linked.current_version("s2").startFrameUrl == "https://cdn/end1b.png"

    def test_deleting_first_shot_unflags_new_first(self, linked):
        linked.delete_shot("s1")

        assert linked.continuity_groups["sc1"][0].shotIds == ["s2"]
        assert not linked.is_start_frame_inherited("s2")
        assert all(not v.startFrameInherited for v in linked.versions_for("s2"))

    def test_deleting_scene_drops_its_inheritance(self, linked):
        linked.delete_scene("sc1")

        assert linked.approved_groups() == []
        assert linked.continuity_groups == {}

    def test_reorder_keeps_flags_consistent(self, linked):
        linked.continuity_groups["sc1"][0].shotIds = ["s2", "s1"]

        linked.reorder_shots("sc1", ["s2", "s1"])

        assert linked.current_version("s1").startFrameInherited is True
        assert linked.current_version("s2").startFrameInherited is False

    def test_overlapping_approval_rejected(self, linked):
        linked.continuity_groups["sc1"].append(make_group("g2", "sc1", ["s2"]))

        with pytest.raises(ModelIntegrityError) as exc_info:
            linked.set_group_status("g2", ContinuityStatus.APPROVED)

        assert exc_info.value.code == ErrorCode.CONTINUITY_OVERLAP
        assert linked.continuity_groups["sc1"][1].status == ContinuityStatus.PROPOSED

    def test_next_and_source(self, linked):
        assert linked.next_in_group("s1") == "s2"
        assert linked.inheritance_source("s2") == "s1"
        assert linked.inheritance_source("s1") is None

    def test_declined_status_read_as_rejected(self):
        group = ContinuityGroup(id="g", sceneId="sc", status="declined")

        assert group.status == ContinuityStatus.REJECTED
