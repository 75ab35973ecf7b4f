"""
Unit tests for RestorationEngine

Tests stage ordering, field ownership between snapshots, current version
reconciliation and idempotency.
"""

from unittest.mock import patch

import pytest

from ambient_studio.models import ContinuityStatus, ProjectModel, Stage
from ambient_studio.pipeline.restoration import STEPS, RestorationEngine, RestorationOutcome
from ambient_studio.schemas import StageSnapshots
from tests.factories import (
    make_group,
    make_project,
    make_version,
    step3_data,
    step4_data,
    video_record,
)


@pytest.fixture
def engine():
    return RestorationEngine()


@pytest.fixture
def saved():
    """The project as the server has it"""
    model = make_project()
    model.continuity_groups = {
        "sc1": [make_group("g1", "sc1", ["s1", "s2"], status=ContinuityStatus.APPROVED)]
    }
    model.continuity_locked = True
    model.continuity_generated = True
    return model


def snapshots_for(saved, **steps):
    return StageSnapshots.from_video(video_record(**steps))


def restore(engine, snapshots, model=None, restored=None):
    model = model or ProjectModel(video_id="video-1")
    restored = set() if restored is None else restored
    results = engine.restore(model, snapshots, restored)
    return model, restored, results


class TestOrdering:

    def test_all_stages_restored_in_order(self, engine, saved):
        snapshots = snapshots_for(
            saved,
            step1={"mood": "calm", "moodDescription": "Calm"},
            step3=step3_data(saved),
            step4=step4_data(saved),
        )

        model, restored, results = restore(engine, snapshots)

        assert [r.stage for r in results] == [1, 2, 3, 4, 5]
        assert restored == {1, 2, 3, 4, 5}
        assert results[1].outcome == RestorationOutcome.EMPTY
        assert results[2].outcome == RestorationOutcome.APPLIED

    def test_stage_blocked_until_previous_restored(self, engine, saved):
        snapshots = snapshots_for(saved, step3=step3_data(saved))
        model = ProjectModel(video_id="video-1")

        result = engine.restore_stage(Stage.FLOW_DESIGN, model, snapshots, set())

        assert result.outcome == RestorationOutcome.BLOCKED
        assert model.scenes == []

    def test_failed_step_halts_pipeline(self, engine, saved):
        snapshots = snapshots_for(saved, step3=step3_data(saved), step4=step4_data(saved))

        def broken(model, snapshots):
            raise KeyError("scenes")

        engine = RestorationEngine(
            [(stage, broken if stage == Stage.FLOW_DESIGN else step) for stage, step in STEPS]
        )
        model, restored, results = restore(engine, snapshots)

        assert results[-1].stage == Stage.FLOW_DESIGN
        assert results[-1].outcome == RestorationOutcome.FAILED
        assert restored == {1, 2}


class TestAtmosphere:

    def test_restoring_description_restores_snapshot(self, engine, saved):
        snapshots = snapshots_for(saved, step1={"mood": "tense", "moodDescription": "Storm"})

        model, _, _ = restore(engine, snapshots)

        assert model.atmosphere.mood == "tense"
        assert model.description_snapshot.mood == "tense"
        assert not model.settings_changed_since_description()


class TestFieldOwnership:

    def test_stage4_audio_fields_discarded(self, engine, saved):
        """Sound effect stored in the stage 4 copy of shots is never restored"""
        saved.shots["sc1"][0].soundEffectUrl = "x"
        saved.shots["sc1"][0].loopCount = 4
        snapshots = snapshots_for(
            saved,
            step3=step3_data(saved),
            step4=step4_data(saved, include_structure=True),
        )

        model, _, _ = restore(engine, snapshots)

        shot = model.get_shot("s1")
        assert shot.soundEffectUrl is None
        assert shot.loopCount is None

    def test_stage4_structure_supersedes_stage3(self, engine, saved):
        stage4 = make_project()
        stage4.shots["sc1"][0].imageModel = "flux-pro"
        snapshots = snapshots_for(
            saved,
            step3=step3_data(saved),
            step4=step4_data(stage4, include_structure=True),
        )

        model, _, _ = restore(engine, snapshots)

        assert model.get_shot("s1").imageModel == "flux-pro"

    def test_empty_stage4_shots_fall_back_to_stage3(self, engine, saved):
        """Stage 4 scenes without shots keep the stage 3 shot list"""
        stage4 = step4_data(saved, include_structure=True)
        stage4["shots"] = {}
        snapshots = snapshots_for(saved, step3=step3_data(saved), step4=stage4)

        model, _, _ = restore(engine, snapshots)

        assert len(model.all_shots()) == 4
        assert [s.id for s in model.shots["sc2"]] == ["s3", "s4"]

    def test_stage4_shots_used_without_stage4_scenes(self, engine, saved):
        stage4 = make_project()
        stage4.shots["sc2"][1].imageModel = "flux-pro"
        data = step4_data(stage4, include_structure=True)
        data["scenes"] = []
        snapshots = snapshots_for(saved, step3=step3_data(saved), step4=data)

        model, _, _ = restore(engine, snapshots)

        assert [scene.id for scene in model.scenes] == ["sc1", "sc2"]
        assert model.get_shot("s4").imageModel == "flux-pro"

    def test_live_audio_fields_kept_on_rerun(self, engine, saved):
        snapshots = snapshots_for(saved, step3=step3_data(saved), step4=step4_data(saved))
        model, restored, _ = restore(engine, snapshots)
        model.get_shot("s1").soundEffectUrl = "https://cdn/rain.mp3"

        engine.restore(model, snapshots, restored)

        assert model.get_shot("s1").soundEffectUrl == "https://cdn/rain.mp3"

    def test_continuity_only_from_stage3(self, engine, saved):
        snapshots = snapshots_for(
            saved,
            step3=step3_data(saved),
            step4=step4_data(saved, continuityGroups={}, continuityLocked=False),
        )

        model, _, _ = restore(engine, snapshots)

        assert model.continuity_locked is True
        assert [g.id for g in model.continuity_groups["sc1"]] == ["g1"]

    def test_inheritance_applied_after_versions(self, engine, saved):
        saved.update_version("s1", "v1", endFrameUrl="https://cdn/end1.png")
        snapshots = snapshots_for(saved, step3=step3_data(saved), step4=step4_data(saved))

        model, _, _ = restore(engine, snapshots)

        assert model.current_version("s2").startFrameInherited is True
        assert model.current_version("s2").startFrameUrl == "https://cdn/end1.png"

    def test_stage5_loops_and_audio(self, engine, saved):
        step5 = {
            "loopSettingsLocked": True,
            "voiceoverScript": "Breathe in",
            "scenesWithLoops": [{"id": "sc1", "sceneNumber": 1, "loopCount": 2}],
            "shotsWithLoops": {
                "sc1": [{"id": "s1", "sceneId": "sc1", "loopCount": 3, "soundEffectUrl": "https://cdn/sfx.mp3"}]
            },
        }
        snapshots = snapshots_for(
            saved, step3=step3_data(saved), step4=step4_data(saved), step5=step5
        )

        model, _, _ = restore(engine, snapshots)

        assert model.scenes[0].loopCount == 2
        assert model.get_shot("s1").loopCount == 3
        assert model.get_shot("s1").soundEffectUrl == "https://cdn/sfx.mp3"
        assert model.soundscape.loopSettingsLocked is True
        assert model.total_duration() == (5 * 3 + 5) * 2 + 10


class TestCurrentVersion:

    def test_stage3_pointer_preferred(self, engine, saved):
        saved.upsert_version(make_version("v1b", "s1", 2))
        stage3 = saved.model_copy(deep=True)
        stage3.get_shot("s1").currentVersionId = "v1"
        stage4 = saved.model_copy(deep=True)
        stage4.get_shot("s1").currentVersionId = "v1b"
        snapshots = snapshots_for(
            saved,
            step3=step3_data(stage3),
            step4=step4_data(stage4, include_structure=True),
        )

        model, _, _ = restore(engine, snapshots)

        assert model.get_shot("s1").currentVersionId == "v1"

    def test_dangling_pointer_falls_back_to_highest_version(self, engine, saved):
        saved.upsert_version(make_version("v1c", "s1", 3))
        saved.upsert_version(make_version("v1b", "s1", 2))
        saved.get_shot("s1").currentVersionId = "deleted"
        snapshots = snapshots_for(saved, step3=step3_data(saved), step4=step4_data(saved))

        model, _, _ = restore(engine, snapshots)

        assert model.get_shot("s1").currentVersionId == "v1c"

    def test_pointer_cleared_without_versions(self, engine, saved):
        snapshots = snapshots_for(saved, step3=step3_data(saved), step4={"shotVersions": {}})

        model, _, _ = restore(engine, snapshots)

        assert all(shot.currentVersionId is None for shot in model.all_shots())

    def test_stage3_versions_used_before_stage4_exists(self, engine, saved):
        data = step3_data(saved, shotVersions=step4_data(saved)["shotVersions"])
        snapshots = snapshots_for(saved, step3=data)

        model, _, _ = restore(engine, snapshots)

        assert model.current_version("s1").id == "v1"


class TestIdempotency:

    def test_same_snapshot_twice_is_noop(self, engine, saved):
        snapshots = snapshots_for(
            saved,
            step1={"mood": "calm", "moodDescription": "Calm"},
            step2={"artStyle": "watercolor"},
            step3=step3_data(saved),
            step4=step4_data(saved),
            step5={"loopSettingsLocked": False},
        )
        model, restored, _ = restore(engine, snapshots)
        once = model.model_copy(deep=True)

        results = engine.restore(model, snapshots, restored)

        assert model == once
        assert all(r.outcome == RestorationOutcome.UNCHANGED for r in results)

    def test_changed_snapshot_resyncs_and_logs_conflict(self, engine, saved):
        first = snapshots_for(saved, step3=step3_data(saved), step4=step4_data(saved))
        model, restored, _ = restore(engine, first)
        second = snapshots_for(
            saved,
            step3=step3_data(saved),
            step4=step4_data(saved),
            step5={"loopSettingsLocked": True},
        )
        engine.restore(model, second, restored)

        with patch("ambient_studio.pipeline.error_handler.logger") as mock_logger:
            updated = snapshots_for(
                saved,
                step3=step3_data(saved),
                step4=step4_data(saved),
                step5={"loopSettingsLocked": False},
            )
            results = engine.restore(model, updated, restored)

        assert results[4].outcome == RestorationOutcome.RESYNCED
        assert results[4].changed_fields == ["soundscape"]
        assert model.soundscape.loopSettingsLocked is False
        events = [c.args[0] for c in mock_logger.warning.call_args_list]
        assert "workflow_client_error" in events
