import pytest

from models.job import Job, JobStatus, allowed_sources, can_transition
from models.preferences import EditingPreferences, PresetName, apply_preset, list_presets


@pytest.mark.parametrize("current,target", [
    (JobStatus.PENDING, JobStatus.UPLOADING),
    (JobStatus.UPLOADING, JobStatus.QUEUED),
    (JobStatus.QUEUED, JobStatus.TRANSCRIBING),
    (JobStatus.TRANSCRIBING, JobStatus.ANALYZING),
    (JobStatus.ANALYZING, JobStatus.RENDERING),
    (JobStatus.RENDERING, JobStatus.COMPLETED),
    (JobStatus.RENDERING, JobStatus.FAILED),
    (JobStatus.QUEUED, JobStatus.CANCELLED),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    (JobStatus.COMPLETED, JobStatus.FAILED),
    (JobStatus.FAILED, JobStatus.RENDERING),
    (JobStatus.CANCELLED, JobStatus.QUEUED),
    (JobStatus.RENDERING, JobStatus.CANCELLED),
    (JobStatus.QUEUED, JobStatus.RENDERING),
    (JobStatus.ANALYZING, JobStatus.TRANSCRIBING),
])
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)


def test_allowed_sources_for_claim():
    assert allowed_sources(JobStatus.QUEUED) == {JobStatus.PENDING, JobStatus.UPLOADING}


def test_job_public_snapshot():
    job = Job.model_validate({
        "id": "j1",
        "user_id": "u1",
        "status": "RENDERING",
        "progress_percentage": 45,
        "created_at": "2026-01-01T00:00:00+00:00",
        "unknown_column": "ignored",
    })
    snapshot = job.to_public()
    assert snapshot["status"] == "RENDERING"
    assert snapshot["progress_percentage"] == 45
    assert snapshot["created_at"].startswith("2026-01-01T00:00:00")
    assert "user_id" not in snapshot
    assert not job.is_terminal


def test_preferences_defaults():
    preferences = EditingPreferences.from_json(None)
    assert preferences.visual_effects.subtitles
    assert preferences.editing_style.pacing == "fast"
    assert preferences.output.aspect_ratio == "9:16"


def test_preferences_camel_case_round_trip():
    stored = {
        "customPrompt": "tight cuts",
        "visualEffects": {"zoomEffects": False},
        "editingStyle": {"keepPauses": True, "pacing": "slow"},
    }
    preferences = EditingPreferences.from_json(stored)
    assert preferences.custom_prompt == "tight cuts"
    assert not preferences.visual_effects.zoom_effects
    assert preferences.editing_style.keep_pauses

    data = preferences.to_json()
    assert data["visualEffects"]["zoomEffects"] is False
    assert data["editingStyle"]["pacing"] == "slow"


def test_apply_preset_overwrites_toggles():
    base = EditingPreferences.from_json({"visualEffects": {"blurEffects": False}})
    cinematic = apply_preset(base, "cinematic")
    assert cinematic.preset == PresetName.CINEMATIC
    assert cinematic.visual_effects.blur_effects
    assert not cinematic.visual_effects.subtitles
    assert cinematic.editing_style.pacing == "slow"
    assert cinematic.output.aspect_ratio == "16:9"
    # the input is untouched
    assert not base.visual_effects.blur_effects


def test_apply_unknown_preset():
    with pytest.raises(ValueError):
        apply_preset(EditingPreferences(), "does-not-exist")


def test_list_presets():
    presets = list_presets()
    assert [p["id"] for p in presets] == [name.value for name in PresetName]
    assert all(p["preferences"]["customPrompt"] for p in presets)
