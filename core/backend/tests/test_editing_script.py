import uuid

from models.editing_script import ScriptInvalid, ScriptValid, validate_editing_script


def minimal(**overrides):
    document = {"job_id": str(uuid.uuid4())}
    document.update(overrides)
    return document


def test_minimal_document_gets_defaults():
    result = validate_editing_script(minimal())
    assert isinstance(result, ScriptValid)
    wire = result.script.to_wire()
    assert wire["version"] == "1.0"
    assert wire["audio"]["targetLoudness"] == -16
    assert wire["visual"]["aspectRatio"] == {"target": "9:16", "strategy": "blur-background"}
    assert wire["subtitles"]["style"]["highlightColor"] == "#FFD700"
    assert "job_id" in wire


def test_invalid_job_id():
    result = validate_editing_script(minimal(job_id="not-a-uuid"))
    assert isinstance(result, ScriptInvalid)
    assert any("Invalid job ID format" in error for error in result.errors)


def test_cut_end_must_follow_start():
    result = validate_editing_script(minimal(timeline={"cuts": [{"start": 5, "end": 5}]}))
    assert isinstance(result, ScriptInvalid)
    assert any("End time must be after start time" in error for error in result.errors)


def test_negative_timestamp_rejected():
    result = validate_editing_script(minimal(timeline={"highlights": [{"start": -1, "end": 2}]}))
    assert isinstance(result, ScriptInvalid)


def test_bad_hex_color_rejected():
    result = validate_editing_script(minimal(subtitles={"style": {"color": "white"}}))
    assert isinstance(result, ScriptInvalid)
    assert any(error.startswith("subtitles.style.color") for error in result.errors)


def test_unknown_field_rejected():
    assert isinstance(validate_editing_script(minimal(extraField=True)), ScriptInvalid)


def test_cut_list_is_capped():
    cuts = [{"start": i, "end": i + 0.5} for i in range(501)]
    assert isinstance(validate_editing_script(minimal(timeline={"cuts": cuts})), ScriptInvalid)


def test_zoom_duration_bounds():
    highlight = {"start": 0, "end": 1, "effects": {"zoom": {"duration": 6}}}
    assert isinstance(validate_editing_script(minimal(timeline={"highlights": [highlight]})), ScriptInvalid)


def test_non_mapping_document():
    result = validate_editing_script("not a script")
    assert isinstance(result, ScriptInvalid)
    assert result.errors
