from services.json_extract import ParseFailed, ParsedJson, extract_json_block


def test_plain_object():
    result = extract_json_block('{"summary": "ok"}')
    assert result == ParsedJson({"summary": "ok"})


def test_fenced_block_with_prose():
    text = 'Sure! Here you go:\n```json\n{"highlights": [{"start": 1, "end": 2}]}\n```\nHope it helps.'
    result = extract_json_block(text)
    assert isinstance(result, ParsedJson)
    assert result.data["highlights"][0]["end"] == 2


def test_control_characters_are_stripped():
    result = extract_json_block('{"summary": "a\x07b\x1f"}')
    assert isinstance(result, ParsedJson)
    assert result.data["summary"] == "ab"


def test_raw_newline_inside_string():
    result = extract_json_block('{"text": "line one\nline two"}')
    assert isinstance(result, ParsedJson)
    assert result.data["text"] == "line one\nline two"


def test_skips_broken_object_before_valid_one():
    result = extract_json_block('{broken {"ok": true}')
    assert result == ParsedJson({"ok": True})


def test_nested_object_returned_whole():
    result = extract_json_block('prefix {"a": {"b": {"c": 1}}} suffix')
    assert result == ParsedJson({"a": {"b": {"c": 1}}})


def test_no_object():
    assert isinstance(extract_json_block("I could not analyze this video."), ParseFailed)


def test_array_is_not_an_object():
    assert isinstance(extract_json_block("[1, 2, 3]"), ParseFailed)


def test_empty_and_non_string_input():
    assert extract_json_block("") == ParseFailed("empty response")
    assert extract_json_block(None) == ParseFailed("empty response")
