import json
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import Settings
from models.ai import TranscriptionResult
from services.ai_gateway import AIServiceGateway
from services.ai_providers import GeminiProvider, GroqProvider
from services.errors import ProviderInputTooLarge

from tests.fakes import ANALYSIS_JSON, FakeProvider, sample_transcript


@pytest.mark.asyncio
async def test_all_providers_failing_returns_mock_transcript():
    gateway = AIServiceGateway([
        FakeProvider("groq", error=RuntimeError("429 rate limited")),
        FakeProvider("gemini", error=RuntimeError("quota exceeded")),
    ])
    result = await gateway.transcribe(b"video")
    assert result.is_mock
    assert result.provider == "mock"
    assert len(result.segments) == 3


@pytest.mark.asyncio
async def test_no_providers_returns_mock_transcript():
    result = await AIServiceGateway([]).transcribe(b"video")
    assert result.is_mock


@pytest.mark.asyncio
async def test_falls_back_to_secondary_provider():
    primary = FakeProvider("groq", error=RuntimeError("timeout"))
    secondary = FakeProvider("gemini", transcript=sample_transcript("gemini"))
    result = await AIServiceGateway([primary, secondary]).transcribe(b"video")
    assert result.provider == "gemini"
    assert primary.transcribe_calls == 1
    assert secondary.transcribe_calls == 1


@pytest.mark.asyncio
async def test_empty_transcription_counts_as_failure():
    empty = FakeProvider("groq", transcript=TranscriptionResult(provider="groq"))
    secondary = FakeProvider("gemini", transcript=sample_transcript("gemini"))
    result = await AIServiceGateway([empty, secondary]).transcribe(b"video")
    assert result.provider == "gemini"


@pytest.mark.asyncio
async def test_oversized_input_skips_provider():
    small = FakeProvider("groq", transcript=sample_transcript(), max_upload_mb=0.000001)
    result = await AIServiceGateway([small]).transcribe(b"x" * 1024)
    assert result.is_mock


@pytest.mark.asyncio
async def test_analyze_without_providers_is_none():
    assert await AIServiceGateway([]).analyze_transcript(sample_transcript()) is None


@pytest.mark.asyncio
async def test_analyze_mock_transcript_returns_mock_analysis():
    gateway = AIServiceGateway([FakeProvider("groq")])
    transcript = await AIServiceGateway([]).transcribe(b"video")
    analysis = await gateway.analyze_transcript(transcript)
    assert analysis.summary == "Mock analysis"
    assert analysis.highlights == []
    assert analysis.jump_cuts == []


@pytest.mark.asyncio
async def test_analyze_parses_fenced_json():
    provider = FakeProvider("groq", responses=[ANALYSIS_JSON])
    analysis = await AIServiceGateway([provider]).analyze_transcript(sample_transcript())
    assert analysis.summary == "A greeting"
    assert analysis.highlights[0].reason == "hook"
    assert analysis.jump_cuts[0].type == "silence"
    assert analysis.visual_style.color_grading == "cinematic"
    assert "0.00-1.00: hello" in provider.prompts[0]


@pytest.mark.asyncio
async def test_analyze_falls_through_unparseable_output():
    garbage = FakeProvider("groq", responses=["I cannot help with that."])
    good = FakeProvider("gemini", responses=['{"summary": "from gemini"}'])
    analysis = await AIServiceGateway([garbage, good]).analyze_transcript(sample_transcript())
    assert analysis.summary == "from gemini"


@pytest.mark.asyncio
async def test_analyze_all_unparseable_is_none():
    provider = FakeProvider("groq", responses=["nothing useful"])
    assert await AIServiceGateway([provider]).analyze_transcript(sample_transcript()) is None


@pytest.mark.asyncio
async def test_analysis_tolerates_malformed_segments():
    payload = {
        "highlights": [{"start": "abc", "end": 3}, "oops", {"start": 1, "end": 2}, {"start": "nan", "end": "inf"}],
        "jumpCuts": "none",
    }
    provider = FakeProvider("groq", responses=[json.dumps(payload)])
    analysis = await AIServiceGateway([provider]).analyze_transcript(sample_transcript())
    assert len(analysis.highlights) == 3
    assert analysis.highlights[0].start is None
    assert analysis.highlights[0].end == 3
    assert analysis.highlights[2].start is None
    assert analysis.highlights[2].end is None
    assert analysis.jump_cuts == []


@pytest.mark.asyncio
async def test_extract_keywords():
    payload = {
        "topics": ["greetings"],
        "highlight_words": ["hello"],
        "content_category": "tutorial",
        "target_audience": "youth",
        "emotion_tone": "calm",
    }
    provider = FakeProvider("groq", responses=[json.dumps(payload)])
    keywords = await AIServiceGateway([provider]).extract_keywords("hello world")
    assert keywords.topics == ["greetings"]
    assert keywords.content_category == "tutorial"
    assert keywords.emotion_tone == "calm"


@pytest.mark.asyncio
async def test_extract_keywords_unavailable_is_none():
    assert await AIServiceGateway([]).extract_keywords("hello") is None
    failing = FakeProvider("groq", error=RuntimeError("down"))
    assert await AIServiceGateway([failing]).extract_keywords("hello") is None


@pytest.mark.asyncio
async def test_deep_analyze_skips_mock_transcript():
    provider = FakeProvider("groq", responses=['{"engagement": {"hook_quality": 80}}'])
    gateway = AIServiceGateway([provider])
    mock = await AIServiceGateway([]).transcribe(b"video")
    assert await gateway.deep_analyze(mock) is None
    assert provider.prompts == []

    result = await gateway.deep_analyze(sample_transcript())
    assert result.engagement.hook_quality == 80


@pytest.mark.asyncio
async def test_check_spelling_failure_returns_unchanged_text():
    failing = FakeProvider("groq", error=RuntimeError("down"))
    result = await AIServiceGateway([failing]).check_spelling("helo world")
    assert result.corrected == "helo world"
    assert result.confidence == 0.0
    assert result.changes == []


@pytest.mark.asyncio
async def test_check_spelling_success():
    payload = {
        "corrected": "hello world",
        "changes": [{"word": "helo", "correction": "hello", "position": 0}],
        "confidence": 0.9,
    }
    provider = FakeProvider("groq", responses=[json.dumps(payload)])
    result = await AIServiceGateway([provider]).check_spelling("helo world")
    assert result.original == "helo world"
    assert result.corrected == "hello world"
    assert result.changes[0].correction == "hello"


@patch.dict(os.environ, {}, clear=True)
def test_from_settings_orders_providers():
    config = Settings(_env_file=None, groq_api_key="gsk", google_ai_api_key="gai")
    gateway = AIServiceGateway.from_settings(config)
    assert [p.name for p in gateway.providers] == ["groq", "gemini"]
    assert gateway.available_services() == {"groq", "gemini"}


@patch.dict(os.environ, {}, clear=True)
def test_from_settings_without_keys():
    gateway = AIServiceGateway.from_settings(Settings(_env_file=None))
    assert gateway.providers == []


@pytest.mark.asyncio
async def test_groq_provider_rejects_oversized_input_before_calling_api():
    provider = GroqProvider(api_key="gsk", max_upload_mb=0.001)
    provider._client = MagicMock()
    with pytest.raises(ProviderInputTooLarge):
        await provider.transcribe(b"x" * 4096)
    provider._client.audio.transcriptions.create.assert_not_called()


@pytest.mark.asyncio
async def test_groq_provider_transcription_request():
    provider = GroqProvider(api_key="gsk", language="en")
    provider._client = MagicMock()
    provider._client.audio.transcriptions.create = AsyncMock(return_value=SimpleNamespace(
        text=" hello world ",
        segments=[{"start": 0, "end": 1.5, "text": " hello"}, {"start": 1.5, "end": 3, "text": " world"}],
    ))

    result = await provider.transcribe(b"video")

    kwargs = provider._client.audio.transcriptions.create.call_args.kwargs
    assert kwargs["response_format"] == "verbose_json"
    assert kwargs["timestamp_granularities"] == ["segment"]
    assert kwargs["language"] == "en"
    assert result.text == "hello world"
    assert [s.text for s in result.segments] == ["hello", "world"]
    assert result.provider == "groq"


@pytest.mark.asyncio
async def test_gemini_provider_parses_fenced_transcript():
    provider = GeminiProvider(api_key="gai")
    provider._client = MagicMock()
    provider._client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(
        text='```json\n{"text": "", "segments": [{"start": 0, "end": 2, "text": "xin chao"}, {"start": "bad"}]}\n```'
    ))

    result = await provider.transcribe(b"video")

    assert result.provider == "gemini"
    assert result.text == "xin chao"
    assert len(result.segments) == 1
