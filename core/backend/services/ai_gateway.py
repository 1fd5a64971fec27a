"""
AI Service Gateway
Routes transcription and analysis to configured providers in priority order
(Groq first, Gemini second) and degrades to mock output or None instead of
raising.
"""

import logging
from typing import Any, Optional, Sequence

from config import Settings, settings
from models.ai import (
    AnalysisResult,
    DeepAnalysisResult,
    KeywordResult,
    SpellCheckResult,
    TranscriptionResult,
    TranscriptSegment,
)
from services.ai_providers import AIProviderBase, GeminiProvider, GroqProvider
from services.json_extract import ParsedJson, extract_json_block

logger = logging.getLogger(__name__)

MOCK_PROVIDER = "mock"

MOCK_TRANSCRIPT = TranscriptionResult(
    text="Sample transcript for testing because AI services are unavailable",
    segments=[
        TranscriptSegment(start=0, end=3, text="Sample transcript"),
        TranscriptSegment(start=3, end=6, text="for testing"),
        TranscriptSegment(start=6, end=10, text="AI services are unavailable"),
    ],
    provider=MOCK_PROVIDER,
    is_mock=True,
)

ANALYSIS_PROMPT = """Analyze this video transcript for short-form editing.

Duration: {duration:.1f}s
Transcript segments (start-end: text):
{segments}

Return ONLY a JSON object:
{{
  "summary": "one or two sentences",
  "highlights": [{{"start": 0, "end": 5, "reason": "why it stands out", "effects": {{"zoom": {{"intensity": "medium"}}}}}}],
  "jumpCuts": [{{"start": 10, "end": 12, "reason": "long pause", "type": "silence"}}],
  "keywords": ["word"],
  "visual_style": {{"color_grading": "vibrant", "pacing": "fast"}},
  "subtitle_settings": {{"position": "bottom"}}
}}
Cut types: silence, filler, mistake, manual. Times are seconds within the video."""

KEYWORDS_PROMPT = """Analyze this text and extract its keywords:

"{text}"

Return ONLY a JSON object:
{{
  "topics": ["main topic"],
  "viral_keywords": ["trending word"],
  "seo_keywords": ["search term"],
  "highlight_words": ["impact word"],
  "suggested_hashtags": ["#tag"],
  "content_category": "vlog",
  "target_audience": "general",
  "emotion_tone": "energetic"
}}
Rules:
- topics: 2-3 main topics
- highlight_words: words worth emphasising in subtitles
- hashtags: 3-5 tags
- category: vlog|tutorial|review|entertainment|travel|food
- audience: general|youth|family|professional
- tone: energetic|calm|informative|funny|serious"""

DEEP_ANALYSIS_PROMPT = """Analyze this video content in depth.

Length: {duration:.1f}s
Transcript: "{text}"

Return ONLY a JSON object:
{{
  "structure": {{
    "intro": {{"start": 0, "end": 10}},
    "main_content": [{{"start": 10, "end": 90, "topic": "topic"}}],
    "outro": {{"start": 90, "end": 100}}
  }},
  "pacing": {{
    "slow_parts": [{{"start": 20, "end": 30, "reason": "slow speech"}}],
    "fast_parts": [{{"start": 50, "end": 60, "reason": "fast speech"}}],
    "optimal_cuts": [{{"start": 5, "end": 7, "type": "silence", "reason": "long silence"}}]
  }},
  "engagement": {{
    "hook_quality": 85,
    "retention_points": [{{"time": 15, "score": 90, "reason": "interesting moment"}}],
    "drop_off_risks": [{{"time": 40, "risk_level": "medium", "suggestion": "trim this"}}]
  }},
  "visual_suggestions": [{{"time": 20, "suggestion": "zoom in", "priority": "high"}}],
  "audio_suggestions": [{{"start": 0, "end": 10, "type": "music", "intensity": "medium"}}]
}}"""

SPELLING_PROMPT = """Check and correct the spelling of this transcript:

"{text}"

Return ONLY a JSON object:
{{
  "corrected": "corrected text",
  "changes": [{{"word": "original", "correction": "fixed", "position": 0}}],
  "confidence": 0.95
}}
Rules:
- only fix words that are really wrong
- keep the original meaning
- confidence is 0-1
- if nothing needs fixing, changes is []"""


class AIServiceGateway:
    """
    Tries providers in order, falls back to the next one when a call fails.
    """

    def __init__(self, providers: Sequence[AIProviderBase]):
        self.providers = list(providers)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "AIServiceGateway":
        providers: list[AIProviderBase] = []
        if config.groq_api_key:
            providers.append(GroqProvider(
                api_key=config.groq_api_key,
                transcription_model=config.groq_transcription_model,
                chat_model=config.groq_chat_model,
                max_upload_mb=config.groq_max_upload_mb,
                timeout=config.ai_timeout_seconds,
                language=config.transcription_language,
                prompt=config.transcription_prompt,
            ))
        if config.google_ai_api_key:
            providers.append(GeminiProvider(
                api_key=config.google_ai_api_key,
                model=config.gemini_model,
                max_upload_mb=config.gemini_max_upload_mb,
                timeout=config.ai_timeout_seconds,
            ))
        return cls(providers)

    def available_services(self) -> set[str]:
        return {p.name for p in self.providers}

    async def transcribe(self, video: bytes) -> TranscriptionResult:
        """Transcribe with the first provider that succeeds. Never raises."""
        for provider in self.providers:
            try:
                logger.info(f"🎙️ Transcribing with {provider.name}...")
                result = await provider.transcribe(video)
                if not result.text and not result.segments:
                    raise ValueError("empty transcription")
                logger.info(f"✅ {provider.name} transcribed {len(result.segments)} segments")
                return result
            except Exception as e:
                logger.warning(f"⚠️ {provider.name} transcription failed: {e}")

        logger.warning("⚠️ All transcription providers unavailable, using mock transcript")
        return MOCK_TRANSCRIPT.model_copy(deep=True)

    async def _complete_json(
        self, prompt: str, purpose: str, temperature: float = 0.7, max_tokens: int = 2000
    ) -> Optional[dict[str, Any]]:
        """First parseable JSON object from any provider, else None."""
        for provider in self.providers:
            try:
                raw = await provider.complete(prompt, temperature=temperature, max_tokens=max_tokens)
            except Exception as e:
                logger.warning(f"⚠️ {provider.name} {purpose} failed: {e}")
                continue

            parsed = extract_json_block(raw)
            if isinstance(parsed, ParsedJson):
                return parsed.data
            logger.warning(f"⚠️ {provider.name} {purpose} returned no usable JSON: {parsed.reason}")
        return None

    async def analyze_transcript(self, transcript: TranscriptionResult) -> Optional[AnalysisResult]:
        if not self.providers:
            return None
        if transcript.is_mock:
            return AnalysisResult(summary="Mock analysis", highlights=[], jump_cuts=[], keywords=[])

        segments = "\n".join(
            f"{s.start:.2f}-{s.end:.2f}: {s.text}" for s in transcript.segments
        ) or transcript.text
        prompt = ANALYSIS_PROMPT.format(duration=transcript.duration, segments=segments[:12000])

        logger.info("🧠 Analyzing transcript...")
        data = await self._complete_json(prompt, "analysis")
        if data is None:
            return None
        try:
            return AnalysisResult.model_validate(data)
        except Exception as e:
            logger.warning(f"⚠️ Analysis payload rejected: {e}")
            return None

    async def extract_keywords(self, text: str) -> Optional[KeywordResult]:
        if not self.providers or not text.strip():
            return None

        logger.info("🔑 Extracting keywords...")
        data = await self._complete_json(KEYWORDS_PROMPT.format(text=text[:1000]), "keyword extraction", max_tokens=1000)
        if data is None:
            return None
        try:
            return KeywordResult.model_validate(data)
        except Exception as e:
            logger.warning(f"⚠️ Keyword payload rejected: {e}")
            return None

    async def deep_analyze(self, transcript: TranscriptionResult) -> Optional[DeepAnalysisResult]:
        if not self.providers or transcript.is_mock:
            return None

        duration = transcript.duration or 60.0
        prompt = DEEP_ANALYSIS_PROMPT.format(duration=duration, text=transcript.text[:1500])

        logger.info("🧠 Running deep analysis...")
        data = await self._complete_json(prompt, "deep analysis")
        if data is None:
            return None
        try:
            return DeepAnalysisResult.model_validate(data)
        except Exception as e:
            logger.warning(f"⚠️ Deep analysis payload rejected: {e}")
            return None

    async def check_spelling(self, text: str) -> SpellCheckResult:
        """Corrected text, or the unchanged text with confidence 0 on any failure."""
        unchanged = SpellCheckResult(original=text, corrected=text, changes=[], confidence=0.0)
        if not self.providers or not text.strip():
            return unchanged

        data = await self._complete_json(SPELLING_PROMPT.format(text=text[:4000]), "spell check", temperature=0.3)
        if data is None:
            return unchanged
        try:
            return SpellCheckResult.model_validate({
                "original": text,
                "corrected": data.get("corrected") or text,
                "changes": data.get("changes") or [],
                "confidence": data.get("confidence") or 0.0,
            })
        except Exception as e:
            logger.warning(f"⚠️ Spell check payload rejected: {e}")
            return unchanged
