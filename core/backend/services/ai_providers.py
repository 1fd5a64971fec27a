"""
AI Providers - Groq (Whisper + Llama) & Google Gemini

Thin async clients used by the AI Service Gateway. Providers raise on failure;
the gateway decides what to fall back to.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from models.ai import TranscriptionResult, TranscriptSegment
from services.errors import ProviderError, ProviderInputTooLarge
from services.json_extract import ParsedJson, extract_json_block

logger = logging.getLogger(__name__)

GEMINI_TRANSCRIBE_PROMPT = """Transcribe the speech in this video.
Return ONLY a JSON object of this shape, with times in seconds:
{"text": "full transcript", "segments": [{"start": 0.0, "end": 2.5, "text": "..."}]}
Keep the original spoken language. Do not translate."""


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read `key` from an SDK object or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class AIProviderBase(ABC):
    """Base class for AI providers."""

    name: str = "unknown"

    def __init__(self, max_upload_mb: float, timeout: float = 120.0):
        self.max_upload_mb = max_upload_mb
        self.timeout = timeout

    def _check_size(self, data: bytes) -> None:
        """Fail fast, before any API call, when the input is over the provider limit."""
        size_mb = len(data) / (1024 * 1024)
        if size_mb > self.max_upload_mb:
            raise ProviderInputTooLarge(self.name, size_mb, self.max_upload_mb)

    @abstractmethod
    async def transcribe(self, video: bytes) -> TranscriptionResult:
        """Transcribe the audio track of a video."""

    @abstractmethod
    async def complete(self, prompt: str, temperature: float = 0.3, max_tokens: int = 2000) -> str:
        """Run a single chat completion and return the raw text."""


class GroqProvider(AIProviderBase):
    """
    Groq Whisper for transcription and Llama for text analysis.
    Primary provider: fast inference with a generous free tier.
    """

    name = "groq"

    def __init__(
        self,
        api_key: str,
        transcription_model: str = "whisper-large-v3",
        chat_model: str = "llama-3.3-70b-versatile",
        max_upload_mb: float = 25.0,
        timeout: float = 120.0,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
    ):
        super().__init__(max_upload_mb, timeout)
        self.api_key = api_key
        self.transcription_model = transcription_model
        self.chat_model = chat_model
        self.language = language
        self.prompt = prompt
        self._client = None

    def _get_client(self):
        """Get or create Groq client."""
        if self._client is None:
            from groq import AsyncGroq
            self._client = AsyncGroq(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def transcribe(self, video: bytes) -> TranscriptionResult:
        self._check_size(video)
        client = self._get_client()

        options: dict[str, Any] = {}
        if self.language:
            options["language"] = self.language
        if self.prompt:
            options["prompt"] = self.prompt

        transcription = await client.audio.transcriptions.create(
            file=("video.mp4", video),
            model=self.transcription_model,
            response_format="verbose_json",
            timestamp_granularities=["segment"],
            temperature=0.0,
            **options,
        )

        segments = []
        for seg in _field(transcription, "segments") or []:
            text = (_field(seg, "text") or "").strip()
            segments.append(TranscriptSegment(
                start=float(_field(seg, "start", 0) or 0),
                end=float(_field(seg, "end", 0) or 0),
                text=text,
            ))

        text = (_field(transcription, "text") or "").strip()
        return TranscriptionResult(text=text, segments=segments, provider=self.name)

    async def complete(self, prompt: str, temperature: float = 0.3, max_tokens: int = 2000) -> str:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.chat_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not response.choices:
            raise ProviderError(self.name, "empty completion")
        return response.choices[0].message.content or ""


class GeminiProvider(AIProviderBase):
    """
    Google Gemini multimodal model. Fallback provider: accepts the video inline
    and answers with JSON.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        max_upload_mb: float = 50.0,
        timeout: float = 120.0,
    ):
        super().__init__(max_upload_mb, timeout)
        self.api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self):
        """Get or create the google-genai client."""
        if self._client is None:
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, contents: Any, config: Optional[dict[str, Any]] = None) -> str:
        client = self._get_client()
        response = await asyncio.wait_for(
            client.aio.models.generate_content(model=self.model, contents=contents, config=config),
            timeout=self.timeout,
        )
        return response.text or ""

    async def transcribe(self, video: bytes) -> TranscriptionResult:
        self._check_size(video)
        from google.genai import types

        raw = await self._generate(
            [types.Part.from_bytes(data=video, mime_type="video/mp4"), GEMINI_TRANSCRIBE_PROMPT],
            config={"temperature": 0.0, "response_mime_type": "application/json"},
        )

        parsed = extract_json_block(raw)
        if not isinstance(parsed, ParsedJson):
            raise ProviderError(self.name, f"unparseable transcript ({parsed.reason})")

        segments = []
        for seg in parsed.data.get("segments") or []:
            if not isinstance(seg, dict):
                continue
            try:
                segments.append(TranscriptSegment(
                    start=float(seg.get("start", 0)),
                    end=float(seg.get("end", 0)),
                    text=str(seg.get("text", "")).strip(),
                ))
            except (TypeError, ValueError):
                continue

        text = str(parsed.data.get("text") or "").strip()
        if not text:
            text = " ".join(s.text for s in segments)
        return TranscriptionResult(text=text, segments=segments, provider=self.name)

    async def complete(self, prompt: str, temperature: float = 0.3, max_tokens: int = 2000) -> str:
        return await self._generate(
            prompt,
            config={"temperature": temperature, "max_output_tokens": max_tokens},
        )
