"""
AI payload models
Structured results returned by the AI Service Gateway.
Model output is untrusted: suggested segments tolerate missing or invalid times
and are filtered later by the script builder.
"""

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    # json accepts NaN and Infinity literals
    return number if math.isfinite(number) else None


class TranscriptSegment(BaseModel):
    start: float
    end: float
    text: str = ""


class TranscriptionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""
    segments: list[TranscriptSegment] = Field(default_factory=list)
    provider: str = "unknown"
    is_mock: bool = False

    @property
    def duration(self) -> float:
        return self.segments[-1].end if self.segments else 0.0


class SuggestedSegment(BaseModel):
    """A cut or highlight proposed by a model."""

    model_config = ConfigDict(extra="ignore")

    start: Optional[float] = None
    end: Optional[float] = None
    reason: str = ""
    type: Optional[str] = None
    effects: Optional[dict[str, Any]] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_time(cls, value: Any) -> Optional[float]:
        return _as_number(value)

    @field_validator("reason", mode="before")
    @classmethod
    def _coerce_reason(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("effects", mode="before")
    @classmethod
    def _coerce_effects(cls, value: Any) -> Optional[dict[str, Any]]:
        return value if isinstance(value, dict) else None


class VisualStyle(BaseModel):
    model_config = ConfigDict(extra="ignore")

    color_grading: Optional[str] = None
    apply_blur: Optional[bool] = None
    pacing: Optional[str] = None


class SubtitleSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    position: Optional[str] = None
    highlight_color: Optional[str] = None


class AnalysisResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    summary: str = ""
    highlights: list[SuggestedSegment] = Field(default_factory=list)
    jump_cuts: list[SuggestedSegment] = Field(default_factory=list, alias="jumpCuts")
    keywords: Optional[list[str]] = None
    visual_style: Optional[VisualStyle] = None
    subtitle_settings: Optional[SubtitleSettings] = None

    @field_validator("summary", mode="before")
    @classmethod
    def _coerce_summary(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("highlights", "jump_cuts", mode="before")
    @classmethod
    def _only_objects(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("keywords", mode="before")
    @classmethod
    def _only_strings(cls, value: Any) -> Optional[list[str]]:
        if not isinstance(value, list):
            return None
        return [str(item) for item in value if isinstance(item, (str, int, float))]

    @field_validator("visual_style", "subtitle_settings", mode="before")
    @classmethod
    def _only_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


class KeywordResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    topics: list[str] = Field(default_factory=list)
    viral_keywords: list[str] = Field(default_factory=list)
    seo_keywords: list[str] = Field(default_factory=list)
    highlight_words: list[str] = Field(default_factory=list)
    suggested_hashtags: list[str] = Field(default_factory=list)
    content_category: str = "general"
    target_audience: str = "general"
    emotion_tone: str = "neutral"

    @field_validator(
        "topics", "viral_keywords", "seo_keywords", "highlight_words", "suggested_hashtags",
        mode="before",
    )
    @classmethod
    def _string_list(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if isinstance(item, (str, int, float))]

    @field_validator("content_category", "target_audience", "emotion_tone", mode="before")
    @classmethod
    def _label(cls, value: Any, info: ValidationInfo) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
        return "neutral" if info.field_name == "emotion_tone" else "general"


class TimeRange(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start: Optional[float] = None
    end: Optional[float] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_time(cls, value: Any) -> Optional[float]:
        return _as_number(value)


class TopicRange(TimeRange):
    topic: str = ""


class ReasonedRange(TimeRange):
    reason: str = ""
    type: Optional[str] = None


class ContentStructure(BaseModel):
    model_config = ConfigDict(extra="ignore")

    intro: Optional[TimeRange] = None
    main_content: list[TopicRange] = Field(default_factory=list)
    outro: Optional[TimeRange] = None


class PacingAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slow_parts: list[ReasonedRange] = Field(default_factory=list)
    fast_parts: list[ReasonedRange] = Field(default_factory=list)
    optimal_cuts: list[ReasonedRange] = Field(default_factory=list)


class EngagementAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hook_quality: Optional[float] = None
    retention_points: list[dict[str, Any]] = Field(default_factory=list)
    drop_off_risks: list[dict[str, Any]] = Field(default_factory=list)


class AudioSuggestion(TimeRange):
    type: str = ""
    intensity: str = "medium"


class DeepAnalysisResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    structure: ContentStructure = Field(default_factory=ContentStructure)
    pacing: PacingAnalysis = Field(default_factory=PacingAnalysis)
    engagement: EngagementAnalysis = Field(default_factory=EngagementAnalysis)
    visual_suggestions: list[dict[str, Any]] = Field(default_factory=list)
    audio_suggestions: list[AudioSuggestion] = Field(default_factory=list)


class SpellChange(BaseModel):
    word: str
    correction: str
    position: int = 0


class SpellCheckResult(BaseModel):
    original: str
    corrected: str
    changes: list[SpellChange] = Field(default_factory=list)
    confidence: float = 0.0
