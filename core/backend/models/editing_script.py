"""
Editing Script schema
The versioned instruction document sent to the render worker.
Validation never raises to the caller: validate_editing_script returns a
tagged result.
"""

import uuid
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

SCRIPT_VERSION = "1.0"

Timestamp = Annotated[float, Field(ge=0, allow_inf_nan=False)]
HexColor = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]


class _ScriptModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class _TimeRange(_ScriptModel):
    start: Timestamp
    end: Timestamp

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end <= self.start:
            raise ValueError("End time must be after start time")
        return self


class ZoomEffect(_ScriptModel):
    intensity: Literal["subtle", "medium", "strong"] = "medium"
    easing: Literal["linear", "ease-in", "ease-out", "ease-in-out"] = "ease-in-out"
    duration: float = Field(default=1.0, ge=0.1, le=5.0)


class BlurEffect(_ScriptModel):
    intensity: Literal["light", "medium", "strong"] = "medium"
    feather: float = Field(default=10, ge=0, le=50)


class HighlightEffects(_ScriptModel):
    zoom: Optional[ZoomEffect] = None
    blur: Optional[BlurEffect] = None


class JumpCut(_TimeRange):
    reason: Optional[str] = Field(default=None, max_length=500)
    type: Literal["silence", "filler", "mistake", "manual"] = "manual"


class Highlight(_TimeRange):
    reason: Optional[str] = Field(default=None, max_length=500)
    effects: Optional[HighlightEffects] = None


class Transition(_ScriptModel):
    at: Timestamp
    type: Literal["fade", "dissolve", "wipe", "slide"] = "fade"
    duration: float = Field(default=0.5, ge=0.1, le=3.0)


class AudioSegment(_TimeRange):
    volume: float = Field(default=1.0, ge=0, le=2.0)
    fade_in: Optional[float] = Field(default=None, ge=0, le=5.0)
    fade_out: Optional[float] = Field(default=None, ge=0, le=5.0)


class SubtitleSegment(_TimeRange):
    text: str = Field(min_length=1, max_length=500)


class SubtitleStyle(_ScriptModel):
    font: str = Field(default="Arial Black", max_length=100)
    font_size: int = Field(default=48, ge=10, le=200)
    color: HexColor = "#FFFFFF"
    outline_color: HexColor = "#000000"
    outline_width: int = Field(default=3, ge=0, le=20)
    highlight_color: HexColor = "#FFD700"
    position: Literal["top", "center", "bottom"] = "bottom"
    bold: bool = True
    italic: bool = False
    highlight_keywords: bool = True
    keywords: list[Annotated[str, Field(max_length=100)]] = Field(default_factory=list, max_length=50)


class ColorGrading(_ScriptModel):
    preset: Literal["vibrant", "cinematic", "natural", "vintage", "cool", "warm"] = "vibrant"
    intensity: float = Field(default=0.8, ge=0, le=1.0)


class AspectRatio(_ScriptModel):
    target: Literal["9:16", "16:9", "1:1", "4:5", "4:3"] = "9:16"
    strategy: Literal["crop", "blur-background", "letterbox"] = "blur-background"


class BackgroundMusic(_ScriptModel):
    enabled: bool = False
    mood: str = Field(default="casual", max_length=50)
    volume: float = Field(default=0.15, ge=0, le=1.0)


class AudioConfig(_ScriptModel):
    normalize: bool = True
    target_loudness: float = Field(default=-16, ge=-30, le=0)
    segments: list[AudioSegment] = Field(default_factory=list, max_length=1000)
    remove_noise: bool = True
    enhance_voice: bool = True
    background_music: BackgroundMusic = Field(default_factory=BackgroundMusic)


class VisualConfig(_ScriptModel):
    color_grading: ColorGrading = Field(default_factory=ColorGrading)
    aspect_ratio: AspectRatio = Field(default_factory=AspectRatio)
    fps: int = Field(default=30, ge=15, le=60)
    resolution: Literal["720p", "1080p", "4k"] = "1080p"


class SubtitleConfig(_ScriptModel):
    enabled: bool = True
    style: SubtitleStyle = Field(default_factory=SubtitleStyle)
    segments: list[SubtitleSegment] = Field(default_factory=list, max_length=5000)
    auto_position: bool = False


class Timeline(_ScriptModel):
    cuts: list[JumpCut] = Field(default_factory=list, max_length=500)
    highlights: list[Highlight] = Field(default_factory=list, max_length=100)
    transitions: list[Transition] = Field(default_factory=list, max_length=200)


class ScriptMetadata(_ScriptModel):
    content_type: Literal["vlog", "tutorial", "interview", "presentation", "gaming", "other"] = "vlog"
    topic: str = Field(default="", max_length=500)
    mood: Literal["energetic", "calm", "professional", "casual", "dramatic"] = "casual"
    pacing: Literal["slow", "medium", "fast"] = "medium"
    target_audience: Literal["general", "professional", "young-adults", "teens", "educational"] = "general"


class EditingScript(_ScriptModel):
    job_id: str = Field(alias="job_id")
    metadata: ScriptMetadata = Field(default_factory=ScriptMetadata)
    timeline: Timeline = Field(default_factory=Timeline)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    visual: VisualConfig = Field(default_factory=VisualConfig)
    subtitles: SubtitleConfig = Field(default_factory=SubtitleConfig)
    custom_prompt: Optional[str] = Field(default=None, max_length=2000)
    instructions: Optional[str] = Field(default=None, max_length=20000)
    version: str = SCRIPT_VERSION

    @field_validator("job_id")
    @classmethod
    def _job_id_is_uuid(cls, value: str) -> str:
        try:
            uuid.UUID(value)
        except (ValueError, AttributeError, TypeError):
            raise ValueError("Invalid job ID format")
        return value

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


@dataclass(frozen=True)
class ScriptValid:
    script: EditingScript


@dataclass(frozen=True)
class ScriptInvalid:
    errors: list[str]


ScriptValidation = Union[ScriptValid, ScriptInvalid]


def validate_editing_script(document: Any) -> ScriptValidation:
    """Validate a candidate editing script document."""
    try:
        return ScriptValid(EditingScript.model_validate(document))
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc']) or 'script'}: {err['msg']}"
            for err in e.errors()
        ]
        return ScriptInvalid(errors)
