"""
Editing Preferences
User-controlled editing behaviour and the fixed catalog of presets.
Stored on the job as camelCase JSON (preferences_json).
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PresetName(str, Enum):
    ENERGETIC_VLOG = "energetic-vlog"
    CALM_TUTORIAL = "calm-tutorial"
    DYNAMIC_REVIEW = "dynamic-review"
    MINIMAL_CLEAN = "minimal-clean"
    CINEMATIC = "cinematic"
    SOCIAL_MEDIA = "social-media"


Pacing = Literal["fast", "medium", "slow"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class VisualEffects(_CamelModel):
    subtitles: bool = True
    color_grading: bool = True
    zoom_effects: bool = True
    blur_effects: bool = False
    transitions: bool = True
    text_overlays: bool = False


class AudioPreferences(_CamelModel):
    keep_original: bool = True
    add_background_music: bool = False
    normalize_audio: bool = True
    remove_noise: bool = False


class EditingStyle(_CamelModel):
    auto_cut_silence: bool = True
    auto_jump_cuts: bool = True
    keep_pauses: bool = False
    pacing: Pacing = "fast"


class OutputSettings(_CamelModel):
    aspect_ratio: Literal["16:9", "9:16", "1:1", "4:3"] = "9:16"
    quality: Literal["high", "medium", "low"] = "high"
    format: Literal["mp4", "mov", "webm"] = "mp4"


class EditingPreferences(_CamelModel):
    custom_prompt: Optional[str] = None
    visual_effects: VisualEffects = Field(default_factory=VisualEffects)
    audio: AudioPreferences = Field(default_factory=AudioPreferences)
    editing_style: EditingStyle = Field(default_factory=EditingStyle)
    output: OutputSettings = Field(default_factory=OutputSettings)
    preset: Optional[PresetName] = None

    @classmethod
    def from_json(cls, data: Optional[dict[str, Any]]) -> "EditingPreferences":
        """Load stored preferences, falling back to defaults when absent."""
        if not data:
            return cls()
        return cls.model_validate(data)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def _preset(
    prompt: Optional[str],
    visual: tuple[bool, bool, bool, bool, bool, bool],
    audio: tuple[bool, bool, bool, bool],
    style: tuple[bool, bool, bool, Pacing],
    aspect_ratio: str,
) -> EditingPreferences:
    subtitles, color_grading, zoom, blur, transitions, overlays = visual
    keep_original, music, normalize, denoise = audio
    cut_silence, jump_cuts, keep_pauses, pacing = style
    return EditingPreferences(
        custom_prompt=prompt,
        visual_effects=VisualEffects(
            subtitles=subtitles,
            color_grading=color_grading,
            zoom_effects=zoom,
            blur_effects=blur,
            transitions=transitions,
            text_overlays=overlays,
        ),
        audio=AudioPreferences(
            keep_original=keep_original,
            add_background_music=music,
            normalize_audio=normalize,
            remove_noise=denoise,
        ),
        editing_style=EditingStyle(
            auto_cut_silence=cut_silence,
            auto_jump_cuts=jump_cuts,
            keep_pauses=keep_pauses,
            pacing=pacing,
        ),
        output=OutputSettings(aspect_ratio=aspect_ratio, quality="high", format="mp4"),
    )


PRESETS: dict[PresetName, EditingPreferences] = {
    PresetName.ENERGETIC_VLOG: _preset(
        "Cut it as a fun, energetic vlog. Keep it fast, remove silent parts, bold subtitles.",
        (True, True, True, False, True, True),
        (True, False, True, False),
        (True, True, False, "fast"),
        "9:16",
    ),
    PresetName.CALM_TUTORIAL: _preset(
        "Cut it as a tutorial. Explain clearly, keep natural timing, no rush.",
        (True, False, False, False, False, True),
        (True, False, True, True),
        (False, False, True, "medium"),
        "16:9",
    ),
    PresetName.DYNAMIC_REVIEW: _preset(
        "Cut it as a dynamic review. Remove repetitive parts and emphasise the highlights.",
        (True, True, True, False, True, True),
        (True, True, True, False),
        (True, True, False, "fast"),
        "16:9",
    ),
    PresetName.MINIMAL_CLEAN: _preset(
        "Keep the edit simple, clean and minimal without too many effects.",
        (True, False, False, False, False, False),
        (True, False, True, False),
        (True, False, True, "medium"),
        "16:9",
    ),
    PresetName.CINEMATIC: _preset(
        "Cut it in a cinematic style, beautiful and emotional, take time to tell the story.",
        (False, True, False, True, True, False),
        (True, True, True, True),
        (False, False, True, "slow"),
        "16:9",
    ),
    PresetName.SOCIAL_MEDIA: _preset(
        "Make it fit social media: fast, short, concise, with clear subtitles.",
        (True, True, True, False, True, True),
        (True, True, True, False),
        (True, True, False, "fast"),
        "9:16",
    ),
}

PRESET_LABELS: dict[PresetName, dict[str, str]] = {
    PresetName.ENERGETIC_VLOG: {"name": "Energetic Vlog", "emoji": "⚡", "description": "Fun and fast, made for vlogs"},
    PresetName.CALM_TUTORIAL: {"name": "Calm Tutorial", "emoji": "📚", "description": "Clear teaching with natural timing"},
    PresetName.DYNAMIC_REVIEW: {"name": "Dynamic Review", "emoji": "🎬", "description": "Energetic review focused on highlights"},
    PresetName.MINIMAL_CLEAN: {"name": "Minimal Clean", "emoji": "✨", "description": "Simple, clean, understated"},
    PresetName.CINEMATIC: {"name": "Cinematic", "emoji": "🎥", "description": "Beautiful, emotional storytelling"},
    PresetName.SOCIAL_MEDIA: {"name": "Social Media", "emoji": "📱", "description": "Short and punchy for social feeds"},
}


def apply_preset(preferences: EditingPreferences, name: PresetName | str) -> EditingPreferences:
    """
    Overwrite the preset-controlled fields of `preferences`.
    An independently edited custom prompt survives unless the preset defines one.
    """
    preset_name = PresetName(name)
    preset = PRESETS[preset_name]
    return preferences.model_copy(
        update={
            "custom_prompt": preset.custom_prompt or preferences.custom_prompt,
            "visual_effects": preset.visual_effects.model_copy(),
            "audio": preset.audio.model_copy(),
            "editing_style": preset.editing_style.model_copy(),
            "output": preset.output.model_copy(),
            "preset": preset_name,
        }
    )


def list_presets() -> list[dict[str, Any]]:
    return [
        {"id": name.value, **PRESET_LABELS[name], "preferences": PRESETS[name].to_json()}
        for name in PresetName
    ]
