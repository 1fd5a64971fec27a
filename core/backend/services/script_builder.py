"""
Editing-Script Builder
Merges user preferences, the transcript and optional AI analysis into one
Editing Script document (camelCase wire format). Pure and deterministic:
no I/O, no clock, no randomness.

Priority: the user's custom prompt > feature toggles > AI suggestions.
AI output only tunes parameters of features the user enabled.
"""

import logging
import math
import re
from typing import Any, Iterable, Optional

from models.ai import (
    AnalysisResult,
    DeepAnalysisResult,
    KeywordResult,
    SuggestedSegment,
    TranscriptionResult,
)
from models.editing_script import SCRIPT_VERSION
from models.preferences import EditingPreferences

logger = logging.getLogger(__name__)

CUT_TYPES = ("silence", "filler", "mistake", "manual")
COLOR_PRESETS = ("vibrant", "cinematic", "natural", "vintage", "cool", "warm")
SUBTITLE_POSITIONS = ("top", "center", "bottom")
ZOOM_INTENSITIES = ("subtle", "medium", "strong")
ZOOM_EASINGS = ("linear", "ease-in", "ease-out", "ease-in-out")
BLUR_INTENSITIES = ("light", "medium", "strong")
_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")

MAX_CUTS = 500
MAX_HIGHLIGHTS = 100
MAX_TRANSITIONS = 200
MAX_SUBTITLE_SEGMENTS = 5000
MAX_KEYWORDS = 50
MAX_REASON = 500
MAX_CUSTOM_PROMPT = 2000
MAX_INSTRUCTIONS = 20000

# pacing -> (zoom intensity, zoom duration), (transition type, transition duration)
PACING_ZOOM = {"fast": ("medium", 0.5), "medium": ("subtle", 1.0), "slow": ("subtle", 1.5)}
PACING_TRANSITION = {"fast": ("fade", 0.3), "medium": ("dissolve", 0.5), "slow": ("dissolve", 1.0)}
PACING_MOOD = {"fast": "energetic", "medium": "casual", "slow": "calm"}

CATEGORY_TO_CONTENT_TYPE = {
    "vlog": "vlog",
    "travel": "vlog",
    "food": "vlog",
    "tutorial": "tutorial",
    "interview": "interview",
    "presentation": "presentation",
    "gaming": "gaming",
    "review": "other",
    "entertainment": "other",
}
TONE_TO_MOOD = {
    "energetic": "energetic",
    "calm": "calm",
    "informative": "professional",
    "professional": "professional",
    "funny": "casual",
    "casual": "casual",
    "serious": "dramatic",
    "dramatic": "dramatic",
}
AUDIENCE_MAP = {
    "general": "general",
    "family": "general",
    "professional": "professional",
    "youth": "young-adults",
    "young-adults": "young-adults",
    "teens": "teens",
    "educational": "educational",
}
QUALITY_TO_RESOLUTION = {"high": "1080p", "medium": "720p", "low": "720p"}


def _t(value: float) -> float:
    return round(float(value), 3)


def _clip(text: Optional[str], limit: int) -> Optional[str]:
    if text is None:
        return None
    text = text.strip()
    return text[:limit] if text else None


def _span(start: Optional[float], end: Optional[float]) -> Optional[tuple[float, float]]:
    """Rounded (start, end), or None when missing, non-finite or empty once rounded."""
    if start is None or end is None:
        return None
    if not (math.isfinite(start) and math.isfinite(end)):
        return None
    start, end = _t(start), _t(end)
    if start < 0 or end <= start:
        return None
    return start, end


def _well_formed(segments: Iterable[Any]) -> list[tuple[tuple[float, float], Any]]:
    """Pair each usable suggestion with its rounded span, dropping the rest."""
    kept = []
    for seg in segments:
        span = _span(seg.start, seg.end)
        if span is not None:
            kept.append((span, seg))
    return kept


class EditingScriptBuilder:
    """Builds Editing Script documents and the enhanced instruction prompt."""

    def validate_preferences(self, preferences: EditingPreferences) -> list[str]:
        """Logical conflicts between preference toggles. Never raises."""
        errors = []
        style = preferences.editing_style
        if style.keep_pauses and style.auto_cut_silence:
            errors.append("Cannot both keep pauses AND auto-cut silence")
        if style.pacing == "slow" and style.auto_jump_cuts:
            errors.append("Slow pacing conflicts with auto jump cuts")

        heavy = sum([
            preferences.visual_effects.color_grading,
            preferences.visual_effects.zoom_effects,
            preferences.visual_effects.blur_effects,
            preferences.audio.remove_noise,
        ])
        if heavy >= 3:
            logger.warning("⚠️ Multiple heavy features enabled - processing may take longer")
        return errors

    def build(
        self,
        job_id: str,
        preferences: EditingPreferences,
        transcript: TranscriptionResult,
        analysis: Optional[AnalysisResult] = None,
        keywords: Optional[KeywordResult] = None,
        deep_analysis: Optional[DeepAnalysisResult] = None,
    ) -> dict[str, Any]:
        pacing = preferences.editing_style.pacing
        cuts = self._cuts(preferences, analysis, deep_analysis)

        return {
            "job_id": job_id,
            "metadata": self._metadata(preferences, analysis, keywords),
            "timeline": {
                "cuts": cuts,
                "highlights": self._highlights(preferences, analysis),
                "transitions": self._transitions(preferences, cuts),
            },
            "audio": {
                "normalize": preferences.audio.normalize_audio,
                "targetLoudness": -16,
                "segments": [],
                "removeNoise": preferences.audio.remove_noise,
                "enhanceVoice": preferences.audio.keep_original,
                "backgroundMusic": {
                    "enabled": preferences.audio.add_background_music,
                    "mood": self._mood(keywords, pacing),
                    "volume": 0.15,
                },
            },
            "visual": {
                "colorGrading": self._color_grading(preferences, analysis),
                "aspectRatio": {
                    "target": preferences.output.aspect_ratio,
                    "strategy": "blur-background" if preferences.visual_effects.blur_effects else "crop",
                },
                "fps": 30,
                "resolution": QUALITY_TO_RESOLUTION[preferences.output.quality],
            },
            "subtitles": self._subtitles(preferences, transcript, analysis, keywords),
            "customPrompt": _clip(preferences.custom_prompt, MAX_CUSTOM_PROMPT),
            "instructions": self.build_enhanced_prompt(
                preferences, transcript, deep_analysis, keywords
            )[:MAX_INSTRUCTIONS],
            "version": SCRIPT_VERSION,
        }

    def _metadata(
        self,
        preferences: EditingPreferences,
        analysis: Optional[AnalysisResult],
        keywords: Optional[KeywordResult],
    ) -> dict[str, Any]:
        pacing = preferences.editing_style.pacing
        topic = ""
        if keywords and keywords.topics:
            topic = ", ".join(keywords.topics[:3])
        elif analysis and analysis.summary:
            topic = analysis.summary

        return {
            "contentType": CATEGORY_TO_CONTENT_TYPE.get(keywords.content_category, "other") if keywords else "vlog",
            "topic": topic[:MAX_REASON],
            "mood": self._mood(keywords, pacing),
            "pacing": pacing,
            "targetAudience": AUDIENCE_MAP.get(keywords.target_audience, "general") if keywords else "general",
        }

    def _mood(self, keywords: Optional[KeywordResult], pacing: str) -> str:
        if keywords and keywords.emotion_tone in TONE_TO_MOOD:
            return TONE_TO_MOOD[keywords.emotion_tone]
        return PACING_MOOD[pacing]

    def _cuts(
        self,
        preferences: EditingPreferences,
        analysis: Optional[AnalysisResult],
        deep_analysis: Optional[DeepAnalysisResult],
    ) -> list[dict[str, Any]]:
        style = preferences.editing_style
        if not (style.auto_cut_silence or style.auto_jump_cuts):
            return []

        suggestions: list[Any] = []
        if analysis:
            suggestions.extend(analysis.jump_cuts)
        if deep_analysis:
            suggestions.extend(deep_analysis.pacing.optimal_cuts)

        cuts = {}
        for key, seg in _well_formed(suggestions):
            cut_type = seg.type if seg.type in CUT_TYPES else "manual"
            if cut_type == "silence":
                if not style.auto_cut_silence or style.keep_pauses:
                    continue
            elif not style.auto_jump_cuts:
                continue

            if key in cuts:
                continue
            cuts[key] = {
                "start": key[0],
                "end": key[1],
                "reason": _clip(seg.reason, MAX_REASON),
                "type": cut_type,
            }

        return [cuts[key] for key in sorted(cuts)][:MAX_CUTS]

    def _highlights(
        self, preferences: EditingPreferences, analysis: Optional[AnalysisResult]
    ) -> list[dict[str, Any]]:
        if not analysis:
            return []

        visual = preferences.visual_effects
        highlights = []
        for (start, end), seg in _well_formed(analysis.highlights):
            effects: dict[str, Any] = {}
            if visual.zoom_effects:
                effects["zoom"] = self._zoom(seg, preferences.editing_style.pacing)
            if visual.blur_effects:
                effects["blur"] = self._blur(seg)

            highlights.append({
                "start": start,
                "end": end,
                "reason": _clip(seg.reason, MAX_REASON),
                "effects": effects or None,
            })
        highlights.sort(key=lambda h: (h["start"], h["end"]))
        return highlights[:MAX_HIGHLIGHTS]

    def _zoom(self, seg: SuggestedSegment, pacing: str) -> dict[str, Any]:
        intensity, duration = PACING_ZOOM[pacing]
        easing = "ease-in-out"
        suggested = (seg.effects or {}).get("zoom")
        if isinstance(suggested, dict):
            if suggested.get("intensity") in ZOOM_INTENSITIES:
                intensity = suggested["intensity"]
            if suggested.get("easing") in ZOOM_EASINGS:
                easing = suggested["easing"]
            value = suggested.get("duration")
            if isinstance(value, (int, float)) and not isinstance(value, bool) and 0.1 <= value <= 5.0:
                duration = float(value)
        return {"intensity": intensity, "easing": easing, "duration": duration}

    def _blur(self, seg: SuggestedSegment) -> dict[str, Any]:
        intensity, feather = "medium", 10.0
        suggested = (seg.effects or {}).get("blur")
        if isinstance(suggested, dict):
            if suggested.get("intensity") in BLUR_INTENSITIES:
                intensity = suggested["intensity"]
            value = suggested.get("feather")
            if isinstance(value, (int, float)) and not isinstance(value, bool) and 0 <= value <= 50:
                feather = float(value)
        return {"intensity": intensity, "feather": feather}

    def _transitions(
        self, preferences: EditingPreferences, cuts: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        if not preferences.visual_effects.transitions:
            return []
        kind, duration = PACING_TRANSITION[preferences.editing_style.pacing]
        points = sorted({cut["end"] for cut in cuts})
        return [{"at": at, "type": kind, "duration": duration} for at in points][:MAX_TRANSITIONS]

    def _color_grading(
        self, preferences: EditingPreferences, analysis: Optional[AnalysisResult]
    ) -> dict[str, Any]:
        if not preferences.visual_effects.color_grading:
            return {"preset": "natural", "intensity": 0.0}

        preset = "vibrant"
        if analysis and analysis.visual_style:
            suggested = (analysis.visual_style.color_grading or "").strip().lower()
            if suggested in COLOR_PRESETS:
                preset = suggested
        return {"preset": preset, "intensity": 0.8}

    def _subtitles(
        self,
        preferences: EditingPreferences,
        transcript: TranscriptionResult,
        analysis: Optional[AnalysisResult],
        keywords: Optional[KeywordResult],
    ) -> dict[str, Any]:
        enabled = preferences.visual_effects.subtitles

        position = "bottom"
        highlight_color = "#FFD700"
        if analysis and analysis.subtitle_settings:
            if analysis.subtitle_settings.position in SUBTITLE_POSITIONS:
                position = analysis.subtitle_settings.position
            if _HEX_COLOR.match(analysis.subtitle_settings.highlight_color or ""):
                highlight_color = analysis.subtitle_settings.highlight_color

        words = self._keywords(analysis, keywords)
        segments = []
        if enabled:
            for seg in transcript.segments:
                text = seg.text.strip()
                span = _span(seg.start, seg.end)
                if not text or span is None:
                    continue
                segments.append({"start": span[0], "end": span[1], "text": text[:MAX_REASON]})

        return {
            "enabled": enabled,
            "style": {
                "font": "Arial Black",
                "fontSize": 48,
                "color": "#FFFFFF",
                "outlineColor": "#000000",
                "outlineWidth": 3,
                "highlightColor": highlight_color,
                "position": position,
                "bold": True,
                "italic": False,
                "highlightKeywords": bool(words),
                "keywords": words,
            },
            "segments": segments[:MAX_SUBTITLE_SEGMENTS],
            "autoPosition": False,
        }

    def _keywords(
        self, analysis: Optional[AnalysisResult], keywords: Optional[KeywordResult]
    ) -> list[str]:
        candidates: list[str] = []
        if analysis and analysis.keywords:
            candidates.extend(analysis.keywords)
        if keywords:
            candidates.extend(keywords.highlight_words)

        seen = set()
        words = []
        for word in candidates:
            word = word.strip()[:100]
            if word and word.lower() not in seen:
                seen.add(word.lower())
                words.append(word)
        return words[:MAX_KEYWORDS]

    def build_enhanced_prompt(
        self,
        preferences: EditingPreferences,
        transcript: TranscriptionResult,
        deep_analysis: Optional[DeepAnalysisResult] = None,
        keywords: Optional[KeywordResult] = None,
    ) -> str:
        """
        Fuse the custom prompt, the feature toggles, AI insights and a content
        preview into one instruction text for the render worker.
        """
        parts = []

        if preferences.custom_prompt and preferences.custom_prompt.strip():
            parts.append(
                "🎯 USER'S REQUEST (TOP PRIORITY):\n"
                f'"{preferences.custom_prompt.strip()}"\n'
                "→ This is what the user explicitly wants. Follow this closely!"
            )

        parts.append("⚙️ FEATURES TO APPLY:\n" + "\n".join(self._feature_instructions(preferences)))

        if deep_analysis:
            parts.append("🧠 AI INSIGHTS:\n" + self._summarize_analysis(deep_analysis, keywords))

        parts.append(
            "📝 CONTENT (first 800 chars):\n"
            f'"{transcript.text[:800]}"\n\n'
            f"Duration: {transcript.duration:g}s\n"
            f"Segments: {len(transcript.segments)} subtitle segments"
        )

        parts.append(
            "📋 RULES:\n"
            "- User request > AI suggestions\n"
            "- Only apply features the user enabled\n"
            "- Keep natural flow unless the user wants fast pacing\n"
            "- Preserve important content"
        )
        return "\n\n".join(parts)

    def _feature_instructions(self, preferences: EditingPreferences) -> list[str]:
        visual = preferences.visual_effects
        audio = preferences.audio
        style = preferences.editing_style

        def toggle(enabled: bool, on: str, off: Optional[str]) -> Optional[str]:
            if enabled:
                return f"✅ {on}"
            return f"❌ {off}" if off else None

        lines = [
            toggle(visual.subtitles, "SUBTITLES: Add dynamic subtitles with keyword highlighting", "SUBTITLES: Skip (user disabled)"),
            toggle(visual.color_grading, "COLOR GRADING: Apply vibrant/cinematic color correction", "COLOR GRADING: Keep natural colors"),
            toggle(visual.zoom_effects, "ZOOM: Apply zoom effects at highlights/key moments", "ZOOM: No zoom effects"),
            toggle(visual.blur_effects, "BLUR: Apply background blur (for vertical videos)", "BLUR: No blur effects"),
            toggle(visual.transitions, "TRANSITIONS: Add smooth transitions between scenes", "TRANSITIONS: Hard cuts only"),
            toggle(visual.text_overlays, "TEXT OVERLAYS: Add text highlights/callouts", "TEXT OVERLAYS: No additional text"),
            toggle(audio.normalize_audio, "AUDIO NORMALIZE: Balance audio levels", None),
            toggle(audio.remove_noise, "NOISE REDUCTION: Remove background noise", None),
            toggle(audio.add_background_music, "BACKGROUND MUSIC: Add suitable background music", "BACKGROUND MUSIC: Keep audio clean"),
            toggle(style.auto_cut_silence, "CUT SILENCE: Remove silent parts (>0.5s)", "CUT SILENCE: Keep natural pauses"),
            toggle(style.auto_jump_cuts, "JUMP CUTS: Remove filler words, repetitions", "JUMP CUTS: Keep natural flow"),
            toggle(style.keep_pauses, "KEEP PAUSES: Maintain natural timing", None),
            {
                "fast": "⚡ PACING: Fast (quick cuts, energetic)",
                "medium": "🚶 PACING: Medium (balanced, natural)",
                "slow": "🐌 PACING: Slow (cinematic, storytelling)",
            }[style.pacing],
            f"📐 ASPECT RATIO: {preferences.output.aspect_ratio}",
            f"🎞️ OUTPUT: {preferences.output.quality} quality, {preferences.output.format.upper()}",
        ]
        return [line for line in lines if line]

    def _summarize_analysis(
        self, analysis: DeepAnalysisResult, keywords: Optional[KeywordResult]
    ) -> str:
        parts = ["📊 Structure:"]
        structure = analysis.structure
        if structure.intro and structure.intro.start is not None:
            parts.append(f"  - Intro: {structure.intro.start:g}s - {structure.intro.end or 0:g}s")
        if structure.main_content:
            parts.append(f"  - Main: {len(structure.main_content)} sections")
        if structure.outro and structure.outro.start is not None:
            parts.append(f"  - Outro: {structure.outro.start:g}s - {structure.outro.end or 0:g}s")

        parts.append("\n⏱️ Pacing:")
        if analysis.pacing.slow_parts:
            parts.append(f"  - {len(analysis.pacing.slow_parts)} slow sections (can speed up)")
        if analysis.pacing.optimal_cuts:
            parts.append(f"  - {len(analysis.pacing.optimal_cuts)} suggested cuts")

        engagement = analysis.engagement
        parts.append("\n🎯 Engagement:")
        if engagement.hook_quality is not None:
            parts.append(f"  - Hook quality: {engagement.hook_quality:g}/100")
        if engagement.retention_points:
            parts.append(f"  - {len(engagement.retention_points)} retention points")
        if engagement.drop_off_risks:
            parts.append(f"  - ⚠️ {len(engagement.drop_off_risks)} drop-off risks")

        if keywords:
            parts.append("\n🔑 Keywords:")
            if keywords.topics:
                parts.append(f"  - Topics: {', '.join(keywords.topics)}")
            if keywords.viral_keywords:
                parts.append(f"  - Viral: {', '.join(keywords.viral_keywords)}")
            if keywords.highlight_words:
                parts.append(f"  - Highlight: {', '.join(keywords.highlight_words[:5])}")

        if analysis.visual_suggestions:
            parts.append("\n💡 Suggestions:")
            for suggestion in analysis.visual_suggestions[:3]:
                parts.append(f"  - {suggestion.get('time', '?')}s: {suggestion.get('suggestion', '')}")

        return "\n".join(parts)
