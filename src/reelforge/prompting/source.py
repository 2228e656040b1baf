"""Prompt sources: one text prompt per segment."""

import logging
from abc import ABC, abstractmethod

from openai import OpenAI

from reelforge.config import get_settings
from reelforge.models.audio import SegmentBoundary
from reelforge.models.preferences import StyleMetadata
from reelforge.prompting.parser import extract_prompts, parse_llm_response
from reelforge.prompting.templates import SYSTEM_PROMPT, build_scene_prompt_request

logger = logging.getLogger(__name__)

QUALITY_DIRECTIVE = "Cinematic music video scene, professional lighting, 4K quality, smooth motion"

# (upper bound of relative position, narrative description)
NARRATIVE_ARC = [
    (0.2, "Opening scene, establishing the mood, calm beginning"),
    (0.4, "Building intensity, rising action, energy increasing"),
    (0.6, "Peak energy, climactic moment, powerful performance"),
    (0.8, "Sustained intensity, emotional peak, dramatic visuals"),
    (float("inf"), "Resolution, cooling down, reflective ending"),
]


class PromptSource(ABC):
    """Produces prompts for segment boundaries."""

    @abstractmethod
    def generate(self, boundaries: list[SegmentBoundary], style: StyleMetadata) -> list[str]:
        """Return one prompt per boundary, same order and length."""
        ...


def relative_position(index: int, total_segments: int) -> float:
    """Position of a segment in the song, 0 for the first and 1 for the last."""
    return index / ((total_segments - 1) or 1)


def narrative_for(position: float) -> str:
    for upper, description in NARRATIVE_ARC:
        if position < upper:
            return description
    return NARRATIVE_ARC[-1][1]


class NarrativePromptSource(PromptSource):
    """Rule-based prompts from character analysis and song position."""

    def generate(self, boundaries: list[SegmentBoundary], style: StyleMetadata) -> list[str]:
        total = style.total_segments or len(boundaries)
        return [self.build_prompt(b, total, style) for b in boundaries]

    def build_prompt(self, boundary: SegmentBoundary, total: int, style: StyleMetadata) -> str:
        position = relative_position(boundary.index, total)
        parts: list[str] = []

        ca = style.character_analysis
        if isinstance(ca, dict):
            if ca.get("characterDescription"):
                parts.append(f"Character: {ca['characterDescription']}")
            if ca.get("visualStyle"):
                parts.append(f"Visual style: {ca['visualStyle']}")
            if isinstance(ca.get("mood"), list) and ca["mood"]:
                parts.append(f"Mood: {', '.join(map(str, ca['mood']))}")
            if isinstance(ca.get("colorPalette"), list) and ca["colorPalette"]:
                parts.append(f"Color palette: {', '.join(map(str, ca['colorPalette'][:3]))}")
            if ca.get("suggestedCameraWork"):
                parts.append(f"Camera: {ca['suggestedCameraWork']}")
            settings = ca.get("settingSuggestions")
            if isinstance(settings, list) and settings:
                idx = min(int(position * len(settings)), len(settings) - 1)
                parts.append(f"Setting: {settings[idx]}")
        elif isinstance(ca, str) and ca:
            parts.append(ca)

        parts.append(f"Narrative: {narrative_for(position)}")
        if style.lyrics:
            parts.append("Emotional performance matching the music")
        parts.append(QUALITY_DIRECTIVE)
        return ". ".join(parts) + "."


class OpenAIPromptSource(PromptSource):
    """LLM-written prompts, falling back to narrative rules."""

    def __init__(
        self,
        client: OpenAI | None = None,
        model: str | None = None,
        fallback: PromptSource | None = None,
    ):
        settings = get_settings()
        self.model = model or settings.openai_model
        self.client = client
        if self.client is None and settings.openai_api_key:
            self.client = OpenAI(api_key=settings.openai_api_key)
        self.fallback = fallback or NarrativePromptSource()

    def generate(self, boundaries: list[SegmentBoundary], style: StyleMetadata) -> list[str]:
        if self.client:
            try:
                return self._call_llm(boundaries, style)
            except Exception as e:
                logger.warning(f"LLM prompt generation failed, using fallback: {e}")
        return self.fallback.generate(boundaries, style)

    def _call_llm(self, boundaries: list[SegmentBoundary], style: StyleMetadata) -> list[str]:
        request = build_scene_prompt_request(
            segments=[
                {"index": b.index, "start": round(b.start_time, 2), "end": round(b.end_time, 2)}
                for b in boundaries
            ],
            total_segments=style.total_segments or len(boundaries),
            total_duration=style.total_duration,
            character_analysis=style.character_analysis,
            lyrics=style.lyrics,
        )
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": request},
            ],
            response_format={"type": "json_object"},
            temperature=0.7,
        )
        data = parse_llm_response(response.choices[0].message.content)
        return extract_prompts(data, [b.index for b in boundaries])
