"""Prompt templates for LLM scene-prompt generation."""

import json

SYSTEM_PROMPT = (
    "You are a music video director. You receive the time boundaries of "
    "consecutive song segments plus style notes about the performer and the "
    "song. Write one short scene description per segment for a text-to-video "
    "model.\n"
    "\n"
    "Rules:\n"
    "1. Return exactly one prompt per segment, in the same order\n"
    "2. Keep the same character and visual style across all segments\n"
    "3. Follow a narrative arc: opening, build-up, peak, resolution\n"
    "4. Describe camera work and lighting, never on-screen text\n"
    "5. Each prompt must be under 60 words\n"
    "\n"
    "Respond with ONLY valid JSON matching the provided schema."
)


def build_json_schema() -> dict:
    """Build the JSON schema for expected LLM output."""
    return {
        "type": "object",
        "required": ["prompts"],
        "properties": {
            "prompts": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["index", "prompt"],
                    "properties": {
                        "index": {"type": "integer", "minimum": 0},
                        "prompt": {"type": "string", "minLength": 1},
                    },
                },
            }
        },
    }


def build_scene_prompt_request(
    segments: list[dict],
    total_segments: int,
    total_duration: float,
    character_analysis: dict | str | None = None,
    lyrics: str | None = None,
) -> str:
    """Build the user prompt for one batch of segments."""
    prompt = f"""## Song
Total duration: {total_duration:.1f}s across {total_segments} segments.

## Segments to describe
```json
{json.dumps(segments, indent=2)}
```
"""
    if character_analysis:
        prompt += f"""
## Character Analysis
```json
{json.dumps(character_analysis, indent=2)}
```
"""
    if lyrics:
        prompt += f"""
## Lyrics
{lyrics}
"""

    prompt += f"""
## Output Schema
```json
{json.dumps(build_json_schema(), indent=2)}
```

Generate one prompt per listed segment index."""

    return prompt
