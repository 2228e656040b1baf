"""LLM response parser for scene prompts."""

import json
import re

from reelforge.models.errors import ProviderFailureError

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_OBJECT_OR_LIST = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)


def parse_llm_response(response_text: str) -> dict:
    """Decode the model's answer into ``{"prompts": [...]}``.

    Accepts fenced code blocks, chatter around the JSON, and a bare list of
    prompt objects.
    """
    text = response_text.strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    candidates = [text]
    embedded = _OBJECT_OR_LIST.search(text)
    if embedded and embedded.group() != text:
        candidates.append(embedded.group())

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, list):
            return {"prompts": data}
        if isinstance(data, dict):
            return data

    raise ProviderFailureError(
        "LLM response is not a JSON prompt list",
        provider="openai",
        details={"response_preview": text[:200]},
    )


def extract_prompts(data: dict, indices: list[int]) -> list[str]:
    """Pull one prompt per requested index, in the requested order."""
    by_index: dict[int, str] = {}
    for item in data.get("prompts", []):
        if not isinstance(item, dict):
            continue
        try:
            idx = int(item["index"])
        except (KeyError, TypeError, ValueError):
            continue
        text = str(item.get("prompt", "")).strip()
        if text:
            by_index[idx] = text

    missing = [i for i in indices if i not in by_index]
    if missing:
        raise ProviderFailureError(
            f"LLM response is missing prompts for segments {missing}",
            provider="openai",
            details={"missing": missing},
        )
    return [by_index[i] for i in indices]
