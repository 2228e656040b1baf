"""Job creation inputs and style preferences."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class AudioDescriptor(BaseModel):
    """Where the source song lives and how long it is.

    ``local_path`` lets the orchestrator decode the file itself, which also
    yields per-segment audio slices and envelopes. Without it, ``duration``
    must be supplied by the caller.
    """

    reference: str | None = Field(default=None, description="Stable URI of the source audio")
    duration: float | None = Field(default=None, gt=0, description="Duration in seconds")
    local_path: Path | None = None


class JobOptions(BaseModel):
    """Per-job generation options."""

    use_lipsync: bool = True
    character_reference: str | None = Field(
        default=None, description="Character image URI; lipsync needs one"
    )
    segment_duration: float | None = Field(default=None, gt=0, le=60.0)
    aspect_ratio: str | None = Field(default=None, pattern=r"^\d+:\d+$")


class StyleMetadata(BaseModel):
    """Style hints handed to the prompt source."""

    lyrics: str | None = None
    character_analysis: dict[str, Any] | str | None = None
    total_duration: float = Field(default=0.0, ge=0)
    total_segments: int = Field(default=0, ge=0)
