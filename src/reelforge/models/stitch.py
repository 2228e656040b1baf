"""Stitch plan, progress and result models."""

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class StitchEntry(BaseModel):
    """One clip in playback order."""

    index: int = Field(..., ge=0)
    final_output: str = Field(..., min_length=1)
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., gt=0)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class StitchPlan(BaseModel):
    """Ordered clip list produced by the orchestrator for the stitcher."""

    job_id: str
    entries: list[StitchEntry] = Field(default_factory=list)
    audio_reference: str | None = None

    @model_validator(mode="after")
    def validate_order(self) -> "StitchPlan":
        indices = [e.index for e in self.entries]
        if indices != sorted(indices) or len(set(indices)) != len(indices):
            raise ValueError("Stitch entries must be in strictly increasing index order")
        return self

    @property
    def expected_duration(self) -> float:
        return sum(e.duration for e in self.entries)


class StitchStage(StrEnum):
    LOADING = "loading"
    STITCHING = "stitching"
    ENCODING = "encoding"
    COMPLETE = "complete"


class StitchProgress(BaseModel):
    stage: StitchStage
    progress: float = Field(..., ge=0, le=100)
    current_clip: int | None = None
    total_clips: int | None = None


class ClipInfo(BaseModel):
    """Metadata of a loaded clip."""

    index: int = Field(..., ge=0)
    path: str
    duration: float = Field(..., gt=0)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    fps: float = Field(..., gt=0)


class StitchResult(BaseModel):
    """Result of a stitch."""

    output_path: str = Field(..., description="Path to the composited video")
    duration: float = Field(..., ge=0, description="Output duration in seconds")
    expected_duration: float = Field(..., ge=0, description="Sum of segment durations")
    duration_drift: float = Field(
        default=0.0, description="Output duration minus expected_duration"
    )
    entries: list[StitchEntry] = Field(default_factory=list)
    file_size_bytes: int = Field(default=0, ge=0)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    fps: float = Field(..., gt=0)

    @property
    def output_file(self) -> Path:
        return Path(self.output_path)
