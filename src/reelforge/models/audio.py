"""Audio segmentation data models."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SegmentBoundary(BaseModel):
    """Time range of one segment in the source audio's timeline."""

    index: int = Field(..., ge=0)
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., gt=0)

    @model_validator(mode="after")
    def validate_start_before_end(self) -> "SegmentBoundary":
        if self.start_time >= self.end_time:
            raise ValueError(f"start ({self.start_time}) must be < end ({self.end_time})")
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class AudioSegment(BaseModel):
    """A cut segment with its envelope and encoded audio."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    boundary: SegmentBoundary
    envelope: list[float] = Field(default_factory=list, description="Amplitude envelope in [0,1]")
    sample_count: int = Field(..., ge=0)
    audio_bytes: bytes = Field(default=b"", repr=False, description="WAV-encoded slice")

    @field_validator("envelope")
    @classmethod
    def validate_envelope(cls, v: list[float]) -> list[float]:
        for e in v:
            if not 0 <= e <= 1:
                raise ValueError(f"Envelope value must be in [0, 1], got {e}")
        return v

    @property
    def index(self) -> int:
        return self.boundary.index

    @property
    def duration(self) -> float:
        return self.boundary.duration


class SplitResult(BaseModel):
    """Output of the segmenter."""

    segments: list[AudioSegment] = Field(default_factory=list)
    total_duration: float = Field(..., gt=0)
    sample_rate: int = Field(..., gt=0)
    total_samples: int = Field(..., gt=0)
    segment_duration: float = Field(..., gt=0)

    @property
    def boundaries(self) -> list[SegmentBoundary]:
        return [s.boundary for s in self.segments]
