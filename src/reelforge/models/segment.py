"""Segment state model.

A segment carries two sub-state machines: the generation stage and the
optional lipsync stage. Every mutation goes through one of the transition
functions below, each of which re-validates the whole record so illegal
combinations (e.g. a lipsync result on a segment whose generation never
finished) are rejected instead of persisted.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from reelforge.models.errors import IllegalTransitionError


class GenerationState(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LipsyncState(StrEnum):
    NOT_STARTED = "not_started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class Segment(BaseModel):
    """One time-bounded slice of a job and the clip generated for it."""

    job_id: str = Field(..., min_length=1)
    index: int = Field(..., ge=0)
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., gt=0)
    audio_reference: str | None = None
    envelope: list[float] = Field(default_factory=list)

    prompt: str | None = None
    prompt_version: str = "v1"

    generation_state: GenerationState = GenerationState.QUEUED
    generation_handle: str | None = None
    generation_output: str | None = None
    generation_attempts: int = Field(default=0, ge=0)
    generation_polls: int = Field(default=0, ge=0)
    generation_submitted_at: datetime | None = None

    lipsync_state: LipsyncState = LipsyncState.NOT_STARTED
    lipsync_handle: str | None = None
    lipsync_output: str | None = None
    lipsync_polls: int = Field(default=0, ge=0)
    lipsync_submitted_at: datetime | None = None

    final_output: str | None = None
    last_error: str | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def validate_state_combination(self) -> "Segment":
        if self.end_time <= self.start_time:
            raise ValueError(f"end_time {self.end_time} must exceed start_time {self.start_time}")
        for e in self.envelope:
            if not 0 <= e <= 1:
                raise ValueError(f"Envelope values must be in [0, 1], got {e}")

        gen_done = self.generation_state == GenerationState.COMPLETED
        if (self.generation_output is not None) != gen_done:
            raise ValueError("generation_output is set iff generation completed")
        if self.generation_state == GenerationState.PROCESSING and not self.generation_handle:
            raise ValueError("A processing generation needs an operation handle")

        if not gen_done and self.lipsync_state != LipsyncState.NOT_STARTED:
            raise ValueError("Lipsync cannot progress before generation completes")
        if self.lipsync_state == LipsyncState.PROCESSING and not self.lipsync_handle:
            raise ValueError("A processing lipsync needs an operation handle")
        if (self.lipsync_output is not None) != (self.lipsync_state == LipsyncState.COMPLETED):
            raise ValueError("lipsync_output is set iff lipsync completed")

        expected_final = expected_final_output(self)
        if self.final_output != expected_final:
            raise ValueError(
                f"final_output {self.final_output!r} inconsistent with states "
                f"{self.generation_state.value}/{self.lipsync_state.value}"
            )
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def is_finalized(self) -> bool:
        return self.final_output is not None

    @property
    def label(self) -> str:
        return f"{self.job_id}:{self.index}"


def expected_final_output(segment: Segment) -> str | None:
    if segment.generation_state != GenerationState.COMPLETED:
        return None
    if segment.lipsync_state == LipsyncState.COMPLETED:
        return segment.lipsync_output
    if segment.lipsync_state in (LipsyncState.FAILED, LipsyncState.SKIPPED):
        return segment.generation_output
    return None


def _apply(segment: Segment, **update) -> Segment:
    data = segment.model_dump()
    data.update(update)
    data["updated_at"] = datetime.now(UTC)
    try:
        return Segment.model_validate(data)
    except ValueError as e:
        raise IllegalTransitionError(
            f"Segment {segment.label}: illegal state: {e}",
            details={"job_id": segment.job_id, "index": segment.index},
        ) from e


def _require(segment: Segment, ok: bool, action: str) -> None:
    if not ok:
        raise IllegalTransitionError(
            f"Segment {segment.label}: cannot {action} from "
            f"{segment.generation_state.value}/{segment.lipsync_state.value}",
            details={"job_id": segment.job_id, "index": segment.index},
        )


def set_prompt(segment: Segment, prompt: str, version: str = "v1") -> Segment:
    return _apply(segment, prompt=prompt, prompt_version=version)


def generation_submitted(segment: Segment, handle: str) -> Segment:
    _require(
        segment,
        segment.generation_state == GenerationState.QUEUED and segment.generation_handle is None,
        "submit generation",
    )
    return _apply(
        segment,
        generation_state=GenerationState.PROCESSING,
        generation_handle=handle,
        generation_attempts=segment.generation_attempts + 1,
        generation_polls=0,
        generation_submitted_at=datetime.now(UTC),
        last_error=None,
    )


def generation_failed(segment: Segment, error: str) -> Segment:
    _require(
        segment,
        segment.generation_state in (GenerationState.QUEUED, GenerationState.PROCESSING),
        "fail generation",
    )
    attempts = segment.generation_attempts
    if segment.generation_state == GenerationState.QUEUED:
        # Submission never produced a handle, the attempt still counts.
        attempts += 1
    return _apply(
        segment,
        generation_state=GenerationState.FAILED,
        generation_attempts=attempts,
        last_error=error,
    )


def generation_succeeded(segment: Segment, artifact: str) -> Segment:
    _require(segment, segment.generation_state == GenerationState.PROCESSING, "complete generation")
    return _apply(
        segment,
        generation_state=GenerationState.COMPLETED,
        generation_output=artifact,
        last_error=None,
    )


def generation_polled(segment: Segment) -> Segment:
    return _apply(segment, generation_polls=segment.generation_polls + 1)


def lipsync_skipped(segment: Segment) -> Segment:
    _require(
        segment,
        segment.generation_state == GenerationState.COMPLETED
        and segment.lipsync_state == LipsyncState.NOT_STARTED,
        "skip lipsync",
    )
    return _apply(
        segment, lipsync_state=LipsyncState.SKIPPED, final_output=segment.generation_output
    )


def lipsync_submitted(segment: Segment, handle: str) -> Segment:
    _require(
        segment,
        segment.generation_state == GenerationState.COMPLETED
        and segment.lipsync_state == LipsyncState.NOT_STARTED,
        "submit lipsync",
    )
    return _apply(
        segment,
        lipsync_state=LipsyncState.PROCESSING,
        lipsync_handle=handle,
        lipsync_polls=0,
        lipsync_submitted_at=datetime.now(UTC),
    )


def lipsync_succeeded(segment: Segment, artifact: str) -> Segment:
    _require(segment, segment.lipsync_state == LipsyncState.PROCESSING, "complete lipsync")
    return _apply(
        segment,
        lipsync_state=LipsyncState.COMPLETED,
        lipsync_output=artifact,
        final_output=artifact,
        last_error=None,
    )


def lipsync_failed(segment: Segment, error: str) -> Segment:
    """Lipsync failure falls back to the un-synced generation clip."""
    _require(
        segment,
        segment.generation_state == GenerationState.COMPLETED
        and segment.lipsync_state in (LipsyncState.NOT_STARTED, LipsyncState.PROCESSING),
        "fail lipsync",
    )
    return _apply(
        segment,
        lipsync_state=LipsyncState.FAILED,
        final_output=segment.generation_output,
        last_error=error,
    )


def lipsync_polled(segment: Segment) -> Segment:
    return _apply(segment, lipsync_polls=segment.lipsync_polls + 1)


def reset_generation(segment: Segment) -> Segment:
    """Clear generation and lipsync sub-state for a fresh generation attempt."""
    _require(segment, segment.generation_state == GenerationState.FAILED, "retry generation")
    return _apply(
        segment,
        generation_state=GenerationState.QUEUED,
        generation_handle=None,
        generation_output=None,
        generation_polls=0,
        generation_submitted_at=None,
        lipsync_state=LipsyncState.NOT_STARTED,
        lipsync_handle=None,
        lipsync_output=None,
        lipsync_polls=0,
        lipsync_submitted_at=None,
        final_output=None,
        last_error=None,
    )


def reset_lipsync(segment: Segment) -> Segment:
    """Clear lipsync sub-state only; the generation output stays."""
    _require(
        segment,
        segment.generation_state == GenerationState.COMPLETED
        and segment.lipsync_state == LipsyncState.FAILED,
        "retry lipsync",
    )
    return _apply(
        segment,
        lipsync_state=LipsyncState.NOT_STARTED,
        lipsync_handle=None,
        lipsync_output=None,
        lipsync_polls=0,
        lipsync_submitted_at=None,
        final_output=None,
        last_error=None,
    )
