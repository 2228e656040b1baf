"""Job state model and transition rules."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from reelforge.models.errors import IllegalTransitionError
from reelforge.models.segment import GenerationState, Segment


class JobStatus(StrEnum):
    """Lifecycle of a music-video job."""

    UPLOADED = "uploaded"
    AUDIO_SPLIT = "audio_split"
    PROMPTS_GENERATED = "prompts_generated"
    GENERATING_VIDEOS = "generating_videos"
    LIP_SYNCING = "lip_syncing"
    STITCHING = "stitching"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Forward edges of the pipeline. FAILED and CANCELLED are added for every
# non-terminal source below, reopen edges are handled by `reopen_job`.
_FORWARD: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.UPLOADED: frozenset({JobStatus.AUDIO_SPLIT}),
    JobStatus.AUDIO_SPLIT: frozenset({JobStatus.PROMPTS_GENERATED, JobStatus.GENERATING_VIDEOS}),
    JobStatus.PROMPTS_GENERATED: frozenset(
        {JobStatus.PROMPTS_GENERATED, JobStatus.GENERATING_VIDEOS}
    ),
    JobStatus.GENERATING_VIDEOS: frozenset(
        {JobStatus.GENERATING_VIDEOS, JobStatus.LIP_SYNCING, JobStatus.STITCHING}
    ),
    JobStatus.LIP_SYNCING: frozenset({JobStatus.LIP_SYNCING, JobStatus.STITCHING}),
    JobStatus.STITCHING: frozenset({JobStatus.STITCHING, JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset({JobStatus.COMPLETED}),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset({JobStatus.CANCELLED}),
}

# Statuses a retry may reopen back to GENERATING_VIDEOS.
REOPENABLE_STATUSES = frozenset(
    {
        JobStatus.GENERATING_VIDEOS,
        JobStatus.LIP_SYNCING,
        JobStatus.STITCHING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }
)


def allowed_transitions(status: JobStatus) -> frozenset[JobStatus]:
    targets = set(_FORWARD[status])
    if not status.is_terminal:
        targets |= {JobStatus.FAILED, JobStatus.CANCELLED}
    return frozenset(targets)


class Job(BaseModel):
    """One music-video generation request."""

    id: str = Field(..., min_length=1)
    status: JobStatus = Field(default=JobStatus.UPLOADED)
    total_segments: int = Field(default=0, ge=0)
    completed_segments: int = Field(default=0, ge=0)
    finalized_segments: list[int] = Field(
        default_factory=list, description="Indices already counted in completed_segments"
    )
    uses_lipsync: bool = False
    source_audio_reference: str = Field(..., min_length=1)
    character_reference: str | None = None
    aspect_ratio: str = "9:16"
    segment_duration: float = Field(default=8.0, gt=0)
    total_duration: float = Field(default=0.0, ge=0)
    final_video_reference: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def validate_counters(self) -> "Job":
        if self.completed_segments > self.total_segments:
            raise ValueError(
                f"completed_segments ({self.completed_segments}) exceeds "
                f"total_segments ({self.total_segments})"
            )
        if self.completed_segments != len(self.finalized_segments):
            raise ValueError("completed_segments must match the finalized segment set")
        if len(set(self.finalized_segments)) != len(self.finalized_segments):
            raise ValueError("finalized_segments contains duplicates")
        if self.status == JobStatus.COMPLETED and self.completed_segments != self.total_segments:
            raise ValueError("A job can only be completed once every segment is finalized")
        return self

    @property
    def all_finalized(self) -> bool:
        return self.total_segments > 0 and self.completed_segments == self.total_segments


def _revalidate(job: Job, **update) -> Job:
    data = job.model_dump()
    data.update(update)
    data["updated_at"] = datetime.now(UTC)
    try:
        return Job.model_validate(data)
    except ValueError as e:
        raise IllegalTransitionError(
            f"Job {job.id}: illegal state: {e}", details={"job_id": job.id}
        ) from e


def transition_job(job: Job, target: JobStatus, **update) -> Job:
    """Return a copy of ``job`` moved to ``target``, rejecting illegal edges."""
    if target not in allowed_transitions(job.status):
        raise IllegalTransitionError(
            f"Job {job.id}: cannot move from {job.status.value} to {target.value}",
            details={"job_id": job.id, "from": job.status.value, "to": target.value},
        )
    return _revalidate(job, status=target, **update)


def reopen_job(job: Job) -> Job:
    """Explicit retry path: put a job back into GENERATING_VIDEOS."""
    if job.status not in REOPENABLE_STATUSES:
        raise IllegalTransitionError(
            f"Job {job.id}: cannot reopen from {job.status.value}",
            details={"job_id": job.id, "from": job.status.value},
        )
    return _revalidate(job, status=JobStatus.GENERATING_VIDEOS, error=None)


def mark_finalized(job: Job, index: int) -> tuple[Job, bool]:
    """Count segment ``index`` as finalized. Returns (job, counted_now)."""
    if index in job.finalized_segments:
        return job, False
    return (
        _revalidate(
            job,
            finalized_segments=[*job.finalized_segments, index],
            completed_segments=job.completed_segments + 1,
        ),
        True,
    )


def unmark_finalized(job: Job, index: int) -> Job:
    """Undo the count for a segment whose final output was cleared by a retry."""
    if index not in job.finalized_segments:
        return job
    return _revalidate(
        job,
        finalized_segments=[i for i in job.finalized_segments if i != index],
        completed_segments=job.completed_segments - 1,
    )


class JobSnapshot(BaseModel):
    """A job together with its segments, as reported by status queries."""

    job: Job
    segments: list[Segment] = Field(default_factory=list)

    @property
    def progress(self) -> float:
        if not self.job.total_segments:
            return 0.0
        return self.job.completed_segments / self.job.total_segments

    @property
    def failed_indices(self) -> list[int]:
        return [s.index for s in self.segments if s.generation_state == GenerationState.FAILED]
