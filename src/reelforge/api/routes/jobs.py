"""Job endpoints."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field

from reelforge.api.dependencies import get_orchestrator
from reelforge.models.errors import IllegalTransitionError
from reelforge.models.job import Job, JobStatus
from reelforge.models.preferences import AudioDescriptor, JobOptions, StyleMetadata
from reelforge.models.segment import Segment
from reelforge.models.stitch import StitchPlan
from reelforge.pipeline.orchestrator import SUBMITTABLE_STATUSES, MusicVideoOrchestrator
from reelforge.pipeline.poller import SegmentPollScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


class CreateJobRequest(BaseModel):
    audio: AudioDescriptor
    options: JobOptions = Field(default_factory=JobOptions)


class PromptRequest(BaseModel):
    style: StyleMetadata | None = None
    regenerate: bool | list[int] = False


class GenerationRequest(BaseModel):
    reference_image: str | None = None
    auto_poll: bool = Field(default=False, description="Poll every segment until it settles")


class StitchResponse(BaseModel):
    job: Job
    plan: StitchPlan


def _generate(
    orchestrator: MusicVideoOrchestrator, job_id: str, reference_image: str | None, poll: bool
) -> None:
    orchestrator.start_generation(job_id, reference_image)
    if poll:
        SegmentPollScheduler(orchestrator).run(job_id)


@router.post("", status_code=201)
def create_job(
    request: CreateJobRequest,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
) -> Job:
    """Split the audio into segments and register the job."""
    return orchestrator.create(request.audio, request.options)


@router.get("/{job_id}")
def get_job_status(
    job_id: str,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
):
    """Job status together with every segment."""
    snapshot = orchestrator.get_status(job_id)
    return {
        "job": snapshot.job.model_dump(mode="json"),
        "progress": snapshot.progress,
        "failed_segments": snapshot.failed_indices,
        "segments": [s.model_dump(mode="json") for s in snapshot.segments],
    }


@router.post("/{job_id}/prompts")
def generate_prompts(
    job_id: str,
    request: PromptRequest | None = None,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
) -> list[Segment]:
    request = request or PromptRequest()
    return orchestrator.generate_prompts(job_id, request.style, request.regenerate)


@router.post("/{job_id}/generation", status_code=202)
def start_generation(
    job_id: str,
    background_tasks: BackgroundTasks,
    request: GenerationRequest | None = None,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
):
    """Submit queued segments in the background."""
    request = request or GenerationRequest()
    job = orchestrator.store.get_job(job_id)
    if job.status not in SUBMITTABLE_STATUSES:
        raise IllegalTransitionError(
            f"Job {job_id}: cannot start generation while {job.status.value}",
            details={"job_id": job_id, "status": job.status.value},
        )
    background_tasks.add_task(
        _generate, orchestrator, job_id, request.reference_image, request.auto_poll
    )
    return {
        "job_id": job_id,
        "status": JobStatus.GENERATING_VIDEOS.value,
        "message": "Generation started",
    }


@router.get("/{job_id}/segments/{index}")
def get_segment(
    job_id: str,
    index: int,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
) -> Segment:
    return orchestrator.store.get_segment(job_id, index)


@router.post("/{job_id}/segments/{index}/poll")
def poll_segment(
    job_id: str,
    index: int,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
) -> Segment:
    return orchestrator.poll_segment(job_id, index)


@router.post("/{job_id}/segments/{index}/retry")
def retry_segment(
    job_id: str,
    index: int,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
) -> Segment:
    return orchestrator.retry_segment(job_id, index)


@router.post("/{job_id}/stitch")
def stitch_job(
    job_id: str,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
) -> StitchResponse:
    plan = orchestrator.stitch(job_id)
    return StitchResponse(job=orchestrator.store.get_job(job_id), plan=plan)


@router.delete("/{job_id}")
def cancel_job(
    job_id: str,
    orchestrator: MusicVideoOrchestrator = Depends(get_orchestrator),
) -> Job:
    """Cancel a job; providers already running keep reporting into its segments."""
    return orchestrator.cancel(job_id)
