"""Celery task definitions."""

from celery import Celery

from reelforge.config import get_settings
from reelforge.models.errors import ReelforgeError

settings = get_settings()

celery_app = Celery(
    "reelforge",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
)


def _orchestrator():
    from reelforge.pipeline.factory import build_orchestrator

    return build_orchestrator()


@celery_app.task(bind=True, name="reelforge.start_generation")
def start_generation_task(self, job_id: str, reference_image: str | None = None):
    """Submit queued segments, then fan out one polling task per segment."""
    orchestrator = _orchestrator()
    job = orchestrator.start_generation(job_id, reference_image)
    for segment in orchestrator.store.list_segments(job_id):
        if segment.generation_handle:
            poll_segment_task.apply_async(
                args=[job_id, segment.index], countdown=settings.generation_poll_interval
            )
    return {"job_id": job.id, "status": job.status.value}


@celery_app.task(bind=True, name="reelforge.poll_segment", max_retries=None)
def poll_segment_task(self, job_id: str, index: int):
    """Poll one segment, rescheduling itself until the segment settles."""
    from reelforge.pipeline.orchestrator import is_settled
    from reelforge.pipeline.poller import SegmentPollScheduler

    orchestrator = _orchestrator()
    segment = orchestrator.poll_segment(job_id, index)
    if not is_settled(segment):
        countdown = SegmentPollScheduler(orchestrator).interval_for(segment)
        raise self.retry(countdown=countdown)
    return {
        "job_id": job_id,
        "index": index,
        "generation_state": segment.generation_state.value,
        "lipsync_state": segment.lipsync_state.value,
        "final_output": segment.final_output,
    }


@celery_app.task(bind=True, name="reelforge.stitch_job")
def stitch_job_task(self, job_id: str):
    """Stitch a job whose segments are all finalized."""
    orchestrator = _orchestrator()
    try:
        plan = orchestrator.stitch(job_id)
    except ReelforgeError as e:
        return {"job_id": job_id, "status": "error", "error": e.message}
    job = orchestrator.store.get_job(job_id)
    return {
        "job_id": job_id,
        "status": job.status.value,
        "clips": len(plan.entries),
        "final_video_reference": job.final_video_reference,
    }
