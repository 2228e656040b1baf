"""Job/segment orchestrator.

Owns the persisted job and segment records and drives every segment through
generation, the optional lipsync stage, and finalization. Every operation is
stateless between calls: it reads the stored records, talks to a provider,
and writes the result back, so any worker (thread, Celery task, HTTP request)
can pick up where another left off.
"""

import logging
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from reelforge.config import Settings, get_settings
from reelforge.models.audio import SegmentBoundary
from reelforge.models.errors import (
    IllegalTransitionError,
    IncompleteJobError,
    InvalidInputError,
    ProviderError,
    ProviderFailureError,
    ProviderTimeoutError,
)
from reelforge.models.job import (
    REOPENABLE_STATUSES,
    Job,
    JobSnapshot,
    JobStatus,
    mark_finalized,
    reopen_job,
    transition_job,
    unmark_finalized,
)
from reelforge.models.preferences import AudioDescriptor, JobOptions, StyleMetadata
from reelforge.models.provider import NormalizedResult
from reelforge.models.segment import (
    GenerationState,
    LipsyncState,
    Segment,
    generation_failed,
    generation_polled,
    generation_submitted,
    generation_succeeded,
    lipsync_failed,
    lipsync_polled,
    lipsync_skipped,
    lipsync_submitted,
    lipsync_succeeded,
    reset_generation,
    reset_lipsync,
    set_prompt,
)
from reelforge.models.stitch import StitchEntry, StitchPlan
from reelforge.prompting.source import NarrativePromptSource, PromptSource
from reelforge.providers.base import (
    GenerationProvider,
    LipsyncProvider,
    build_submission_retrying,
)
from reelforge.segmenter.audio_splitter import AudioSegmenter
from reelforge.segmenter.boundaries import compute_boundaries
from reelforge.storage.artifact_store import DurableStore
from reelforge.storage.job_store import JobLock, JobStore

logger = logging.getLogger(__name__)

SUBMITTABLE_STATUSES = frozenset(
    {JobStatus.AUDIO_SPLIT, JobStatus.PROMPTS_GENERATED, JobStatus.GENERATING_VIDEOS}
)


def is_settled(segment: Segment) -> bool:
    """True when no provider operation is outstanding for ``segment``."""
    return (
        segment.generation_state != GenerationState.PROCESSING
        and segment.lipsync_state != LipsyncState.PROCESSING
    )


def next_prompt_version(version: str) -> str:
    try:
        return f"v{int(version.lstrip('v')) + 1}"
    except ValueError:
        return "v2"


class MusicVideoOrchestrator:
    """Drives jobs from split audio to a stitch plan."""

    def __init__(
        self,
        store: JobStore,
        generation_provider: GenerationProvider,
        lipsync_provider: LipsyncProvider | None = None,
        prompt_source: PromptSource | None = None,
        artifact_store: DurableStore | None = None,
        stitcher=None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.generation_provider = generation_provider
        self.lipsync_provider = lipsync_provider
        self.prompt_source = prompt_source or NarrativePromptSource()
        self.artifact_store = artifact_store
        self.stitcher = stitcher
        self.sleep = sleep
        self.clock = clock or (lambda: datetime.now(UTC))

    def _segment_lock(self, job_id: str, index: int) -> JobLock:
        return self.store.segment_lock(job_id, index)

    def _retrying(self):
        return build_submission_retrying(self.settings).copy(sleep=self.sleep)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        audio: AudioDescriptor,
        options: JobOptions | None = None,
        job_id: str | None = None,
    ) -> Job:
        """Split the song into segments and persist the job in ``audio_split``."""
        options = options or JobOptions()
        if not audio.reference and not audio.local_path:
            raise InvalidInputError("An audio reference is required to create a job")

        job_id = job_id or str(uuid.uuid4())
        chunk = options.segment_duration or self.settings.segment_duration
        source_reference = audio.reference or Path(audio.local_path).resolve().as_uri()

        audio_refs: dict[int, str] = {}
        envelopes: dict[int, list[float]] = {}
        if audio.local_path:
            split = AudioSegmenter(segment_duration=chunk).split(Path(audio.local_path))
            boundaries = split.boundaries
            total_duration = split.total_duration
            for piece in split.segments:
                envelopes[piece.index] = piece.envelope
                if self.artifact_store is not None:
                    audio_refs[piece.index] = self.artifact_store.persist_inline_artifact(
                        piece.audio_bytes, "audio/wav"
                    )
        else:
            if audio.duration is None:
                raise InvalidInputError(
                    "Audio duration is required when no local file is given",
                    details={"reference": audio.reference},
                )
            total_duration = audio.duration
            boundaries = compute_boundaries(total_duration, chunk)

        job = Job(
            id=job_id,
            total_segments=len(boundaries),
            uses_lipsync=options.use_lipsync and bool(options.character_reference),
            source_audio_reference=source_reference,
            character_reference=options.character_reference,
            aspect_ratio=options.aspect_ratio or self.settings.default_aspect_ratio,
            segment_duration=chunk,
            total_duration=total_duration,
        )
        segments = [
            Segment(
                job_id=job_id,
                index=b.index,
                start_time=b.start_time,
                end_time=b.end_time,
                audio_reference=audio_refs.get(b.index),
                envelope=envelopes.get(b.index, []),
            )
            for b in boundaries
        ]
        self.store.create(job, segments)
        logger.info(
            f"[Job {job_id}] Created with {len(segments)} segments "
            f"({total_duration:.2f}s, lipsync={'on' if job.uses_lipsync else 'off'})"
        )
        return self._transition(job_id, JobStatus.AUDIO_SPLIT)

    def generate_prompts(
        self,
        job_id: str,
        style: StyleMetadata | None = None,
        regenerate: bool | list[int] = False,
    ) -> list[Segment]:
        """Fill missing prompts (or regenerate the requested ones)."""
        job = self.store.get_job(job_id)
        if job.status not in (JobStatus.AUDIO_SPLIT, JobStatus.PROMPTS_GENERATED):
            raise IllegalTransitionError(
                f"Job {job_id}: cannot generate prompts while {job.status.value}",
                details={"job_id": job_id, "status": job.status.value},
            )
        segments = self.store.list_segments(job_id)
        if not segments:
            raise InvalidInputError(f"Job {job_id} has no segments", details={"job_id": job_id})

        if isinstance(regenerate, list):
            unknown = sorted(set(regenerate) - {s.index for s in segments})
            if unknown:
                raise InvalidInputError(
                    f"Unknown segment indices {unknown}", details={"job_id": job_id}
                )
            targets = [s for s in segments if s.prompt is None or s.index in regenerate]
        elif regenerate:
            targets = segments
        else:
            targets = [s for s in segments if s.prompt is None]

        if targets:
            style = style or StyleMetadata()
            style = style.model_copy(
                update={
                    "total_duration": style.total_duration or job.total_duration,
                    "total_segments": style.total_segments or job.total_segments,
                }
            )
            boundaries = [
                SegmentBoundary(index=s.index, start_time=s.start_time, end_time=s.end_time)
                for s in targets
            ]
            prompts = self.prompt_source.generate(boundaries, style)
            if len(prompts) != len(targets):
                raise ProviderFailureError(
                    f"Prompt source returned {len(prompts)} prompts for {len(targets)} segments",
                    provider="prompt_source",
                )
            for target, prompt in zip(targets, prompts):
                with self._segment_lock(job_id, target.index):
                    current = self.store.get_segment(job_id, target.index)
                    version = (
                        next_prompt_version(current.prompt_version)
                        if current.prompt is not None
                        else current.prompt_version
                    )
                    self.store.save_segment(set_prompt(current, prompt, version))
            logger.info(f"[Job {job_id}] Generated {len(targets)} prompts")
        else:
            logger.info(f"[Job {job_id}] All segments already have prompts")

        self._transition(job_id, JobStatus.PROMPTS_GENERATED)
        return self.store.list_segments(job_id)

    def start_generation(self, job_id: str, reference_image: str | None = None) -> Job:
        """Submit every queued segment that has no operation handle yet."""
        job = self.store.get_job(job_id)
        if job.status not in SUBMITTABLE_STATUSES:
            raise IllegalTransitionError(
                f"Job {job_id}: cannot start generation while {job.status.value}",
                details={"job_id": job_id, "status": job.status.value},
            )
        job = self._transition(job_id, JobStatus.GENERATING_VIDEOS)
        reference_image = reference_image or job.character_reference
        retrying = self._retrying()

        submitted = failed = 0
        for pending in self.store.list_segments(job_id):
            if pending.generation_state != GenerationState.QUEUED or pending.generation_handle:
                continue
            if self.store.get_job(job_id).status == JobStatus.CANCELLED:
                logger.info(f"[Job {job_id}] Cancelled, stopping submissions")
                break
            if submitted or failed:
                self.sleep(self.settings.submission_delay_seconds)

            with self._segment_lock(job_id, pending.index):
                segment = self.store.get_segment(job_id, pending.index)
                if segment.generation_state != GenerationState.QUEUED or segment.generation_handle:
                    continue
                try:
                    handle = retrying(
                        self.generation_provider.submit,
                        segment.prompt or self.settings.default_prompt,
                        reference_image=reference_image,
                        duration_hint=segment.duration,
                        aspect_ratio=job.aspect_ratio,
                    )
                except ProviderError as e:
                    self.store.save_segment(generation_failed(segment, e.message))
                    failed += 1
                    logger.error(f"[Segment {segment.label}] Submission failed: {e.message}")
                    continue
                self.store.save_segment(generation_submitted(segment, handle))
                submitted += 1
                logger.info(f"[Segment {segment.label}] Submitted generation {handle}")

        logger.info(f"[Job {job_id}] Submitted {submitted} segments, {failed} failed to submit")
        return self.store.get_job(job_id)

    def poll_segment(self, job_id: str, index: int) -> Segment:
        """Query the provider that owns the segment's outstanding operation."""
        with self._segment_lock(job_id, index):
            segment = self.store.get_segment(job_id, index)
            job = self.store.get_job(job_id)

            if segment.generation_state == GenerationState.PROCESSING:
                segment = self._poll_generation(job, segment)
            elif segment.lipsync_state == LipsyncState.PROCESSING:
                segment = self._poll_lipsync(job, segment)
            else:
                return segment

            self._after_segment_update(job_id, segment)
            return segment

    def retry_segment(self, job_id: str, index: int) -> Segment:
        """Reset a failed segment; lipsync retries resubmit immediately.

        A generation retry leaves the segment ``queued``, the next
        ``start_generation`` call submits it.
        """
        with self._segment_lock(job_id, index):
            segment = self.store.get_segment(job_id, index)
            if segment.generation_state == GenerationState.FAILED:
                if segment.generation_attempts >= self.settings.max_generation_attempts:
                    raise InvalidInputError(
                        f"Segment {segment.label} exhausted {segment.generation_attempts} "
                        "generation attempts",
                        details={"job_id": job_id, "index": index},
                    )
                segment = reset_generation(segment)
                stage = "generation"
            elif segment.lipsync_state == LipsyncState.FAILED:
                segment = reset_lipsync(segment)
                stage = "lipsync"
            else:
                raise InvalidInputError(
                    f"Segment {segment.label} has nothing to retry",
                    details={"job_id": job_id, "index": index},
                )

            def reopen(job: Job) -> Job:
                reopen_to_generate = stage == "generation" and job.status == JobStatus.LIP_SYNCING
                if job.status in REOPENABLE_STATUSES and (
                    job.status.is_terminal
                    or job.status == JobStatus.STITCHING
                    or reopen_to_generate
                ):
                    logger.info(f"[Job {job.id}] Reopened from {job.status.value} by retry")
                    job = reopen_job(job)
                return unmark_finalized(job, index)

            job = self.store.update_job(job_id, reopen)
            self.store.save_segment(segment)
            logger.info(f"[Segment {segment.label}] Reset {stage} for retry")

            if stage == "lipsync":
                segment = self._start_lipsync(job, segment)
                self._after_segment_update(job_id, segment)
            return segment

    def stitch(self, job_id: str) -> StitchPlan:
        """Build the ordered clip list and complete the job.

        Raises ``IncompleteJobError`` naming every segment without a final
        output, in which case the job is left untouched.
        """
        with self.store.lock(job_id):
            job = self.store.get_job(job_id)
            segments = self.store.list_segments(job_id)
            if job.status == JobStatus.COMPLETED:
                return self._build_plan(job, segments)
            if job.status in (JobStatus.FAILED, JobStatus.CANCELLED):
                raise IllegalTransitionError(
                    f"Job {job_id}: cannot stitch while {job.status.value}",
                    details={"job_id": job_id, "status": job.status.value},
                )
            missing = [s.index for s in segments if not s.is_finalized]
            if missing or not segments:
                raise IncompleteJobError(
                    f"Job {job_id} has segments without final output: {missing}",
                    indices=missing,
                )
            if job.status != JobStatus.STITCHING:
                self._transition(job_id, JobStatus.STITCHING)
            plan = self._build_plan(job, segments)

        final_reference = None
        if self.stitcher is not None:
            output_path = self.settings.output_dir / f"{job_id}.{self.settings.output_format}"
            try:
                result = self.stitcher.stitch(plan, output_path)
            except Exception as e:
                self.store.update_job(
                    job_id, lambda j: j.model_copy(update={"error": f"Stitch failed: {e}"})
                )
                raise
            final_reference = Path(result.output_path).resolve().as_uri()

        self._transition(job_id, JobStatus.COMPLETED, final_video_reference=final_reference)
        logger.info(f"[Job {job_id}] Stitched {len(plan.entries)} clips")
        return plan

    def cancel(self, job_id: str) -> Job:
        """Mark the job cancelled; in-flight operations keep reporting results."""
        job = self.store.get_job(job_id)
        if job.status == JobStatus.CANCELLED:
            return job
        return self._transition(job_id, JobStatus.CANCELLED)

    def fail(self, job_id: str, error: str) -> Job:
        return self._transition(job_id, JobStatus.FAILED, error=error)

    def get_status(self, job_id: str) -> JobSnapshot:
        return JobSnapshot(job=self.store.get_job(job_id), segments=self.store.list_segments(job_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, job_id: str, target: JobStatus, **update) -> Job:
        previous: list[JobStatus] = []

        def apply(job: Job) -> Job:
            previous.append(job.status)
            return transition_job(job, target, **update)

        job = self.store.update_job(job_id, apply)
        if previous and previous[0] != target:
            logger.info(f"[Job {job_id}] Status {previous[0].value} -> {target.value}")
        return job

    def _check_budget(
        self,
        polls: int,
        submitted_at: datetime | None,
        max_polls: int,
        timeout_seconds: float,
        provider: str,
    ) -> None:
        if polls >= max_polls:
            raise ProviderTimeoutError(
                f"Timed out after {polls} polls", provider=provider, details={"polls": polls}
            )
        if submitted_at is not None:
            elapsed = (self.clock() - submitted_at).total_seconds()
            if elapsed > timeout_seconds:
                raise ProviderTimeoutError(
                    f"Timed out after {elapsed:.0f}s",
                    provider=provider,
                    details={"elapsed_seconds": elapsed},
                )

    def _poll_generation(self, job: Job, segment: Segment) -> Segment:
        provider = self.generation_provider
        result = provider.poll(segment.generation_handle)
        segment = generation_polled(segment)
        if not result.terminal:
            try:
                self._check_budget(
                    segment.generation_polls,
                    segment.generation_submitted_at,
                    self.settings.generation_max_polls,
                    self.settings.generation_timeout_seconds,
                    provider.name,
                )
            except ProviderTimeoutError as e:
                result = NormalizedResult.failed(e.message)

        if not result.terminal:
            return self.store.save_segment(segment)
        if not result.success:
            logger.error(f"[Segment {segment.label}] Generation failed: {result.error}")
            return self.store.save_segment(generation_failed(segment, result.error or "Unknown"))

        segment = self.store.save_segment(generation_succeeded(segment, result.artifact))
        logger.info(f"[Segment {segment.label}] Generation completed: {result.artifact}")
        return self._start_lipsync(job, segment)

    def _start_lipsync(self, job: Job, segment: Segment) -> Segment:
        provider = self.lipsync_provider
        if not job.uses_lipsync:
            return self.store.save_segment(lipsync_skipped(segment))
        if self.store.get_job(job.id).status == JobStatus.CANCELLED:
            logger.info(f"[Segment {segment.label}] Job cancelled, skipping lipsync")
            return self.store.save_segment(lipsync_skipped(segment))
        if provider is None or not getattr(provider, "configured", True):
            logger.warning(f"[Segment {segment.label}] No lipsync provider, skipping lipsync")
            return self.store.save_segment(lipsync_skipped(segment))

        audio = segment.audio_reference or job.source_audio_reference
        try:
            handle = self._retrying()(provider.submit, segment.generation_output, audio)
        except ProviderError as e:
            logger.warning(
                f"[Segment {segment.label}] Lipsync submission failed, "
                f"using the generated clip: {e.message}"
            )
            return self.store.save_segment(lipsync_failed(segment, e.message))

        logger.info(f"[Segment {segment.label}] Submitted lipsync {handle}")
        return self.store.save_segment(lipsync_submitted(segment, handle))

    def _poll_lipsync(self, job: Job, segment: Segment) -> Segment:
        provider = self.lipsync_provider
        if provider is None:
            return self.store.save_segment(
                lipsync_failed(segment, "Lipsync provider no longer available")
            )
        result = provider.poll(segment.lipsync_handle)
        segment = lipsync_polled(segment)
        if not result.terminal:
            try:
                self._check_budget(
                    segment.lipsync_polls,
                    segment.lipsync_submitted_at,
                    self.settings.lipsync_max_polls,
                    self.settings.lipsync_timeout_seconds,
                    provider.name,
                )
            except ProviderTimeoutError as e:
                result = NormalizedResult.failed(e.message)

        if not result.terminal:
            return self.store.save_segment(segment)
        if not result.success:
            logger.warning(
                f"[Segment {segment.label}] Lipsync failed, using the generated clip: "
                f"{result.error}"
            )
            return self.store.save_segment(lipsync_failed(segment, result.error or "Unknown"))

        logger.info(f"[Segment {segment.label}] Lipsync completed: {result.artifact}")
        return self.store.save_segment(lipsync_succeeded(segment, result.artifact))

    def _after_segment_update(self, job_id: str, segment: Segment) -> Job:
        """Count a newly finalized segment and advance the job status."""

        def apply(job: Job) -> Job:
            if segment.is_finalized:
                job, counted = mark_finalized(job, segment.index)
                if counted:
                    logger.info(
                        f"[Job {job_id}] Segment {segment.index} finalized "
                        f"({job.completed_segments}/{job.total_segments})"
                    )
            if job.status not in (JobStatus.GENERATING_VIDEOS, JobStatus.LIP_SYNCING):
                return job
            if job.all_finalized:
                logger.info(f"[Job {job_id}] Status {job.status.value} -> stitching")
                return transition_job(job, JobStatus.STITCHING)
            if job.status == JobStatus.GENERATING_VIDEOS:
                segments = self.store.list_segments(job_id)
                generating = any(
                    s.generation_state in (GenerationState.QUEUED, GenerationState.PROCESSING)
                    for s in segments
                )
                syncing = any(s.lipsync_state == LipsyncState.PROCESSING for s in segments)
                if not generating and syncing:
                    logger.info(f"[Job {job_id}] Status generating_videos -> lip_syncing")
                    return transition_job(job, JobStatus.LIP_SYNCING)
            return job

        return self.store.update_job(job_id, apply)

    def _build_plan(self, job: Job, segments: list[Segment]) -> StitchPlan:
        return StitchPlan(
            job_id=job.id,
            audio_reference=job.source_audio_reference,
            entries=[
                StitchEntry(
                    index=s.index,
                    final_output=s.final_output,
                    start_time=s.start_time,
                    end_time=s.end_time,
                )
                for s in sorted(segments, key=lambda s: s.index)
            ],
        )
