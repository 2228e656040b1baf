"""Tests for MusicVideoOrchestrator (fake providers)."""

from datetime import UTC, datetime, timedelta

import pytest

from reelforge.models.errors import (
    IllegalTransitionError,
    IncompleteJobError,
    InvalidInputError,
    JobNotFoundError,
)
from reelforge.models.job import JobStatus
from reelforge.models.preferences import AudioDescriptor, JobOptions, StyleMetadata
from reelforge.models.provider import LipsyncPoll, LipsyncStatus
from reelforge.models.segment import GenerationState, LipsyncState
from reelforge.pipeline.orchestrator import MusicVideoOrchestrator
from tests.conftest import generate_test_wav

SONG = AudioDescriptor(reference="https://audio.example/song.mp3", duration=22.0)
WITH_LIPSYNC = JobOptions(character_reference="https://img.example/singer.png")
WITHOUT_LIPSYNC = JobOptions(use_lipsync=False)


def poll_all(orchestrator, job_id):
    for segment in orchestrator.store.list_segments(job_id):
        orchestrator.poll_segment(job_id, segment.index)


def started_job(orchestrator, options=WITHOUT_LIPSYNC, audio=SONG):
    job = orchestrator.create(audio, options)
    orchestrator.generate_prompts(job.id)
    orchestrator.start_generation(job.id)
    return job.id


class TestCreate:
    def test_create_splits_into_segments(self, orchestrator):
        job = orchestrator.create(SONG, WITH_LIPSYNC)
        assert job.status == JobStatus.AUDIO_SPLIT
        assert job.total_segments == 3
        assert job.uses_lipsync is True
        segments = orchestrator.store.list_segments(job.id)
        assert [(s.start_time, s.end_time) for s in segments] == [
            (0.0, 8.0),
            (8.0, 16.0),
            (16.0, 22.0),
        ]
        assert all(s.generation_state == GenerationState.QUEUED for s in segments)

    def test_lipsync_needs_character_reference(self, orchestrator):
        job = orchestrator.create(SONG, JobOptions(use_lipsync=True))
        assert job.uses_lipsync is False

    def test_missing_audio_reference(self, orchestrator):
        with pytest.raises(InvalidInputError):
            orchestrator.create(AudioDescriptor(duration=10.0))

    def test_missing_duration_without_local_file(self, orchestrator):
        with pytest.raises(InvalidInputError):
            orchestrator.create(AudioDescriptor(reference="https://audio.example/a.mp3"))

    def test_custom_segment_duration(self, orchestrator):
        job = orchestrator.create(SONG, JobOptions(segment_duration=5.0))
        assert job.total_segments == 5
        last = orchestrator.store.get_segment(job.id, 4)
        assert last.end_time == pytest.approx(22.0)

    def test_create_from_local_file(self, orchestrator, artifact_store, tmp_path):
        wav = generate_test_wav(tmp_path / "song.wav", duration=2.5)
        job = orchestrator.create(
            AudioDescriptor(local_path=wav), JobOptions(segment_duration=1.0)
        )
        assert job.total_segments == 3
        assert job.total_duration == pytest.approx(2.5, abs=1e-3)
        assert job.source_audio_reference.startswith("file://")
        segments = orchestrator.store.list_segments(job.id)
        for segment in segments:
            assert len(segment.envelope) == 100
            assert segment.audio_reference in artifact_store.artifacts

    def test_unknown_job(self, orchestrator):
        with pytest.raises(JobNotFoundError):
            orchestrator.get_status("missing")


class TestGeneratePrompts:
    def test_fills_every_prompt(self, orchestrator, prompt_source):
        job = orchestrator.create(SONG)
        segments = orchestrator.generate_prompts(job.id, StyleMetadata(lyrics="la la"))
        assert [s.prompt for s in segments] == [f"scene {i} take 1" for i in range(3)]
        assert prompt_source.calls == [[0, 1, 2]]
        assert orchestrator.store.get_job(job.id).status == JobStatus.PROMPTS_GENERATED

    def test_is_idempotent(self, orchestrator, prompt_source):
        job = orchestrator.create(SONG)
        orchestrator.generate_prompts(job.id)
        orchestrator.generate_prompts(job.id)
        assert prompt_source.calls == [[0, 1, 2]]

    def test_regenerate_selected(self, orchestrator, prompt_source):
        job = orchestrator.create(SONG)
        orchestrator.generate_prompts(job.id)
        segments = orchestrator.generate_prompts(job.id, regenerate=[1])
        assert prompt_source.calls[-1] == [1]
        assert segments[1].prompt == "scene 1 take 2"
        assert segments[1].prompt_version == "v2"
        assert segments[0].prompt_version == "v1"

    def test_regenerate_unknown_index(self, orchestrator):
        job = orchestrator.create(SONG)
        with pytest.raises(InvalidInputError):
            orchestrator.generate_prompts(job.id, regenerate=[7])

    def test_rejected_after_generation_started(self, orchestrator):
        job_id = started_job(orchestrator)
        with pytest.raises(IllegalTransitionError):
            orchestrator.generate_prompts(job_id, regenerate=True)


class TestStartGeneration:
    def test_submits_every_segment_with_delay(self, orchestrator, generation, sleeps):
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        assert orchestrator.store.get_job(job_id).status == JobStatus.GENERATING_VIDEOS
        assert len(generation.submissions) == 3
        assert sleeps == [0.5, 0.5]
        first = generation.submissions[0]
        assert first["prompt"] == "scene 0 take 1"
        assert first["reference_image"] == "https://img.example/singer.png"
        assert first["duration_hint"] == pytest.approx(8.0)
        assert first["aspect_ratio"] == "9:16"
        segments = orchestrator.store.list_segments(job_id)
        assert [s.generation_handle for s in segments] == ["gen-0", "gen-1", "gen-2"]
        assert all(s.generation_state == GenerationState.PROCESSING for s in segments)

    def test_twice_submits_each_segment_once(self, orchestrator, generation):
        job_id = started_job(orchestrator)
        orchestrator.start_generation(job_id)
        assert len(generation.submissions) == 3

    def test_default_prompt_without_prompts(self, orchestrator, generation, settings):
        job = orchestrator.create(SONG)
        orchestrator.start_generation(job.id)
        assert generation.submissions[0]["prompt"] == settings.default_prompt

    def test_submission_failure_is_isolated(self, orchestrator, generation):
        generation.fail_on = {1}
        job_id = started_job(orchestrator)
        segments = orchestrator.store.list_segments(job_id)
        assert segments[1].generation_state == GenerationState.FAILED
        assert segments[1].last_error == "quota exceeded"
        assert segments[1].generation_handle is None
        assert segments[0].generation_state == GenerationState.PROCESSING
        assert segments[2].generation_state == GenerationState.PROCESSING
        assert orchestrator.store.get_job(job_id).status == JobStatus.GENERATING_VIDEOS

    def test_transient_submission_errors_are_retried(self, orchestrator, generation, sleeps):
        generation.transient_failures = 2
        job = orchestrator.create(SONG)
        orchestrator.start_generation(job.id)
        assert len(generation.submissions) == 3
        segment = orchestrator.store.get_segment(job.id, 0)
        assert segment.generation_state == GenerationState.PROCESSING
        # Two backoff waits before the first submission succeeded.
        assert len(sleeps) == 4

    def test_rejected_for_cancelled_job(self, orchestrator):
        job = orchestrator.create(SONG)
        orchestrator.cancel(job.id)
        with pytest.raises(IllegalTransitionError):
            orchestrator.start_generation(job.id)


class TestPolling:
    def test_generation_success_without_lipsync(self, orchestrator):
        job_id = started_job(orchestrator)
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.generation_state == GenerationState.COMPLETED
        assert segment.lipsync_state == LipsyncState.SKIPPED
        assert segment.final_output == "https://clips.example/gen-0.mp4"
        assert orchestrator.store.get_job(job_id).completed_segments == 1

    def test_all_finalized_moves_to_stitching(self, orchestrator):
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        job = orchestrator.store.get_job(job_id)
        assert job.completed_segments == 3
        assert job.status == JobStatus.STITCHING

    def test_pending_poll_changes_nothing_but_count(self, orchestrator, generation):
        generation.pending = {"gen-0"}
        job_id = started_job(orchestrator)
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.generation_state == GenerationState.PROCESSING
        assert segment.generation_polls == 1
        assert segment.final_output is None

    def test_repeated_polls_count_once(self, orchestrator):
        job_id = started_job(orchestrator)
        orchestrator.poll_segment(job_id, 0)
        orchestrator.poll_segment(job_id, 0)
        orchestrator.poll_segment(job_id, 0)
        job = orchestrator.store.get_job(job_id)
        assert job.completed_segments == 1
        assert job.finalized_segments == [0]

    def test_generation_failure_has_no_fallback(self, orchestrator, generation):
        generation.errors = {"gen-2": "safety filter"}
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        segment = orchestrator.store.get_segment(job_id, 2)
        assert segment.generation_state == GenerationState.FAILED
        assert segment.final_output is None
        assert segment.last_error == "safety filter"
        job = orchestrator.store.get_job(job_id)
        assert job.completed_segments == 2
        assert job.status == JobStatus.GENERATING_VIDEOS

    def test_lipsync_chain(self, orchestrator, lipsync):
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.lipsync_state == LipsyncState.PROCESSING
        assert segment.final_output is None
        assert lipsync.submissions[0] == (
            "https://clips.example/gen-0.mp4",
            "https://audio.example/song.mp3",
        )
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.lipsync_state == LipsyncState.COMPLETED
        assert segment.final_output == "https://sync.example/sync-0.mp4"

    def test_lip_syncing_once_generation_done(self, orchestrator):
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        poll_all(orchestrator, job_id)
        assert orchestrator.store.get_job(job_id).status == JobStatus.LIP_SYNCING
        poll_all(orchestrator, job_id)
        assert orchestrator.store.get_job(job_id).status == JobStatus.STITCHING

    def test_lipsync_submission_failure_falls_back(self, orchestrator, lipsync):
        lipsync.fail_submit = True
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.lipsync_state == LipsyncState.FAILED
        assert segment.final_output == segment.generation_output

    def test_unconfigured_lipsync_is_skipped(self, orchestrator, lipsync):
        lipsync.configured = False
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.lipsync_state == LipsyncState.SKIPPED
        assert lipsync.submissions == []

    def test_generation_poll_budget(self, orchestrator, generation, settings):
        settings.generation_max_polls = 2
        generation.pending = {"gen-0"}
        job_id = started_job(orchestrator)
        assert orchestrator.poll_segment(job_id, 0).generation_state == GenerationState.PROCESSING
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.generation_state == GenerationState.FAILED
        assert "Timed out" in segment.last_error

    def test_lipsync_wall_clock_budget(self, orchestrator, lipsync):
        lipsync.statuses["sync-0"] = LipsyncPoll(status=LipsyncStatus.PROCESSING)
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        orchestrator.poll_segment(job_id, 0)
        orchestrator.clock = lambda: datetime.now(UTC) + timedelta(hours=1)
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.lipsync_state == LipsyncState.FAILED
        assert segment.final_output == segment.generation_output
        assert "Timed out" in segment.last_error

    def test_lipsync_completed_without_output_falls_back(self, orchestrator, lipsync):
        lipsync.statuses["sync-0"] = LipsyncPoll(status=LipsyncStatus.COMPLETED)
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        orchestrator.poll_segment(job_id, 0)
        segment = orchestrator.poll_segment(job_id, 0)
        assert segment.lipsync_state == LipsyncState.FAILED
        assert segment.final_output == segment.generation_output
        assert "without an output URL" in segment.last_error
        assert segment.lipsync_polls == 1

    def test_queued_segment_is_not_polled(self, orchestrator, generation):
        job = orchestrator.create(SONG)
        segment = orchestrator.poll_segment(job.id, 0)
        assert segment.generation_state == GenerationState.QUEUED
        assert generation.poll_counts == {}


class TestScenarios:
    def test_lipsync_failure_on_last_segment(self, orchestrator, lipsync):
        lipsync.statuses["sync-2"] = LipsyncPoll(
            status=LipsyncStatus.FAILED, error="no face detected"
        )
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        poll_all(orchestrator, job_id)
        poll_all(orchestrator, job_id)

        segments = orchestrator.store.list_segments(job_id)
        assert [s.final_output for s in segments[:2]] == [
            "https://sync.example/sync-0.mp4",
            "https://sync.example/sync-1.mp4",
        ]
        assert segments[2].lipsync_state == LipsyncState.FAILED
        assert segments[2].final_output == segments[2].generation_output
        job = orchestrator.store.get_job(job_id)
        assert job.status == JobStatus.STITCHING
        assert job.completed_segments == 3

        plan = orchestrator.stitch(job_id)
        assert [e.index for e in plan.entries] == [0, 1, 2]
        assert plan.expected_duration == pytest.approx(22.0)
        assert orchestrator.store.get_job(job_id).status == JobStatus.COMPLETED

    def test_stitch_with_processing_segment(self, orchestrator, generation):
        generation.pending = {"gen-1"}
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        with pytest.raises(IncompleteJobError) as exc_info:
            orchestrator.stitch(job_id)
        assert exc_info.value.indices == [1]
        assert orchestrator.store.get_job(job_id).status == JobStatus.GENERATING_VIDEOS


class TestStitch:
    def test_completed_stitch_is_repeatable(self, orchestrator):
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        first = orchestrator.stitch(job_id)
        second = orchestrator.stitch(job_id)
        assert first == second

    def test_rejected_for_cancelled_job(self, orchestrator):
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        orchestrator.cancel(job_id)
        with pytest.raises(IllegalTransitionError):
            orchestrator.stitch(job_id)

    def test_stitcher_output_recorded(self, store, generation, settings):
        class RecordingStitcher:
            def __init__(self):
                self.plans = []

            def stitch(self, plan, output_path):
                self.plans.append(plan)
                output_path.parent.mkdir(parents=True, exist_ok=True)
                output_path.write_bytes(b"video")
                return type("Result", (), {"output_path": str(output_path)})()

        stitcher = RecordingStitcher()
        orchestrator = MusicVideoOrchestrator(
            store, generation, stitcher=stitcher, settings=settings, sleep=lambda s: None
        )
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        orchestrator.stitch(job_id)
        job = store.get_job(job_id)
        assert len(stitcher.plans) == 1
        assert stitcher.plans[0].audio_reference == SONG.reference
        assert job.final_video_reference.endswith(f"{job_id}.mp4")

    def test_stitcher_failure_keeps_job_stitching(self, store, generation, settings):
        class BrokenStitcher:
            def stitch(self, plan, output_path):
                raise RuntimeError("disk full")

        orchestrator = MusicVideoOrchestrator(
            store, generation, stitcher=BrokenStitcher(), settings=settings, sleep=lambda s: None
        )
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        with pytest.raises(RuntimeError):
            orchestrator.stitch(job_id)
        job = store.get_job(job_id)
        assert job.status == JobStatus.STITCHING
        assert "disk full" in job.error


class TestRetry:
    def test_generation_retry_resubmits(self, orchestrator, generation):
        generation.fail_on = {1}
        job_id = started_job(orchestrator)
        segment = orchestrator.retry_segment(job_id, 1)
        assert segment.generation_state == GenerationState.QUEUED
        assert segment.generation_handle is None
        assert segment.lipsync_state == LipsyncState.NOT_STARTED
        assert segment.last_error is None

        orchestrator.start_generation(job_id)
        assert len(generation.submissions) == 4
        segment = orchestrator.store.get_segment(job_id, 1)
        assert segment.generation_handle == "gen-3"
        assert segment.generation_attempts == 2

    def test_lipsync_retry_resubmits_immediately(self, orchestrator, lipsync):
        lipsync.statuses["sync-2"] = LipsyncPoll(status=LipsyncStatus.REJECTED)
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        poll_all(orchestrator, job_id)
        poll_all(orchestrator, job_id)
        assert orchestrator.store.get_job(job_id).status == JobStatus.STITCHING

        segment = orchestrator.retry_segment(job_id, 2)
        assert segment.generation_state == GenerationState.COMPLETED
        assert segment.lipsync_state == LipsyncState.PROCESSING
        assert segment.lipsync_handle == "sync-3"
        assert segment.final_output is None
        job = orchestrator.store.get_job(job_id)
        assert job.completed_segments == 2
        assert job.status == JobStatus.LIP_SYNCING

        segment = orchestrator.poll_segment(job_id, 2)
        assert segment.final_output == "https://sync.example/sync-3.mp4"
        job = orchestrator.store.get_job(job_id)
        assert job.completed_segments == 3
        assert job.status == JobStatus.STITCHING

    def test_retry_reopens_completed_job(self, orchestrator, lipsync):
        lipsync.statuses["sync-0"] = LipsyncPoll(status=LipsyncStatus.FAILED)
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        poll_all(orchestrator, job_id)
        poll_all(orchestrator, job_id)
        orchestrator.stitch(job_id)
        assert orchestrator.store.get_job(job_id).status == JobStatus.COMPLETED

        orchestrator.retry_segment(job_id, 0)
        job = orchestrator.store.get_job(job_id)
        assert job.status in (JobStatus.GENERATING_VIDEOS, JobStatus.LIP_SYNCING)
        assert job.completed_segments == 2

    def test_retry_of_healthy_segment(self, orchestrator):
        job_id = started_job(orchestrator)
        with pytest.raises(InvalidInputError):
            orchestrator.retry_segment(job_id, 0)

    def test_retry_attempts_are_bounded(self, orchestrator, generation, settings):
        settings.max_generation_attempts = 1
        generation.fail_on = {0}
        job_id = started_job(orchestrator)
        with pytest.raises(InvalidInputError):
            orchestrator.retry_segment(job_id, 0)


class TestCancel:
    def test_cancel_is_idempotent(self, orchestrator):
        job = orchestrator.create(SONG)
        assert orchestrator.cancel(job.id).status == JobStatus.CANCELLED
        assert orchestrator.cancel(job.id).status == JobStatus.CANCELLED

    def test_polls_after_cancel_keep_status(self, orchestrator):
        job_id = started_job(orchestrator)
        orchestrator.cancel(job_id)
        poll_all(orchestrator, job_id)
        job = orchestrator.store.get_job(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.completed_segments == 3
        segments = orchestrator.store.list_segments(job_id)
        assert all(s.final_output for s in segments)

    def test_cancel_skips_pending_lipsync(self, orchestrator, lipsync):
        job_id = started_job(orchestrator, WITH_LIPSYNC)
        orchestrator.cancel(job_id)
        poll_all(orchestrator, job_id)
        assert lipsync.submissions == []
        segments = orchestrator.store.list_segments(job_id)
        assert all(s.lipsync_state == LipsyncState.SKIPPED for s in segments)
        assert all(s.final_output == s.generation_output for s in segments)
        job = orchestrator.store.get_job(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.completed_segments == 3

    def test_cancel_completed_job(self, orchestrator):
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        orchestrator.stitch(job_id)
        with pytest.raises(IllegalTransitionError):
            orchestrator.cancel(job_id)

    def test_fail_records_error(self, orchestrator):
        job = orchestrator.create(SONG)
        job = orchestrator.fail(job.id, "operator abort")
        assert job.status == JobStatus.FAILED
        assert job.error == "operator abort"


class TestStatus:
    def test_snapshot_progress(self, orchestrator, generation):
        generation.errors = {"gen-1": "blocked"}
        job_id = started_job(orchestrator)
        poll_all(orchestrator, job_id)
        snapshot = orchestrator.get_status(job_id)
        assert snapshot.progress == pytest.approx(2 / 3)
        assert snapshot.failed_indices == [1]
        assert len(snapshot.segments) == 3
