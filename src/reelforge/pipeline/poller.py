"""Concurrent per-segment polling."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from reelforge.config import Settings, get_settings
from reelforge.models.job import JobSnapshot
from reelforge.models.segment import GenerationState, Segment
from reelforge.pipeline.orchestrator import MusicVideoOrchestrator, is_settled

logger = logging.getLogger(__name__)


class SegmentPollScheduler:
    """Runs one polling loop per segment until every segment settles.

    Each loop waits on its own interval (generation or lipsync) between polls.
    The orchestrator enforces the poll and wall-clock budgets, so every loop
    ends once its provider operation is terminal or times out.
    """

    def __init__(
        self,
        orchestrator: MusicVideoOrchestrator,
        settings: Settings | None = None,
        max_workers: int | None = None,
    ):
        self.orchestrator = orchestrator
        self.settings = settings or orchestrator.settings or get_settings()
        self.max_workers = max_workers or self.settings.poll_workers
        self._stop = threading.Event()

    def stop(self) -> None:
        """Ask running loops to exit after their current poll."""
        self._stop.set()

    def interval_for(self, segment: Segment) -> float:
        if segment.generation_state == GenerationState.PROCESSING:
            return self.settings.generation_poll_interval
        return self.settings.lipsync_poll_interval

    def poll_until_settled(self, job_id: str, index: int) -> Segment:
        segment = self.orchestrator.poll_segment(job_id, index)
        while not is_settled(segment):
            if self._stop.wait(self.interval_for(segment)):
                logger.info(f"[Segment {segment.label}] Polling stopped")
                break
            segment = self.orchestrator.poll_segment(job_id, index)
        return segment

    def run(self, job_id: str) -> JobSnapshot:
        """Poll every outstanding segment of ``job_id`` concurrently."""
        self._stop.clear()
        snapshot = self.orchestrator.get_status(job_id)
        pending = [s.index for s in snapshot.segments if not is_settled(s)]
        if not pending:
            return snapshot

        logger.info(f"[Job {job_id}] Polling {len(pending)} segments")
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as pool:
            futures = {pool.submit(self.poll_until_settled, job_id, i): i for i in pending}
            for future in as_completed(futures):
                index = futures[future]
                try:
                    future.result()
                except Exception:
                    logger.exception(f"[Segment {job_id}:{index}] Polling loop crashed")
                    self.stop()
                    raise
        return self.orchestrator.get_status(job_id)
