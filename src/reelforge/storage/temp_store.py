"""Per-job scratch directories for downloaded clips."""

import logging
import shutil
import time
from pathlib import Path

from reelforge.config import get_settings

logger = logging.getLogger(__name__)


class TempFileManager:
    """Scratch space the stitcher downloads clips into.

    A job's directory lives from its first download until the stitch ends;
    ``cleanup_expired`` sweeps directories a crashed stitch left behind.
    """

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or get_settings().temp_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def create_job_dir(self, job_id: str) -> Path:
        job_dir = self.base_dir / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        return job_dir

    def soundtrack_path(self, job_id: str, suffix: str = ".audio") -> Path:
        return self.create_job_dir(job_id) / f"soundtrack{suffix}"

    def get_job_dir(self, job_id: str) -> Path | None:
        job_dir = self.base_dir / job_id
        return job_dir if job_dir.is_dir() else None

    def clip_path(self, job_id: str, index: int, suffix: str = ".mp4") -> Path:
        """Download target for segment ``index``; creates the job directory."""
        return self.create_job_dir(job_id) / f"clip_{index:04d}{suffix}"

    def cleanup_job(self, job_id: str) -> None:
        job_dir = self.get_job_dir(job_id)
        if job_dir is None:
            return
        shutil.rmtree(job_dir, ignore_errors=True)
        logger.info(f"[Job {job_id}] Removed scratch directory {job_dir}")

    def cleanup_expired(self, ttl_seconds: int | None = None) -> int:
        """Remove job directories not modified for ``ttl_seconds``."""
        ttl = ttl_seconds or get_settings().temp_file_ttl_seconds
        cutoff = time.time() - ttl
        stale = [d for d in self.base_dir.iterdir() if d.is_dir() and d.stat().st_mtime < cutoff]
        for job_dir in stale:
            self.cleanup_job(job_dir.name)
        return len(stale)
