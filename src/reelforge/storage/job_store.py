"""Job and segment persistence."""

import fcntl
import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from reelforge.config import get_settings
from reelforge.models.errors import JobNotFoundError
from reelforge.models.job import Job
from reelforge.models.segment import Segment

logger = logging.getLogger(__name__)


class JobLock:
    """Reentrant lock guarding one job (or one segment of it).

    Threads of a process serialize on an RLock. With a ``path``, the outermost
    holder also takes an exclusive ``flock`` on that file, so every worker
    process sharing the state directory serializes as well.
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._handle = None

    def acquire(self) -> None:
        self._thread_lock.acquire()
        if self.path is not None and self._depth == 0:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                handle = open(self.path, "a+")
            except OSError:
                self._thread_lock.release()
                raise
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            except OSError:
                handle.close()
                self._thread_lock.release()
                raise
            self._handle = handle
        self._depth += 1

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._handle is not None:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
            self._handle.close()
            self._handle = None
        self._thread_lock.release()

    def __enter__(self) -> "JobLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class JobStore(ABC):
    """Persistent job/segment rows.

    ``update_job`` is the only way to change a job once created: it runs the
    read-modify-write under the job's lock, so concurrent segment pollers
    cannot lose counter increments. ``segment_lock`` serializes operations on
    one segment.
    """

    def __init__(self):
        self._locks: dict[tuple[str, int | None], JobLock] = {}
        self._locks_guard = threading.Lock()

    def lock(self, job_id: str) -> JobLock:
        return self._get_lock(job_id, None)

    def segment_lock(self, job_id: str, index: int) -> JobLock:
        return self._get_lock(job_id, index)

    def _get_lock(self, job_id: str, index: int | None) -> JobLock:
        key = (job_id, index)
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = JobLock(self._lock_path(job_id, index))
            return self._locks[key]

    def _lock_path(self, job_id: str, index: int | None) -> Path | None:
        """Lock file shared across processes; None keeps locks process-local."""
        return None

    def create(self, job: Job, segments: list[Segment]) -> Job:
        with self.lock(job.id):
            self._write_job(job)
            for segment in segments:
                self._write_segment(segment)
        return job

    def get_job(self, job_id: str) -> Job:
        job = self._read_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", details={"job_id": job_id})
        return job

    def update_job(self, job_id: str, mutator: Callable[[Job], Job]) -> Job:
        """Atomically apply ``mutator`` to the stored job and persist the result."""
        with self.lock(job_id):
            job = self.get_job(job_id)
            updated = mutator(job)
            if updated is not job:
                self._write_job(updated)
            return updated

    def get_segment(self, job_id: str, index: int) -> Segment:
        segment = self._read_segment(job_id, index)
        if segment is None:
            raise JobNotFoundError(
                f"Segment {index} of job {job_id} not found",
                details={"job_id": job_id, "index": index},
            )
        return segment

    def save_segment(self, segment: Segment) -> Segment:
        self._write_segment(segment)
        return segment

    @abstractmethod
    def list_segments(self, job_id: str) -> list[Segment]:
        """All segments of a job ordered by index."""
        ...

    @abstractmethod
    def list_jobs(self) -> list[str]: ...

    @abstractmethod
    def delete_job(self, job_id: str) -> None: ...

    @abstractmethod
    def _read_job(self, job_id: str) -> Job | None: ...

    @abstractmethod
    def _write_job(self, job: Job) -> None: ...

    @abstractmethod
    def _read_segment(self, job_id: str, index: int) -> Segment | None: ...

    @abstractmethod
    def _write_segment(self, segment: Segment) -> None: ...


class InMemoryJobStore(JobStore):
    """Process-local store, used by tests and single-process runs."""

    def __init__(self):
        super().__init__()
        self._jobs: dict[str, Job] = {}
        self._segments: dict[str, dict[int, Segment]] = {}

    def list_segments(self, job_id: str) -> list[Segment]:
        self.get_job(job_id)
        segments = self._segments.get(job_id, {})
        return [segments[i] for i in sorted(segments)]

    def list_jobs(self) -> list[str]:
        return list(self._jobs)

    def delete_job(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._segments.pop(job_id, None)

    def _read_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def _write_job(self, job: Job) -> None:
        self._jobs[job.id] = job

    def _read_segment(self, job_id: str, index: int) -> Segment | None:
        return self._segments.get(job_id, {}).get(index)

    def _write_segment(self, segment: Segment) -> None:
        self._segments.setdefault(segment.job_id, {})[segment.index] = segment


class JsonJobStore(JobStore):
    """Stores each job as ``<base>/<job_id>/job.json`` plus one file per segment.

    Locks are files under ``<base>/.locks``, so separate worker processes
    sharing ``base_dir`` serialize on the same job.
    """

    def __init__(self, base_dir: Path | None = None):
        super().__init__()
        self.base_dir = base_dir or get_settings().state_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _job_dir(self, job_id: str) -> Path:
        return self.base_dir / job_id

    def _segment_path(self, job_id: str, index: int) -> Path:
        return self._job_dir(job_id) / "segments" / f"{index:04d}.json"

    def _lock_path(self, job_id: str, index: int | None) -> Path:
        name = job_id if index is None else f"{job_id}.{index:04d}"
        return self.base_dir / ".locks" / f"{name}.lock"

    def list_segments(self, job_id: str) -> list[Segment]:
        self.get_job(job_id)
        seg_dir = self._job_dir(job_id) / "segments"
        if not seg_dir.exists():
            return []
        return [Segment.model_validate_json(p.read_text()) for p in sorted(seg_dir.glob("*.json"))]

    def list_jobs(self) -> list[str]:
        return [d.name for d in self.base_dir.iterdir() if (d / "job.json").exists()]

    def delete_job(self, job_id: str) -> None:
        job_dir = self._job_dir(job_id)
        if job_dir.exists():
            shutil.rmtree(job_dir, ignore_errors=True)
            logger.info("Deleted stored state for job %s", job_id)

    def _read_job(self, job_id: str) -> Job | None:
        path = self._job_dir(job_id) / "job.json"
        if not path.exists():
            return None
        return Job.model_validate_json(path.read_text())

    def _write_job(self, job: Job) -> None:
        path = self._job_dir(job.id) / "job.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, job.model_dump_json(indent=2))

    def _read_segment(self, job_id: str, index: int) -> Segment | None:
        path = self._segment_path(job_id, index)
        if not path.exists():
            return None
        return Segment.model_validate_json(path.read_text())

    def _write_segment(self, segment: Segment) -> None:
        path = self._segment_path(segment.job_id, segment.index)
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, segment.model_dump_json(indent=2))


def _atomic_write(path: Path, text: str) -> None:
    with tempfile.NamedTemporaryFile(
        "w", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    ) as tmp:
        tmp.write(text)
    os.replace(tmp.name, path)
