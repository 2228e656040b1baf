"""Shared test fixtures, fake providers and test media generators."""

import hashlib
import math
import struct
import threading
import wave
from pathlib import Path

import pytest

from reelforge.config import Settings
from reelforge.models.audio import SegmentBoundary
from reelforge.models.errors import ProviderSubmissionError
from reelforge.models.preferences import StyleMetadata
from reelforge.models.provider import GenerationPoll, LipsyncPoll, LipsyncStatus
from reelforge.pipeline.orchestrator import MusicVideoOrchestrator
from reelforge.prompting.source import PromptSource
from reelforge.providers.base import GenerationProvider, LipsyncProvider
from reelforge.storage.artifact_store import DurableStore
from reelforge.storage.job_store import InMemoryJobStore


class MemoryArtifactStore(DurableStore):
    """Keeps persisted artifacts in a dict."""

    def __init__(self):
        self.artifacts: dict[str, bytes] = {}

    def persist_inline_artifact(self, data: bytes, content_type: str = "video/mp4") -> str:
        reference = f"memory://{hashlib.sha256(data).hexdigest()[:16]}"
        self.artifacts[reference] = data
        return reference


class FakeGenerationProvider(GenerationProvider):
    """Hands out ``gen-<n>`` handles in submission order.

    Every handle completes with ``https://clips.example/<handle>.mp4`` after
    ``pending_polls`` pending polls unless listed in ``pending`` (never
    completes) or ``errors`` (completes with that error).
    """

    name = "fake-generation"

    def __init__(self, store: DurableStore | None = None, pending_polls: int = 0):
        super().__init__(store or MemoryArtifactStore())
        self.submissions: list[dict] = []
        self.fail_on: set[int] = set()
        self.transient_failures = 0
        self.pending: set[str] = set()
        self.errors: dict[str, str] = {}
        self.pending_polls = pending_polls
        self.poll_counts: dict[str, int] = {}

    def submit(self, prompt, reference_image=None, duration_hint=None, aspect_ratio=None):
        if self.transient_failures:
            self.transient_failures -= 1
            raise ProviderSubmissionError("rate limited", provider=self.name, retryable=True)
        n = len(self.submissions)
        self.submissions.append(
            {
                "prompt": prompt,
                "reference_image": reference_image,
                "duration_hint": duration_hint,
                "aspect_ratio": aspect_ratio,
            }
        )
        if n in self.fail_on:
            raise ProviderSubmissionError("quota exceeded", provider=self.name)
        return f"gen-{n}"

    def fetch_status(self, handle):
        self.poll_counts[handle] = self.poll_counts.get(handle, 0) + 1
        if handle in self.pending or self.poll_counts[handle] <= self.pending_polls:
            return GenerationPoll(done=False)
        if handle in self.errors:
            return GenerationPoll(done=True, error=self.errors[handle])
        return GenerationPoll(done=True, artifact_uri=f"https://clips.example/{handle}.mp4")


class FakeLipsyncProvider(LipsyncProvider):
    """Hands out ``sync-<n>`` handles; completes immediately unless overridden."""

    name = "fake-lipsync"

    def __init__(self):
        self.submissions: list[tuple[str, str]] = []
        self.statuses: dict[str, LipsyncPoll] = {}
        self.fail_submit = False
        self.configured = True
        self._lock = threading.Lock()

    def submit(self, clip_reference, audio_reference):
        if self.fail_submit:
            raise ProviderSubmissionError("lipsync unavailable", provider=self.name)
        with self._lock:
            self.submissions.append((clip_reference, audio_reference))
            return f"sync-{len(self.submissions) - 1}"

    def fetch_status(self, handle):
        if handle in self.statuses:
            return self.statuses[handle]
        return LipsyncPoll(
            status=LipsyncStatus.COMPLETED, output_url=f"https://sync.example/{handle}.mp4"
        )


class RecordingPromptSource(PromptSource):
    def __init__(self):
        self.calls: list[list[int]] = []

    def generate(self, boundaries: list[SegmentBoundary], style: StyleMetadata) -> list[str]:
        self.calls.append([b.index for b in boundaries])
        n = len(self.calls)
        return [f"scene {b.index} take {n}" for b in boundaries]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        submission_delay_seconds=0.5,
        submission_backoff_seconds=0.1,
        generation_poll_interval=0.0,
        lipsync_poll_interval=0.0,
        state_dir=tmp_path / "state",
        artifact_dir=tmp_path / "artifacts",
        temp_dir=tmp_path / "temp",
        output_dir=tmp_path / "output",
    )


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def artifact_store():
    return MemoryArtifactStore()


@pytest.fixture
def generation(artifact_store):
    return FakeGenerationProvider(artifact_store)


@pytest.fixture
def lipsync():
    return FakeLipsyncProvider()


@pytest.fixture
def prompt_source():
    return RecordingPromptSource()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def orchestrator(store, generation, lipsync, prompt_source, artifact_store, settings, sleeps):
    return MusicVideoOrchestrator(
        store=store,
        generation_provider=generation,
        lipsync_provider=lipsync,
        prompt_source=prompt_source,
        artifact_store=artifact_store,
        settings=settings,
        sleep=sleeps.append,
    )


def generate_test_wav(
    path: Path, duration: float = 1.0, sample_rate: int = 22050, freq: float = 440.0
) -> Path:
    """Generate a simple test WAV file with a sine wave."""
    n_samples = int(duration * sample_rate)
    with wave.open(str(path), "w") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        for i in range(n_samples):
            t = i / sample_rate
            sample = int(32767 * 0.5 * math.sin(2 * math.pi * freq * t))
            wav.writeframes(struct.pack("<h", sample))
    return path


def generate_silent_wav(path: Path, duration: float = 1.0, sample_rate: int = 22050) -> Path:
    """Generate a silent WAV file."""
    n_samples = int(duration * sample_rate)
    with wave.open(str(path), "w") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(b"\x00\x00" * n_samples)
    return path
