"""Provider abstractions.

Both external providers are long-running operations with different status
shapes. Each adapter implements ``submit`` and ``fetch_status`` for its wire
format; the shared ``poll`` turns the raw status into a NormalizedResult so the
orchestrator never looks at provider-specific payloads.
"""

import logging
from abc import ABC, abstractmethod

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from reelforge.config import Settings
from reelforge.models.errors import ProviderError
from reelforge.models.provider import GenerationPoll, LipsyncPoll, LipsyncStatus, NormalizedResult
from reelforge.storage.artifact_store import DurableStore

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Errors worth another submission attempt."""
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


def build_submission_retrying(settings: Settings) -> Retrying:
    """Bounded exponential backoff for provider submissions."""
    return Retrying(
        reraise=True,
        stop=stop_after_attempt(max(1, settings.submission_max_attempts)),
        wait=wait_exponential(
            multiplier=settings.submission_backoff_seconds,
            min=settings.submission_backoff_seconds,
            max=settings.submission_backoff_max_seconds,
        ),
        retry=retry_if_exception(is_transient),
    )


class AsyncOperationProvider(ABC):
    """A provider whose work is an externally-running operation."""

    name: str = "provider"

    @abstractmethod
    def fetch_status(self, handle: str):
        """Query the provider for the raw status of ``handle``."""
        ...

    @abstractmethod
    def normalize(self, raw) -> NormalizedResult:
        """Map a raw status onto the normalized shape."""
        ...

    def poll(self, handle: str) -> NormalizedResult:
        try:
            raw = self.fetch_status(handle)
        except ProviderError as e:
            if e.retryable:
                logger.warning("[%s] Status check for %s failed: %s", self.name, handle, e.message)
                return NormalizedResult.pending(error=e.message)
            logger.error("[%s] Operation %s unusable: %s", self.name, handle, e.message)
            return NormalizedResult.failed(e.message)
        return self.normalize(raw)


class GenerationProvider(AsyncOperationProvider):
    """Text(+image)-to-video generation."""

    name = "generation"

    def __init__(self, store: DurableStore):
        self.store = store

    @abstractmethod
    def submit(
        self,
        prompt: str,
        reference_image: str | None = None,
        duration_hint: float | None = None,
        aspect_ratio: str | None = None,
    ) -> str:
        """Start a generation and return its operation handle."""
        ...

    @abstractmethod
    def fetch_status(self, handle: str) -> GenerationPoll: ...

    def normalize(self, raw: GenerationPoll) -> NormalizedResult:
        if not raw.done:
            return NormalizedResult.pending()
        if raw.error:
            return NormalizedResult.failed(raw.error)
        if raw.artifact_uri:
            return NormalizedResult.succeeded(raw.artifact_uri)
        if raw.inline_artifact:
            # Inline payloads are not reusable references until stored.
            reference = self.store.persist_inline_artifact(raw.inline_artifact, raw.content_type)
            return NormalizedResult.succeeded(reference)
        return NormalizedResult.failed("No video in response")


class LipsyncProvider(AsyncOperationProvider):
    """Re-synchronizes mouth movement in a clip to an audio slice."""

    name = "lipsync"

    @abstractmethod
    def submit(self, clip_reference: str, audio_reference: str) -> str:
        """Start a lipsync operation and return its handle."""
        ...

    @abstractmethod
    def fetch_status(self, handle: str) -> LipsyncPoll: ...

    def normalize(self, raw: LipsyncPoll) -> NormalizedResult:
        if raw.status.is_failure:
            return NormalizedResult.failed(raw.error or f"Lipsync {raw.status.value.lower()}")
        if raw.status == LipsyncStatus.COMPLETED:
            if raw.output_url:
                return NormalizedResult.succeeded(raw.output_url)
            return NormalizedResult.failed("Lipsync completed without an output URL")
        return NormalizedResult.pending()
