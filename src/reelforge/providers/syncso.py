"""Sync.so lipsync adapter."""

import logging
from typing import Any

import httpx

from reelforge.config import Settings, get_settings
from reelforge.models.errors import ProviderFailureError, ProviderSubmissionError
from reelforge.models.provider import LipsyncPoll, LipsyncStatus
from reelforge.providers.base import LipsyncProvider

logger = logging.getLogger(__name__)


def _normalize_status(raw_status: Any) -> LipsyncStatus:
    s = str(raw_status or "").strip().upper()
    try:
        return LipsyncStatus(s)
    except ValueError:
        return LipsyncStatus.PROCESSING


class SyncLipsyncProvider(LipsyncProvider):
    """Submits to ``/v2/generate`` and polls ``/v2/generate/{id}``."""

    name = "syncso"

    def __init__(self, settings: Settings | None = None, client: httpx.Client | None = None):
        self.settings = settings or get_settings()
        self.base = self.settings.sync_base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=self.settings.provider_http_timeout)

    @property
    def configured(self) -> bool:
        return bool(self.settings.sync_api_key)

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.settings.sync_api_key, "Content-Type": "application/json"}

    def submit(self, clip_reference: str, audio_reference: str) -> str:
        if not self.configured:
            raise ProviderSubmissionError("SYNC API key not configured", provider=self.name)
        body = {
            "model": self.settings.sync_model,
            "input": [
                {"type": "video", "url": clip_reference},
                {"type": "audio", "url": audio_reference},
            ],
        }
        try:
            r = self.client.post(f"{self.base}/v2/generate", headers=self._headers(), json=body)
        except httpx.HTTPError as e:
            raise ProviderSubmissionError(
                f"Lipsync submission transport error: {e}", provider=self.name, retryable=True
            ) from e
        if r.status_code >= 400:
            raise ProviderSubmissionError(
                f"Lipsync submission failed {r.status_code}: {r.text[:500]}",
                provider=self.name,
                retryable=r.status_code == 429 or r.status_code >= 500,
            )
        job_id = r.json().get("id")
        if not job_id:
            raise ProviderSubmissionError("Lipsync response has no job id", provider=self.name)
        return str(job_id)

    def fetch_status(self, handle: str) -> LipsyncPoll:
        try:
            r = self.client.get(f"{self.base}/v2/generate/{handle}", headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderFailureError(
                f"Lipsync status transport error: {e}", provider=self.name, retryable=True
            ) from e
        if r.status_code >= 400:
            raise ProviderFailureError(
                f"Lipsync status check failed {r.status_code}",
                provider=self.name,
                retryable=True,
            )
        data = r.json()
        error = data.get("error")
        return LipsyncPoll(
            status=_normalize_status(data.get("status")),
            output_url=data.get("outputUrl"),
            error=str(error) if error else None,
        )
