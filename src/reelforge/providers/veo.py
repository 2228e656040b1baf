"""Vertex AI Veo generation adapter."""

import base64
import json
import logging
import math
import re
from collections.abc import Callable
from typing import Any

import httpx
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from reelforge.config import Settings, get_settings
from reelforge.models.errors import ProviderFailureError, ProviderSubmissionError
from reelforge.models.provider import GenerationPoll
from reelforge.providers.base import GenerationProvider
from reelforge.storage.artifact_store import DurableStore

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

_OPERATION_RE = re.compile(
    r"projects/([^/]+)/locations/([^/]+)/publishers/google/models/([^/]+)/operations/([^/]+)"
)
_DATA_URI_RE = re.compile(r"^data:image/(\w+);base64,(.+)$", re.DOTALL)


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def service_account_token_provider(service_account_json: str) -> Callable[[], str]:
    """Return a callable yielding a fresh OAuth token for a service account."""
    info = json.loads(service_account_json)
    credentials = service_account.Credentials.from_service_account_info(
        info, scopes=[CLOUD_PLATFORM_SCOPE]
    )

    def _token() -> str:
        if not credentials.valid:
            credentials.refresh(Request())
        return credentials.token

    return _token


def build_image_instance(reference_image: str | None) -> dict[str, str] | None:
    """Map a reference image onto Veo's ``image`` instance field."""
    if not reference_image:
        return None
    match = _DATA_URI_RE.match(reference_image)
    if match:
        return {"bytesBase64Encoded": match.group(2), "mimeType": f"image/{match.group(1)}"}
    if reference_image.startswith("gs://"):
        return {"gcsUri": reference_image}
    logger.warning("Ignoring reference image that is neither a data URI nor a gs:// URI")
    return None


def parse_operation(data: dict[str, Any]) -> GenerationPoll:
    """Interpret a ``fetchPredictOperation`` response."""
    if data.get("done") is not True:
        return GenerationPoll(done=False)
    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return GenerationPoll(done=True, error=message or "Generation failed")

    result = data.get("response") or {}
    videos = result.get("videos") or []
    if videos and videos[0].get("bytesBase64Encoded"):
        return GenerationPoll(
            done=True,
            inline_artifact=base64.b64decode(videos[0]["bytesBase64Encoded"]),
            content_type=videos[0].get("mimeType", "video/mp4"),
        )
    if videos and videos[0].get("gcsUri"):
        return GenerationPoll(done=True, artifact_uri=videos[0]["gcsUri"])
    generated = result.get("generatedVideos") or []
    if generated and (generated[0].get("video") or {}).get("uri"):
        return GenerationPoll(done=True, artifact_uri=generated[0]["video"]["uri"])
    return GenerationPoll(done=True)


class VeoGenerationProvider(GenerationProvider):
    """Submits ``predictLongRunning`` operations and polls ``fetchPredictOperation``."""

    name = "veo"

    def __init__(
        self,
        store: DurableStore,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
        token_provider: Callable[[], str] | None = None,
    ):
        super().__init__(store)
        self.settings = settings or get_settings()
        self.client = client or httpx.Client(timeout=self.settings.provider_http_timeout)
        if token_provider is None and self.settings.vertex_service_account_json:
            token_provider = service_account_token_provider(
                self.settings.vertex_service_account_json
            )
        self.token_provider = token_provider
        self.project_id = self.settings.vertex_project_id
        if not self.project_id and self.settings.vertex_service_account_json:
            self.project_id = json.loads(self.settings.vertex_service_account_json).get(
                "project_id", ""
            )

    def _headers(self) -> dict[str, str]:
        if self.token_provider is None:
            raise ProviderSubmissionError(
                "Video generation service unavailable: no Vertex credentials configured",
                provider=self.name,
            )
        return {
            "Authorization": f"Bearer {self.token_provider()}",
            "Content-Type": "application/json",
        }

    def _model_url(self, project_id: str, location: str, model_id: str, method: str) -> str:
        return (
            f"https://{location}-aiplatform.googleapis.com/v1/projects/{project_id}"
            f"/locations/{location}/publishers/google/models/{model_id}:{method}"
        )

    def build_request(
        self,
        prompt: str,
        reference_image: str | None = None,
        duration_hint: float | None = None,
        aspect_ratio: str | None = None,
    ) -> dict[str, Any]:
        max_seconds = self.settings.vertex_max_clip_seconds
        seconds = min(max_seconds, duration_hint or max_seconds)
        instance: dict[str, Any] = {"prompt": prompt}
        image = build_image_instance(reference_image)
        if image:
            instance["image"] = image
        return {
            "instances": [instance],
            "parameters": {
                "aspectRatio": aspect_ratio or self.settings.default_aspect_ratio,
                "durationSeconds": max(1, math.ceil(seconds)),
                "sampleCount": 1,
                "personGeneration": "allow_all",
                "addWatermark": False,
                "generateAudio": False,
            },
        }

    def submit(
        self,
        prompt: str,
        reference_image: str | None = None,
        duration_hint: float | None = None,
        aspect_ratio: str | None = None,
    ) -> str:
        url = self._model_url(
            self.project_id,
            self.settings.vertex_location,
            self.settings.vertex_model_id,
            "predictLongRunning",
        )
        body = self.build_request(prompt, reference_image, duration_hint, aspect_ratio)
        try:
            r = self.client.post(url, headers=self._headers(), json=body)
        except httpx.HTTPError as e:
            raise ProviderSubmissionError(
                f"Veo submission transport error: {e}", provider=self.name, retryable=True
            ) from e

        if r.status_code >= 400:
            raise ProviderSubmissionError(
                f"Veo submission failed {r.status_code}: {r.text[:500]}",
                provider=self.name,
                retryable=_is_retryable_status(r.status_code),
            )
        operation = r.json().get("name")
        if not operation:
            raise ProviderSubmissionError(
                "Veo submission response has no operation name", provider=self.name
            )
        return operation

    def fetch_status(self, handle: str) -> GenerationPoll:
        match = _OPERATION_RE.search(handle)
        if not match:
            raise ProviderFailureError(
                "Invalid operation", provider=self.name, details={"handle": handle}
            )
        project_id, location, model_id, _ = match.groups()
        url = self._model_url(project_id, location, model_id, "fetchPredictOperation")
        try:
            r = self.client.post(url, headers=self._headers(), json={"operationName": handle})
        except httpx.HTTPError as e:
            raise ProviderFailureError(
                f"Veo status transport error: {e}", provider=self.name, retryable=True
            ) from e
        if r.status_code >= 400:
            raise ProviderFailureError(
                f"Veo status check failed {r.status_code}",
                provider=self.name,
                retryable=True,
            )
        return parse_operation(r.json())
