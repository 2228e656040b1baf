"""Application configuration using Pydantic BaseSettings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """reelforge configuration loaded from environment variables."""

    model_config = {"env_prefix": "REELFORGE_", "env_file": ".env", "extra": "ignore"}

    # Segmentation
    segment_duration: float = 8.0
    envelope_points: int = 100
    sample_rate: int | None = None

    # Orchestration
    submission_delay_seconds: float = 2.0
    default_prompt: str = "Cinematic music video scene"
    default_aspect_ratio: str = "9:16"
    max_generation_attempts: int = 3

    # Provider submissions
    submission_max_attempts: int = 3
    submission_backoff_seconds: float = 1.0
    submission_backoff_max_seconds: float = 8.0

    # Polling
    generation_poll_interval: float = 10.0
    generation_max_polls: int = 90
    generation_timeout_seconds: float = 900.0
    lipsync_poll_interval: float = 10.0
    lipsync_max_polls: int = 90
    lipsync_timeout_seconds: float = 900.0
    poll_workers: int = 8

    # Vertex AI (Veo)
    vertex_project_id: str = ""
    vertex_location: str = "us-central1"
    vertex_model_id: str = "veo-3.1-generate-001"
    vertex_service_account_json: str = ""
    vertex_max_clip_seconds: float = 8.0

    # Sync.so
    sync_api_key: str = ""
    sync_base_url: str = "https://api.sync.so"
    sync_model: str = "lipsync-1.9.0-beta"

    provider_http_timeout: float = 60.0

    # LLM prompt source
    openai_api_key: str = ""
    openai_model: str = "gpt-4"

    # Redis / Celery
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"

    # Directories
    state_dir: Path = Path("/tmp/reelforge/state")
    artifact_dir: Path = Path("/tmp/reelforge/artifacts")
    temp_dir: Path = Path("/tmp/reelforge/temp")
    output_dir: Path = Path("/tmp/reelforge/output")
    temp_file_ttl_seconds: int = 3600

    # Rendering
    output_video_codec: str = "libx264"
    output_audio_codec: str = "aac"
    output_format: str = "mp4"
    output_crf: int = 23
    output_preset: str = "medium"
    output_fps: float = 30.0
    audio_fade_out_seconds: float = 0.0
    fallback_width: int = 1280
    fallback_height: int = 720


def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
