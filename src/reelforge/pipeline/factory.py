"""Wiring of the production orchestrator."""

from reelforge.config import Settings, get_settings
from reelforge.pipeline.orchestrator import MusicVideoOrchestrator
from reelforge.prompting.source import OpenAIPromptSource
from reelforge.providers.syncso import SyncLipsyncProvider
from reelforge.providers.veo import VeoGenerationProvider
from reelforge.rendering.stitcher import Stitcher
from reelforge.storage.artifact_store import LocalArtifactStore
from reelforge.storage.job_store import JsonJobStore
from reelforge.storage.temp_store import TempFileManager


def build_orchestrator(settings: Settings | None = None) -> MusicVideoOrchestrator:
    """Orchestrator backed by JSON state files, Veo, Sync.so and FFmpeg."""
    settings = settings or get_settings()
    artifacts = LocalArtifactStore(settings.artifact_dir)
    return MusicVideoOrchestrator(
        store=JsonJobStore(settings.state_dir),
        generation_provider=VeoGenerationProvider(artifacts, settings=settings),
        lipsync_provider=SyncLipsyncProvider(settings=settings),
        prompt_source=OpenAIPromptSource(),
        artifact_store=artifacts,
        stitcher=Stitcher(TempFileManager(settings.temp_dir), artifacts=artifacts),
        settings=settings,
    )
