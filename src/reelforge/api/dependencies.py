"""Dependency injection providers for FastAPI."""

from functools import lru_cache

from reelforge.config import Settings, get_settings
from reelforge.pipeline.factory import build_orchestrator
from reelforge.pipeline.orchestrator import MusicVideoOrchestrator


@lru_cache
def get_orchestrator() -> MusicVideoOrchestrator:
    return build_orchestrator()


def get_app_settings() -> Settings:
    return get_settings()
