"""Durable storage for generated artifacts."""

import hashlib
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from reelforge.config import get_settings

logger = logging.getLogger(__name__)


class DurableStore(ABC):
    """Turns raw bytes into a stable, reusable reference."""

    @abstractmethod
    def persist_inline_artifact(self, data: bytes, content_type: str = "video/mp4") -> str:
        """Store ``data`` and return a stable reference to it."""
        ...


class LocalArtifactStore(DurableStore):
    """Content-addressed files under a local directory, returned as ``file://`` URIs."""

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or get_settings().artifact_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def persist_inline_artifact(self, data: bytes, content_type: str = "video/mp4") -> str:
        digest = hashlib.sha256(data).hexdigest()
        ext = mimetypes.guess_extension(content_type) or ".bin"
        path = self.base_dir / f"{digest}{ext}"
        if not path.exists():
            path.write_bytes(data)
            logger.info("Persisted %d byte artifact to %s", len(data), path)
        return path.resolve().as_uri()

    def resolve(self, reference: str) -> Path | None:
        """Existing local file behind a ``file://`` URI or plain path; None otherwise."""
        if reference.startswith("file://"):
            path = Path(url2pathname(urlparse(reference).path))
        elif "://" in reference:
            return None
        else:
            path = Path(reference)
        return path if path.is_file() else None
