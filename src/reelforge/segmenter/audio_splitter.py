"""Audio segmentation using librosa."""

import io
import logging
from collections.abc import Callable
from pathlib import Path

import librosa
import numpy as np
import soundfile as sf

from reelforge.config import get_settings
from reelforge.models.audio import AudioSegment, SplitResult
from reelforge.models.errors import DecodeError
from reelforge.segmenter.boundaries import boundaries_to_samples, compute_boundaries

logger = logging.getLogger(__name__)

ENVELOPE_FLOOR = 0.01


class AudioSegmenter:
    """Cuts a song into fixed-duration segments with per-segment envelopes."""

    def __init__(
        self,
        segment_duration: float | None = None,
        envelope_points: int | None = None,
        sample_rate: int | None = None,
    ):
        settings = get_settings()
        self.segment_duration = segment_duration or settings.segment_duration
        self.envelope_points = envelope_points or settings.envelope_points
        # None keeps the file's native rate.
        self.sample_rate = sample_rate if sample_rate is not None else settings.sample_rate

    def split(
        self,
        source: Path | bytes,
        progress_callback: Callable[[float], None] | None = None,
    ) -> SplitResult:
        """Decode ``source`` and cut it into segments."""
        y, sr = self.decode(source)
        total_samples = y.shape[-1]
        total_duration = total_samples / sr

        boundaries = compute_boundaries(total_duration, self.segment_duration)
        ranges = boundaries_to_samples(boundaries, sr, total_samples)

        segments = []
        for boundary, (lo, hi) in zip(boundaries, ranges):
            chunk = y[..., lo:hi]
            segments.append(
                AudioSegment(
                    boundary=boundary,
                    envelope=self.extract_envelope(chunk),
                    sample_count=hi - lo,
                    audio_bytes=self.encode_wav(chunk, sr),
                )
            )
            if progress_callback:
                progress_callback((boundary.index + 1) / len(boundaries))

        logger.info(
            "Split %.2fs of audio into %d segments of %.2fs",
            total_duration,
            len(segments),
            self.segment_duration,
        )
        return SplitResult(
            segments=segments,
            total_duration=total_duration,
            sample_rate=sr,
            total_samples=total_samples,
            segment_duration=self.segment_duration,
        )

    def decode(self, source: Path | bytes) -> tuple[np.ndarray, int]:
        """Load audio as float samples, channels first when multichannel."""
        target = io.BytesIO(source) if isinstance(source, bytes) else str(source)
        try:
            y, sr = librosa.load(target, sr=self.sample_rate, mono=False)
        except Exception as e:
            raise DecodeError(
                f"Could not decode audio: {e}",
                details={"source": "<bytes>" if isinstance(source, bytes) else str(source)},
            ) from e
        if y.size == 0 or y.shape[-1] == 0:
            raise DecodeError("Decoded audio contains no samples")
        return y, int(sr)

    def extract_envelope(self, chunk: np.ndarray, points: int | None = None) -> list[float]:
        """Mean absolute amplitude per block, normalized to the chunk's own peak."""
        points = points or self.envelope_points
        mono = np.abs(chunk if chunk.ndim == 1 else chunk.mean(axis=0))
        blocks = np.array_split(mono, points)
        values = np.array([float(b.mean()) if b.size else 0.0 for b in blocks])
        peak = max(float(values.max()) if values.size else 0.0, ENVELOPE_FLOOR)
        return [round(min(1.0, float(v) / peak), 4) for v in values]

    def encode_wav(self, chunk: np.ndarray, sample_rate: int) -> bytes:
        """Encode a chunk as 16-bit PCM WAV."""
        buf = io.BytesIO()
        # soundfile wants (frames, channels)
        data = chunk if chunk.ndim == 1 else chunk.T
        sf.write(buf, data, sample_rate, format="WAV", subtype="PCM_16")
        return buf.getvalue()
