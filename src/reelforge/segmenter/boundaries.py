"""Fixed-duration segment boundary computation."""

import math

from reelforge.models.audio import SegmentBoundary
from reelforge.models.errors import InvalidInputError

# D / C is rounded to this many decimals before ceil() so 1.1 / 0.1 counts as 11.
_RATIO_DECIMALS = 9


def segment_count(total_duration: float, chunk_duration: float) -> int:
    """Number of chunks needed to cover ``total_duration``."""
    if total_duration <= 0:
        raise InvalidInputError(
            f"Audio duration must be positive, got {total_duration}",
            details={"duration": total_duration},
        )
    if chunk_duration <= 0:
        raise InvalidInputError(
            f"Segment duration must be positive, got {chunk_duration}",
            details={"segment_duration": chunk_duration},
        )
    return max(1, math.ceil(round(total_duration / chunk_duration, _RATIO_DECIMALS)))


def compute_boundaries(total_duration: float, chunk_duration: float) -> list[SegmentBoundary]:
    """Cut ``[0, total_duration)`` into contiguous chunks of ``chunk_duration``.

    Every chunk except the last is exactly ``chunk_duration`` long; the last
    one ends at ``total_duration`` and holds the remainder.
    """
    n = segment_count(total_duration, chunk_duration)
    boundaries = []
    for i in range(n):
        start = i * chunk_duration
        end = total_duration if i == n - 1 else (i + 1) * chunk_duration
        boundaries.append(SegmentBoundary(index=i, start_time=start, end_time=end))
    return boundaries


def boundaries_to_samples(
    boundaries: list[SegmentBoundary], sample_rate: int, total_samples: int
) -> list[tuple[int, int]]:
    """Map time boundaries to contiguous ``[start, end)`` sample ranges.

    Adjacent ranges share their edge, and the last range always ends at
    ``total_samples``, so no sample is dropped or duplicated.
    """
    edges = [0]
    for b in boundaries[:-1]:
        edges.append(min(total_samples, int(round(b.end_time * sample_rate))))
    edges.append(total_samples)
    return [(edges[i], edges[i + 1]) for i in range(len(boundaries))]
