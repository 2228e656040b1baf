"""Stitch progress reporting."""

import re
from collections.abc import Callable

from reelforge.models.stitch import StitchProgress, StitchStage

# Percentage band covered by each stage.
STAGE_BANDS: dict[StitchStage, tuple[float, float]] = {
    StitchStage.LOADING: (0.0, 30.0),
    StitchStage.STITCHING: (30.0, 40.0),
    StitchStage.ENCODING: (40.0, 99.0),
    StitchStage.COMPLETE: (100.0, 100.0),
}


class FFmpegProgressMonitor:
    """Monitor FFmpeg rendering progress from stderr output."""

    def __init__(self, total_duration: float, callback: Callable[[float], None] | None = None):
        self.total_duration = total_duration
        self.callback = callback
        self.current_time = 0.0

    def parse_line(self, line: str) -> float | None:
        """Parse an FFmpeg stderr line for time= progress."""
        match = re.search(r"time=(\d+):(\d+):(\d+\.?\d*)", line)
        if not match:
            return None
        hours, minutes, seconds = int(match.group(1)), int(match.group(2)), float(match.group(3))
        self.current_time = hours * 3600 + minutes * 60 + seconds
        progress = self.progress
        if self.callback:
            self.callback(progress)
        return progress

    @property
    def progress(self) -> float:
        """Current progress as fraction [0, 1]."""
        if self.total_duration <= 0:
            return 0.0
        return min(1.0, self.current_time / self.total_duration)


class StitchProgressReporter:
    """Maps stage-local fractions onto one non-decreasing percentage."""

    def __init__(
        self,
        callback: Callable[[StitchProgress], None] | None = None,
        total_clips: int | None = None,
    ):
        self.callback = callback
        self.total_clips = total_clips
        self.percent = 0.0
        self.stage = StitchStage.LOADING

    def report(
        self, stage: StitchStage, fraction: float = 0.0, current_clip: int | None = None
    ) -> StitchProgress:
        low, high = STAGE_BANDS[stage]
        fraction = min(1.0, max(0.0, fraction))
        self.percent = max(self.percent, low + (high - low) * fraction)
        self.stage = stage
        update = StitchProgress(
            stage=stage,
            progress=round(self.percent, 2),
            current_clip=current_clip,
            total_clips=self.total_clips,
        )
        if self.callback:
            self.callback(update)
        return update

    def loading(self, clip_number: int) -> StitchProgress:
        total = self.total_clips or 1
        return self.report(StitchStage.LOADING, clip_number / total, current_clip=clip_number)

    def encoding(self, fraction: float) -> StitchProgress:
        return self.report(StitchStage.ENCODING, fraction)

    def complete(self) -> StitchProgress:
        return self.report(StitchStage.COMPLETE, 1.0)
