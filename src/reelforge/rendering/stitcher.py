"""Stitcher: concatenates finalized segment clips using FFmpeg."""

import json
import logging
import subprocess
from collections.abc import Callable
from pathlib import Path
from urllib.parse import urlparse

import cv2
import httpx

from reelforge.config import get_settings
from reelforge.models.errors import ClipLoadError, EmptyInputError, RenderingError
from reelforge.models.stitch import (
    ClipInfo,
    StitchEntry,
    StitchPlan,
    StitchProgress,
    StitchResult,
    StitchStage,
)
from reelforge.rendering.ffmpeg_builder import FFmpegFilterGraphBuilder
from reelforge.rendering.progress import FFmpegProgressMonitor, StitchProgressReporter
from reelforge.storage.artifact_store import LocalArtifactStore
from reelforge.storage.temp_store import TempFileManager

logger = logging.getLogger(__name__)


def probe_clip(index: int, path: Path) -> ClipInfo:
    """Read clip metadata with OpenCV."""
    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise ClipLoadError(f"Cannot open clip for segment {index}", index=index)
    try:
        fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    finally:
        cap.release()

    duration = frame_count / fps if fps > 0 else 0.0
    if duration <= 0 or width <= 0 or height <= 0:
        raise ClipLoadError(
            f"Clip for segment {index} has no video frames",
            index=index,
            details={"path": str(path)},
        )
    return ClipInfo(
        index=index, path=str(path), duration=duration, width=width, height=height, fps=fps
    )


class Stitcher:
    """Composites the clips of a stitch plan, in index order, into one video."""

    def __init__(
        self,
        temp_store: TempFileManager | None = None,
        client: httpx.Client | None = None,
        artifacts: LocalArtifactStore | None = None,
    ):
        self.settings = get_settings()
        self.builder = FFmpegFilterGraphBuilder()
        self.temp_store = temp_store or TempFileManager()
        self.artifacts = artifacts or LocalArtifactStore()
        self.client = client or httpx.Client(
            timeout=self.settings.provider_http_timeout, follow_redirects=True
        )

    def stitch(
        self,
        plan: StitchPlan,
        output_path: Path,
        progress_callback: Callable[[StitchProgress], None] | None = None,
        audio_path: Path | None = None,
    ) -> StitchResult:
        """Load every clip, then render them back-to-back.

        The plan's source audio becomes the soundtrack unless ``audio_path``
        overrides it. Nothing is written to ``output_path`` unless every clip
        loads.
        """
        if not plan.entries:
            raise EmptyInputError()

        reporter = StitchProgressReporter(progress_callback, total_clips=len(plan.entries))
        reporter.report(StitchStage.LOADING)
        try:
            clips = []
            for n, entry in enumerate(plan.entries, start=1):
                path = self.fetch_clip(plan.job_id, entry)
                clips.append(probe_clip(entry.index, path))
                reporter.loading(n)
                logger.info(
                    f"[Job {plan.job_id}] Loaded clip {entry.index} ({clips[-1].duration:.2f}s)"
                )

            soundtrack = audio_path or self.fetch_soundtrack(plan)
            reporter.report(StitchStage.STITCHING)
            result = self.render(clips, plan, output_path, reporter, soundtrack)
        finally:
            self.temp_store.cleanup_job(plan.job_id)

        reporter.complete()
        return result

    def fetch_clip(self, job_id: str, entry: StitchEntry) -> Path:
        """Local path of an entry's clip, downloading remote references."""
        reference = entry.final_output
        if reference.startswith(("http://", "https://")):
            target = self.temp_store.clip_path(job_id, entry.index)
            try:
                self.download(reference, target)
            except httpx.HTTPError as e:
                raise ClipLoadError(
                    f"Failed to download clip for segment {entry.index}: {e}",
                    index=entry.index,
                    details={"reference": reference},
                ) from e
            return target

        path = self.artifacts.resolve(reference)
        if path is None:
            raise ClipLoadError(
                f"Clip for segment {entry.index} not found",
                index=entry.index,
                details={"reference": reference},
            )
        return path

    def fetch_soundtrack(self, plan: StitchPlan) -> Path | None:
        """Local copy of the plan's source audio, if it names one."""
        reference = plan.audio_reference
        if not reference:
            return None
        if reference.startswith(("http://", "https://")):
            suffix = Path(urlparse(reference).path).suffix or ".audio"
            target = self.temp_store.soundtrack_path(plan.job_id, suffix)
            try:
                self.download(reference, target)
            except httpx.HTTPError as e:
                raise RenderingError(
                    f"Failed to download soundtrack: {e}", details={"reference": reference}
                ) from e
            return target

        path = self.artifacts.resolve(reference)
        if path is None:
            raise RenderingError("Soundtrack not found", details={"reference": reference})
        return path

    def download(self, url: str, target: Path) -> None:
        with self.client.stream("GET", url) as response:
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)

    def render(
        self,
        clips: list[ClipInfo],
        plan: StitchPlan,
        output_path: Path,
        reporter: StitchProgressReporter,
        audio_path: Path | None = None,
    ) -> StitchResult:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        clip_duration = sum(c.duration for c in clips)
        cmd = self.build_ffmpeg_command(clips, output_path, audio_path)
        monitor = FFmpegProgressMonitor(clip_duration, reporter.encoding)

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
            stderr_lines = []
            for line in process.stderr:
                stderr_lines.append(line)
                monitor.parse_line(line)
            process.wait()
        except FileNotFoundError:
            raise RenderingError(
                "FFmpeg not found. Please install FFmpeg.",
                details={"command": "ffmpeg"},
            )

        if process.returncode != 0:
            debug_path = output_path.parent / f"{plan.job_id}_ffmpeg_debug.txt"
            debug_path.write_text(
                "COMMAND:\n" + " ".join(cmd) + "\n\nSTDERR:\n" + "".join(stderr_lines)
            )
            output_path.unlink(missing_ok=True)
            logger.error("FFmpeg failed (code %d). Debug at: %s", process.returncode, debug_path)
            raise RenderingError(
                f"FFmpeg exited with code {process.returncode}",
                details={"stderr": "".join(stderr_lines[-30:]), "debug_file": str(debug_path)},
            )

        return self.validate_output(output_path, clips, plan)

    def build_ffmpeg_command(
        self,
        clips: list[ClipInfo],
        output_path: Path,
        audio_path: Path | None = None,
    ) -> list[str]:
        """Build the complete FFmpeg command; the first clip sets the frame size."""
        first = clips[0]
        input_args, filter_complex = self.builder.build_filter_graph(
            clips,
            target_width=first.width,
            target_height=first.height,
            target_fps=self.settings.output_fps,
        )

        cmd = ["ffmpeg", "-y"]
        cmd.extend(input_args)
        if audio_path is not None:
            audio_idx = len(clips)
            audio_filter = self.builder.build_audio_filter(
                sum(c.duration for c in clips), fade_out=self.settings.audio_fade_out_seconds
            )
            cmd.extend(["-i", str(audio_path)])
            cmd.extend(["-filter_complex", f"{filter_complex};\n[{audio_idx}:a]{audio_filter}[outa]"])
            cmd.extend(["-map", "[outv]", "-map", "[outa]", "-c:a", self.settings.output_audio_codec])
        else:
            cmd.extend(["-filter_complex", filter_complex, "-map", "[outv]", "-an"])

        cmd.extend(
            [
                "-c:v",
                self.settings.output_video_codec,
                "-crf",
                str(self.settings.output_crf),
                "-preset",
                self.settings.output_preset,
                "-pix_fmt",
                "yuv420p",
                str(output_path),
            ]
        )
        return cmd

    def validate_output(
        self, output_path: Path, clips: list[ClipInfo], plan: StitchPlan
    ) -> StitchResult:
        """Probe the output and check it lasts as long as its clips."""
        if not output_path.exists():
            raise RenderingError("Output file was not created")

        try:
            result = subprocess.run(
                [
                    "ffprobe",
                    "-v",
                    "quiet",
                    "-print_format",
                    "json",
                    "-show_format",
                    "-show_streams",
                    str(output_path),
                ],
                capture_output=True,
                text=True,
                timeout=30,
            )
            probe = json.loads(result.stdout)
        except Exception as e:
            raise RenderingError(
                f"Failed to validate output: {e}",
                details={"output": str(output_path)},
            )

        duration = float(probe.get("format", {}).get("duration", 0))
        file_size = int(probe.get("format", {}).get("size", 0))
        width, height, fps = clips[0].width, clips[0].height, self.settings.output_fps
        for stream in probe.get("streams", []):
            if stream.get("codec_type") == "video":
                width = int(stream.get("width", width))
                height = int(stream.get("height", height))
                r_fps = str(stream.get("r_frame_rate", ""))
                if "/" in r_fps:
                    num, den = r_fps.split("/")
                    if int(den) > 0:
                        fps = int(num) / int(den)

        # One frame of rounding per clip.
        expected = sum(c.duration for c in clips)
        tolerance = len(clips) / self.settings.output_fps + 0.05
        if abs(duration - expected) > tolerance:
            output_path.unlink(missing_ok=True)
            raise RenderingError(
                f"Output lasts {duration:.3f}s but its clips sum to {expected:.3f}s",
                details={"duration": duration, "expected": expected, "tolerance": tolerance},
            )

        drift = duration - plan.expected_duration
        if abs(drift) > tolerance:
            logger.warning(
                f"[Job {plan.job_id}] Output lasts {duration:.3f}s, "
                f"segments span {plan.expected_duration:.3f}s (drift {drift:+.3f}s)"
            )

        return StitchResult(
            output_path=str(output_path),
            duration=duration,
            expected_duration=plan.expected_duration,
            duration_drift=drift,
            entries=plan.entries,
            file_size_bytes=file_size,
            width=width,
            height=height,
            fps=fps,
        )
