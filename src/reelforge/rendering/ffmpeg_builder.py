"""FFmpeg filter graph construction."""

from reelforge.models.stitch import ClipInfo


class FFmpegFilterGraphBuilder:
    """Builds FFmpeg filter graphs for back-to-back clip concatenation."""

    def build_filter_graph(
        self,
        clips: list[ClipInfo],
        target_width: int,
        target_height: int,
        target_fps: float = 30.0,
    ) -> tuple[list[str], str]:
        """Build a scale+pad+concat chain, one input per clip.

        Returns:
            Tuple of (input_args, filter_complex string)
        """
        if not clips:
            return [], ""

        input_args = []
        filter_parts = []
        concat_inputs = []

        for i, clip in enumerate(clips):
            input_args.extend(["-i", clip.path])

            # Letterbox to the first clip's frame, keeping each clip's own length
            vid_label = f"v{i}"
            filter_parts.append(
                f"[{i}:v]setpts=PTS-STARTPTS,"
                f"scale={target_width}:{target_height}:force_original_aspect_ratio=decrease,"
                f"pad={target_width}:{target_height}:(ow-iw)/2:(oh-ih)/2,"
                f"setsar=1,"
                f"fps={target_fps}"
                f"[{vid_label}]"
            )
            concat_inputs.append(f"[{vid_label}]")

        n = len(clips)
        filter_parts.append("".join(concat_inputs) + f"concat=n={n}:v=1:a=0[outv]")
        return input_args, ";\n".join(filter_parts)

    def build_audio_filter(self, trim_end: float, fade_out: float = 0.0) -> str:
        """Cut the soundtrack to the video length."""
        parts = []
        if trim_end > 0:
            parts.append(f"atrim=start=0:end={trim_end:.4f}")
            parts.append("asetpts=PTS-STARTPTS")
        if fade_out > 0:
            parts.append(f"afade=t=out:st={max(0, trim_end - fade_out):.2f}:d={fade_out:.2f}")
        return ",".join(parts)
