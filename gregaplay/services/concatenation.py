"""Concatenation Engine: joins staged clips into one video with FFmpeg.

The engine invokes FFmpeg's concat demuxer on the run's manifest and reports
the result as an ``EncodeOutcome`` value instead of raising, so callers branch
on data rather than on exceptions.

FFmpeg Operations:
    Safe concat demuxer (``-f concat -safe 0``) reading the manifest, then either
    - transcode (default): H.264 (libx264, preset fast, CRF 23) + AAC, robust
      when participants upload heterogeneous phone recordings
    - copy: stream copy, fast but only valid for homogeneous inputs

Outcome Rules:
    exit status 0              -> EncodeSuccess
    any other exit status      -> EncodeFailure(exit_code, diagnostics)
    killed after the timeout   -> EncodeFailure(exit_code=None, timed_out=True)

Diagnostics (stderr) are captured for logging only; they never drive control
flow. The engine runs the encoder exactly once per call.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from gregaplay.utils.logging import get_logger, truncate
from gregaplay.utils.process import ProcessResult, run_process

log = get_logger(__name__)

ProcessRunner = Callable[[list[str], float], Awaitable[ProcessResult]]

TRANSCODE_ARGS = [
    "-c:v", "libx264",
    "-preset", "fast",
    "-crf", "23",
    "-c:a", "aac",
    "-movflags", "+faststart",
]
COPY_ARGS = ["-c", "copy"]


@dataclass(frozen=True)
class EncodeSuccess:
    """Encoder exited 0.

    Attributes:
        output_path: Path of the produced video
        diagnostics: Captured encoder stderr
        duration_seconds: Time spent encoding
    """

    output_path: Path
    diagnostics: str
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class EncodeFailure:
    """Encoder exited non-zero or was killed on timeout."""

    exit_code: int | None
    diagnostics: str
    timed_out: bool = False


EncodeOutcome = EncodeSuccess | EncodeFailure


class ConcatenationEngine:
    """Runs FFmpeg's concat demuxer over a staged manifest.

    Attributes:
        ffmpeg_path: Encoder executable
        mode: "transcode" or "copy"
        timeout_seconds: Wall-clock limit for one invocation
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        mode: str = "transcode",
        timeout_seconds: float = 900,
        runner: ProcessRunner = run_process,
    ):
        if mode not in ("transcode", "copy"):
            raise ValueError(f"Unsupported encode mode: {mode}")
        self.ffmpeg_path = ffmpeg_path
        self.mode = mode
        self.timeout_seconds = timeout_seconds
        self._runner = runner

    def build_command(self, manifest_path: Path, output_path: Path) -> list[str]:
        """Build the FFmpeg argument vector for one concatenation."""
        codec_args = TRANSCODE_ARGS if self.mode == "transcode" else COPY_ARGS
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(manifest_path),
            *codec_args,
            str(output_path),
        ]

    async def concatenate(self, manifest_path: Path, output_path: Path) -> EncodeOutcome:
        """Concatenate the manifest's clips into ``output_path``.

        Args:
            manifest_path: Concat demuxer manifest written by the staging area
            output_path: Destination file inside the staging directory

        Returns:
            EncodeSuccess or EncodeFailure
        """
        command = self.build_command(manifest_path, output_path)
        log.info(
            "encoder_start",
            mode=self.mode,
            timeout_seconds=self.timeout_seconds,
        )

        result = await self._runner(command, self.timeout_seconds)

        if result.succeeded:
            log.info(
                "encoder_complete",
                mode=self.mode,
                duration_seconds=round(result.duration_seconds, 2),
            )
            return EncodeSuccess(
                output_path=output_path,
                diagnostics=result.stderr,
                duration_seconds=result.duration_seconds,
            )

        log.error(
            "encoder_failed",
            mode=self.mode,
            exit_code=result.returncode,
            timed_out=result.timed_out,
            diagnostics=truncate(result.stderr),
        )
        return EncodeFailure(
            exit_code=result.returncode,
            diagnostics=result.stderr,
            timed_out=result.timed_out,
        )

    async def check_available(self) -> bool:
        """Probe the encoder with ``-version``."""
        result = await self._runner([self.ffmpeg_path, "-version"], 10)
        if not result.succeeded:
            log.warning("ffmpeg_unavailable", ffmpeg_path=self.ffmpeg_path)
        return result.succeeded
