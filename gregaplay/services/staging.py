"""Staging Area Manager for per-run clip materialization.

Each processing run owns one uniquely named temporary directory. Clips are
downloaded into it, the concat manifest is written next to them, and the
encoder writes its output there. The directory is removed when the run ends,
whatever the outcome.

Directory Layout:
    {staging_root}/event_{eventId}_{random}/
    ├── 0000_{basename}      # clip 1 (earliest submission)
    ├── 0001_{basename}      # clip 2
    ├── ...
    ├── manifest.txt         # concat demuxer input, one `file '...'` per line
    └── final.mp4            # encoder output

Naming Rules:
    - The random suffix keeps concurrent runs and retries of one event apart,
      so a retry never sees partial files from a failed attempt.
    - Every staged file is prefixed with its ordinal index, so two clips that
      share a basename never overwrite each other and the directory listing
      order matches submission order.

Usage:
    async with StagingArea(event_id, settings.staging_root) as staging:
        staged = await staging.stage_clips(gateway, clips, concurrency=4)
        manifest = staging.write_manifest(staged)
        ...
"""

import asyncio
import re
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

from gregaplay.exceptions import DownloadError
from gregaplay.models import ClipRecord
from gregaplay.services.clip_gateway import ClipGateway
from gregaplay.utils.logging import get_logger

log = get_logger(__name__)

MANIFEST_FILENAME = "manifest.txt"
OUTPUT_FILENAME = "final.mp4"

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def _safe_component(value: str, pattern: re.Pattern[str], fallback: str, limit: int) -> str:
    cleaned = pattern.sub("_", value)[:limit].strip("._")
    return cleaned or fallback


def staged_filename(index: int, clip: ClipRecord) -> str:
    """Local filename for the clip at ``index`` in submission order.

    Example:
        >>> staged_filename(0, clip)  # clip.storage_path == "videos/E1/u1_17.mp4"
        '0000_u1_17.mp4'
    """
    basename = _safe_component(clip.basename, _UNSAFE_NAME_CHARS, "clip", limit=120)
    return f"{index:04d}_{basename}"


def escape_manifest_path(path: Path) -> str:
    """Quote a path for the concat demuxer: 'it'\\''s' style single-quote escaping."""
    return "'" + str(path).replace("'", "'\\''") + "'"


@dataclass(frozen=True)
class StagedClip:
    """A clip materialized on local disk.

    Attributes:
        index: Position in submission order (0-based)
        clip: Source clip record
        local_path: Absolute path of the staged file
        size_bytes: Bytes written
    """

    index: int
    clip: ClipRecord
    local_path: Path
    size_bytes: int


class StagingArea:
    """Exclusive, self-cleaning working directory for one processing run.

    Attributes:
        event_id: Event being processed
        run_id: Unique identifier of this run
        root: Parent directory for staging directories
        path: Staging directory (None until entered)
    """

    def __init__(self, event_id: str, root: Path, run_id: str | None = None):
        self.event_id = event_id
        self.run_id = run_id or uuid.uuid4().hex
        self.root = root
        self.path: Path | None = None

    async def __aenter__(self) -> "StagingArea":
        self.create()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await asyncio.to_thread(self.release)

    def create(self) -> Path:
        """Create the uniquely named staging directory."""
        self.root.mkdir(parents=True, exist_ok=True)
        prefix = f"event_{_safe_component(self.event_id, _UNSAFE_ID_CHARS, 'unknown', 64)}_"
        self.path = Path(tempfile.mkdtemp(prefix=prefix, dir=self.root)).resolve()
        log.info("staging_created", event_id=self.event_id, run_id=self.run_id, path=str(self.path))
        return self.path

    def release(self) -> None:
        """Remove the staging directory and everything in it."""
        if self.path is None:
            return
        path, self.path = self.path, None
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            log.error("staging_release_incomplete", event_id=self.event_id, path=str(path))
        else:
            log.info("staging_released", event_id=self.event_id, run_id=self.run_id)

    def _require_path(self) -> Path:
        if self.path is None:
            raise RuntimeError("Staging area is not active")
        return self.path

    @property
    def manifest_path(self) -> Path:
        return self._require_path() / MANIFEST_FILENAME

    @property
    def output_path(self) -> Path:
        return self._require_path() / OUTPUT_FILENAME

    async def _stage_one(
        self,
        gateway: ClipGateway,
        index: int,
        clip: ClipRecord,
        semaphore: asyncio.Semaphore,
    ) -> StagedClip:
        async with semaphore:
            data = await gateway.download_clip(clip.storage_path)
            if not data:
                raise DownloadError(clip.storage_path, "empty object")
            local_path = self._require_path() / staged_filename(index, clip)
            await asyncio.to_thread(local_path.write_bytes, data)
            log.debug(
                "clip_staged",
                event_id=self.event_id,
                index=index,
                locator=clip.storage_path,
                size_bytes=len(data),
            )
            return StagedClip(index=index, clip=clip, local_path=local_path, size_bytes=len(data))

    async def stage_clips(
        self,
        gateway: ClipGateway,
        clips: list[ClipRecord],
        concurrency: int = 4,
    ) -> list[StagedClip]:
        """Download every clip into the staging directory.

        Downloads run with bounded concurrency; the returned list is always in
        the order of ``clips`` regardless of completion order. The first
        failure cancels outstanding downloads and is re-raised (all-or-nothing).

        Args:
            gateway: Source of clip bytes
            clips: Clips in submission order
            concurrency: Maximum simultaneous downloads

        Returns:
            StagedClip list aligned with ``clips``

        Raises:
            DownloadError: If any clip cannot be fetched
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        tasks = [
            asyncio.create_task(self._stage_one(gateway, index, clip, semaphore))
            for index, clip in enumerate(clips)
        ]
        try:
            staged = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        log.info(
            "clips_staged",
            event_id=self.event_id,
            run_id=self.run_id,
            clip_count=len(staged),
            total_bytes=sum(item.size_bytes for item in staged),
        )
        return sorted(staged, key=lambda item: item.index)

    def write_manifest(self, staged: list[StagedClip]) -> Path:
        """Write the concat demuxer manifest in submission order.

        Returns:
            Path of the manifest file
        """
        lines = [
            f"file {escape_manifest_path(item.local_path.resolve())}"
            for item in sorted(staged, key=lambda item: item.index)
        ]
        manifest = self.manifest_path
        manifest.write_text("\n".join(lines) + "\n", encoding="utf-8")
        log.debug("manifest_written", event_id=self.event_id, entries=len(lines))
        return manifest
