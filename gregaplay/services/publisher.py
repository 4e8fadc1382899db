"""Publish & Finalize: move the artifact to durable storage and record it.

Publishing uploads the encoder output to ``final_videos/{eventId}.mp4`` with
overwrite semantics, so re-running an event replaces the previous artifact
instead of leaving orphans. Finalizing writes ``final_video_url`` and
``status = done`` in one update.

If finalize fails after a successful upload, the artifact is live but the
event is not done. That case is raised as ``PersistenceError`` with
``artifact_published=True`` and logged under its own event name, because a
plain re-run is enough to repair it.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path

from gregaplay.exceptions import PersistenceError, UploadError
from gregaplay.models import EventStatus
from gregaplay.services.clip_gateway import (
    ARTIFACT_CONTENT_TYPE,
    ClipGateway,
    artifact_path,
)
from gregaplay.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class PublishedArtifact:
    """A final video stored at its durable per-event path."""

    path: str
    public_url: str
    size_bytes: int


class ArtifactPublisher:
    def __init__(self, gateway: ClipGateway):
        self.gateway = gateway

    async def publish(self, event_id: str, output_path: Path) -> PublishedArtifact:
        """Upload the encoder output and resolve its public URL.

        Raises:
            UploadError: If the output cannot be read or the upload fails
        """
        storage_path = artifact_path(event_id)
        try:
            data = await asyncio.to_thread(output_path.read_bytes)
        except OSError as e:
            raise UploadError(storage_path, f"artifact unreadable: {type(e).__name__}") from e

        await self.gateway.upload_artifact(storage_path, data, ARTIFACT_CONTENT_TYPE)
        public_url = self.gateway.get_public_reference(storage_path)

        log.info(
            "artifact_published",
            event_id=event_id,
            storage_path=storage_path,
            size_mb=round(len(data) / (1024 * 1024), 2),
        )
        return PublishedArtifact(path=storage_path, public_url=public_url, size_bytes=len(data))

    async def finalize(self, event_id: str, artifact: PublishedArtifact) -> None:
        """Record the artifact URL and mark the event done.

        Raises:
            PersistenceError: With ``artifact_published=True`` when the update fails
        """
        try:
            await self.gateway.update_event_fields(
                event_id,
                {"final_video_url": artifact.public_url, "status": EventStatus.DONE},
            )
        except PersistenceError as e:
            log.error(
                "event_finalize_failed_after_publish",
                event_id=event_id,
                storage_path=artifact.path,
                error=e.cause,
                retryable=True,
            )
            raise PersistenceError("finalize", e.cause, artifact_published=True) from e

        log.info("event_finalized", event_id=event_id, status=EventStatus.DONE.value)
