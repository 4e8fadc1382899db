"""Pipeline Orchestrator: runs one event's video assembly end to end.

This module sequences the gateway, staging area, concatenation engine and
publisher for a single event, and is the only place that reacts to failures.

Pipeline Flow (Happy Path):
    IDLE → FETCHING → STAGING → ENCODING → PUBLISHING → DONE
    Any step failing moves the run to FAILED.

Run Protocol:
    1. Validate the event id, read the event, refuse if already processing
    2. FETCHING: snapshot the clip list (zero clips → NoClipsError, no state change)
       and, when required, refuse clips that are not validated
    3. Claim: compare-and-set status {observed} → processing; a lost race is a 409
    4. STAGING: download every clip into a fresh staging directory, write manifest
    5. ENCODING: one encoder invocation; EncodeFailure becomes EncodingError
    6. PUBLISHING: upload to final_videos/{eventId}.mp4 (overwrite), then
       set final_video_url + status=done
    7. Staging directory released on every exit path

Failure Handling:
    - No step is retried here; a retry is a caller-initiated re-run
    - On failure after the claim, status is restored to the value observed at
      claim time (ready/open, or done for a re-run)
    - A failing rollback is logged as event_rollback_failed and never masks the
      original error

Usage:
    pipeline = build_pipeline(settings, gateway)
    result = await pipeline.run("E1")
    print(result.final_video_url)
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import structlog

from gregaplay.config import Settings
from gregaplay.exceptions import (
    EncodingError,
    EventAlreadyProcessingError,
    MissingEventIdError,
    PersistenceError,
    PipelineError,
    UnvalidatedClipsError,
)
from gregaplay.models import EventStatus
from gregaplay.services.clip_gateway import ClipGateway
from gregaplay.services.concatenation import ConcatenationEngine, EncodeFailure
from gregaplay.services.publisher import ArtifactPublisher
from gregaplay.services.staging import StagingArea
from gregaplay.utils.logging import get_logger

log = get_logger(__name__)


class PipelineStage(Enum):
    """States of one processing run."""

    IDLE = "idle"
    FETCHING = "fetching"
    STAGING = "staging"
    ENCODING = "encoding"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


# Allowed forward transitions; FAILED is reachable from every active stage
VALID_TRANSITIONS: dict[PipelineStage, set[PipelineStage]] = {
    PipelineStage.IDLE: {PipelineStage.FETCHING, PipelineStage.FAILED},
    PipelineStage.FETCHING: {PipelineStage.STAGING, PipelineStage.FAILED},
    PipelineStage.STAGING: {PipelineStage.ENCODING, PipelineStage.FAILED},
    PipelineStage.ENCODING: {PipelineStage.PUBLISHING, PipelineStage.FAILED},
    PipelineStage.PUBLISHING: {PipelineStage.DONE, PipelineStage.FAILED},
    PipelineStage.DONE: set(),
    PipelineStage.FAILED: set(),
}


@dataclass
class PipelineRun:
    """Ephemeral execution context of one run.

    Attributes:
        event_id: Event being processed
        run_id: Unique id, also used to name the staging directory
        stage: Current stage
        previous_status: Event status observed at claim time (rollback target)
        claimed: Whether this run holds the processing claim
        clip_count: Size of the clip snapshot
    """

    event_id: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    stage: PipelineStage = PipelineStage.IDLE
    previous_status: EventStatus | None = None
    claimed: bool = False
    clip_count: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def advance(self, stage: PipelineStage) -> None:
        if stage not in VALID_TRANSITIONS[self.stage]:
            raise RuntimeError(f"Invalid pipeline transition: {self.stage.value} → {stage.value}")
        log.debug("pipeline_stage_changed", from_stage=self.stage.value, to_stage=stage.value)
        self.stage = stage

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of a successful run."""

    event_id: str
    run_id: str
    final_video_url: str
    artifact_path: str
    clip_count: int
    duration_seconds: float


class VideoAssemblyPipeline:
    """Orchestrates fetch → stage → encode → publish for one event per call.

    One instance serves many concurrent runs; all per-run state lives in
    ``PipelineRun``.

    Attributes:
        gateway: Storage and table access
        engine: Concatenation engine
        publisher: Artifact upload and event finalize
        staging_root: Parent directory for staging directories
        download_concurrency: Parallel clip downloads per run
        require_validated_clips: Refuse runs while any clip is not validated
    """

    def __init__(
        self,
        gateway: ClipGateway,
        engine: ConcatenationEngine,
        staging_root: Path,
        download_concurrency: int = 4,
        require_validated_clips: bool = False,
    ):
        self.gateway = gateway
        self.engine = engine
        self.publisher = ArtifactPublisher(gateway)
        self.staging_root = staging_root
        self.download_concurrency = download_concurrency
        self.require_validated_clips = require_validated_clips

    async def run(self, event_id: str | None) -> PipelineResult:
        """Assemble the final video for ``event_id``.

        Args:
            event_id: Event to process

        Returns:
            PipelineResult with the public URL of the published video

        Raises:
            MissingEventIdError: If event_id is empty
            EventNotFoundError: If the event does not exist
            NoClipsError: If no clip has been submitted
            UnvalidatedClipsError: If validation is required and a clip is not validated
            EventAlreadyProcessingError: If another run holds the claim
            DownloadError, EncodingError, UploadError, PersistenceError: Step failures
        """
        if event_id is None or not event_id.strip():
            raise MissingEventIdError()
        event_id = event_id.strip()

        run = PipelineRun(event_id=event_id)
        with structlog.contextvars.bound_contextvars(event_id=event_id, run_id=run.run_id):
            log.info("pipeline_run_started")
            try:
                result = await self._execute(run)
            except PipelineError as e:
                log.error(
                    "pipeline_run_failed",
                    stage=run.stage.value,
                    error_code=e.error_code,
                    error=str(e),
                    elapsed_seconds=round(run.elapsed_seconds, 2),
                )
                raise
            log.info(
                "pipeline_run_completed",
                clip_count=result.clip_count,
                final_video_url=result.final_video_url,
                duration_seconds=round(result.duration_seconds, 2),
            )
            return result

    async def _execute(self, run: PipelineRun) -> PipelineResult:
        event = await self.gateway.get_event(run.event_id)
        if event.status is EventStatus.PROCESSING:
            raise EventAlreadyProcessingError(run.event_id)

        run.advance(PipelineStage.FETCHING)
        try:
            clips = await self.gateway.list_clips(run.event_id)
        except PipelineError:
            run.advance(PipelineStage.FAILED)
            raise
        run.clip_count = len(clips)

        if self.require_validated_clips:
            pending = [clip.id for clip in clips if not clip.is_validated]
            if pending:
                run.advance(PipelineStage.FAILED)
                raise UnvalidatedClipsError(run.event_id, pending)

        if not await self.gateway.claim_event(run.event_id, event.status):
            run.advance(PipelineStage.FAILED)
            raise EventAlreadyProcessingError(run.event_id)
        run.claimed = True
        run.previous_status = event.status
        log.info("event_claimed", previous_status=event.status.value, clip_count=len(clips))

        try:
            async with StagingArea(run.event_id, self.staging_root, run.run_id) as staging:
                run.advance(PipelineStage.STAGING)
                staged = await staging.stage_clips(
                    self.gateway, clips, concurrency=self.download_concurrency
                )
                manifest = staging.write_manifest(staged)

                run.advance(PipelineStage.ENCODING)
                outcome = await self.engine.concatenate(manifest, staging.output_path)
                if isinstance(outcome, EncodeFailure):
                    raise EncodingError(outcome.exit_code, outcome.diagnostics, outcome.timed_out)

                run.advance(PipelineStage.PUBLISHING)
                artifact = await self.publisher.publish(run.event_id, outcome.output_path)
                await self.publisher.finalize(run.event_id, artifact)
        except (Exception, asyncio.CancelledError) as e:
            run.advance(PipelineStage.FAILED)
            await self._rollback(run, e)
            raise

        run.advance(PipelineStage.DONE)
        return PipelineResult(
            event_id=run.event_id,
            run_id=run.run_id,
            final_video_url=artifact.public_url,
            artifact_path=artifact.path,
            clip_count=run.clip_count,
            duration_seconds=run.elapsed_seconds,
        )

    async def _rollback(self, run: PipelineRun, error: BaseException) -> None:
        """Restore the pre-run status so the organizer can retry."""
        if not run.claimed or run.previous_status is None:
            return
        try:
            await self.gateway.update_event_fields(
                run.event_id, {"status": run.previous_status}
            )
        except PersistenceError as rollback_error:
            # Event stays "processing" until an operator or a later run fixes it
            log.critical(
                "event_rollback_failed",
                target_status=run.previous_status.value,
                original_error=type(error).__name__,
                error=rollback_error.cause,
            )
            return
        log.warning(
            "event_status_rolled_back",
            restored_status=run.previous_status.value,
            failed_stage_error=type(error).__name__,
        )


def build_pipeline(settings: Settings, gateway: ClipGateway) -> VideoAssemblyPipeline:
    """Wire a pipeline from settings and an already-built gateway."""
    engine = ConcatenationEngine(
        ffmpeg_path=settings.ffmpeg_path,
        mode=settings.encode_mode,
        timeout_seconds=settings.encode_timeout_seconds,
    )
    return VideoAssemblyPipeline(
        gateway,
        engine,
        staging_root=settings.staging_root,
        download_concurrency=settings.download_concurrency,
        require_validated_clips=settings.require_validated_clips,
    )
