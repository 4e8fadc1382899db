"""Processing trigger routes.

This module provides FastAPI routes for starting and observing a run:
- POST /process-video?eventId=<id> - Assemble and publish the final video
- POST /api/process-video?eventId=<id> - Same handler, legacy path
- GET /process-video/status?eventId=<id> - Current event status

Responses:
    200: {message, final_video_url, event_id, clip_count}
    400: Missing eventId or no clips submitted
    401: Bearer token rejected (only when PROCESS_VIDEO_API_TOKEN is set)
    404: Unknown event
    409: Event already processing, or its stored status is not recognized
    500: {error, details, code} on any pipeline failure
"""

import hmac

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from gregaplay.config import Settings
from gregaplay.exceptions import (
    EventAlreadyProcessingError,
    InvalidEventStatusError,
    MissingEventIdError,
    PipelineError,
    ValidationError,
)
from gregaplay.schemas.process_video import (
    ErrorResponse,
    EventStatusResponse,
    ProcessVideoResponse,
)
from gregaplay.services.clip_gateway import ClipGateway
from gregaplay.services.pipeline_orchestrator import VideoAssemblyPipeline

log = structlog.get_logger()
router = APIRouter(tags=["processing"])


def get_settings_state(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> ClipGateway:
    return request.app.state.gateway


def get_pipeline(request: Request) -> VideoAssemblyPipeline:
    return request.app.state.pipeline


def verify_caller(request: Request, settings: Settings = Depends(get_settings_state)) -> None:
    """Reject the request unless it carries the configured bearer token."""
    if not settings.api_token:
        return
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        token.encode(), settings.api_token.encode()
    ):
        log.warning("process_video_unauthorized", has_header=bool(header))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _error_response(error: PipelineError) -> JSONResponse:
    if isinstance(error, ValidationError):
        summary = "Invalid request"
    elif isinstance(error, EventAlreadyProcessingError):
        summary = "Event is already being processed"
    elif isinstance(error, InvalidEventStatusError):
        summary = "Event status is not recognized"
    else:
        summary = "Video processing failed"
    body = ErrorResponse(error=summary, details=error.public_detail, code=error.error_code)
    return JSONResponse(status_code=error.http_status, content=body.model_dump())


@router.post(
    "/process-video",
    response_model=ProcessVideoResponse,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    dependencies=[Depends(verify_caller)],
)
@router.post(
    "/api/process-video",
    response_model=ProcessVideoResponse,
    include_in_schema=False,
    dependencies=[Depends(verify_caller)],
)
async def process_video(
    event_id: str | None = Query(default=None, alias="eventId"),
    pipeline: VideoAssemblyPipeline = Depends(get_pipeline),
) -> ProcessVideoResponse | JSONResponse:
    """Run the assembly pipeline for one event and return the final video URL.

    The request stays open for the whole run; the run itself awaits every
    network call and the encoder, so other requests keep being served.
    """
    try:
        result = await pipeline.run(event_id)
    except PipelineError as e:
        return _error_response(e)
    except Exception:
        log.exception("process_video_unexpected_error", event_id=event_id)
        body = ErrorResponse(
            error="Video processing failed", details="Internal error", code="internal_error"
        )
        return JSONResponse(status_code=500, content=body.model_dump())

    return ProcessVideoResponse(
        final_video_url=result.final_video_url,
        event_id=result.event_id,
        clip_count=result.clip_count,
    )


@router.get(
    "/process-video/status",
    response_model=EventStatusResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    dependencies=[Depends(verify_caller)],
)
async def process_video_status(
    event_id: str | None = Query(default=None, alias="eventId"),
    gateway: ClipGateway = Depends(get_gateway),
) -> EventStatusResponse | JSONResponse:
    """Report an event's processing status and final video URL."""
    try:
        if event_id is None or not event_id.strip():
            raise MissingEventIdError()
        event = await gateway.get_event(event_id.strip())
    except PipelineError as e:
        return _error_response(e)

    return EventStatusResponse(
        event_id=event.id,
        status=event.status.value,
        final_video_url=event.final_video_url,
    )
