"""Pydantic schemas for the processing trigger API.

All schemas use Pydantic v2 syntax with model_config instead of class Config.
"""

from pydantic import BaseModel, ConfigDict, Field


class ProcessVideoResponse(BaseModel):
    """Returned by POST /process-video when the run succeeds."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(default="Video processed successfully")
    final_video_url: str = Field(
        ...,
        description="Public URL of final_videos/{eventId}.mp4",
        examples=["https://abc.supabase.co/storage/v1/object/public/videos/final_videos/E1.mp4"],
    )
    event_id: str
    clip_count: int = Field(..., ge=1)


class ErrorResponse(BaseModel):
    """Body of every non-2xx response.

    ``code`` lets callers tell "no clips submitted yet" (no_clips) apart from
    a system failure (download_failed, encoding_failed, ...).
    """

    error: str
    details: str
    code: str


class EventStatusResponse(BaseModel):
    """Returned by GET /process-video/status."""

    event_id: str
    status: str
    final_video_url: str | None = None
