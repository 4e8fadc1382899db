"""Pydantic schemas for validation and serialization."""

from gregaplay.schemas.process_video import (
    ErrorResponse,
    EventStatusResponse,
    ProcessVideoResponse,
)

__all__ = [
    "ErrorResponse",
    "EventStatusResponse",
    "ProcessVideoResponse",
]
