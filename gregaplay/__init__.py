"""Gregaplay video assembly service.

This package turns the clips participants submitted to an event into the
event's single final video. It fetches clips from the platform's object store,
concatenates them with FFmpeg and publishes the result back to the event.
"""

from gregaplay.exceptions import PipelineError
from gregaplay.models import ClipRecord, EventRecord, EventStatus

__all__ = [
    "ClipRecord",
    "EventRecord",
    "EventStatus",
    "PipelineError",
]
