# Data factories for test data generation

from tests.support.factories.event_factory import (
    BASE_TIME,
    create_clip,
    create_clip_record,
    create_event,
    create_event_record,
)

__all__ = [
    "BASE_TIME",
    "create_clip",
    "create_clip_record",
    "create_event",
    "create_event_record",
]
