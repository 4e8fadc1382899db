"""Tests for event/clip records and their ORM mappings."""

import pytest

from gregaplay.exceptions import InvalidEventStatusError
from gregaplay.models import Clip, Event, EventStatus, order_clips
from tests.support.factories import create_clip, create_clip_record, create_event


class TestEventStatus:
    @pytest.mark.parametrize("value", ["open", "ready", "processing", "done"])
    def test_known_values(self, value):
        assert EventStatus.parse(value).value == value

    @pytest.mark.parametrize("value", [None, "", "archived"])
    def test_unknown_values_are_rejected(self, value):
        with pytest.raises(InvalidEventStatusError) as exc_info:
            EventStatus.parse(value, "E1")

        assert exc_info.value.event_id == "E1"
        assert exc_info.value.value == value


class TestClipRecord:
    def test_basename(self):
        assert create_clip_record("videos/E1/u1/clip.mp4").basename == "clip.mp4"
        assert create_clip_record("clip.mp4").basename == "clip.mp4"

    def test_order_by_created_at_then_id(self):
        late = create_clip_record("c.mp4", offset_seconds=20, clip_id="a")
        tie_b = create_clip_record("b.mp4", offset_seconds=10, clip_id="b")
        tie_a = create_clip_record("a.mp4", offset_seconds=10, clip_id="a")

        assert order_clips([late, tie_b, tie_a]) == [tie_a, tie_b, late]

    @pytest.mark.parametrize(
        ("status", "expected"), [("validated", True), ("pending", False), (None, False)]
    )
    def test_is_validated(self, status, expected):
        assert create_clip_record("a.mp4", status=status).is_validated is expected


class TestOrmMappings:
    @pytest.mark.asyncio
    async def test_event_round_trip(self, session_factory):
        async with session_factory() as session, session.begin():
            session.add(create_event("E1", status=EventStatus.DONE, final_video_url="https://x"))

        async with session_factory() as session:
            record = (await session.get(Event, "E1")).to_record()

        assert record.status is EventStatus.DONE
        assert record.final_video_url == "https://x"

    @pytest.mark.asyncio
    async def test_clip_round_trip(self, session_factory):
        async with session_factory() as session, session.begin():
            session.add(create_event("E1"))
            session.add(create_clip("videos/E1/a.mp4", clip_id="c1", status="validated"))

        async with session_factory() as session:
            record = (await session.get(Clip, "c1")).to_record()

        assert record.event_id == "E1"
        assert record.storage_path == "videos/E1/a.mp4"
        assert record.is_validated

    def test_default_status_is_open(self):
        assert Event.__table__.c.status.default.arg == "open"

    @pytest.mark.asyncio
    async def test_unrecognized_stored_status(self, session_factory):
        async with session_factory() as session, session.begin():
            session.add(Event(id="E9", status="archived"))

        async with session_factory() as session:
            event = await session.get(Event, "E9")
            with pytest.raises(InvalidEventStatusError, match="E9"):
                event.to_record()
