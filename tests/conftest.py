"""Shared pytest fixtures for the video assembly pipeline.

This module provides reusable fixtures: an in-memory gateway seeded with a
ready event and three clips, a fake encoder runner, an async SQLite engine
for the database gateway, and a pipeline wired from them.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gregaplay.database import create_test_engine
from gregaplay.models import Base
from gregaplay.services.concatenation import ConcatenationEngine
from gregaplay.services.pipeline_orchestrator import VideoAssemblyPipeline
from tests.support.factories import create_clip_record, create_event_record
from tests.support.fakes import FakeEncoder, FakeGateway


@pytest.fixture
def gateway() -> FakeGateway:
    """In-memory gateway with event E1 (ready) and three clips.

    Clips are inserted out of submission order so ordering is exercised.
    """
    fake = FakeGateway()
    fake.add_event(create_event_record("E1"))
    fake.add_clip(create_clip_record("videos/E1/carol.mp4", offset_seconds=30, clip_id="c3"), b"CCC")
    fake.add_clip(create_clip_record("videos/E1/alice.mp4", offset_seconds=10, clip_id="c1"), b"AAA")
    fake.add_clip(create_clip_record("videos/E1/bob.mp4", offset_seconds=20, clip_id="c2"), b"BBB")
    return fake


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def staging_root(tmp_path):
    """Parent directory for staging areas; tests assert it ends up empty."""
    root = tmp_path / "staging"
    root.mkdir()
    return root


@pytest.fixture
def pipeline(gateway, encoder, staging_root) -> VideoAssemblyPipeline:
    engine = ConcatenationEngine(ffmpeg_path="ffmpeg", runner=encoder)
    return VideoAssemblyPipeline(gateway, engine, staging_root=staging_root, download_concurrency=2)


@pytest_asyncio.fixture
async def async_engine():
    """Create an async SQLite engine for testing.

    Uses in-memory SQLite with aiosqlite and a static pool so every session
    shares one connection. Creates all tables before yielding.

    Yields:
        AsyncEngine: Configured test database engine.
    """
    engine, _ = create_test_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
