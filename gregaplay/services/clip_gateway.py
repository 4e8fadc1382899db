"""Clip Repository Gateway: the pipeline's only view of storage and tables.

The pipeline talks to the platform exclusively through the ``ClipGateway``
protocol. Two backends implement it:

- ``SupabaseClipGateway``: PostgREST tables + Storage bucket over HTTP
  (production deployment, same platform the web app uses)
- ``DatabaseClipGateway``: SQLAlchemy tables + ``LocalObjectStore`` directory
  (self-hosted deployment and integration tests)

Error Contract:
    get_event           -> EventNotFoundError | InvalidEventStatusError | PersistenceError
    list_clips          -> NoClipsError | PersistenceError
    claim_event         -> PersistenceError
    download_clip       -> DownloadError (never retried)
    upload_artifact     -> UploadError (never retried)
    update_event_fields -> PersistenceError

Retry Strategy (metadata operations only):
    - Retriable: network errors, timeouts, 408/429/5xx, transient DB errors
    - Attempts: ``metadata_retry_attempts`` (default 3)
    - Backoff: exponential, 0.5s → 4s
    - A retried claim that no longer matches re-reads the event; a status of
      ``processing`` counts as claimed by this call
"""

import abc
import asyncio
import os
import tempfile
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, TypeVar
from urllib.parse import quote

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from gregaplay.clients.supabase import SupabaseAPIError, SupabaseClient
from gregaplay.config import Settings
from gregaplay.database import create_session_factory
from gregaplay.exceptions import (
    ConfigurationError,
    DownloadError,
    EventNotFoundError,
    NoClipsError,
    PersistenceError,
    PipelineError,
    UploadError,
)
from gregaplay.models import (
    Clip,
    ClipRecord,
    Event,
    EventRecord,
    EventStatus,
    order_clips,
)
from gregaplay.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

ARTIFACT_PREFIX = "final_videos"
ARTIFACT_CONTENT_TYPE = "video/mp4"


def artifact_path(event_id: str) -> str:
    """Deterministic object key of an event's final video."""
    return f"{ARTIFACT_PREFIX}/{event_id}.mp4"


def _serialize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value.value if isinstance(value, EventStatus) else value
        for key, value in fields.items()
    }


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    # PostgREST emits ISO-8601, sometimes with a trailing Z
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class ClipGateway(Protocol):
    """Narrow storage + table contract consumed by the pipeline."""

    async def get_event(self, event_id: str) -> EventRecord: ...

    async def list_clips(self, event_id: str) -> list[ClipRecord]: ...

    async def claim_event(self, event_id: str, expected_status: EventStatus) -> bool: ...

    async def download_clip(self, locator: str) -> bytes: ...

    async def upload_artifact(self, path: str, data: bytes, content_type: str) -> str: ...

    def get_public_reference(self, path: str) -> str: ...

    async def update_event_fields(self, event_id: str, fields: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class _RetryingGateway(abc.ABC):
    """Shared bounded-retry helper for metadata operations."""

    def __init__(self, retry_attempts: int = 3, retry_wait: wait_base | None = None):
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=4)

    @abc.abstractmethod
    def _is_retriable(self, exception: BaseException) -> bool:
        """Whether a failed metadata call may be attempted again."""

    @abc.abstractmethod
    async def get_event(self, event_id: str) -> EventRecord: ...

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call`` with bounded retries, mapping final failure to PersistenceError."""

        @retry(
            stop=stop_after_attempt(self.retry_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception(self._is_retriable),
            before_sleep=lambda state: log.warning(
                "metadata_operation_retry",
                operation=operation,
                attempt=state.attempt_number,
            ),
            reraise=True,
        )
        async def _attempt() -> T:
            return await call()

        try:
            return await _attempt()
        except PipelineError:
            raise
        except Exception as e:
            log.error(
                "metadata_operation_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(operation, str(e)) from e

    async def _claim_with_retry(
        self, event_id: str, claim: Callable[[], Awaitable[bool]]
    ) -> bool:
        """Run a compare-and-set claim, resolving lost responses.

        When an attempt fails after the write may already have been applied, a
        later attempt no longer matches the observed status and reports the
        claim as lost. After any retried attempt an unmatched claim is resolved
        by re-reading the event: ``processing`` means the earlier write landed.
        """
        attempts = 0

        async def _attempt() -> bool:
            nonlocal attempts
            attempts += 1
            return await claim()

        if await self._with_retry("claim", _attempt):
            return True
        if attempts == 1:
            return False

        event = await self.get_event(event_id)
        recovered = event.status is EventStatus.PROCESSING
        log.warning(
            "claim_outcome_resolved",
            event_id=event_id,
            attempts=attempts,
            status=event.status.value,
            claimed=recovered,
        )
        return recovered


class SupabaseClipGateway(_RetryingGateway):
    """Gateway backed by Supabase PostgREST tables and a Storage bucket.

    Attributes:
        client: HTTP client for the platform
        bucket: Storage bucket holding clips and final videos
        clips_table: Table with one row per submitted clip
        events_table: Table with one row per event
    """

    def __init__(
        self,
        client: SupabaseClient,
        bucket: str = "videos",
        clips_table: str = "videos",
        events_table: str = "events",
        retry_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ):
        super().__init__(retry_attempts, retry_wait)
        self.client = client
        self.bucket = bucket
        self.clips_table = clips_table
        self.events_table = events_table

    def _is_retriable(self, exception: BaseException) -> bool:
        if isinstance(exception, SupabaseAPIError):
            return exception.is_retriable
        return isinstance(exception, (httpx.TimeoutException, httpx.TransportError))

    async def get_event(self, event_id: str) -> EventRecord:
        rows = await self._with_retry(
            "read",
            lambda: self.client.select(self.events_table, {"id": f"eq.{event_id}"}),
        )
        if not rows:
            raise EventNotFoundError(event_id)
        row = rows[0]
        deadline = row.get("deadline")
        return EventRecord(
            id=str(row["id"]),
            status=EventStatus.parse(row.get("status"), str(row["id"])),
            title=row.get("title"),
            deadline=_parse_timestamp(deadline) if deadline else None,
            user_id=row.get("user_id"),
            final_video_url=row.get("final_video_url"),
        )

    async def list_clips(self, event_id: str) -> list[ClipRecord]:
        rows = await self._with_retry(
            "list_clips",
            lambda: self.client.select(
                self.clips_table,
                {"event_id": f"eq.{event_id}"},
                columns="id,event_id,storage_path,created_at,user_id,status",
                order="created_at.asc,id.asc",
            ),
        )
        if not rows:
            raise NoClipsError(event_id)
        clips = [
            ClipRecord(
                id=str(row["id"]),
                event_id=str(row["event_id"]),
                storage_path=row["storage_path"],
                created_at=_parse_timestamp(row["created_at"]),
                user_id=row.get("user_id"),
                status=row.get("status"),
            )
            for row in rows
        ]
        return order_clips(clips)

    async def claim_event(self, event_id: str, expected_status: EventStatus) -> bool:
        async def _claim() -> bool:
            rows = await self.client.update(
                self.events_table,
                {"id": f"eq.{event_id}", "status": f"eq.{expected_status.value}"},
                {"status": EventStatus.PROCESSING.value},
            )
            return bool(rows)

        return await self._claim_with_retry(event_id, _claim)

    async def download_clip(self, locator: str) -> bytes:
        try:
            return await self.client.download(self.bucket, locator)
        except (SupabaseAPIError, httpx.HTTPError) as e:
            raise DownloadError(locator, str(e) or type(e).__name__) from e

    async def upload_artifact(self, path: str, data: bytes, content_type: str) -> str:
        try:
            return await self.client.upload(self.bucket, path, data, content_type, upsert=True)
        except (SupabaseAPIError, httpx.HTTPError) as e:
            raise UploadError(path, str(e) or type(e).__name__) from e

    def get_public_reference(self, path: str) -> str:
        return self.client.public_url(self.bucket, path)

    async def update_event_fields(self, event_id: str, fields: dict[str, Any]) -> None:
        rows = await self._with_retry(
            "update",
            lambda: self.client.update(
                self.events_table, {"id": f"eq.{event_id}"}, _serialize_fields(fields)
            ),
        )
        if not rows:
            raise PersistenceError("update", f"event {event_id} not found")

    async def close(self) -> None:
        await self.client.close()


class LocalObjectStore:
    """Filesystem-backed object store with overwrite-on-write semantics.

    Keys are relative paths under ``root``; resolved paths are verified to stay
    inside ``root`` to prevent path traversal.
    """

    def __init__(self, root: Path, public_base_url: str):
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, key: str) -> Path:
        root = self.root.resolve()
        path = (root / key.lstrip("/")).resolve()
        if not path.is_relative_to(root):
            raise ValueError(f"Object key escapes storage root: {key}")
        return path

    def _write_atomic(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload_")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def read(self, key: str) -> bytes:
        path = self._resolve(key)
        return await asyncio.to_thread(path.read_bytes)

    async def write(self, key: str, data: bytes) -> str:
        path = self._resolve(key)
        await asyncio.to_thread(self._write_atomic, path, data)
        return key

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key.lstrip('/'), safe='/')}"


class DatabaseClipGateway(_RetryingGateway):
    """Gateway backed by SQLAlchemy tables and a local object store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        object_store: LocalObjectStore,
        engine: AsyncEngine | None = None,
        retry_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ):
        super().__init__(retry_attempts, retry_wait)
        self.session_factory = session_factory
        self.object_store = object_store
        self._engine = engine

    def _is_retriable(self, exception: BaseException) -> bool:
        if isinstance(exception, OperationalError):
            return True
        if isinstance(exception, DBAPIError):
            return exception.connection_invalidated
        return isinstance(exception, (TimeoutError, ConnectionError))

    async def get_event(self, event_id: str) -> EventRecord:
        async def _read() -> EventRecord | None:
            async with self.session_factory() as session:
                event = await session.get(Event, event_id)
                return event.to_record() if event else None

        record = await self._with_retry("read", _read)
        if record is None:
            raise EventNotFoundError(event_id)
        return record

    async def list_clips(self, event_id: str) -> list[ClipRecord]:
        async def _list() -> list[ClipRecord]:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Clip)
                    .where(Clip.event_id == event_id)
                    .order_by(Clip.created_at, Clip.id)
                )
                return [clip.to_record() for clip in result.scalars().all()]

        clips = await self._with_retry("list_clips", _list)
        if not clips:
            raise NoClipsError(event_id)
        return order_clips(clips)

    async def claim_event(self, event_id: str, expected_status: EventStatus) -> bool:
        async def _claim() -> bool:
            async with self.session_factory() as session, session.begin():
                result = await session.execute(
                    update(Event)
                    .where(Event.id == event_id, Event.status == expected_status.value)
                    .values(status=EventStatus.PROCESSING.value)
                )
                return result.rowcount == 1

        return await self._claim_with_retry(event_id, _claim)

    async def download_clip(self, locator: str) -> bytes:
        try:
            return await self.object_store.read(locator)
        except (OSError, ValueError) as e:
            raise DownloadError(locator, str(e) or type(e).__name__) from e

    async def upload_artifact(self, path: str, data: bytes, content_type: str) -> str:
        try:
            return await self.object_store.write(path, data)
        except (OSError, ValueError) as e:
            raise UploadError(path, str(e) or type(e).__name__) from e

    def get_public_reference(self, path: str) -> str:
        return self.object_store.public_url(path)

    async def update_event_fields(self, event_id: str, fields: dict[str, Any]) -> None:
        values = _serialize_fields(fields)

        async def _update() -> int:
            async with self.session_factory() as session, session.begin():
                result = await session.execute(
                    update(Event).where(Event.id == event_id).values(**values)
                )
                return result.rowcount

        if await self._with_retry("update", _update) == 0:
            raise PersistenceError("update", f"event {event_id} not found")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()


def build_gateway(settings: Settings) -> ClipGateway:
    """Build the gateway selected by ``settings.gateway_backend``.

    Raises:
        ConfigurationError: If the selected backend's settings are missing.
    """
    if settings.gateway_backend == "supabase":
        url, key = settings.require_supabase()
        client = SupabaseClient(url, key, timeout=settings.http_timeout_seconds)
        return SupabaseClipGateway(
            client,
            bucket=settings.storage_bucket,
            clips_table=settings.clips_table,
            events_table=settings.events_table,
            retry_attempts=settings.metadata_retry_attempts,
        )
    if settings.gateway_backend == "database":
        engine, session_factory = create_session_factory(settings.require_database_url())
        return DatabaseClipGateway(
            session_factory,
            LocalObjectStore(settings.local_storage_root, settings.public_base_url),
            engine=engine,
            retry_attempts=settings.metadata_retry_attempts,
        )
    raise ConfigurationError(f"Unknown gateway backend: {settings.gateway_backend}")
