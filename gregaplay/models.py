"""Event and clip models.

Two representations live here:

- ``EventRecord`` / ``ClipRecord``: plain immutable records exchanged between
  the gateway and the pipeline. Every gateway backend returns these, so the
  pipeline never sees HTTP payloads or ORM instances.
- ``Event`` / ``Clip``: SQLAlchemy 2.0 mappings of the ``events`` and ``videos``
  tables, used by the database gateway backend. The schema itself is owned by
  the platform; these mappings only mirror the columns the pipeline touches.

Status Flow (Happy Path):
    open → ready → processing → done

    ``processing`` is transient: a run resolves it to ``done`` or restores the
    status observed when the run claimed the event.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from gregaplay.exceptions import InvalidEventStatusError


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class EventStatus(enum.Enum):
    """Lifecycle of a video-collection event."""

    OPEN = "open"
    READY = "ready"
    PROCESSING = "processing"
    DONE = "done"

    @classmethod
    def parse(cls, value: str | None, event_id: str | None = None) -> "EventStatus":
        """Parse a stored status.

        Raises:
            InvalidEventStatusError: If the value is empty or unknown.
        """
        try:
            return cls(value)
        except ValueError:
            raise InvalidEventStatusError(event_id, value) from None


@dataclass(frozen=True)
class EventRecord:
    """Snapshot of an event row as read by the gateway."""

    id: str
    status: EventStatus
    title: str | None = None
    deadline: datetime | None = None
    user_id: str | None = None
    final_video_url: str | None = None


CLIP_VALIDATED = "validated"


@dataclass(frozen=True)
class ClipRecord:
    """One submitted clip.

    Attributes:
        id: Clip row identifier
        event_id: Owning event
        storage_path: Object-store locator of the clip bytes
        created_at: Submission timestamp (defines assembly order)
        user_id: Submitter, when known
        status: Moderation status of the clip (e.g. "validated"), when tracked
    """

    id: str
    event_id: str
    storage_path: str
    created_at: datetime
    user_id: str | None = None
    status: str | None = None

    @property
    def basename(self) -> str:
        return self.storage_path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def is_validated(self) -> bool:
        return self.status == CLIP_VALIDATED


def order_clips(clips: list[ClipRecord]) -> list[ClipRecord]:
    """Sort clips by submission time, breaking ties by id for a stable order."""
    return sorted(clips, key=lambda clip: (clip.created_at, clip.id))


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Event(Base):
    """Organizer-created video-collection campaign.

    Attributes:
        id: Event identifier (UUID string on the platform)
        title: Display title
        status: One of EventStatus values, stored as text
        deadline: Submission deadline
        user_id: Owning organizer
        final_video_url: Public URL of the assembled video once done
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EventStatus.OPEN.value,
        server_default=EventStatus.OPEN.value,
    )
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    final_video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    clips: Mapped[list["Clip"]] = relationship("Clip", back_populates="event")

    def to_record(self) -> EventRecord:
        return EventRecord(
            id=self.id,
            status=EventStatus.parse(self.status, self.id),
            title=self.title,
            deadline=self.deadline,
            user_id=self.user_id,
            final_video_url=self.final_video_url,
        )

    def __repr__(self) -> str:
        return f"<Event(id={self.id!r}, status={self.status!r})>"


class Clip(Base):
    """Participant-submitted video; immutable once submitted."""

    __tablename__ = "videos"
    __table_args__ = (Index("ix_videos_event_id_created_at", "event_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    participant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    event: Mapped["Event"] = relationship("Event", back_populates="clips")

    def to_record(self) -> ClipRecord:
        return ClipRecord(
            id=self.id,
            event_id=self.event_id,
            storage_path=self.storage_path,
            created_at=self.created_at,
            user_id=self.user_id,
            status=self.status,
        )

    def __repr__(self) -> str:
        return f"<Clip(id={self.id!r}, event_id={self.event_id!r})>"
