"""
Module: club_kernel.models.event
Responsibility: ORM persistence for club events and their approval stamps.
Architecture position: Kernel > Models.

``status`` and every ``*_at``/``*_by_id`` stamp column are written only by
the workflow engine's conditional UPDATE.  ``cloned_from_id``/``cloned_at``
are set once, at insert, by EventService.clone_event.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from club_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from club_kernel.domain.workflows.events import EVENT_WORKFLOW, EventStatus
from club_kernel.models.workflow_entity import WorkflowEntityMixin


class Event(WorkflowEntityMixin, TrackedBase):
    __tablename__ = "events"
    __workflow__ = EVENT_WORKFLOW

    __table_args__ = (
        Index("idx_event_status", "status"),
        Index("idx_event_chair", "event_chair_id"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    event_chair_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    committee_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("committees.id"), nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=EventStatus.DRAFT.value,
    )

    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    submitted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    changes_requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    changes_requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    change_request_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    published_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    canceled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    canceled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    cloned_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("events.id"), nullable=True,
    )
    cloned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<Event {self.title!r} {self.status}>"
