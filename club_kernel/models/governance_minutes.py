"""
Module: club_kernel.models.governance_minutes
Responsibility: ORM persistence for meeting minutes and their revisions.
Architecture position: Kernel > Models.

Invariants enforced:
    - (meeting_id, version) is unique; a revision takes the next version.
    - PUBLISHED and ARCHIVED rows are sealed (ORM listener + trigger).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from club_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from club_kernel.domain.workflows.minutes import MINUTES_WORKFLOW, MinutesStatus
from club_kernel.models.workflow_entity import WorkflowEntityMixin


class GovernanceMinutes(WorkflowEntityMixin, TrackedBase):
    __tablename__ = "governance_minutes"
    __workflow__ = MINUTES_WORKFLOW

    __table_args__ = (
        UniqueConstraint("meeting_id", "version", name="uq_minutes_meeting_version"),
    )

    meeting_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    revision_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("governance_minutes.id"), nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=MinutesStatus.DRAFT.value,
    )

    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    submitted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    revised_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revised_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    revision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    published_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    archived_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<GovernanceMinutes {self.meeting_id} v{self.version} {self.status}>"
