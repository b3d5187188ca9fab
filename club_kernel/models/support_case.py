"""
Module: club_kernel.models.support_case
Responsibility: ORM persistence for support desk cases and their notes.
Architecture position: Kernel > Models.

Notes are append-only.  Status-change notes are written by the workflow
engine as part of the transition that caused them.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from club_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from club_kernel.domain.workflows.support_cases import (
    SUPPORT_CASE_WORKFLOW,
    SupportCaseCategory,
    SupportCaseStatus,
)
from club_kernel.models.workflow_entity import WorkflowEntityMixin


class SupportCase(WorkflowEntityMixin, TrackedBase):
    __tablename__ = "support_cases"
    __workflow__ = SUPPORT_CASE_WORKFLOW

    __table_args__ = (
        Index("idx_support_case_status", "status"),
    )

    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    requester_member_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    requester_email: Mapped[str | None] = mapped_column(String(254), nullable=True)
    category: Mapped[str] = mapped_column(
        String(30), nullable=False, default=SupportCaseCategory.UNKNOWN.value,
    )
    resolution: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=SupportCaseStatus.OPEN.value,
    )

    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    escalated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    notes: Mapped[list["SupportCaseNote"]] = relationship(
        back_populates="case",
        order_by="SupportCaseNote.created_at",
    )

    def __repr__(self) -> str:
        return f"<SupportCase {self.subject!r} {self.status}>"


class SupportCaseNote(TrackedBase):
    __tablename__ = "support_case_notes"

    __table_args__ = (
        Index("idx_support_note_case", "case_id"),
    )

    case_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("support_cases.id"), nullable=False,
    )
    note_type: Mapped[str] = mapped_column(String(30), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    case: Mapped[SupportCase] = relationship(back_populates="notes")

    def __repr__(self) -> str:
        return f"<SupportCaseNote {self.note_type} on {self.case_id}>"
