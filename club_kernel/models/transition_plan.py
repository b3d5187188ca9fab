"""
Module: club_kernel.models.transition_plan
Responsibility: ORM persistence for officer transition plans and their
    incoming/outgoing seat assignments.
Architecture position: Kernel > Models.

Assignments can only be inserted, changed or removed while the parent plan
is DRAFT (ORM listener).  Applying the plan turns them into RoleAssignment
rows.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, func, select
from sqlalchemy.orm import Mapped, mapped_column, object_session, relationship

from club_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from club_kernel.domain.workflows.transition_plans import (
    TRANSITION_PLAN_WORKFLOW,
    PlanStatus,
)
from club_kernel.models.workflow_entity import WorkflowEntityMixin


class TransitionPlan(WorkflowEntityMixin, TrackedBase):
    __tablename__ = "transition_plans"
    __workflow__ = TRANSITION_PLAN_WORKFLOW

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    term_label: Mapped[str | None] = mapped_column(String(50), nullable=True)
    effective_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PlanStatus.DRAFT.value,
    )

    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    submitted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    applied_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    assignments: Mapped[list["TransitionPlanAssignment"]] = relationship(
        back_populates="plan",
        order_by="TransitionPlanAssignment.created_at",
    )

    def workflow_snapshot(self) -> dict[str, Any]:
        snapshot = super().workflow_snapshot()
        session = object_session(self)
        snapshot["assignment_count"] = session.scalar(
            select(func.count(TransitionPlanAssignment.id))
            .where(TransitionPlanAssignment.plan_id == self.id)
        ) if session is not None else len(self.assignments)
        return snapshot

    def __repr__(self) -> str:
        return f"<TransitionPlan {self.name!r} {self.status}>"


class TransitionPlanAssignment(TrackedBase):
    """
    One seat change within a plan.

    Outgoing rows point at the RoleAssignment they end
    (``existing_assignment_id``); incoming rows describe the seat to open.
    """

    __tablename__ = "transition_plan_assignments"

    __table_args__ = (
        Index("idx_plan_assignment_plan", "plan_id"),
    )

    plan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transition_plans.id"), nullable=False,
    )
    member_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    committee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("committees.id"), nullable=False,
    )
    role_title: Mapped[str] = mapped_column(String(100), nullable=False)
    granted_role: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_outgoing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    existing_assignment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("role_assignments.id"), nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    plan: Mapped[TransitionPlan] = relationship(back_populates="assignments")

    def __repr__(self) -> str:
        direction = "out" if self.is_outgoing else "in"
        return f"<TransitionPlanAssignment {direction} {self.role_title} {self.member_id}>"
