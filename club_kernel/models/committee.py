"""
Committees and the role assignments that define delegation scope.

A member's delegation scope is the set of committees where they hold an
assignment that has started and not yet ended.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from club_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class Committee(TrackedBase):
    __tablename__ = "committees"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Committee {self.name}>"


class RoleAssignment(TrackedBase):
    """
    A member holding a role on a committee for a period of time.

    Active at ``t`` when ``start_at <= t`` and (``end_at`` is None or
    ``end_at > t``).  ``granted_role`` names the global role the seat
    carries, if any.
    """

    __tablename__ = "role_assignments"

    __table_args__ = (
        Index("idx_role_assignment_member", "member_id", "start_at"),
        Index("idx_role_assignment_committee", "committee_id"),
    )

    committee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("committees.id"), nullable=False,
    )
    member_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    role_title: Mapped[str] = mapped_column(String(100), nullable=False)
    granted_role: Mapped[str | None] = mapped_column(String(30), nullable=True)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    source_plan_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("transition_plans.id"), nullable=True,
    )

    def is_active_at(self, as_of: datetime) -> bool:
        return self.start_at <= as_of and (self.end_at is None or self.end_at > as_of)

    def __repr__(self) -> str:
        return f"<RoleAssignment {self.role_title} {self.member_id} on {self.committee_id}>"
