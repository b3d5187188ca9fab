"""
Module: club_kernel.models.audit_entry
Responsibility: ORM persistence for the tamper-evident audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener + database trigger).
    - Hash chain: hash = H(object_type | object_id | action | payload_hash |
      prev_hash), validated by AuditTrailService.validate_chain().
    - seq is strictly increasing, allocated by SequenceService.
    - Entries are keyed by object type + object id + time and carry no
      foreign keys, so they outlive the rows they describe.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from club_kernel.db.base import Base, UTCDateTime, UUIDString


class AuditKind(str, Enum):
    """What sort of event an entry records."""

    CREATE = "create"
    TRANSITION = "transition"
    UPDATE = "update"
    DENIAL = "denial"


class AuditAction(str, Enum):
    """Action names for entries that are not workflow transitions.

    Transition entries use the transition's own action name ("submit",
    "approve", ...).
    """

    ENTITY_CREATED = "entity_created"
    ENTITY_CLONED = "entity_cloned"
    REVISION_CREATED = "revision_created"
    CONTENT_UPDATED = "content_updated"
    ASSIGNMENT_ADDED = "assignment_added"
    ASSIGNMENT_REMOVED = "assignment_removed"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_ASSIGNMENT_ENDED = "role_assignment_ended"
    NOTE_ADDED = "note_added"
    ACCESS_DENIED = "access_denied"
    DELEGATION_DENIED = "delegation_denied"


class AuditEntry(Base):
    """
    One immutable audit record.

    Guarantees:
        - seq is globally unique and increasing.
        - prev_hash is None only for the genesis entry.
        - actor_id is the accountable human: the impersonator when one is
          present, with the impersonated member kept in subject_member_id.
    """

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_object", "object_type", "object_id", "occurred_at"),
        Index("idx_audit_actor", "actor_id", "occurred_at"),
        Index("idx_audit_occurred", "occurred_at"),
        Index("idx_audit_kind", "kind"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # Transition action name or an AuditAction value
    action: Mapped[str] = mapped_column(String(64), nullable=False)

    object_type: Mapped[str] = mapped_column(String(50), nullable=False)

    object_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    subject_member_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    before: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    after: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.seq} {self.action} on {self.object_type}:{self.object_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
