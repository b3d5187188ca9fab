"""
Module: club_kernel.selectors.audit_selector
Responsibility: Read-only listing of audit entries for human review, by
    object, by actor, and by time range.
Architecture position: Kernel > Selectors.

Entries are only ever created by AuditTrailService.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select

from club_kernel.models.audit_entry import AuditEntry, AuditKind
from club_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AuditEntryDTO:
    """Immutable view of one audit entry."""

    id: UUID
    seq: int
    kind: str
    action: str
    object_type: str
    object_id: UUID | None
    actor_id: UUID | None
    subject_member_id: UUID | None
    occurred_at: datetime
    before: Mapping[str, Any] | None
    after: Mapping[str, Any] | None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    hash: str = ""
    prev_hash: str | None = None

    @property
    def is_impersonated(self) -> bool:
        """True when the accountable actor differs from the subject."""
        return (
            self.actor_id is not None
            and self.subject_member_id is not None
            and self.actor_id != self.subject_member_id
        )

    @classmethod
    def from_model(cls, entry: AuditEntry) -> "AuditEntryDTO":
        return cls(
            id=entry.id,
            seq=entry.seq,
            kind=entry.kind,
            action=entry.action,
            object_type=entry.object_type,
            object_id=entry.object_id,
            actor_id=entry.actor_id,
            subject_member_id=entry.subject_member_id,
            occurred_at=entry.occurred_at,
            before=entry.before,
            after=entry.after,
            metadata=dict(entry.details or {}),
            hash=entry.hash,
            prev_hash=entry.prev_hash,
        )


class AuditSelector(BaseSelector[AuditEntry]):
    """
    Audit trail queries.

    Every listing is ordered by ``seq``, oldest first unless
    ``newest_first`` is set, and optionally capped by ``limit``.
    """

    def _list(
        self,
        query: Select,
        newest_first: bool,
        limit: int | None,
    ) -> list[AuditEntryDTO]:
        query = query.order_by(AuditEntry.seq.desc() if newest_first else AuditEntry.seq.asc())
        if limit is not None:
            query = query.limit(limit)
        return [AuditEntryDTO.from_model(e) for e in self.session.execute(query).scalars()]

    def by_object(
        self,
        object_type: str,
        object_id: UUID,
        *,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[AuditEntryDTO]:
        """Full history of one entity."""
        query = select(AuditEntry).where(
            AuditEntry.object_type == object_type,
            AuditEntry.object_id == object_id,
        )
        return self._list(query, newest_first, limit)

    def by_actor(
        self,
        actor_id: UUID,
        *,
        kind: AuditKind | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[AuditEntryDTO]:
        """Everything one accountable human did (impersonators included)."""
        query = select(AuditEntry).where(AuditEntry.actor_id == actor_id)
        if kind is not None:
            query = query.where(AuditEntry.kind == AuditKind(kind).value)
        return self._list(query, newest_first, limit)

    def by_time_range(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        *,
        kind: AuditKind | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[AuditEntryDTO]:
        """Entries with ``start <= occurred_at < end``; either bound may be open."""
        query = select(AuditEntry)
        if start is not None:
            query = query.where(AuditEntry.occurred_at >= start)
        if end is not None:
            query = query.where(AuditEntry.occurred_at < end)
        if kind is not None:
            query = query.where(AuditEntry.kind == AuditKind(kind).value)
        return self._list(query, newest_first, limit)

    def denials(
        self,
        *,
        newest_first: bool = True,
        limit: int | None = None,
    ) -> list[AuditEntryDTO]:
        """Recorded authorization denials, newest first by default."""
        query = select(AuditEntry).where(AuditEntry.kind == AuditKind.DENIAL.value)
        return self._list(query, newest_first, limit)

    def count(self) -> int:
        return self.session.execute(select(func.count()).select_from(AuditEntry)).scalar_one()
