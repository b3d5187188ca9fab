"""
AuditTrailService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Appends immutable, hash-chained ``AuditEntry`` rows for every applied
    transition, creation and content edit, and for security-relevant
    denials.  Provides chain validation for tamper detection.

Architecture position:
    Kernel > Services.  Called by the WorkflowEngine and the entity
    services, always inside the same transaction as the mutation it
    describes.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never max+1).
    - Chain integrity: ``hash = H(object_type | object_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit rows are protected by ORM listeners and triggers.

Failure modes:
    - AuditWriteError: the append failed.  The caller must roll back the
      enclosing mutation; an unaudited mutation is never committed.
    - AuditChainBrokenError: validate_chain() found a recomputed hash or
      a prev_hash link that does not match.
"""

from datetime import timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.clock import Clock, SystemClock
from club_kernel.domain.results import FailureCode
from club_kernel.exceptions import AuditChainBrokenError, AuditWriteError
from club_kernel.logging_config import get_logger
from club_kernel.models.audit_entry import AuditAction, AuditEntry, AuditKind
from club_kernel.services.sequence_service import SequenceService
from club_kernel.utils.hashing import hash_audit_entry, hash_payload, to_jsonable

logger = get_logger("services.audit_trail")


def _entry_payload(entry: AuditEntry) -> dict[str, Any]:
    """The hashed body of an entry, rebuilt identically at validation time."""
    return {
        "seq": entry.seq,
        "kind": entry.kind,
        "actor_id": entry.actor_id,
        "subject_member_id": entry.subject_member_id,
        "occurred_at": entry.occurred_at,
        "before": entry.before,
        "after": entry.after,
        "metadata": entry.details,
    }


class AuditTrailService:
    """
    Writer for the audit trail.

    Contract:
        Each ``record_*`` method flushes one ``AuditEntry`` in the caller's
        transaction and returns it.

    Non-goals:
        - Does NOT commit.  The mutation and its entry commit together.
        - Does NOT query by object/actor/time; see AuditSelector.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEntry.hash).order_by(AuditEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        *,
        kind: AuditKind,
        action: str,
        object_type: str,
        object_id: UUID | None,
        ctx: AuthContext | None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """
        Append one entry.

        ``actor_id`` is the accountable human (the impersonator when one is
        present); ``subject_member_id`` is the member the request acted as.

        Raises:
            AuditWriteError: the sequence allocation or insert failed.
        """
        try:
            seq = self._sequence_service.next_value(SequenceService.AUDIT_ENTRY)
            prev_hash = self._get_last_hash()

            entry = AuditEntry(
                seq=seq,
                kind=AuditKind(kind).value,
                action=action,
                object_type=object_type,
                object_id=object_id,
                actor_id=ctx.audit_actor_id if ctx else None,
                subject_member_id=ctx.member_id if ctx else None,
                occurred_at=self._clock.now().astimezone(timezone.utc),
                before=to_jsonable(before),
                after=to_jsonable(after),
                details=to_jsonable(metadata or {}),
                prev_hash=prev_hash,
            )
            entry.payload_hash = hash_payload(_entry_payload(entry))
            entry.hash = hash_audit_entry(
                object_type=object_type,
                object_id=str(object_id),
                action=action,
                payload_hash=entry.payload_hash,
                prev_hash=prev_hash,
            )
            self._session.add(entry)
            self._session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "audit_write_failed",
                extra={
                    "object_type": object_type,
                    "object_id": str(object_id),
                    "audit_action": action,
                    "error_type": type(exc).__name__,
                },
            )
            raise AuditWriteError(object_type, str(object_id), action) from exc

        logger.info(
            "audit_entry_created",
            extra={
                "object_type": object_type,
                "object_id": str(object_id),
                "audit_action": action,
                "kind": entry.kind,
                "seq": seq,
            },
        )
        return entry

    # Typed recording methods

    def record_transition(
        self,
        ctx: AuthContext,
        object_type: str,
        object_id: UUID,
        action: str,
        from_state: str,
        to_state: str,
        before: dict[str, Any],
        after: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(
            kind=AuditKind.TRANSITION,
            action=action,
            object_type=object_type,
            object_id=object_id,
            ctx=ctx,
            before=before,
            after=after,
            metadata={"from_status": from_state, "to_status": to_state, **(metadata or {})},
        )

    def record_create(
        self,
        ctx: AuthContext,
        object_type: str,
        object_id: UUID,
        after: dict[str, Any],
        action: str = AuditAction.ENTITY_CREATED.value,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(
            kind=AuditKind.CREATE,
            action=action,
            object_type=object_type,
            object_id=object_id,
            ctx=ctx,
            after=after,
            metadata=metadata,
        )

    def record_update(
        self,
        ctx: AuthContext,
        object_type: str,
        object_id: UUID,
        before: dict[str, Any],
        after: dict[str, Any],
        action: str = AuditAction.CONTENT_UPDATED.value,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(
            kind=AuditKind.UPDATE,
            action=action,
            object_type=object_type,
            object_id=object_id,
            ctx=ctx,
            before=before,
            after=after,
            metadata=metadata,
        )

    def record_denial(
        self,
        ctx: AuthContext | None,
        object_type: str,
        object_id: UUID | None,
        attempted_action: str,
        code: FailureCode,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Record a refused privileged request.  Nothing else changed."""
        action = (
            AuditAction.DELEGATION_DENIED
            if code in (
                FailureCode.DELEGATION_NO_AUTHORITY,
                FailureCode.DELEGATION_OUT_OF_SCOPE,
                FailureCode.DELEGATION_ESCALATION,
            )
            else AuditAction.ACCESS_DENIED
        )
        return self.record(
            kind=AuditKind.DENIAL,
            action=action.value,
            object_type=object_type,
            object_id=object_id,
            ctx=ctx,
            metadata={
                "attempted_action": attempted_action,
                "code": code.value,
                "reason": reason,
                **(metadata or {}),
            },
        )

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Returns True only if every entry's stored payload hash and hash
        match their recomputed values and every prev_hash matches its
        predecessor's hash.

        Raises:
            AuditChainBrokenError: at the first entry that fails.
        """
        entries = self._session.execute(
            select(AuditEntry)
            .order_by(AuditEntry.seq)
            .execution_options(populate_existing=True)
        ).scalars().all()

        prev: AuditEntry | None = None
        for entry in entries:
            expected_prev = prev.hash if prev else None
            if entry.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_entry_id": str(entry.id), "seq": entry.seq, "check": "link"},
                )
                raise AuditChainBrokenError(
                    str(entry.id), expected_prev or "None", entry.prev_hash or "None",
                )

            payload_hash = hash_payload(_entry_payload(entry))
            expected_hash = hash_audit_entry(
                object_type=entry.object_type,
                object_id=str(entry.object_id),
                action=entry.action,
                payload_hash=payload_hash,
                prev_hash=entry.prev_hash,
            )
            if payload_hash != entry.payload_hash or expected_hash != entry.hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"audit_entry_id": str(entry.id), "seq": entry.seq, "check": "hash"},
                )
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)
            prev = entry

        logger.info("audit_chain_validated", extra={"entry_count": len(entries)})
        return True
