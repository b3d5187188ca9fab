"""
SupportCaseService -- support desk triage.

Cases move through the SupportCase workflow; every status change leaves a
system note behind (the ``record_status_note`` effect).  Staff comments are
appended with ``add_note`` and are append-only like the audit trail.
"""

from typing import Any
from uuid import UUID

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import Capability
from club_kernel.domain.results import FailureCode, TransitionResult
from club_kernel.domain.workflows.support_cases import (
    ENTITY_TYPE,
    SupportCaseCategory,
    SupportCaseStatus,
    SupportNoteType,
)
from club_kernel.logging_config import LogContext, get_logger
from club_kernel.models.audit_entry import AuditAction
from club_kernel.models.support_case import SupportCaseNote
from club_kernel.services.base import BaseService
from club_kernel.services.workflow_engine import WorkflowEngine

logger = get_logger("services.support_case")

NOTE_TYPE = "SupportCaseNote"


def _invalid_category(action: str, entity_id: UUID | None, value: Any) -> TransitionResult:
    return TransitionResult.rejected(
        ENTITY_TYPE, entity_id, action,
        FailureCode.INVALID_FIELD, f"Unknown category {value!r}",
        detail={"fields": ["category"]},
    )


class SupportCaseService(BaseService):

    def __init__(self, engine: WorkflowEngine):
        super().__init__(engine.session, engine.clock)
        self._engine = engine

    def open_case(
        self,
        ctx: AuthContext | None,
        subject: str,
        *,
        description: str | None = None,
        requester_member_id: UUID | None = None,
        requester_email: str | None = None,
        category: SupportCaseCategory | str = SupportCaseCategory.UNKNOWN,
    ) -> TransitionResult:
        try:
            category = SupportCaseCategory(category)
        except ValueError:
            return _invalid_category(AuditAction.ENTITY_CREATED.value, None, category)
        return self._engine.create(ENTITY_TYPE, ctx, {
            "subject": subject,
            "description": description,
            "requester_member_id": requester_member_id,
            "requester_email": requester_email,
            "category": category.value,
        })

    def update_case(self, ctx: AuthContext | None, case_id: UUID, **changes: Any) -> TransitionResult:
        if "category" in changes:
            try:
                changes["category"] = SupportCaseCategory(changes["category"]).value
            except ValueError:
                return _invalid_category(
                    AuditAction.CONTENT_UPDATED.value, case_id, changes["category"],
                )
        return self._engine.update_content(ENTITY_TYPE, case_id, ctx, changes)

    def transition(
        self,
        ctx: AuthContext | None,
        case_id: UUID,
        action: str,
        **params: Any,
    ) -> TransitionResult:
        return self._engine.attempt(ENTITY_TYPE, case_id, action, ctx, params)

    def add_note(self, ctx: AuthContext | None, case_id: UUID, content: str) -> TransitionResult:
        """Append a staff comment. Closed cases take no further notes."""
        action = AuditAction.NOTE_ADDED.value

        def work() -> TransitionResult:
            decision = self._engine.policy.require_capability(ctx, Capability.SUPPORT_MANAGE)
            if not decision.allowed:
                return self._engine.deny(ENTITY_TYPE, case_id, action, ctx, decision)

            case = self._engine.store.get(ENTITY_TYPE, case_id)
            if case is None:
                return TransitionResult.rejected(
                    ENTITY_TYPE, case_id, action,
                    FailureCode.NOT_FOUND, f"{ENTITY_TYPE} {case_id} not found",
                )
            if case.status == SupportCaseStatus.CLOSED.value:
                return TransitionResult.rejected(
                    ENTITY_TYPE, case_id, action,
                    FailureCode.NOT_EDITABLE, "Closed cases do not accept notes",
                    from_state=case.status,
                )
            if not (content or "").strip():
                return TransitionResult.rejected(
                    ENTITY_TYPE, case_id, action,
                    FailureCode.INVALID_FIELD, "Note content is required",
                    from_state=case.status,
                    detail={"fields": ["content"]},
                )

            note = SupportCaseNote(
                case_id=case.id,
                note_type=SupportNoteType.COMMENT.value,
                content=content.strip(),
                is_system=False,
                created_by_id=ctx.member_id,
            )
            self.session.add(note)
            self.session.flush()

            entry = self._engine.audit_trail.record_create(
                ctx, NOTE_TYPE, note.id,
                after={
                    "case_id": case.id,
                    "note_type": note.note_type,
                    "content": note.content,
                },
                action=action,
                metadata={"case_id": str(case.id)},
            )
            return TransitionResult.applied(
                ENTITY_TYPE, case.id, action,
                entity=note,
                from_state=case.status,
                to_state=case.status,
                audit_entry_id=entry.id,
                detail={"note_id": str(note.id)},
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=case_id, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)
