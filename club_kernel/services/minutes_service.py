"""
MinutesService -- governance minutes drafting, approval and revision.

Published minutes are sealed.  Correcting them means ``create_revision``:
a new DRAFT row for the same meeting with the next version number, linked
to the row it revises through ``revision_of_id``.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.results import FailureCode, TransitionResult
from club_kernel.domain.workflows.minutes import (
    ENTITY_TYPE,
    MINUTES_WORKFLOW,
    REVISION_CAPABILITY,
    REVISION_SOURCE_STATES,
)
from club_kernel.logging_config import LogContext, get_logger
from club_kernel.models.audit_entry import AuditAction
from club_kernel.models.governance_minutes import GovernanceMinutes
from club_kernel.services.base import BaseService
from club_kernel.services.workflow_engine import WorkflowEngine

logger = get_logger("services.minutes")


class MinutesService(BaseService):

    def __init__(self, engine: WorkflowEngine):
        super().__init__(engine.session, engine.clock)
        self._engine = engine

    def _latest_version(self, meeting_id: UUID) -> int | None:
        return self.session.execute(
            select(func.max(GovernanceMinutes.version))
            .where(GovernanceMinutes.meeting_id == meeting_id)
        ).scalar_one_or_none()

    def create_minutes(
        self,
        ctx: AuthContext | None,
        meeting_id: UUID,
        title: str,
        *,
        content: str | None = None,
        summary: str | None = None,
    ) -> TransitionResult:
        """First version of the minutes for a meeting."""
        action = AuditAction.ENTITY_CREATED.value

        def work() -> TransitionResult:
            decision = self._engine.policy.require_capability(
                ctx, MINUTES_WORKFLOW.create_capability,
            )
            if not decision.allowed:
                return self._engine.deny(ENTITY_TYPE, None, action, ctx, decision)
            if self._latest_version(meeting_id) is not None:
                return TransitionResult.rejected(
                    ENTITY_TYPE, None, action,
                    FailureCode.CONFLICT,
                    f"Minutes already exist for meeting {meeting_id}; create a revision",
                    detail={"meeting_id": str(meeting_id)},
                )
            return self._engine.create_in_transaction(ENTITY_TYPE, ctx, {
                "meeting_id": meeting_id,
                "title": title,
                "content": content,
                "summary": summary,
                "version": 1,
            })

        with LogContext.bind(entity_type=ENTITY_TYPE, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)

    def update_minutes(self, ctx: AuthContext | None, minutes_id: UUID, **changes: Any) -> TransitionResult:
        return self._engine.update_content(ENTITY_TYPE, minutes_id, ctx, changes)

    def transition(
        self,
        ctx: AuthContext | None,
        minutes_id: UUID,
        action: str,
        **params: Any,
    ) -> TransitionResult:
        return self._engine.attempt(ENTITY_TYPE, minutes_id, action, ctx, params)

    def create_revision(self, ctx: AuthContext | None, minutes_id: UUID) -> TransitionResult:
        """
        Start a new DRAFT revision of published (or archived) minutes.

        The source row is untouched.  The revision copies title, content
        and summary and takes the meeting's next version number.
        """
        action = AuditAction.REVISION_CREATED.value

        def work() -> TransitionResult:
            decision = self._engine.policy.require_capability(ctx, REVISION_CAPABILITY)
            if not decision.allowed:
                return self._engine.deny(ENTITY_TYPE, minutes_id, action, ctx, decision)

            source = self._engine.store.get(ENTITY_TYPE, minutes_id)
            if source is None:
                return TransitionResult.rejected(
                    ENTITY_TYPE, minutes_id, action,
                    FailureCode.NOT_FOUND, f"{ENTITY_TYPE} {minutes_id} not found",
                )
            if source.status not in REVISION_SOURCE_STATES:
                return TransitionResult.rejected(
                    ENTITY_TYPE, minutes_id, action,
                    FailureCode.INVALID_TRANSITION,
                    f"Cannot revise {ENTITY_TYPE} in status {source.status}",
                    from_state=source.status,
                )

            version = (self._latest_version(source.meeting_id) or source.version) + 1
            return self._engine.create_in_transaction(
                ENTITY_TYPE, ctx,
                {
                    "meeting_id": source.meeting_id,
                    "title": source.title,
                    "content": source.content,
                    "summary": source.summary,
                    "version": version,
                    "revision_of_id": source.id,
                },
                action=action,
                capability=REVISION_CAPABILITY,
                metadata={"revision_of_id": source.id, "version": version},
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=minutes_id, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)
