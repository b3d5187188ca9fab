"""
EventService -- creation, editing, cloning and approval of club events.

Every operation goes through the WorkflowEngine, so each one is gated,
audited and committed as a unit.  Cloning is a constructor, not a
transition: the clone starts fresh in DRAFT whatever the source's status.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.results import FailureCode, TransitionResult
from club_kernel.domain.workflows.events import (
    CLONEABLE_FIELDS,
    ENTITY_TYPE,
    EVENT_WORKFLOW,
    effective_status,
)
from club_kernel.logging_config import LogContext, get_logger
from club_kernel.models.audit_entry import AuditAction
from club_kernel.models.event import Event
from club_kernel.services.base import BaseService
from club_kernel.services.workflow_engine import WorkflowEngine

logger = get_logger("services.event")


class EventService(BaseService):

    def __init__(self, engine: WorkflowEngine):
        super().__init__(engine.session, engine.clock)
        self._engine = engine

    def create_event(
        self,
        ctx: AuthContext | None,
        title: str,
        *,
        description: str | None = None,
        location: str | None = None,
        category: str | None = None,
        capacity: int | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        event_chair_id: UUID | None = None,
        committee_id: UUID | None = None,
    ) -> TransitionResult:
        return self._engine.create(ENTITY_TYPE, ctx, {
            "title": title,
            "description": description,
            "location": location,
            "category": category,
            "capacity": capacity,
            "start_time": start_time,
            "end_time": end_time,
            "event_chair_id": event_chair_id,
            "committee_id": committee_id,
        })

    def update_event(self, ctx: AuthContext | None, event_id: UUID, **changes: Any) -> TransitionResult:
        return self._engine.update_content(ENTITY_TYPE, event_id, ctx, changes)

    def transition(
        self,
        ctx: AuthContext | None,
        event_id: UUID,
        action: str,
        **params: Any,
    ) -> TransitionResult:
        return self._engine.attempt(ENTITY_TYPE, event_id, action, ctx, params)

    def clone_event(self, ctx: AuthContext | None, source_id: UUID) -> TransitionResult:
        """
        Copy an event's descriptive content into a new DRAFT.

        Chair, dates, approval metadata and history are not carried over.
        """
        action = AuditAction.ENTITY_CLONED.value

        def work() -> TransitionResult:
            decision = self._engine.policy.require_capability(
                ctx, EVENT_WORKFLOW.create_capability,
            )
            if not decision.allowed:
                return self._engine.deny(ENTITY_TYPE, source_id, action, ctx, decision)

            source = self._engine.store.get(ENTITY_TYPE, source_id)
            if source is None:
                return TransitionResult.rejected(
                    ENTITY_TYPE, source_id, action,
                    FailureCode.NOT_FOUND, f"{ENTITY_TYPE} {source_id} not found",
                )

            values = {name: getattr(source, name) for name in CLONEABLE_FIELDS}
            values["cloned_from_id"] = source.id
            values["cloned_at"] = self.clock.now()
            return self._engine.create_in_transaction(
                ENTITY_TYPE, ctx, values,
                action=action,
                metadata={"source_id": source.id, "source_status": source.status},
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=source_id, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)

    def effective_status(self, event: Event) -> str:
        """Stored status, or COMPLETED for a published event that has ended."""
        return effective_status(event.status, event.start_time, event.end_time, self.clock.now())
