"""
Named side effects that run inside a transition's transaction.

A transition table lists effect names; the engine looks each one up here
and calls it after the conditional status write and before the audit
append, so the status change, the effect and the audit entry commit or
roll back together.  A handler returns an optional mapping that is merged
into the result detail and the audit metadata.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.workflows.support_cases import STATUS_NOTE_EFFECT, SupportNoteType
from club_kernel.domain.workflows.transition_plans import APPLY_EFFECT
from club_kernel.logging_config import get_logger
from club_kernel.models import (
    RoleAssignment,
    SupportCaseNote,
    TransitionPlan,
    TransitionPlanAssignment,
)

logger = get_logger("services.workflow_effects")


@dataclass(frozen=True)
class EffectContext:
    session: Session
    ctx: AuthContext
    entity_type: str
    entity_id: UUID
    action: str
    from_state: str
    to_state: str
    now: datetime
    params: Mapping[str, Any] = field(default_factory=dict)


EffectHandler = Callable[[EffectContext], "Mapping[str, Any] | None"]


def record_status_note(effect: EffectContext) -> Mapping[str, Any]:
    """Append the system note every support case status change leaves behind."""
    note = SupportCaseNote(
        case_id=effect.entity_id,
        note_type=SupportNoteType.STATUS_CHANGE.value,
        content=f"Status changed from {effect.from_state} to {effect.to_state}",
        is_system=True,
        details={"fromStatus": effect.from_state, "toStatus": effect.to_state},
        created_by_id=effect.ctx.member_id,
    )
    effect.session.add(note)
    effect.session.flush()
    return {"status_note_id": str(note.id)}


def apply_transition_plan(effect: EffectContext) -> Mapping[str, Any]:
    """
    Turn an approved plan into role assignments.

    Outgoing rows end the assignment they reference (or, without a
    reference, every matching active assignment) at the plan's
    ``effective_at``.  Incoming rows open a new assignment starting then.
    """
    session = effect.session
    plan = session.get(TransitionPlan, effect.entity_id)
    effective_at = plan.effective_at
    ended = 0
    created = 0

    items = session.execute(
        select(TransitionPlanAssignment)
        .where(TransitionPlanAssignment.plan_id == plan.id)
        .order_by(TransitionPlanAssignment.created_at)
    ).scalars().all()

    for item in items:
        if item.is_outgoing:
            if item.existing_assignment_id is not None:
                targets = [session.get(RoleAssignment, item.existing_assignment_id)]
            else:
                targets = session.execute(
                    select(RoleAssignment).where(
                        RoleAssignment.member_id == item.member_id,
                        RoleAssignment.committee_id == item.committee_id,
                        RoleAssignment.role_title == item.role_title,
                        RoleAssignment.start_at <= effective_at,
                        or_(
                            RoleAssignment.end_at.is_(None),
                            RoleAssignment.end_at > effective_at,
                        ),
                    )
                ).scalars().all()
            for assignment in targets:
                if assignment is None:
                    continue
                if assignment.end_at is None or assignment.end_at > effective_at:
                    assignment.end_at = effective_at
                    assignment.updated_by_id = effect.ctx.member_id
                    ended += 1
        else:
            session.add(RoleAssignment(
                committee_id=item.committee_id,
                member_id=item.member_id,
                role_title=item.role_title,
                granted_role=item.granted_role,
                start_at=effective_at,
                source_plan_id=plan.id,
                created_by_id=effect.ctx.member_id,
            ))
            created += 1

    session.flush()
    logger.info(
        "transition_plan_applied",
        extra={
            "plan_id": str(plan.id),
            "ended_assignments": ended,
            "created_assignments": created,
        },
    )
    return {"ended_assignments": ended, "created_assignments": created}


DEFAULT_EFFECTS: Mapping[str, EffectHandler] = MappingProxyType({
    STATUS_NOTE_EFFECT: record_status_note,
    APPLY_EFFECT: apply_transition_plan,
})
