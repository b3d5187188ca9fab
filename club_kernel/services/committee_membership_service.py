"""
CommitteeMembershipService -- direct role assignment outside a transition plan.

Both operations pass the delegation gate for the target committee before
any row changes: the actor needs roles:assign, the committee must lie in
the actor's delegation scope, and a granted global role may not carry
capabilities the actor lacks.  Ending an assignment runs the authority
and scope gates; it grants no role, so escalation does not apply.
"""

from datetime import datetime
from uuid import UUID

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import Capability, GlobalRole
from club_kernel.domain.delegation import DelegationScopeResolver
from club_kernel.domain.results import FailureCode, TransitionResult
from club_kernel.logging_config import LogContext, get_logger
from club_kernel.models.audit_entry import AuditAction
from club_kernel.models.committee import RoleAssignment
from club_kernel.services.base import BaseService
from club_kernel.services.delegation_gate import coerce_granted_role, delegation_gate
from club_kernel.services.workflow_engine import WorkflowEngine
from club_kernel.services.workflow_store import SqlAlchemyMembershipLookup

logger = get_logger("services.committee_membership")

ENTITY_TYPE = "RoleAssignment"


def _snapshot(assignment: RoleAssignment) -> dict:
    return {
        "id": assignment.id,
        "committee_id": assignment.committee_id,
        "member_id": assignment.member_id,
        "role_title": assignment.role_title,
        "granted_role": assignment.granted_role,
        "start_at": assignment.start_at,
        "end_at": assignment.end_at,
    }


class CommitteeMembershipService(BaseService):

    def __init__(
        self,
        engine: WorkflowEngine,
        resolver: DelegationScopeResolver | None = None,
    ):
        super().__init__(engine.session, engine.clock)
        self._engine = engine
        self._resolver = resolver or DelegationScopeResolver(
            SqlAlchemyMembershipLookup(engine.session), engine.policy,
        )

    def assign_role(
        self,
        ctx: AuthContext | None,
        *,
        member_id: UUID,
        committee_id: UUID,
        role_title: str,
        granted_role: GlobalRole | str | None = None,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> TransitionResult:
        action = AuditAction.ROLE_ASSIGNED.value

        def work() -> TransitionResult:
            try:
                role = coerce_granted_role(granted_role)
            except ValueError:
                return TransitionResult.rejected(
                    ENTITY_TYPE, None, action,
                    FailureCode.INVALID_FIELD, f"Unknown role {granted_role!r}",
                    detail={"fields": ["granted_role"]},
                )

            now = self.clock.now()
            denied, delegation = delegation_gate(
                self._engine, self._resolver, ctx,
                entity_type=ENTITY_TYPE,
                entity_id=None,
                action=action,
                committee_id=committee_id,
                as_of=now,
                granted_role=role,
            )
            if denied is not None:
                return denied

            starts = start_at or now
            if end_at is not None and end_at <= starts:
                return TransitionResult.rejected(
                    ENTITY_TYPE, None, action,
                    FailureCode.INVALID_FIELD, "end_at must be after start_at",
                    detail={"fields": ["end_at"]},
                )

            assignment = RoleAssignment(
                committee_id=committee_id,
                member_id=member_id,
                role_title=role_title,
                granted_role=role.value if role else None,
                start_at=starts,
                end_at=end_at,
                created_by_id=ctx.member_id,
            )
            self.session.add(assignment)
            self.session.flush()

            entry = self._engine.audit_trail.record_create(
                ctx, ENTITY_TYPE, assignment.id,
                after=_snapshot(assignment),
                action=action,
                metadata=delegation.audit_metadata(),
            )
            return TransitionResult.applied(
                ENTITY_TYPE, assignment.id, action,
                entity=assignment,
                from_state=None,
                to_state=None,
                audit_entry_id=entry.id,
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)

    def end_assignment(
        self,
        ctx: AuthContext | None,
        assignment_id: UUID,
        end_at: datetime | None = None,
    ) -> TransitionResult:
        action = AuditAction.ROLE_ASSIGNMENT_ENDED.value

        def work() -> TransitionResult:
            assignment = self.session.get(RoleAssignment, assignment_id, populate_existing=True)
            if assignment is None:
                decision = self._engine.policy.require_capability(ctx, Capability.ROLES_ASSIGN)
                if not decision.allowed:
                    return self._engine.deny(ENTITY_TYPE, assignment_id, action, ctx, decision)
                return TransitionResult.rejected(
                    ENTITY_TYPE, assignment_id, action,
                    FailureCode.NOT_FOUND, f"{ENTITY_TYPE} {assignment_id} not found",
                )

            now = self.clock.now()
            denied, delegation = delegation_gate(
                self._engine, self._resolver, ctx,
                entity_type=ENTITY_TYPE,
                entity_id=assignment_id,
                action=action,
                committee_id=assignment.committee_id,
                as_of=now,
            )
            if denied is not None:
                return denied

            ends = end_at or now
            if assignment.end_at is not None and assignment.end_at <= now:
                return TransitionResult.rejected(
                    ENTITY_TYPE, assignment_id, action,
                    FailureCode.NOT_EDITABLE, "Assignment has already ended",
                )
            if ends <= assignment.start_at:
                return TransitionResult.rejected(
                    ENTITY_TYPE, assignment_id, action,
                    FailureCode.INVALID_FIELD, "end_at must be after start_at",
                    detail={"fields": ["end_at"]},
                )

            before = _snapshot(assignment)
            assignment.end_at = ends
            assignment.updated_by_id = ctx.member_id
            self.session.flush()

            entry = self._engine.audit_trail.record_update(
                ctx, ENTITY_TYPE, assignment.id,
                before={"end_at": before["end_at"]},
                after={"end_at": ends},
                action=action,
                metadata=delegation.audit_metadata(),
            )
            return TransitionResult.applied(
                ENTITY_TYPE, assignment.id, action,
                entity=assignment,
                from_state=None,
                to_state=None,
                audit_entry_id=entry.id,
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=assignment_id, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)
