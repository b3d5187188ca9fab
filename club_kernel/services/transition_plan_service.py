"""
TransitionPlanService -- officer succession plans and their seat changes.

Responsibility:
    Creates plans, manages their incoming/outgoing assignments while the
    plan is DRAFT, and drives the plan workflow (submit, approve, apply,
    cancel) through the WorkflowEngine.  Applying a plan rewrites role
    assignments through the ``apply_transition_plan`` effect.

Gating for assignment edits, in order:
    1. plan exists                           (NOT_FOUND)
    2. delegation authority (roles:assign),
       scope and escalation for the target
       committee                             (DELEGATION_*)
    3. plan is DRAFT                         (NOT_EDITABLE)

The delegation gate is the only authorization check on assignment edits.
An actor without roles:assign gets DELEGATION_NO_AUTHORITY, never the
generic FORBIDDEN_CAPABILITY.  Plan creation and content edits still
require transitions:manage through the workflow table.

Each assignment edit also touches the plan row with a conditional UPDATE
on ``status = DRAFT``, so an edit racing ``submit`` either lands before
the submit or comes back CONFLICT.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import GlobalRole
from club_kernel.domain.delegation import DelegationScopeResolver
from club_kernel.domain.results import FailureCode, TransitionResult
from club_kernel.domain.workflows.transition_plans import ENTITY_TYPE, PlanStatus
from club_kernel.logging_config import LogContext, get_logger
from club_kernel.models.audit_entry import AuditAction
from club_kernel.models.committee import RoleAssignment
from club_kernel.models.transition_plan import TransitionPlan, TransitionPlanAssignment
from club_kernel.services.base import BaseService
from club_kernel.services.delegation_gate import authority_gate, coerce_granted_role, delegation_gate
from club_kernel.services.workflow_engine import WorkflowEngine
from club_kernel.services.workflow_store import SqlAlchemyMembershipLookup

logger = get_logger("services.transition_plan")

_ASSIGNMENT_FIELDS = (
    "id", "plan_id", "member_id", "committee_id", "role_title",
    "granted_role", "is_outgoing", "existing_assignment_id", "notes",
)


def _assignment_snapshot(item: TransitionPlanAssignment) -> dict[str, Any]:
    return {name: getattr(item, name) for name in _ASSIGNMENT_FIELDS}


class TransitionPlanService(BaseService):

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

    def create_plan(
        self,
        ctx: AuthContext | None,
        name: str,
        effective_at,
        *,
        description: str | None = None,
        term_label: str | None = None,
    ) -> TransitionResult:
        return self._engine.create(ENTITY_TYPE, ctx, {
            "name": name,
            "effective_at": effective_at,
            "description": description,
            "term_label": term_label,
        })

    def update_plan(self, ctx: AuthContext | None, plan_id: UUID, **changes: Any) -> TransitionResult:
        return self._engine.update_content(ENTITY_TYPE, plan_id, ctx, changes)

    def transition(
        self,
        ctx: AuthContext | None,
        plan_id: UUID,
        action: str,
        **params: Any,
    ) -> TransitionResult:
        return self._engine.attempt(ENTITY_TYPE, plan_id, action, ctx, params)

    # Assignment edits

    def _load_plan(
        self,
        plan_id: UUID,
        action: str,
    ) -> tuple[TransitionResult | None, TransitionPlan | None]:
        plan = self._engine.store.get(ENTITY_TYPE, plan_id)
        if plan is None:
            return TransitionResult.rejected(
                ENTITY_TYPE, plan_id, action,
                FailureCode.NOT_FOUND, f"{ENTITY_TYPE} {plan_id} not found",
            ), None
        return None, plan

    def _require_draft(self, ctx: AuthContext, plan: TransitionPlan, action: str) -> TransitionResult | None:
        if plan.status != PlanStatus.DRAFT.value:
            return TransitionResult.rejected(
                ENTITY_TYPE, plan.id, action,
                FailureCode.NOT_EDITABLE,
                f"Can only change assignments of DRAFT plans; plan is {plan.status}",
                from_state=plan.status,
            )
        touched = self._engine.store.compare_and_set(
            ENTITY_TYPE, plan.id, PlanStatus.DRAFT.value,
            {"updated_at": self.clock.now(), "updated_by_id": ctx.member_id},
        )
        if not touched:
            current = self._engine.store.current_status(ENTITY_TYPE, plan.id)
            return TransitionResult.rejected(
                ENTITY_TYPE, plan.id, action,
                FailureCode.CONFLICT,
                f"{ENTITY_TYPE} {plan.id} changed concurrently: expected DRAFT, found {current}",
                from_state=PlanStatus.DRAFT.value,
                detail={"current_status": current},
            )
        return None

    def add_assignment(
        self,
        ctx: AuthContext | None,
        plan_id: UUID,
        *,
        member_id: UUID,
        committee_id: UUID,
        role_title: str,
        granted_role: GlobalRole | str | None = None,
        is_outgoing: bool = False,
        existing_assignment_id: UUID | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Add one incoming or outgoing seat change to a DRAFT plan."""
        action = AuditAction.ASSIGNMENT_ADDED.value

        def work() -> TransitionResult:
            denied, plan = self._load_plan(plan_id, action)
            if denied is not None:
                return denied

            try:
                role = coerce_granted_role(granted_role)
            except ValueError:
                return TransitionResult.rejected(
                    ENTITY_TYPE, plan_id, action,
                    FailureCode.INVALID_FIELD, f"Unknown role {granted_role!r}",
                    detail={"fields": ["granted_role"]},
                )

            denied, delegation = delegation_gate(
                self._engine, self._resolver, ctx,
                entity_type=ENTITY_TYPE,
                entity_id=plan_id,
                action=action,
                committee_id=committee_id,
                as_of=self.clock.now(),
                granted_role=role,
            )
            if denied is not None:
                return denied

            rejected = self._require_draft(ctx, plan, action)
            if rejected is not None:
                return rejected

            item = TransitionPlanAssignment(
                plan_id=plan.id,
                member_id=member_id,
                committee_id=committee_id,
                role_title=role_title,
                granted_role=role.value if role else None,
                is_outgoing=is_outgoing,
                existing_assignment_id=existing_assignment_id,
                notes=notes,
                created_by_id=ctx.member_id,
            )
            self.session.add(item)
            self.session.flush()

            entry = self._engine.audit_trail.record_update(
                ctx, ENTITY_TYPE, plan.id,
                before={},
                after={"assignment": _assignment_snapshot(item)},
                action=action,
                metadata=delegation.audit_metadata(),
            )
            return TransitionResult.applied(
                ENTITY_TYPE, plan.id, action,
                entity=item,
                from_state=plan.status,
                to_state=plan.status,
                audit_entry_id=entry.id,
                detail={"assignment_id": str(item.id)},
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=plan_id, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)

    def remove_assignment(self, ctx: AuthContext | None, assignment_id: UUID) -> TransitionResult:
        """Remove one seat change from a DRAFT plan."""
        action = AuditAction.ASSIGNMENT_REMOVED.value

        def work() -> TransitionResult:
            item = self.session.get(TransitionPlanAssignment, assignment_id)
            if item is None:
                return TransitionResult.rejected(
                    ENTITY_TYPE, None, action,
                    FailureCode.NOT_FOUND, f"Assignment {assignment_id} not found",
                )
            plan = self._engine.store.get(ENTITY_TYPE, item.plan_id)

            denied, delegation = delegation_gate(
                self._engine, self._resolver, ctx,
                entity_type=ENTITY_TYPE,
                entity_id=plan.id,
                action=action,
                committee_id=item.committee_id,
                as_of=self.clock.now(),
            )
            if denied is not None:
                return denied

            rejected = self._require_draft(ctx, plan, action)
            if rejected is not None:
                return rejected

            before = _assignment_snapshot(item)
            self.session.delete(item)
            self.session.flush()

            entry = self._engine.audit_trail.record_update(
                ctx, ENTITY_TYPE, plan.id,
                before={"assignment": before},
                after={},
                action=action,
                metadata=delegation.audit_metadata(),
            )
            return TransitionResult.applied(
                ENTITY_TYPE, plan.id, action,
                entity=plan,
                from_state=plan.status,
                to_state=plan.status,
                audit_entry_id=entry.id,
                detail={"assignment_id": str(assignment_id)},
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=assignment_id, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)

    def detect_outgoing_assignments(self, ctx: AuthContext | None, plan_id: UUID) -> TransitionResult:
        """
        Add outgoing rows for current seat holders an incoming row replaces.

        For each incoming assignment, an active assignment for the same
        committee and role title held by a different member gets an
        outgoing row, unless the plan already has one for it.  Every
        affected committee passes the delegation gate first.
        """
        action = AuditAction.ASSIGNMENT_ADDED.value

        def work() -> TransitionResult:
            denied = authority_gate(
                self._engine, self._resolver, ctx,
                entity_type=ENTITY_TYPE, entity_id=plan_id, action=action,
            )
            if denied is not None:
                return denied
            denied, plan = self._load_plan(plan_id, action)
            if denied is not None:
                return denied

            now = self.clock.now()
            items = self.session.execute(
                select(TransitionPlanAssignment)
                .where(TransitionPlanAssignment.plan_id == plan.id)
                .order_by(TransitionPlanAssignment.created_at)
            ).scalars().all()
            already_outgoing = {a.existing_assignment_id for a in items if a.is_outgoing}
            pending: list[RoleAssignment] = []
            for incoming in items:
                if incoming.is_outgoing:
                    continue
                holders = self.session.execute(
                    select(RoleAssignment).where(
                        RoleAssignment.committee_id == incoming.committee_id,
                        RoleAssignment.role_title == incoming.role_title,
                        RoleAssignment.member_id != incoming.member_id,
                        RoleAssignment.start_at <= now,
                        RoleAssignment.end_at.is_(None),
                    )
                ).scalars().all()
                for holder in holders:
                    if holder.id not in already_outgoing:
                        already_outgoing.add(holder.id)
                        pending.append(holder)

            if not pending:
                return TransitionResult.rejected(
                    ENTITY_TYPE, plan.id, action,
                    FailureCode.NOT_FOUND, "No current holders to replace",
                    from_state=plan.status,
                )

            for committee_id in sorted({h.committee_id for h in pending}, key=str):
                denied, _ = delegation_gate(
                    self._engine, self._resolver, ctx,
                    entity_type=ENTITY_TYPE,
                    entity_id=plan.id,
                    action=action,
                    committee_id=committee_id,
                    as_of=now,
                )
                if denied is not None:
                    return denied

            rejected = self._require_draft(ctx, plan, action)
            if rejected is not None:
                return rejected

            created = []
            for holder in pending:
                item = TransitionPlanAssignment(
                    plan_id=plan.id,
                    member_id=holder.member_id,
                    committee_id=holder.committee_id,
                    role_title=holder.role_title,
                    granted_role=holder.granted_role,
                    is_outgoing=True,
                    existing_assignment_id=holder.id,
                    notes="Auto-detected from current role assignment",
                    created_by_id=ctx.member_id,
                )
                self.session.add(item)
                created.append(item)
            self.session.flush()

            entry = self._engine.audit_trail.record_update(
                ctx, ENTITY_TYPE, plan.id,
                before={},
                after={"assignments": [_assignment_snapshot(i) for i in created]},
                action=action,
                metadata={"auto_detected": True},
            )
            return TransitionResult.applied(
                ENTITY_TYPE, plan.id, action,
                entity=plan,
                from_state=plan.status,
                to_state=plan.status,
                audit_entry_id=entry.id,
                detail={"assignment_ids": [str(i.id) for i in created]},
            )

        with LogContext.bind(entity_type=ENTITY_TYPE, entity_id=plan_id, action=action):
            return self._engine.execute(f"{ENTITY_TYPE}.{action}", work, ctx)
