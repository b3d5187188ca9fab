"""
WorkflowEngine -- the single interpreter of every workflow transition table.

Responsibility:
    Applies transitions, creations and content edits to workflow entities
    (Event, GovernanceMinutes, TransitionPlan, SupportCase) behind the
    capability and object-scope gates, and couples each applied mutation
    with exactly one audit entry in the same transaction.

Architecture position:
    Kernel > Services.  Reads tables from ``domain/workflows``, gates with
    ``domain.policy.PolicyEnforcer``, writes through the WorkflowStore
    protocol, records through AuditTrailService.  Per-entity services
    (events, minutes, plans, support cases, committee membership) reuse
    ``execute`` and ``deny`` so every privileged write shares one
    transaction discipline.

Algorithm for ``attempt``:
    1. Load the persisted snapshot              -> NOT_FOUND
    2. Look up the action for the entity type   -> UNKNOWN_ACTION
    3. Match the current status to a row        -> INVALID_TRANSITION
    4. Capability gate                          -> DENIED (audited)
    5. Object scope gate                        -> OBJECT_OUT_OF_SCOPE (audited)
    6. Guards, over a row re-read FOR UPDATE    -> GUARD_FAILED
    7. Conditional write of status + stamps     -> CONFLICT on zero rows
    8. Named side effects
    9. Audit append, commit

Invariants enforced:
    - Status and stamp columns change only through step 7.
    - A mutation without its audit entry is never committed.
    - A create that collides with an existing row on a unique key is a
      CONFLICT result, and a NOT NULL field set to None is INVALID_FIELD;
      neither reaches the database as an IntegrityError.
    - Expected failures come back as TransitionResult values; only
      infrastructure and programming errors raise.

Failure modes:
    - InfrastructureError: a SQLAlchemyError escaped; the unit was rolled
      back.  The message never carries driver text.
    - AuditWriteError: the audit append failed; the unit was rolled back.
    - WorkflowNotRegisteredError: unknown entity type.
    - EffectNotRegisteredError: raised at construction if a table names an
      effect with no handler.
"""

import time
from collections.abc import Callable, Mapping
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import Capability, is_write_capability
from club_kernel.domain.clock import Clock, SystemClock
from club_kernel.domain.policy import PolicyEnforcer
from club_kernel.domain.results import (
    FailureCode,
    Outcome,
    PolicyDecision,
    TransitionResult,
)
from club_kernel.domain.workflow import ObjectScope, Workflow
from club_kernel.domain.workflows import WORKFLOWS, get_workflow
from club_kernel.exceptions import EffectNotRegisteredError, InfrastructureError
from club_kernel.logging_config import LogContext, get_logger
from club_kernel.models.audit_entry import AuditAction
from club_kernel.services.audit_trail import AuditTrailService
from club_kernel.services.workflow_effects import (
    DEFAULT_EFFECTS,
    EffectContext,
    EffectHandler,
)
from club_kernel.services.workflow_store import SqlAlchemyWorkflowStore

logger = get_logger("services.workflow_engine")

_ROW_FIELDS = frozenset({
    "id", "status", "created_at", "updated_at", "created_by_id", "updated_by_id",
})


def _scope_denial(scope: ObjectScope, entity_type: str, action: str) -> PolicyDecision:
    return PolicyDecision.deny(
        FailureCode.OBJECT_OUT_OF_SCOPE,
        f"Only the {scope.owner_field.removesuffix('_id').replace('_', ' ')} or holders of "
        f"{scope.override_capability.value} may {action} this {entity_type}",
        scope.override_capability.value,
    )


def _conflict(
    entity_type: str,
    entity_id: UUID,
    action: str,
    from_state: str,
    current: str | None,
) -> TransitionResult:
    return TransitionResult.rejected(
        entity_type, entity_id, action,
        FailureCode.CONFLICT,
        f"{entity_type} {entity_id} changed concurrently: "
        f"expected {from_state}, found {current}",
        from_state=from_state,
        detail={"current_status": current},
    )


def _blank_fields(values: Mapping[str, Any], not_null: frozenset[str]) -> list[str]:
    return sorted(name for name in not_null if name in values and values[name] is None)


class WorkflowEngine:
    """
    Generic state machine engine.

    Contract:
        Every public operation returns a TransitionResult.  With
        ``auto_commit`` the engine owns the transaction: it commits applied
        results and audited denials and rolls back everything else.
        Without it the caller commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: PolicyEnforcer | None = None,
        store: Any = None,
        effects: Mapping[str, EffectHandler] | None = None,
        auto_commit: bool = True,
        audit_denials: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or PolicyEnforcer()
        self._store = store or SqlAlchemyWorkflowStore(session)
        self._effects = dict(DEFAULT_EFFECTS if effects is None else effects)
        self._audit = AuditTrailService(session, self._clock)
        self._auto_commit = auto_commit
        self._audit_denials = audit_denials
        self._check_effects()

    def _check_effects(self) -> None:
        for workflow in WORKFLOWS.values():
            for transition in workflow.transitions:
                for name in transition.effects:
                    if name not in self._effects:
                        raise EffectNotRegisteredError(workflow.entity_type, name)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def policy(self) -> PolicyEnforcer:
        return self._policy

    @property
    def audit_trail(self) -> AuditTrailService:
        return self._audit

    @property
    def store(self) -> Any:
        return self._store

    # Transaction discipline

    def execute(
        self,
        operation: str,
        work: Callable[[], TransitionResult],
        ctx: AuthContext | None = None,
        **log_fields: Any,
    ) -> TransitionResult:
        """
        Run one gated mutation as a single unit.

        Applied results and audited denials are committed; rejections and
        unaudited denials are rolled back.  Any exception rolls back, is
        logged and re-raised (SQLAlchemyError as InfrastructureError).
        """
        correlation_id = LogContext.get_all().get("correlation_id") or str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=ctx.member_id if ctx else None,
            impersonated_by=ctx.impersonated_by if ctx else None,
            **log_fields,
        ):
            t0 = time.monotonic()
            try:
                result = work()
                if self._auto_commit:
                    if result.is_success or result.audit_entry_id is not None:
                        self._session.commit()
                    else:
                        self._session.rollback()
            except SQLAlchemyError as exc:
                self._rollback(operation, t0)
                raise InfrastructureError(operation) from exc
            except Exception:
                self._rollback(operation, t0)
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            event_name = {
                Outcome.APPLIED: "transition_applied",
                Outcome.DENIED: "transition_denied",
                Outcome.REJECTED: "transition_rejected",
            }[result.outcome]
            log = logger.info if result.outcome is not Outcome.DENIED else logger.warning
            log(event_name, extra={
                "operation": operation,
                "outcome": result.outcome.value,
                "code": result.code.value if result.code else None,
                "from_state": result.from_state,
                "to_state": result.to_state,
                "duration_ms": duration_ms,
            })
            return result

    def _rollback(self, operation: str, t0: float) -> None:
        if self._auto_commit:
            self._session.rollback()
        logger.error(
            "transaction_rolled_back",
            extra={
                "operation": operation,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
            exc_info=True,
        )

    def deny(
        self,
        entity_type: str,
        entity_id: UUID | None,
        action: str,
        ctx: AuthContext | None,
        decision: PolicyDecision,
        from_state: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """Build a DENIED result, auditing it when security-relevant."""
        entry_id = None
        if self._audit_denials and decision.code.is_security_relevant:
            entry = self._audit.record_denial(
                ctx,
                entity_type,
                entity_id,
                attempted_action=action,
                code=decision.code,
                reason=decision.reason,
                metadata={
                    "capability": decision.capability,
                    "status": from_state,
                    **dict(metadata or {}),
                },
            )
            entry_id = entry.id
        return TransitionResult.denied(
            entity_type,
            entity_id,
            action,
            decision,
            from_state=from_state,
            audit_entry_id=entry_id,
            detail=metadata,
        )

    # Transitions

    def attempt(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        ctx: AuthContext | None,
        params: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """Apply ``action`` to one entity.  See the module docstring."""
        workflow = get_workflow(entity_type)
        resolved = dict(params or {})
        with LogContext.bind(entity_type=entity_type, entity_id=entity_id, action=action):
            logger.info("transition_started", extra={"params": sorted(resolved)})
            return self.execute(
                f"{entity_type}.{action}",
                lambda: self._attempt(workflow, entity_id, action, ctx, resolved),
                ctx,
            )

    def _attempt(
        self,
        workflow: Workflow,
        entity_id: UUID,
        action: str,
        ctx: AuthContext | None,
        params: dict[str, Any],
    ) -> TransitionResult:
        entity_type = workflow.entity_type
        if ctx is None:
            decision = PolicyDecision.deny(FailureCode.UNAUTHENTICATED, "unauthenticated")
            return TransitionResult.denied(entity_type, entity_id, action, decision)

        snapshot = self._store.load(entity_type, entity_id)
        if snapshot is None:
            return TransitionResult.rejected(
                entity_type, entity_id, action,
                FailureCode.NOT_FOUND, f"{entity_type} {entity_id} not found",
            )
        from_state = snapshot["status"]

        if action not in workflow.actions:
            return TransitionResult.rejected(
                entity_type, entity_id, action,
                FailureCode.UNKNOWN_ACTION, f"Unknown action {action!r} for {entity_type}",
                from_state=from_state,
            )

        transition = workflow.resolve(from_state, action)
        if transition is None:
            return TransitionResult.rejected(
                entity_type, entity_id, action,
                FailureCode.INVALID_TRANSITION,
                f"Cannot {action} {entity_type} in status {from_state}",
                from_state=from_state,
                detail={"available_actions": list(workflow.available_actions(from_state))},
            )

        decision = self._policy.require_capability(ctx, transition.required_capability)
        if not decision.allowed:
            return self.deny(entity_type, entity_id, action, ctx, decision, from_state)

        if transition.scope is not None and not transition.scope.permits(
            ctx, snapshot, self._policy.registry,
        ):
            return self.deny(
                entity_type, entity_id, action, ctx,
                _scope_denial(transition.scope, entity_type, action),
                from_state,
            )

        if transition.guards:
            # Guard inputs are read under a row lock held until commit
            snapshot = self._store.load(entity_type, entity_id, lock=True)
            if snapshot is None or snapshot["status"] != from_state:
                current = snapshot["status"] if snapshot is not None else None
                return _conflict(entity_type, entity_id, action, from_state, current)

        for guard in transition.guards:
            failure = guard.evaluate(snapshot, params)
            if failure is not None:
                return TransitionResult.rejected(
                    entity_type, entity_id, action,
                    FailureCode.GUARD_FAILED, failure,
                    from_state=from_state,
                    detail={"guard": guard.name},
                )

        now = self._clock.now()
        values: dict[str, Any] = {
            "status": transition.to_state,
            "updated_at": now,
            "updated_by_id": ctx.member_id,
        }
        for stamp in transition.stamps:
            values[stamp.field] = stamp.resolve(now, ctx.member_id, params)

        if not self._store.compare_and_set(entity_type, entity_id, from_state, values):
            current = self._store.current_status(entity_type, entity_id)
            return _conflict(entity_type, entity_id, action, from_state, current)

        detail: dict[str, Any] = {}
        for name in transition.effects:
            produced = self._effects[name](EffectContext(
                session=self._session,
                ctx=ctx,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                from_state=from_state,
                to_state=transition.to_state,
                now=now,
                params=params,
            ))
            if produced:
                detail.update(produced)

        entity = self._store.get(entity_type, entity_id)
        metadata: dict[str, Any] = {}
        if params:
            metadata["params"] = params
        if detail:
            metadata["effects"] = detail
        entry = self._audit.record_transition(
            ctx,
            entity_type,
            entity_id,
            action,
            from_state,
            transition.to_state,
            before=dict(snapshot),
            after=entity.workflow_snapshot(),
            metadata=metadata,
        )
        return TransitionResult.applied(
            entity_type, entity_id, action,
            entity=entity,
            from_state=from_state,
            to_state=transition.to_state,
            audit_entry_id=entry.id,
            detail=detail,
        )

    # Creation

    def create(
        self,
        entity_type: str,
        ctx: AuthContext | None,
        values: Mapping[str, Any],
        *,
        action: str = AuditAction.ENTITY_CREATED.value,
        capability: Capability | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """
        Insert a new entity in its workflow's initial state.

        Gated on ``capability`` (defaults to the workflow's
        ``create_capability``) and audited as CREATE.  Status, stamp and
        row bookkeeping fields cannot be supplied.
        """
        get_workflow(entity_type)
        with LogContext.bind(entity_type=entity_type, action=action):
            return self.execute(
                f"{entity_type}.{action}",
                lambda: self.create_in_transaction(
                    entity_type, ctx, values,
                    action=action, capability=capability, metadata=metadata,
                ),
                ctx,
            )

    def create_in_transaction(
        self,
        entity_type: str,
        ctx: AuthContext | None,
        values: Mapping[str, Any],
        *,
        action: str = AuditAction.ENTITY_CREATED.value,
        capability: Capability | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """The body of ``create``, for composing inside ``execute``."""
        workflow = get_workflow(entity_type)
        values = dict(values)
        required = capability or workflow.create_capability
        decision = self._policy.require_capability(ctx, required)
        if not decision.allowed:
            return self.deny(entity_type, None, action, ctx, decision, metadata=metadata)

        forbidden = sorted(set(values) & (_ROW_FIELDS | workflow.stamped_fields))
        if forbidden:
            return TransitionResult.rejected(
                entity_type, None, action,
                FailureCode.INVALID_FIELD,
                f"Fields cannot be set on create: {', '.join(forbidden)}",
                detail={"fields": forbidden},
            )

        blank = _blank_fields(values, self._store.not_null_fields(entity_type))
        if blank:
            return TransitionResult.rejected(
                entity_type, None, action,
                FailureCode.INVALID_FIELD,
                f"Fields are required: {', '.join(blank)}",
                detail={"fields": blank},
            )

        entity_id = self._store.insert(entity_type, {
            **values,
            "status": workflow.initial_state,
            "created_by_id": ctx.member_id,
        })
        if entity_id is None:
            return TransitionResult.rejected(
                entity_type, None, action,
                FailureCode.CONFLICT,
                f"{entity_type} collides with an existing row",
                detail={k: str(v) for k, v in (metadata or {}).items()},
            )
        entity = self._store.get(entity_type, entity_id)
        entry = self._audit.record_create(
            ctx,
            entity_type,
            entity_id,
            after=entity.workflow_snapshot(),
            action=action,
            metadata=dict(metadata or {}),
        )
        return TransitionResult.applied(
            entity_type, entity_id, action,
            entity=entity,
            from_state=None,
            to_state=workflow.initial_state,
            audit_entry_id=entry.id,
        )

    # Content edits

    def update_content(
        self,
        entity_type: str,
        entity_id: UUID,
        ctx: AuthContext | None,
        changes: Mapping[str, Any],
    ) -> TransitionResult:
        """
        Change declared content fields while the entity is editable.

        The write is conditioned on the status read at the start, so an
        edit racing a transition either lands first or gets CONFLICT.
        """
        workflow = get_workflow(entity_type)
        action = AuditAction.CONTENT_UPDATED.value
        with LogContext.bind(entity_type=entity_type, entity_id=entity_id, action=action):
            return self.execute(
                f"{entity_type}.{action}",
                lambda: self._update_content(workflow, entity_id, ctx, dict(changes)),
                ctx,
            )

    def _update_content(
        self,
        workflow: Workflow,
        entity_id: UUID,
        ctx: AuthContext | None,
        changes: dict[str, Any],
    ) -> TransitionResult:
        entity_type = workflow.entity_type
        action = AuditAction.CONTENT_UPDATED.value
        if ctx is None:
            decision = self._policy.require_capability(None, workflow.edit_capability)
            return TransitionResult.denied(entity_type, entity_id, action, decision)

        snapshot = self._store.load(entity_type, entity_id)
        if snapshot is None:
            return TransitionResult.rejected(
                entity_type, entity_id, action,
                FailureCode.NOT_FOUND, f"{entity_type} {entity_id} not found",
            )
        from_state = snapshot["status"]

        decision = self._policy.require_capability(ctx, workflow.edit_capability)
        if not decision.allowed:
            return self.deny(entity_type, entity_id, action, ctx, decision, from_state)

        unknown = sorted(set(changes) - set(workflow.content_fields))
        if unknown or not changes:
            reason = (
                f"Fields are not editable: {', '.join(unknown)}" if unknown
                else "No fields to update"
            )
            return TransitionResult.rejected(
                entity_type, entity_id, action,
                FailureCode.INVALID_FIELD, reason,
                from_state=from_state,
                detail={"fields": unknown},
            )

        blank = _blank_fields(changes, self._store.not_null_fields(entity_type))
        if blank:
            return TransitionResult.rejected(
                entity_type, entity_id, action,
                FailureCode.INVALID_FIELD,
                f"Fields are required: {', '.join(blank)}",
                from_state=from_state,
                detail={"fields": blank},
            )

        if from_state not in workflow.editable_states:
            return TransitionResult.rejected(
                entity_type, entity_id, action,
                FailureCode.NOT_EDITABLE,
                f"{entity_type} cannot be edited in status {from_state}",
                from_state=from_state,
            )

        if workflow.edit_scope is not None and not workflow.edit_scope.permits(
            ctx, snapshot, self._policy.registry,
        ):
            return self.deny(
                entity_type, entity_id, action, ctx,
                _scope_denial(workflow.edit_scope, entity_type, "edit"),
                from_state,
            )

        values = {
            **changes,
            "updated_at": self._clock.now(),
            "updated_by_id": ctx.member_id,
        }
        if not self._store.compare_and_set(entity_type, entity_id, from_state, values):
            current = self._store.current_status(entity_type, entity_id)
            return _conflict(entity_type, entity_id, action, from_state, current)

        entity = self._store.get(entity_type, entity_id)
        after = entity.workflow_snapshot()
        fields = sorted(changes)
        entry = self._audit.record_update(
            ctx,
            entity_type,
            entity_id,
            before={k: snapshot.get(k) for k in fields},
            after={k: after.get(k) for k in fields},
            metadata={"status": from_state, "fields": fields},
        )
        return TransitionResult.applied(
            entity_type, entity_id, action,
            entity=entity,
            from_state=from_state,
            to_state=from_state,
            audit_entry_id=entry.id,
            detail={"fields": fields},
        )

    # Read helpers

    def available_actions(
        self,
        entity_type: str,
        entity_id: UUID,
        ctx: AuthContext | None,
    ) -> tuple[str, ...]:
        """Actions legal from the current status that ``ctx`` may request.

        Guards and object scope are not evaluated.
        """
        workflow = get_workflow(entity_type)
        status = self._store.current_status(entity_type, entity_id)
        if status is None or ctx is None:
            return ()
        registry = self._policy.registry
        permitted = []
        for action in workflow.available_actions(status):
            capability = workflow.resolve(status, action).required_capability
            if ctx.is_impersonating and is_write_capability(capability):
                continue
            if registry.has_capability(ctx.global_role, capability):
                permitted.append(action)
        return tuple(permitted)
