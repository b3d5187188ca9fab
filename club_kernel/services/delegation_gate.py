"""
The two-gate delegation check as the services apply it.

Every write that places someone in (or removes someone from) a committee
seat runs ``delegation_gate`` before touching any row: transition plan
assignments and direct committee membership edits alike.  Denials are
audited through the engine; a missing committee is a NOT_FOUND rejection.
"""

from datetime import datetime
from uuid import UUID

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import GlobalRole
from club_kernel.domain.delegation import DelegationDecision, DelegationScopeResolver
from club_kernel.domain.results import FailureCode, TransitionResult
from club_kernel.services.workflow_engine import WorkflowEngine


def coerce_granted_role(value: GlobalRole | str | None) -> GlobalRole | None:
    """Raises ValueError for an unknown role name."""
    if value is None or isinstance(value, GlobalRole):
        return value
    return GlobalRole(value)


def delegation_gate(
    engine: WorkflowEngine,
    resolver: DelegationScopeResolver,
    ctx: AuthContext | None,
    *,
    entity_type: str,
    entity_id: UUID | None,
    action: str,
    committee_id: UUID,
    as_of: datetime,
    granted_role: GlobalRole | None = None,
) -> tuple[TransitionResult | None, DelegationDecision]:
    """
    Returns ``(None, decision)`` when the actor may proceed, otherwise the
    result to hand back to the caller.
    """
    decision = resolver.check(ctx, committee_id, as_of, granted_role)
    if decision.allowed:
        return None, decision
    if decision.code is FailureCode.NOT_FOUND:
        return TransitionResult.rejected(
            entity_type, entity_id, action,
            FailureCode.NOT_FOUND, decision.reason,
            detail={"committee_id": str(committee_id)},
        ), decision
    return engine.deny(
        entity_type, entity_id, action, ctx,
        decision.as_policy_decision(),
        metadata=decision.audit_metadata(),
    ), decision


def authority_gate(
    engine: WorkflowEngine,
    resolver: DelegationScopeResolver,
    ctx: AuthContext | None,
    *,
    entity_type: str,
    entity_id: UUID | None,
    action: str,
) -> TransitionResult | None:
    """First gate alone, for edits whose target committees are not known yet."""
    decision = resolver.check_authority(ctx)
    if decision.allowed:
        return None
    return engine.deny(
        entity_type, entity_id, action, ctx,
        decision.as_policy_decision(),
        metadata=decision.audit_metadata(),
    )
