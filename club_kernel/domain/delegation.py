"""
Delegation scoping -- who may assign which roles where.

Responsibility:
    A second gate for authority that is both role-gated and object-scoped.
    Three checks run in order and short-circuit:

      1. Authority  -- can this role ever assign roles?  (roles:assign)
      2. Scope      -- is the target committee among the actor's active
                       committees (or is the actor organization-wide)?
      3. Escalation -- when the assignment grants a global role, does the
                       assigner already hold every capability it carries?

    Each failure has its own FailureCode so callers and audits can tell
    "no authority at all" from "authority, wrong committee".

Architecture position:
    Kernel > Domain.  Membership data is read through the MembershipLookup
    protocol; the SQLAlchemy implementation lives in services/.  The
    resolver never writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import Capability, GlobalRole
from club_kernel.domain.policy import PolicyEnforcer
from club_kernel.domain.results import FailureCode, PolicyDecision
from club_kernel.logging_config import get_logger

logger = get_logger("domain.delegation")

NO_AUTHORITY_REASON = (
    "You do not have authority to assign roles. "
    f"Required capability: {Capability.ROLES_ASSIGN.value}"
)
OUT_OF_SCOPE_REASON = "Cannot assign roles outside your committee scope"
INACTIVE_COMMITTEE_REASON = "Cannot assign to inactive committee"
COMMITTEE_NOT_FOUND_REASON = "Target committee not found"


@dataclass(frozen=True)
class CommitteeRef:
    id: UUID
    name: str
    is_active: bool


@runtime_checkable
class MembershipLookup(Protocol):
    """Read-only access to committees and role assignments."""

    def get_committee(self, committee_id: UUID) -> CommitteeRef | None:
        ...

    def active_committee_ids(self, member_id: UUID, as_of: datetime) -> frozenset[UUID]:
        """Committees where ``member_id`` holds an assignment active at ``as_of``."""
        ...

    def all_active_committee_ids(self) -> frozenset[UUID]:
        ...


@dataclass(frozen=True)
class DelegationDecision:
    """
    Outcome of a delegation check.

    ``assigner_scope`` and ``target_scope`` let a Forbidden response explain
    itself without exposing unrelated committees.
    """

    allowed: bool
    code: FailureCode | None = None
    reason: str = ""
    assigner_scope: frozenset[UUID] = frozenset()
    target_scope: UUID | None = None
    org_wide: bool = False
    denied_capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def http_status(self) -> int:
        return 200 if self.allowed else self.code.http_status

    def as_policy_decision(self) -> PolicyDecision:
        if self.allowed:
            return PolicyDecision.allow(Capability.ROLES_ASSIGN.value)
        return PolicyDecision.deny(self.code, self.reason, Capability.ROLES_ASSIGN.value)

    def audit_metadata(self) -> dict:
        return {
            "delegation_code": self.code.value if self.code else None,
            "assigner_scope": sorted(str(c) for c in self.assigner_scope),
            "target_scope": str(self.target_scope) if self.target_scope else None,
            "org_wide": self.org_wide,
            "denied_capabilities": sorted(self.denied_capabilities),
        }


class DelegationScopeResolver:
    """Authority, scope and escalation checks over a MembershipLookup."""

    def __init__(self, lookup: MembershipLookup, policy: PolicyEnforcer | None = None):
        self._lookup = lookup
        self._policy = policy or PolicyEnforcer()

    def delegation_scope(self, ctx: AuthContext, as_of: datetime) -> frozenset[UUID]:
        """Committee ids the actor may assign into at ``as_of``."""
        if self._is_org_wide(ctx):
            return self._lookup.all_active_committee_ids()
        return self._lookup.active_committee_ids(ctx.member_id, as_of)

    def check_authority(self, ctx: AuthContext | None) -> DelegationDecision:
        decision = self._policy.require_capability(ctx, Capability.ROLES_ASSIGN)
        if decision.allowed:
            return DelegationDecision(allowed=True)
        if decision.code is FailureCode.FORBIDDEN_CAPABILITY:
            return DelegationDecision(
                allowed=False,
                code=FailureCode.DELEGATION_NO_AUTHORITY,
                reason=NO_AUTHORITY_REASON,
            )
        # Unauthenticated and impersonation denials pass through unchanged
        return DelegationDecision(allowed=False, code=decision.code, reason=decision.reason)

    def check_scope(
        self,
        ctx: AuthContext,
        target_committee_id: UUID,
        as_of: datetime,
    ) -> DelegationDecision:
        org_wide = self._is_org_wide(ctx)
        committee = self._lookup.get_committee(target_committee_id)
        if committee is None:
            return DelegationDecision(
                allowed=False,
                code=FailureCode.NOT_FOUND,
                reason=COMMITTEE_NOT_FOUND_REASON,
                target_scope=target_committee_id,
                org_wide=org_wide,
            )
        if not committee.is_active:
            return DelegationDecision(
                allowed=False,
                code=FailureCode.DELEGATION_OUT_OF_SCOPE,
                reason=INACTIVE_COMMITTEE_REASON,
                target_scope=target_committee_id,
                org_wide=org_wide,
            )
        if org_wide:
            return DelegationDecision(
                allowed=True, target_scope=target_committee_id, org_wide=True,
            )

        scope = self._lookup.active_committee_ids(ctx.member_id, as_of)
        if target_committee_id not in scope:
            return DelegationDecision(
                allowed=False,
                code=FailureCode.DELEGATION_OUT_OF_SCOPE,
                reason=OUT_OF_SCOPE_REASON,
                assigner_scope=scope,
                target_scope=target_committee_id,
            )
        return DelegationDecision(
            allowed=True, assigner_scope=scope, target_scope=target_committee_id,
        )

    def check_escalation(
        self,
        ctx: AuthContext,
        granted_role: GlobalRole | None,
    ) -> DelegationDecision:
        if granted_role is None:
            return DelegationDecision(allowed=True)
        denied = self._policy.registry.denied_grants(ctx.global_role, granted_role)
        if denied:
            return DelegationDecision(
                allowed=False,
                code=FailureCode.DELEGATION_ESCALATION,
                reason=(
                    f"Cannot grant role {granted_role.value}: it carries capabilities "
                    f"you do not hold"
                ),
                denied_capabilities=frozenset(c.value for c in denied),
            )
        return DelegationDecision(allowed=True)

    def check(
        self,
        ctx: AuthContext | None,
        target_committee_id: UUID,
        as_of: datetime,
        granted_role: GlobalRole | None = None,
    ) -> DelegationDecision:
        """Run authority, scope and escalation checks in order."""
        authority = self.check_authority(ctx)
        if not authority.allowed:
            self._log_denied(ctx, target_committee_id, authority)
            return authority

        scope = self.check_scope(ctx, target_committee_id, as_of)
        if not scope.allowed:
            self._log_denied(ctx, target_committee_id, scope)
            return scope

        escalation = self.check_escalation(ctx, granted_role)
        if not escalation.allowed:
            decision = DelegationDecision(
                allowed=False,
                code=escalation.code,
                reason=escalation.reason,
                assigner_scope=scope.assigner_scope,
                target_scope=target_committee_id,
                org_wide=scope.org_wide,
                denied_capabilities=escalation.denied_capabilities,
            )
            self._log_denied(ctx, target_committee_id, decision)
            return decision

        return scope

    def _is_org_wide(self, ctx: AuthContext) -> bool:
        return self._policy.registry.has_capability(ctx.global_role, Capability.ADMIN_FULL)

    @staticmethod
    def _log_denied(
        ctx: AuthContext | None,
        target_committee_id: UUID,
        decision: DelegationDecision,
    ) -> None:
        logger.info("delegation_denied", extra={
            "code": decision.code.value,
            "member_id": str(ctx.member_id) if ctx else None,
            "target_committee_id": str(target_committee_id),
            "assigner_scope_size": len(decision.assigner_scope),
        })
