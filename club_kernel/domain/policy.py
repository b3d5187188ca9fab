"""
PolicyEnforcer -- the single capability gate.

Responsibility:
    Decide Allow/Deny for (AuthContext, capability).  Every privileged
    operation passes through ``require_capability`` before touching persisted
    state.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Auditing a denial is the caller's job
    (the workflow engine and delegation service do it); the enforcer only
    decides and logs.

Rules, in order:
    1. No context                         -> UNAUTHENTICATED (401)
    2. Impersonating and a write capability -> FORBIDDEN_IMPERSONATION (403)
    3. Role lacks the capability          -> FORBIDDEN_CAPABILITY (403)
    4. Allow
"""

from __future__ import annotations

from club_kernel.domain.auth_context import AuthContext, ContextResolver, resolve_context
from club_kernel.domain.capabilities import (
    DEFAULT_REGISTRY,
    Capability,
    CapabilityRegistry,
    is_write_capability,
)
from club_kernel.domain.results import FailureCode, PolicyDecision
from club_kernel.logging_config import get_logger

logger = get_logger("domain.policy")


def _tag(capability: Capability | str) -> str:
    return capability.value if isinstance(capability, Capability) else str(capability)


class PolicyEnforcer:
    """Capability gate over a CapabilityRegistry."""

    def __init__(self, registry: CapabilityRegistry | None = None):
        self._registry = registry or DEFAULT_REGISTRY

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    def require_capability(
        self,
        ctx: AuthContext | None,
        capability: Capability | str,
    ) -> PolicyDecision:
        tag = _tag(capability)

        if ctx is None:
            logger.info("capability_denied", extra={
                "capability": tag,
                "code": FailureCode.UNAUTHENTICATED.value,
            })
            return PolicyDecision.deny(
                FailureCode.UNAUTHENTICATED, "unauthenticated", tag,
            )

        if ctx.is_impersonating and is_write_capability(capability):
            logger.warning("capability_denied", extra={
                "capability": tag,
                "code": FailureCode.FORBIDDEN_IMPERSONATION.value,
                "member_id": str(ctx.member_id),
                "impersonated_by": str(ctx.impersonated_by),
            })
            return PolicyDecision.deny(
                FailureCode.FORBIDDEN_IMPERSONATION,
                "impersonation is read-only",
                tag,
            )

        if not self._registry.has_capability(ctx.global_role, capability):
            logger.info("capability_denied", extra={
                "capability": tag,
                "code": FailureCode.FORBIDDEN_CAPABILITY.value,
                "member_id": str(ctx.member_id),
                "global_role": ctx.global_role.value,
            })
            return PolicyDecision.deny(
                FailureCode.FORBIDDEN_CAPABILITY,
                f"Role {ctx.global_role.value} lacks capability {tag}",
                tag,
            )

        return PolicyDecision.allow(tag)

    def require_capability_from(
        self,
        resolver: ContextResolver,
        capability: Capability | str,
    ) -> tuple[AuthContext | None, PolicyDecision]:
        """Resolve the context (fail closed) and gate it in one call."""
        ctx = resolve_context(resolver)
        return ctx, self.require_capability(ctx, capability)
