"""
Pure authorization and workflow logic.  Nothing in this package performs I/O;
the services layer supplies sessions, stores and clocks.
"""

from club_kernel.domain.auth_context import AuthContext, resolve_context
from club_kernel.domain.capabilities import (
    DEFAULT_REGISTRY,
    Capability,
    CapabilityRegistry,
    GlobalRole,
)
from club_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from club_kernel.domain.delegation import (
    CommitteeRef,
    DelegationDecision,
    DelegationScopeResolver,
    MembershipLookup,
)
from club_kernel.domain.policy import PolicyEnforcer
from club_kernel.domain.results import FailureCode, Outcome, PolicyDecision, TransitionResult

__all__ = [
    "AuthContext",
    "Capability",
    "CapabilityRegistry",
    "Clock",
    "CommitteeRef",
    "DEFAULT_REGISTRY",
    "DelegationDecision",
    "DelegationScopeResolver",
    "DeterministicClock",
    "FailureCode",
    "GlobalRole",
    "MembershipLookup",
    "Outcome",
    "PolicyDecision",
    "PolicyEnforcer",
    "SystemClock",
    "TransitionResult",
    "resolve_context",
]
