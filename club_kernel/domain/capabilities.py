"""
Capability registry -- the single source of truth for role grants.

Responsibility:
    Declares the closed set of global roles, the closed set of capabilities,
    which capabilities are read-only, and the fixed role -> capability table.
    Every privileged check in the kernel resolves through this module; no
    other module compares a role name to decide what an actor may do.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The table is a
    module-level frozen mapping, safe for unlimited concurrent reads.

Invariants enforced:
    - Totality: ``has_capability(role, cap)`` is exactly
      ``cap in ROLE_CAPABILITIES[role]``.  There is no wildcard and no
      fallthrough; the admin row lists every capability by name.
    - Fail-closed classification: a capability is a WRITE unless it is
      listed in READ_CAPABILITIES.
    - Admin-only grants: ADMIN_ONLY_CAPABILITIES appear in no row but admin's
      (checked at import time).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from types import MappingProxyType


class GlobalRole(str, Enum):
    """Single enumerated role an actor holds for the duration of a session."""

    ADMIN = "admin"
    PRESIDENT = "president"
    PAST_PRESIDENT = "past-president"
    VP_ACTIVITIES = "vp-activities"
    VP_COMMUNICATIONS = "vp-communications"
    EVENT_CHAIR = "event-chair"
    WEBMASTER = "webmaster"
    SECRETARY = "secretary"
    PARLIAMENTARIAN = "parliamentarian"
    MEMBER = "member"


class Capability(str, Enum):
    """Opaque permission tag naming a permitted action class."""

    # Administration
    ADMIN_FULL = "admin:full"
    USERS_MANAGE = "users:manage"
    FILES_MANAGE = "files:manage"
    AUDIT_VIEW = "audit:view"
    ROLES_ASSIGN = "roles:assign"

    # Members
    MEMBERS_VIEW = "members:view"
    MEMBERS_HISTORY = "members:history"
    REGISTRATIONS_VIEW = "registrations:view"
    EXPORTS_ACCESS = "exports:access"

    # Finance
    FINANCE_VIEW = "finance:view"
    FINANCE_MANAGE = "finance:manage"

    # Communications and publishing
    PUBLISHING_MANAGE = "publishing:manage"
    COMMS_MANAGE = "comms:manage"
    COMMS_SEND = "comms:send"
    CONTENT_BOARD_PUBLISH = "content:board:publish"

    # Events
    EVENTS_VIEW = "events:view"
    EVENTS_SUBMIT = "events:submit"
    EVENTS_EDIT = "events:edit"
    EVENTS_APPROVE = "events:approve"
    EVENTS_DELETE = "events:delete"

    # Officer transitions
    TRANSITIONS_VIEW = "transitions:view"
    TRANSITIONS_MANAGE = "transitions:manage"
    TRANSITIONS_APPROVE = "transitions:approve"
    TRANSITIONS_APPLY = "transitions:apply"

    # Meetings and minutes
    MEETINGS_READ = "meetings:read"
    MINUTES_READ_ALL = "meetings:minutes:read_all"
    MINUTES_DRAFT_CREATE = "meetings:minutes:draft:create"
    MINUTES_DRAFT_EDIT = "meetings:minutes:draft:edit"
    MINUTES_DRAFT_SUBMIT = "meetings:minutes:draft:submit"
    MINUTES_REVISE = "meetings:minutes:revise"
    MINUTES_FINALIZE = "meetings:minutes:finalize"
    MINUTES_ARCHIVE = "meetings:minutes:archive"
    MOTIONS_READ = "meetings:motions:read"
    MOTIONS_ANNOTATE = "meetings:motions:annotate"

    # Governance documents
    GOVERNANCE_DOCS_READ = "governance:docs:read"
    GOVERNANCE_DOCS_WRITE = "governance:docs:write"
    GOVERNANCE_RULES_MANAGE = "governance:rules:manage"
    GOVERNANCE_FLAGS_CREATE = "governance:flags:create"
    GOVERNANCE_FLAGS_RESOLVE = "governance:flags:resolve"
    GOVERNANCE_INTERPRETATIONS_CREATE = "governance:interpretations:create"
    GOVERNANCE_INTERPRETATIONS_EDIT = "governance:interpretations:edit"
    GOVERNANCE_INTERPRETATIONS_PUBLISH = "governance:interpretations:publish"
    GOVERNANCE_POLICIES_ANNOTATE = "governance:policies:annotate"
    GOVERNANCE_POLICIES_PROPOSE_CHANGE = "governance:policies:propose_change"
    GOVERNANCE_ANNOTATIONS_WRITE = "governance:annotations:write"

    # Committees and support desk
    COMMITTEES_READ = "committees:read"
    SUPPORT_MANAGE = "support:manage"


READ_CAPABILITIES: frozenset[Capability] = frozenset({
    Capability.AUDIT_VIEW,
    Capability.MEMBERS_VIEW,
    Capability.MEMBERS_HISTORY,
    Capability.REGISTRATIONS_VIEW,
    Capability.EXPORTS_ACCESS,
    Capability.FINANCE_VIEW,
    Capability.EVENTS_VIEW,
    Capability.TRANSITIONS_VIEW,
    Capability.MEETINGS_READ,
    Capability.MINUTES_READ_ALL,
    Capability.MOTIONS_READ,
    Capability.GOVERNANCE_DOCS_READ,
    Capability.COMMITTEES_READ,
})

ADMIN_ONLY_CAPABILITIES: frozenset[Capability] = frozenset({
    Capability.ADMIN_FULL,
    Capability.EVENTS_DELETE,
    Capability.USERS_MANAGE,
    Capability.FILES_MANAGE,
    Capability.FINANCE_MANAGE,
})

C = Capability

_ROLE_TABLE: dict[GlobalRole, frozenset[Capability]] = {
    GlobalRole.ADMIN: frozenset(Capability),
    GlobalRole.PRESIDENT: frozenset({
        C.MEMBERS_VIEW, C.MEMBERS_HISTORY, C.REGISTRATIONS_VIEW,
        C.EXPORTS_ACCESS, C.FINANCE_VIEW, C.AUDIT_VIEW, C.ROLES_ASSIGN,
        C.EVENTS_VIEW, C.EVENTS_SUBMIT, C.EVENTS_EDIT, C.EVENTS_APPROVE,
        C.TRANSITIONS_VIEW, C.TRANSITIONS_MANAGE, C.TRANSITIONS_APPROVE,
        C.TRANSITIONS_APPLY,
        C.MEETINGS_READ, C.MINUTES_READ_ALL, C.MINUTES_REVISE,
        C.MINUTES_FINALIZE, C.MOTIONS_READ,
        C.GOVERNANCE_DOCS_READ, C.GOVERNANCE_FLAGS_RESOLVE,
        C.CONTENT_BOARD_PUBLISH, C.COMMITTEES_READ,
    }),
    GlobalRole.PAST_PRESIDENT: frozenset({
        C.MEMBERS_VIEW, C.MEMBERS_HISTORY, C.EVENTS_VIEW,
        C.TRANSITIONS_VIEW, C.MEETINGS_READ, C.GOVERNANCE_DOCS_READ,
        C.COMMITTEES_READ,
    }),
    GlobalRole.VP_ACTIVITIES: frozenset({
        C.MEMBERS_VIEW, C.MEMBERS_HISTORY, C.REGISTRATIONS_VIEW,
        C.ROLES_ASSIGN,
        C.EVENTS_VIEW, C.EVENTS_SUBMIT, C.EVENTS_EDIT, C.EVENTS_APPROVE,
        C.TRANSITIONS_VIEW, C.TRANSITIONS_APPROVE,
        C.MEETINGS_READ, C.COMMITTEES_READ,
    }),
    GlobalRole.VP_COMMUNICATIONS: frozenset({
        C.MEMBERS_VIEW, C.ROLES_ASSIGN,
        C.PUBLISHING_MANAGE, C.COMMS_MANAGE, C.COMMS_SEND,
        C.EVENTS_VIEW, C.MEETINGS_READ, C.COMMITTEES_READ,
    }),
    GlobalRole.EVENT_CHAIR: frozenset({
        C.MEMBERS_VIEW, C.REGISTRATIONS_VIEW,
        C.EVENTS_VIEW, C.EVENTS_SUBMIT,
    }),
    GlobalRole.WEBMASTER: frozenset({
        C.PUBLISHING_MANAGE, C.COMMS_MANAGE, C.EVENTS_VIEW, C.SUPPORT_MANAGE,
    }),
    GlobalRole.SECRETARY: frozenset({
        C.EVENTS_VIEW,
        C.MEETINGS_READ, C.MINUTES_READ_ALL, C.MINUTES_DRAFT_CREATE,
        C.MINUTES_DRAFT_EDIT, C.MINUTES_DRAFT_SUBMIT,
        C.GOVERNANCE_DOCS_READ,
    }),
    GlobalRole.PARLIAMENTARIAN: frozenset({
        C.MEETINGS_READ, C.MOTIONS_READ, C.MOTIONS_ANNOTATE,
        C.GOVERNANCE_DOCS_READ, C.GOVERNANCE_DOCS_WRITE,
        C.GOVERNANCE_RULES_MANAGE, C.GOVERNANCE_FLAGS_CREATE,
        C.GOVERNANCE_INTERPRETATIONS_CREATE, C.GOVERNANCE_INTERPRETATIONS_EDIT,
        C.GOVERNANCE_INTERPRETATIONS_PUBLISH, C.GOVERNANCE_POLICIES_ANNOTATE,
        C.GOVERNANCE_POLICIES_PROPOSE_CHANGE, C.GOVERNANCE_ANNOTATIONS_WRITE,
    }),
    GlobalRole.MEMBER: frozenset({
        C.EVENTS_VIEW,
    }),
}

del C

ROLE_CAPABILITIES: Mapping[GlobalRole, frozenset[Capability]] = MappingProxyType(_ROLE_TABLE)


def _check_table() -> None:
    missing = [role.value for role in GlobalRole if role not in _ROLE_TABLE]
    if missing:
        raise RuntimeError(f"Roles without a capability row: {missing}")
    for role, caps in _ROLE_TABLE.items():
        if role is GlobalRole.ADMIN:
            continue
        leaked = caps & ADMIN_ONLY_CAPABILITIES
        if leaked:
            raise RuntimeError(
                f"Admin-only capabilities granted to {role.value}: "
                f"{sorted(c.value for c in leaked)}"
            )


_check_table()


def _coerce_capability(capability: Capability | str) -> Capability | None:
    if isinstance(capability, Capability):
        return capability
    try:
        return Capability(capability)
    except ValueError:
        return None


def _coerce_role(role: GlobalRole | str | None) -> GlobalRole | None:
    if isinstance(role, GlobalRole):
        return role
    if role is None:
        return None
    try:
        return GlobalRole(role)
    except ValueError:
        return None


def capabilities_for(role: GlobalRole | str | None) -> frozenset[Capability]:
    """Capabilities held by ``role``; an unknown role holds none."""
    resolved = _coerce_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_CAPABILITIES[resolved]


def has_capability(role: GlobalRole | str | None, capability: Capability | str) -> bool:
    cap = _coerce_capability(capability)
    if cap is None:
        return False
    return cap in capabilities_for(role)


def has_any_capability(
    role: GlobalRole | str | None,
    capabilities: Iterable[Capability | str],
) -> bool:
    return any(has_capability(role, cap) for cap in capabilities)


def is_write_capability(capability: Capability | str) -> bool:
    """Anything not explicitly read-only is a write, including unknown tags."""
    cap = _coerce_capability(capability)
    return cap is None or cap not in READ_CAPABILITIES


def is_full_admin(role: GlobalRole | str | None) -> bool:
    return has_capability(role, Capability.ADMIN_FULL)


def can_assign_roles(role: GlobalRole | str | None) -> bool:
    """Authority check: can this role ever assign roles, regardless of scope."""
    return has_capability(role, Capability.ROLES_ASSIGN)


def denied_grants(
    assigner_role: GlobalRole | str | None,
    granted_role: GlobalRole | str,
) -> frozenset[Capability]:
    """
    Capabilities of ``granted_role`` the assigner does not hold.

    A full admin may grant anything.  An empty result means the grant is not
    an escalation.
    """
    if is_full_admin(assigner_role):
        return frozenset()
    return capabilities_for(granted_role) - capabilities_for(assigner_role)


def can_grant_role(
    assigner_role: GlobalRole | str | None,
    granted_role: GlobalRole | str,
) -> bool:
    return not denied_grants(assigner_role, granted_role)


class CapabilityRegistry:
    """
    Object facade over the module-level table.

    Lets callers inject the registry (and tests substitute a narrower table)
    without reaching for module globals.
    """

    def __init__(self, table: Mapping[GlobalRole, frozenset[Capability]] | None = None):
        self._table = MappingProxyType(dict(table)) if table is not None else ROLE_CAPABILITIES

    @property
    def roles(self) -> tuple[GlobalRole, ...]:
        return tuple(self._table)

    def capabilities_for(self, role: GlobalRole | str | None) -> frozenset[Capability]:
        resolved = _coerce_role(role)
        if resolved is None:
            return frozenset()
        return self._table.get(resolved, frozenset())

    def has_capability(self, role: GlobalRole | str | None, capability: Capability | str) -> bool:
        cap = _coerce_capability(capability)
        if cap is None:
            return False
        return cap in self.capabilities_for(role)

    def has_any_capability(
        self,
        role: GlobalRole | str | None,
        capabilities: Iterable[Capability | str],
    ) -> bool:
        return any(self.has_capability(role, cap) for cap in capabilities)

    def denied_grants(
        self,
        assigner_role: GlobalRole | str | None,
        granted_role: GlobalRole | str,
    ) -> frozenset[Capability]:
        if self.has_capability(assigner_role, Capability.ADMIN_FULL):
            return frozenset()
        return self.capabilities_for(granted_role) - self.capabilities_for(assigner_role)

    def matrix(self) -> dict[GlobalRole, dict[Capability, bool]]:
        """Role x capability grid, for operator reports."""
        return {
            role: {cap: cap in self.capabilities_for(role) for cap in Capability}
            for role in self.roles
        }


DEFAULT_REGISTRY = CapabilityRegistry()
