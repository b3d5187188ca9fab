"""
Typed results for expected outcomes.

Denials and rejections are values, not exceptions.  Each carries a stable
machine-readable ``FailureCode`` and a human-readable reason; the code also
suggests the HTTP status a handler should map it to, so the mapping is
lossless without the kernel owning it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID


class FailureCode(str, Enum):
    """Stable codes for every expected denial or rejection."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN_CAPABILITY = "FORBIDDEN_CAPABILITY"
    FORBIDDEN_IMPERSONATION = "FORBIDDEN_IMPERSONATION"
    DELEGATION_NO_AUTHORITY = "DELEGATION_NO_AUTHORITY"
    DELEGATION_OUT_OF_SCOPE = "DELEGATION_OUT_OF_SCOPE"
    DELEGATION_ESCALATION = "DELEGATION_ESCALATION"
    OBJECT_OUT_OF_SCOPE = "OBJECT_OUT_OF_SCOPE"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    GUARD_FAILED = "GUARD_FAILED"
    CONFLICT = "CONFLICT"
    NOT_EDITABLE = "NOT_EDITABLE"
    INVALID_FIELD = "INVALID_FIELD"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def is_denial(self) -> bool:
        """Authorization failures, as opposed to state/data rejections."""
        return self in DENIAL_CODES

    @property
    def is_security_relevant(self) -> bool:
        """Denials that must leave an audit entry behind."""
        return self in DENIAL_CODES and self is not FailureCode.UNAUTHENTICATED


_HTTP_STATUS: Mapping[FailureCode, int] = MappingProxyType({
    FailureCode.UNAUTHENTICATED: 401,
    FailureCode.FORBIDDEN_CAPABILITY: 403,
    FailureCode.FORBIDDEN_IMPERSONATION: 403,
    FailureCode.DELEGATION_NO_AUTHORITY: 403,
    FailureCode.DELEGATION_OUT_OF_SCOPE: 403,
    FailureCode.DELEGATION_ESCALATION: 403,
    FailureCode.OBJECT_OUT_OF_SCOPE: 403,
    FailureCode.NOT_FOUND: 404,
    FailureCode.UNKNOWN_ACTION: 400,
    FailureCode.INVALID_FIELD: 400,
    FailureCode.GUARD_FAILED: 400,
    FailureCode.INVALID_TRANSITION: 409,
    FailureCode.CONFLICT: 409,
    FailureCode.NOT_EDITABLE: 409,
})

DENIAL_CODES: frozenset[FailureCode] = frozenset({
    FailureCode.UNAUTHENTICATED,
    FailureCode.FORBIDDEN_CAPABILITY,
    FailureCode.FORBIDDEN_IMPERSONATION,
    FailureCode.DELEGATION_NO_AUTHORITY,
    FailureCode.DELEGATION_OUT_OF_SCOPE,
    FailureCode.DELEGATION_ESCALATION,
    FailureCode.OBJECT_OUT_OF_SCOPE,
})


@dataclass(frozen=True)
class PolicyDecision:
    """
    Allow or Deny from a policy gate.

    ``capability`` names what was asked for, so audits of a denial can say
    which grant was missing.
    """

    allowed: bool
    code: FailureCode | None = None
    reason: str = ""
    capability: str | None = None

    @classmethod
    def allow(cls, capability: str | None = None) -> PolicyDecision:
        return cls(allowed=True, capability=capability)

    @classmethod
    def deny(
        cls,
        code: FailureCode,
        reason: str,
        capability: str | None = None,
    ) -> PolicyDecision:
        return cls(allowed=False, code=code, reason=reason, capability=capability)

    @property
    def http_status(self) -> int:
        return 200 if self.allowed else self.code.http_status

    def __bool__(self) -> bool:
        return self.allowed


class Outcome(str, Enum):
    APPLIED = "applied"
    DENIED = "denied"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TransitionResult:
    """
    Result of any gated workflow operation (transition, create, content edit).

    Contract:
        - ``APPLIED``: the mutation and its audit entry were committed
          together; ``entity`` is the refreshed row.
        - ``DENIED``: a policy or scope gate said no; nothing changed.
        - ``REJECTED``: the request was authorized (or never reached
          authorization) but the entity's state or data forbade it.
    """

    outcome: Outcome
    entity_type: str
    entity_id: UUID | None = None
    action: str | None = None
    code: FailureCode | None = None
    reason: str = ""
    entity: Any = None
    from_state: str | None = None
    to_state: str | None = None
    audit_entry_id: UUID | None = None
    detail: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.outcome is Outcome.APPLIED

    @property
    def http_status(self) -> int:
        return 200 if self.code is None else self.code.http_status

    @classmethod
    def applied(
        cls,
        entity_type: str,
        entity_id: UUID,
        action: str,
        *,
        entity: Any,
        from_state: str | None,
        to_state: str | None,
        audit_entry_id: UUID | None,
        detail: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        return cls(
            outcome=Outcome.APPLIED,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            entity=entity,
            from_state=from_state,
            to_state=to_state,
            audit_entry_id=audit_entry_id,
            detail=dict(detail or {}),
        )

    @classmethod
    def denied(
        cls,
        entity_type: str,
        entity_id: UUID | None,
        action: str,
        decision: PolicyDecision,
        *,
        from_state: str | None = None,
        audit_entry_id: UUID | None = None,
        detail: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        return cls(
            outcome=Outcome.DENIED,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            code=decision.code,
            reason=decision.reason,
            from_state=from_state,
            audit_entry_id=audit_entry_id,
            detail=dict(detail or {}),
        )

    @classmethod
    def rejected(
        cls,
        entity_type: str,
        entity_id: UUID | None,
        action: str,
        code: FailureCode,
        reason: str,
        *,
        from_state: str | None = None,
        detail: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        return cls(
            outcome=Outcome.REJECTED,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            code=code,
            reason=reason,
            from_state=from_state,
            detail=dict(detail or {}),
        )
