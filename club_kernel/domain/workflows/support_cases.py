"""
Support case triage.

    OPEN <──> AWAITING_INFO <──> IN_PROGRESS ──> ESCALATED ──> RESOLVED ──> CLOSED

Every status change appends a system note recording the prior status.
CLOSED is terminal and stamps closed_at/closed_by_id.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from club_kernel.domain.capabilities import Capability
from club_kernel.domain.workflow import Guard, Stamp, StampSource, Transition, Workflow

ENTITY_TYPE = "SupportCase"

STATUS_NOTE_EFFECT = "record_status_note"


class SupportCaseStatus(str, Enum):
    OPEN = "OPEN"
    AWAITING_INFO = "AWAITING_INFO"
    IN_PROGRESS = "IN_PROGRESS"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class SupportCaseCategory(str, Enum):
    UNKNOWN = "UNKNOWN"
    MEMBERSHIP = "MEMBERSHIP"
    EVENTS = "EVENTS"
    PAYMENTS = "PAYMENTS"
    ACCOUNT_ACCESS = "ACCOUNT_ACCESS"
    TECHNICAL = "TECHNICAL"
    OTHER = "OTHER"


class SupportNoteType(str, Enum):
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"


S = SupportCaseStatus


def _ready_to_close(snapshot: Mapping[str, Any], params: Mapping[str, Any]) -> str | None:
    missing = []
    if snapshot.get("category") in (None, SupportCaseCategory.UNKNOWN.value):
        missing.append("a known category")
    if not (snapshot.get("resolution") or "").strip():
        missing.append("a resolution")
    if not (snapshot.get("resolution_notes") or "").strip():
        missing.append("resolution notes")
    if missing:
        return "Case needs " + ", ".join(missing) + " before it can be closed"
    return None


READY_TO_CLOSE = Guard(
    name="ready_to_close",
    description="Case must be categorized and carry a resolution before closing",
    check=_ready_to_close,
)


def _move(action: str, sources: set[SupportCaseStatus], target: SupportCaseStatus, **kw) -> Transition:
    return Transition(
        from_states=frozenset(s.value for s in sources),
        action=action,
        to_state=target.value,
        required_capability=Capability.SUPPORT_MANAGE,
        effects=(STATUS_NOTE_EFFECT,),
        **kw,
    )


SUPPORT_CASE_WORKFLOW = Workflow(
    entity_type=ENTITY_TYPE,
    description="Support desk case triage",
    initial_state=S.OPEN.value,
    states=tuple(s.value for s in SupportCaseStatus),
    terminal_states=(S.CLOSED.value,),
    create_capability=Capability.SUPPORT_MANAGE,
    edit_capability=Capability.SUPPORT_MANAGE,
    editable_states=tuple(s.value for s in SupportCaseStatus if s is not S.CLOSED),
    content_fields=(
        "subject", "description", "category", "resolution", "resolution_notes",
    ),
    transitions=(
        _move("reopen", {S.AWAITING_INFO}, S.OPEN),
        _move("request_info", {S.OPEN, S.IN_PROGRESS}, S.AWAITING_INFO),
        _move("start", {S.OPEN, S.AWAITING_INFO, S.ESCALATED}, S.IN_PROGRESS),
        _move(
            "escalate", {S.OPEN, S.IN_PROGRESS}, S.ESCALATED,
            stamps=(
                Stamp("escalated_at", StampSource.NOW),
                Stamp("escalated_by_id", StampSource.ACTOR),
            ),
        ),
        _move(
            "resolve", {S.IN_PROGRESS, S.ESCALATED}, S.RESOLVED,
            stamps=(
                Stamp("resolved_at", StampSource.NOW),
                Stamp("resolved_by_id", StampSource.ACTOR),
            ),
        ),
        _move(
            "close",
            {S.OPEN, S.AWAITING_INFO, S.IN_PROGRESS, S.ESCALATED, S.RESOLVED},
            S.CLOSED,
            guards=(READY_TO_CLOSE,),
            stamps=(
                Stamp("closed_at", StampSource.NOW),
                Stamp("closed_by_id", StampSource.ACTOR),
            ),
        ),
    ),
)

del S
