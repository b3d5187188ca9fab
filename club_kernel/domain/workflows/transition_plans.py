"""
Officer transition planning.

    DRAFT ──submit──> PENDING_APPROVAL ──approve──> APPROVED ──apply──> APPLIED
      └────────────────────┴──────────cancel─────────────┴──> CANCELLED

Assignments are edited only while the plan is DRAFT.  ``apply`` ends the
outgoing role assignments and opens the incoming ones in the same
transaction as the status change.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from club_kernel.domain.capabilities import Capability
from club_kernel.domain.workflow import Guard, Stamp, StampSource, Transition, Workflow

ENTITY_TYPE = "TransitionPlan"

APPLY_EFFECT = "apply_transition_plan"


class PlanStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    APPLIED = "APPLIED"
    CANCELLED = "CANCELLED"


S = PlanStatus


def _has_assignments(snapshot: Mapping[str, Any], params: Mapping[str, Any]) -> str | None:
    if not snapshot.get("assignment_count"):
        return "Transition plan must have at least one assignment"
    return None


HAS_ASSIGNMENTS = Guard(
    name="has_assignments",
    description="Transition plan must have at least one assignment",
    check=_has_assignments,
)

TRANSITION_PLAN_WORKFLOW = Workflow(
    entity_type=ENTITY_TYPE,
    description="Officer succession plan from draft to application",
    initial_state=S.DRAFT.value,
    states=tuple(s.value for s in PlanStatus),
    terminal_states=(S.APPLIED.value, S.CANCELLED.value),
    create_capability=Capability.TRANSITIONS_MANAGE,
    edit_capability=Capability.TRANSITIONS_MANAGE,
    editable_states=(S.DRAFT.value,),
    content_fields=("name", "description", "term_label", "effective_at"),
    transitions=(
        Transition(
            from_states=frozenset({S.DRAFT.value}),
            action="submit",
            to_state=S.PENDING_APPROVAL.value,
            required_capability=Capability.TRANSITIONS_MANAGE,
            guards=(HAS_ASSIGNMENTS,),
            stamps=(
                Stamp("submitted_at", StampSource.NOW),
                Stamp("submitted_by_id", StampSource.ACTOR),
            ),
        ),
        Transition(
            from_states=frozenset({S.PENDING_APPROVAL.value}),
            action="approve",
            to_state=S.APPROVED.value,
            required_capability=Capability.TRANSITIONS_APPROVE,
            stamps=(
                Stamp("approved_at", StampSource.NOW),
                Stamp("approved_by_id", StampSource.ACTOR),
            ),
        ),
        Transition(
            from_states=frozenset({S.APPROVED.value}),
            action="apply",
            to_state=S.APPLIED.value,
            required_capability=Capability.TRANSITIONS_APPLY,
            guards=(HAS_ASSIGNMENTS,),
            stamps=(
                Stamp("applied_at", StampSource.NOW),
                Stamp("applied_by_id", StampSource.ACTOR),
            ),
            effects=(APPLY_EFFECT,),
        ),
        Transition(
            from_states=frozenset({
                S.DRAFT.value, S.PENDING_APPROVAL.value, S.APPROVED.value,
            }),
            action="cancel",
            to_state=S.CANCELLED.value,
            required_capability=Capability.TRANSITIONS_MANAGE,
            stamps=(
                Stamp("cancelled_at", StampSource.NOW),
                Stamp("cancelled_by_id", StampSource.ACTOR),
                Stamp("cancel_reason", StampSource.PARAM, param="reason"),
            ),
        ),
    ),
)

del S
