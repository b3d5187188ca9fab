"""
Governance minutes approval lifecycle.

    DRAFT ──submit──> SUBMITTED ──approve──> APPROVED ──publish──> PUBLISHED ──archive──> ARCHIVED
                        │    ^
                    revise  submit
                        v    │
                       REVISED

PUBLISHED rows are sealed: their content never changes again.  Corrections
go into a new DRAFT created by ``create_revision`` with the next version
number for the same meeting.
"""

from __future__ import annotations

from enum import Enum

from club_kernel.domain.capabilities import Capability
from club_kernel.domain.workflow import Stamp, StampSource, Transition, Workflow
from club_kernel.domain.workflows.guards import required_field, required_param

ENTITY_TYPE = "GovernanceMinutes"


class MinutesStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    REVISED = "REVISED"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


S = MinutesStatus

HAS_CONTENT = required_field(
    "has_content", "content", "Minutes must have content before submission",
)
REVISION_NOTE_REQUIRED = required_param(
    "revision_note_required", "note", "A revision note is required",
)

MINUTES_WORKFLOW = Workflow(
    entity_type=ENTITY_TYPE,
    description="Board and committee minutes from draft to archive",
    initial_state=S.DRAFT.value,
    states=tuple(s.value for s in MinutesStatus),
    terminal_states=(S.ARCHIVED.value,),
    sealed_states=(S.PUBLISHED.value,),
    create_capability=Capability.MINUTES_DRAFT_CREATE,
    edit_capability=Capability.MINUTES_DRAFT_EDIT,
    editable_states=(S.DRAFT.value, S.REVISED.value),
    content_fields=("title", "content", "summary"),
    transitions=(
        Transition(
            from_states=frozenset({S.DRAFT.value, S.REVISED.value}),
            action="submit",
            to_state=S.SUBMITTED.value,
            required_capability=Capability.MINUTES_DRAFT_SUBMIT,
            guards=(HAS_CONTENT,),
            stamps=(
                Stamp("submitted_at", StampSource.NOW),
                Stamp("submitted_by_id", StampSource.ACTOR),
            ),
        ),
        Transition(
            from_states=frozenset({S.SUBMITTED.value}),
            action="approve",
            to_state=S.APPROVED.value,
            required_capability=Capability.MINUTES_FINALIZE,
            stamps=(
                Stamp("approved_at", StampSource.NOW),
                Stamp("approved_by_id", StampSource.ACTOR),
            ),
        ),
        Transition(
            from_states=frozenset({S.SUBMITTED.value}),
            action="revise",
            to_state=S.REVISED.value,
            required_capability=Capability.MINUTES_REVISE,
            guards=(REVISION_NOTE_REQUIRED,),
            stamps=(
                Stamp("revised_at", StampSource.NOW),
                Stamp("revised_by_id", StampSource.ACTOR),
                Stamp("revision_notes", StampSource.PARAM, param="note"),
            ),
        ),
        Transition(
            from_states=frozenset({S.APPROVED.value}),
            action="publish",
            to_state=S.PUBLISHED.value,
            required_capability=Capability.MINUTES_FINALIZE,
            stamps=(
                Stamp("published_at", StampSource.NOW),
                Stamp("published_by_id", StampSource.ACTOR),
            ),
        ),
        Transition(
            from_states=frozenset({S.PUBLISHED.value}),
            action="archive",
            to_state=S.ARCHIVED.value,
            required_capability=Capability.MINUTES_ARCHIVE,
            stamps=(
                Stamp("archived_at", StampSource.NOW),
                Stamp("archived_by_id", StampSource.ACTOR),
            ),
        ),
    ),
)

# create_revision is a constructor gated like drafting, legal from these states
REVISION_SOURCE_STATES = frozenset({S.PUBLISHED.value, S.ARCHIVED.value})
REVISION_CAPABILITY = Capability.MINUTES_DRAFT_CREATE

del S
