"""
Event approval lifecycle.

    DRAFT ──submit──> PENDING_APPROVAL ──approve──> APPROVED ──publish──> PUBLISHED
      ^                    │
      │             request_changes
      │                    v
      └──(submit)── CHANGES_REQUESTED

    cancel: any state except CANCELED -> CANCELED (terminal)

COMPLETED is not stored; it is derived from a PUBLISHED event's times by
``effective_status``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from club_kernel.domain.capabilities import Capability
from club_kernel.domain.workflow import Guard, ObjectScope, Stamp, StampSource, Transition, Workflow
from club_kernel.domain.workflows.guards import required_field, required_param

ENTITY_TYPE = "Event"

# Events without an end time are treated as lasting this long
DEFAULT_EVENT_DURATION = timedelta(hours=2)


class EventStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    CANCELED = "CANCELED"


COMPLETED = "COMPLETED"

S = EventStatus


def _end_after_start(snapshot: Mapping[str, Any], params: Mapping[str, Any]) -> str | None:
    start, end = snapshot.get("start_time"), snapshot.get("end_time")
    if start is not None and end is not None and end < start:
        return "Event end time must not be before its start time"
    return None


HAS_TITLE = required_field("has_title", "title", "Event must have a title")
HAS_START_TIME = required_field(
    "has_start_time", "start_time",
    "Event must have a start time before it can be published",
)
END_AFTER_START = Guard(
    name="end_after_start",
    description="Event end time must not be before its start time",
    check=_end_after_start,
)
CHANGE_NOTE_REQUIRED = required_param(
    "change_note_required", "note",
    "A note explaining the requested changes is required",
)

# Chairs act on their own events; holders of events:edit act on any event
EVENT_CHAIR_SCOPE = ObjectScope(
    owner_field="event_chair_id",
    override_capability=Capability.EVENTS_EDIT,
)


def _stamps(prefix: str) -> tuple[Stamp, ...]:
    return (
        Stamp(f"{prefix}_at", StampSource.NOW),
        Stamp(f"{prefix}_by_id", StampSource.ACTOR),
    )


EVENT_WORKFLOW = Workflow(
    entity_type=ENTITY_TYPE,
    description="Event approval lifecycle from draft to publication",
    initial_state=S.DRAFT.value,
    states=tuple(s.value for s in EventStatus),
    terminal_states=(S.CANCELED.value,),
    create_capability=Capability.EVENTS_EDIT,
    edit_capability=Capability.EVENTS_SUBMIT,
    editable_states=(S.DRAFT.value, S.CHANGES_REQUESTED.value),
    content_fields=(
        "title", "description", "location", "category", "capacity",
        "start_time", "end_time", "event_chair_id",
    ),
    edit_scope=EVENT_CHAIR_SCOPE,
    transitions=(
        Transition(
            from_states=frozenset({S.DRAFT.value, S.CHANGES_REQUESTED.value}),
            action="submit",
            to_state=S.PENDING_APPROVAL.value,
            required_capability=Capability.EVENTS_SUBMIT,
            guards=(HAS_TITLE,),
            stamps=_stamps("submitted"),
            scope=EVENT_CHAIR_SCOPE,
            description="Chair submits the event for approval",
        ),
        Transition(
            from_states=frozenset({S.PENDING_APPROVAL.value}),
            action="approve",
            to_state=S.APPROVED.value,
            required_capability=Capability.EVENTS_APPROVE,
            stamps=_stamps("approved") + (
                Stamp("approval_notes", StampSource.PARAM, param="note"),
            ),
        ),
        Transition(
            from_states=frozenset({S.PENDING_APPROVAL.value}),
            action="request_changes",
            to_state=S.CHANGES_REQUESTED.value,
            required_capability=Capability.EVENTS_APPROVE,
            guards=(CHANGE_NOTE_REQUIRED,),
            stamps=_stamps("changes_requested") + (
                Stamp("change_request_notes", StampSource.PARAM, param="note"),
            ),
        ),
        Transition(
            from_states=frozenset({S.APPROVED.value}),
            action="publish",
            to_state=S.PUBLISHED.value,
            required_capability=Capability.EVENTS_APPROVE,
            guards=(HAS_START_TIME, END_AFTER_START),
            stamps=_stamps("published"),
        ),
        Transition(
            from_states=frozenset({
                S.DRAFT.value,
                S.PENDING_APPROVAL.value,
                S.CHANGES_REQUESTED.value,
                S.APPROVED.value,
                S.PUBLISHED.value,
            }),
            action="cancel",
            to_state=S.CANCELED.value,
            required_capability=Capability.EVENTS_EDIT,
            stamps=_stamps("canceled") + (
                Stamp("canceled_reason", StampSource.PARAM, param="reason"),
            ),
        ),
    ),
)

# Fields a clone copies from its source; everything else starts empty
CLONEABLE_FIELDS = ("title", "description", "location", "category", "capacity")

del S


def effective_status(
    status: str,
    start_time: datetime | None,
    end_time: datetime | None,
    now: datetime,
) -> str:
    """Stored status, except a PUBLISHED event that has ended reads COMPLETED."""
    if status != EventStatus.PUBLISHED.value or start_time is None:
        return status
    ends = end_time or (start_time + DEFAULT_EVENT_DURATION)
    return COMPLETED if now >= ends else status
