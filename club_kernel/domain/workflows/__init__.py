"""
Per-entity transition tables.

``WORKFLOWS`` maps each workflow entity type to its table.  Adding a new
workflow entity means adding one module here and one entry below.
"""

from types import MappingProxyType

from club_kernel.domain.workflow import Workflow
from club_kernel.domain.workflows.events import EVENT_WORKFLOW, EventStatus
from club_kernel.domain.workflows.minutes import MINUTES_WORKFLOW, MinutesStatus
from club_kernel.domain.workflows.support_cases import (
    SUPPORT_CASE_WORKFLOW,
    SupportCaseCategory,
    SupportCaseStatus,
)
from club_kernel.domain.workflows.transition_plans import (
    TRANSITION_PLAN_WORKFLOW,
    PlanStatus,
)
from club_kernel.exceptions import WorkflowNotRegisteredError

WORKFLOWS = MappingProxyType({
    wf.entity_type: wf
    for wf in (
        EVENT_WORKFLOW,
        MINUTES_WORKFLOW,
        TRANSITION_PLAN_WORKFLOW,
        SUPPORT_CASE_WORKFLOW,
    )
})


def get_workflow(entity_type: str) -> Workflow:
    try:
        return WORKFLOWS[entity_type]
    except KeyError:
        raise WorkflowNotRegisteredError(entity_type) from None


__all__ = [
    "WORKFLOWS",
    "get_workflow",
    "EVENT_WORKFLOW",
    "MINUTES_WORKFLOW",
    "TRANSITION_PLAN_WORKFLOW",
    "SUPPORT_CASE_WORKFLOW",
    "EventStatus",
    "MinutesStatus",
    "PlanStatus",
    "SupportCaseStatus",
    "SupportCaseCategory",
]
