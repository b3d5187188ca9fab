"""
ORM models.

Importing this package registers every kernel table on ``Base.metadata``.
"""

from club_kernel.models.audit_entry import AuditAction, AuditEntry, AuditKind
from club_kernel.models.committee import Committee, RoleAssignment
from club_kernel.models.event import Event
from club_kernel.models.governance_minutes import GovernanceMinutes
from club_kernel.models.support_case import SupportCase, SupportCaseNote
from club_kernel.models.transition_plan import TransitionPlan, TransitionPlanAssignment
from club_kernel.models.workflow_entity import WorkflowEntityMixin
from club_kernel.models.sequence_counter import SequenceCounter

WORKFLOW_MODELS = {
    model.__workflow__.entity_type: model
    for model in (Event, GovernanceMinutes, TransitionPlan, SupportCase)
}

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditKind",
    "Committee",
    "RoleAssignment",
    "Event",
    "GovernanceMinutes",
    "TransitionPlan",
    "TransitionPlanAssignment",
    "SupportCase",
    "SupportCaseNote",
    "SequenceCounter",
    "WorkflowEntityMixin",
    "WORKFLOW_MODELS",
]
