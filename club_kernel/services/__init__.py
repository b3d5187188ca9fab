"""Services for the club kernel (write side)."""

from club_kernel.services.audit_trail import AuditTrailService
from club_kernel.services.committee_membership_service import CommitteeMembershipService
from club_kernel.services.event_service import EventService
from club_kernel.services.minutes_service import MinutesService
from club_kernel.services.sequence_service import SequenceService
from club_kernel.services.support_case_service import SupportCaseService
from club_kernel.services.transition_plan_service import TransitionPlanService
from club_kernel.services.workflow_effects import DEFAULT_EFFECTS, EffectContext
from club_kernel.services.workflow_engine import WorkflowEngine
from club_kernel.services.workflow_store import (
    SqlAlchemyMembershipLookup,
    SqlAlchemyWorkflowStore,
)

__all__ = [
    "AuditTrailService",
    "CommitteeMembershipService",
    "DEFAULT_EFFECTS",
    "EffectContext",
    "EventService",
    "MinutesService",
    "SequenceService",
    "SqlAlchemyMembershipLookup",
    "SqlAlchemyWorkflowStore",
    "SupportCaseService",
    "TransitionPlanService",
    "WorkflowEngine",
]
