"""
Transition plans: delegation-gated assignment edits and plan application.
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import select

from club_kernel.domain.results import FailureCode, Outcome
from club_kernel.models.audit_entry import AuditAction, AuditEntry, AuditKind
from club_kernel.models.committee import RoleAssignment
from club_kernel.models.transition_plan import TransitionPlan, TransitionPlanAssignment


@pytest.fixture
def board(make_committee, make_assignment, president):
    """A committee the president sits on, and one they do not."""
    mine = make_committee("Executive Board")
    other = make_committee("Social Committee")
    make_assignment(president.member_id, mine, role_title="President")
    return mine, other


def _add(plan_service, ctx, plan, committee, **kw):
    kw.setdefault("member_id", uuid4())
    kw.setdefault("role_title", "Treasurer")
    return plan_service.add_assignment(ctx, plan.id, committee_id=committee.id, **kw)


class TestAssignmentGating:

    def test_in_scope_assignment(self, session, plan_service, make_plan, president, board):
        mine, _ = board
        plan = make_plan()
        result = _add(plan_service, president, plan, mine)
        assert result.is_success, result.reason

        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.kind == AuditKind.UPDATE.value
        assert entry.action == AuditAction.ASSIGNMENT_ADDED.value
        assert entry.object_id == plan.id
        assert entry.after["assignment"]["committee_id"] == str(mine.id)

    def test_cross_committee_denied_and_audited(self, session, plan_service, make_plan, president, board):
        mine, other = board
        plan = make_plan()

        result = _add(plan_service, president, plan, other)
        assert result.outcome is Outcome.DENIED
        assert result.code is FailureCode.DELEGATION_OUT_OF_SCOPE
        assert result.http_status == 403

        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.kind == AuditKind.DENIAL.value
        assert entry.action == AuditAction.DELEGATION_DENIED.value
        assert entry.details["assigner_scope"] == [str(mine.id)]
        assert entry.details["target_scope"] == str(other.id)

        count = session.execute(
            select(TransitionPlanAssignment).where(TransitionPlanAssignment.plan_id == plan.id)
        ).scalars().all()
        assert count == []

    def test_escalation_denied(self, plan_service, make_plan, president, board):
        mine, _ = board
        result = _add(plan_service, president, make_plan(), mine, granted_role="admin")
        assert result.code is FailureCode.DELEGATION_ESCALATION
        assert "admin:full" in result.detail["denied_capabilities"]

    def test_no_authority_denied_with_delegation_code(self, session, plan_service, make_plan, secretary, board):
        mine, _ = board
        plan = make_plan()

        result = _add(plan_service, secretary, plan, mine)
        assert result.outcome is Outcome.DENIED
        assert result.code is FailureCode.DELEGATION_NO_AUTHORITY
        assert result.http_status == 403

        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.kind == AuditKind.DENIAL.value
        assert entry.details["code"] == FailureCode.DELEGATION_NO_AUTHORITY.value
        assert entry.details["capability"] == "roles:assign"

    def test_vp_scoped_to_one_committee(
        self, session, plan_service, make_plan, make_assignment, vp_activities, board,
    ):
        mine, other = board
        make_assignment(vp_activities.member_id, mine, role_title="Activities Chair")
        plan = make_plan()

        assert _add(plan_service, vp_activities, plan, mine).is_success

        result = _add(plan_service, vp_activities, plan, other)
        assert result.code is FailureCode.DELEGATION_OUT_OF_SCOPE
        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.kind == AuditKind.DENIAL.value
        assert entry.action == AuditAction.DELEGATION_DENIED.value
        assert entry.details["assigner_scope"] == [str(mine.id)]
        assert entry.details["target_scope"] == str(other.id)

    def test_detect_outgoing_requires_authority(self, plan_service, make_plan, secretary):
        result = plan_service.detect_outgoing_assignments(secretary, make_plan().id)
        assert result.code is FailureCode.DELEGATION_NO_AUTHORITY

    def test_remove_requires_authority(self, plan_service, make_plan, president, secretary, board):
        mine, _ = board
        added = _add(plan_service, president, make_plan(), mine)

        result = plan_service.remove_assignment(secretary, UUID(added.detail["assignment_id"]))
        assert result.code is FailureCode.DELEGATION_NO_AUTHORITY

    def test_admin_is_org_wide(self, plan_service, make_plan, admin, board):
        _, other = board
        assert _add(plan_service, admin, make_plan(), other).is_success

    def test_unknown_committee(self, plan_service, make_plan, admin):
        result = plan_service.add_assignment(
            admin, make_plan().id, member_id=uuid4(), committee_id=uuid4(), role_title="Chair",
        )
        assert result.code is FailureCode.NOT_FOUND

    def test_unknown_granted_role(self, plan_service, make_plan, admin, board):
        mine, _ = board
        result = _add(plan_service, admin, make_plan(), mine, granted_role="emperor")
        assert result.code is FailureCode.INVALID_FIELD

    def test_impersonation_denied(self, plan_service, make_plan, make_actor, president, board):
        mine, _ = board
        viewer = make_actor("president", member_id=president.member_id, impersonated_by=uuid4())
        result = _add(plan_service, viewer, make_plan(), mine)
        assert result.code is FailureCode.FORBIDDEN_IMPERSONATION

    def test_only_draft_plans_take_assignments(self, plan_service, make_plan, president, board):
        mine, _ = board
        plan = make_plan()
        assert _add(plan_service, president, plan, mine).is_success
        assert plan_service.transition(president, plan.id, "submit").is_success

        result = _add(plan_service, president, plan, mine)
        assert result.code is FailureCode.NOT_EDITABLE

    def test_remove_assignment(self, session, plan_service, make_plan, president, board):
        mine, _ = board
        plan = make_plan()
        added = _add(plan_service, president, plan, mine)
        assignment_id = added.detail["assignment_id"]

        result = plan_service.remove_assignment(president, UUID(assignment_id))
        assert result.is_success
        assert session.get(TransitionPlanAssignment, UUID(assignment_id)) is None
        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.action == AuditAction.ASSIGNMENT_REMOVED.value
        assert entry.before["assignment"]["id"] == assignment_id


class TestPlanLifecycle:

    def test_submit_requires_assignments(self, plan_service, make_plan, president):
        result = plan_service.transition(president, make_plan().id, "submit")
        assert result.code is FailureCode.GUARD_FAILED
        assert result.detail["guard"] == "has_assignments"

    def test_apply_rewrites_role_assignments(
        self, session, plan_service, make_plan, make_assignment, president, board, deterministic_clock,
    ):
        mine, _ = board
        outgoing_member, incoming_member = uuid4(), uuid4()
        current = make_assignment(outgoing_member, mine, role_title="Treasurer")
        plan = make_plan()

        assert _add(plan_service, president, plan, mine, member_id=incoming_member).is_success
        detected = plan_service.detect_outgoing_assignments(president, plan.id)
        assert detected.is_success
        assert len(detected.detail["assignment_ids"]) == 1

        for action in ("submit", "approve", "apply"):
            result = plan_service.transition(president, plan.id, action)
            assert result.is_success, (action, result.reason)

        assert result.detail == {"ended_assignments": 1, "created_assignments": 1}
        session.expire_all()
        assert session.get(RoleAssignment, current.id).end_at == plan.effective_at
        [created] = session.execute(
            select(RoleAssignment).where(RoleAssignment.member_id == incoming_member)
        ).scalars().all()
        assert created.start_at == plan.effective_at
        assert created.source_plan_id == plan.id
        assert created.role_title == "Treasurer"

        assert plan_service.transition(president, plan.id, "cancel").code is FailureCode.INVALID_TRANSITION

    def test_detect_outgoing_is_idempotent(self, plan_service, make_plan, make_assignment, president, board):
        mine, _ = board
        make_assignment(uuid4(), mine, role_title="Secretary")
        plan = make_plan()
        _add(plan_service, president, plan, mine, role_title="Secretary")

        assert plan_service.detect_outgoing_assignments(president, plan.id).is_success
        again = plan_service.detect_outgoing_assignments(president, plan.id)
        assert again.code is FailureCode.NOT_FOUND

    def test_cancel_with_reason(self, plan_service, make_plan, president):
        result = plan_service.transition(president, make_plan().id, "cancel", reason="Election postponed")
        assert result.is_success
        assert result.entity.cancel_reason == "Election postponed"

    def test_update_plan_only_in_draft(self, plan_service, make_plan, president, board):
        mine, _ = board
        plan = make_plan()
        assert plan_service.update_plan(president, plan.id, term_label="2025-2026").is_success
        _add(plan_service, president, plan, mine)
        plan_service.transition(president, plan.id, "submit")
        assert plan_service.update_plan(president, plan.id, term_label="x").code is FailureCode.NOT_EDITABLE

    def test_effective_date_cannot_be_cleared(self, session, plan_service, make_plan, president):
        plan = make_plan()
        result = plan_service.update_plan(president, plan.id, effective_at=None)
        assert result.code is FailureCode.INVALID_FIELD
        assert result.detail["fields"] == ["effective_at"]
        assert session.get(TransitionPlan, plan.id).effective_at is not None
