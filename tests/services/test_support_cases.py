"""
Support case triage: status notes, the close guard, staff notes.
"""

from uuid import uuid4

from sqlalchemy import select

from club_kernel.domain.results import FailureCode
from club_kernel.models.audit_entry import AuditAction, AuditEntry, AuditKind
from club_kernel.models.support_case import SupportCaseNote


def _notes(session, case_id):
    return session.execute(
        select(SupportCaseNote)
        .where(SupportCaseNote.case_id == case_id)
        .order_by(SupportCaseNote.created_at, SupportCaseNote.content)
    ).scalars().all()


class TestStatusNotes:

    def test_each_status_change_leaves_a_note(self, session, support_service, make_case, webmaster):
        case = make_case()
        assert support_service.transition(webmaster, case.id, "start").is_success
        assert support_service.transition(webmaster, case.id, "escalate").is_success

        contents = {n.content for n in _notes(session, case.id)}
        assert contents == {
            "Status changed from OPEN to IN_PROGRESS",
            "Status changed from IN_PROGRESS to ESCALATED",
        }
        assert all(n.is_system for n in _notes(session, case.id))

    def test_note_id_in_result_and_audit(self, session, support_service, make_case, webmaster):
        case = make_case()
        result = support_service.transition(webmaster, case.id, "request_info")
        note_id = result.detail["status_note_id"]
        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.details["effects"]["status_note_id"] == note_id
        assert entry.details["from_status"] == "OPEN"
        assert entry.details["to_status"] == "AWAITING_INFO"

    def test_reopen(self, support_service, make_case, webmaster):
        case = make_case()
        support_service.transition(webmaster, case.id, "request_info")
        assert support_service.transition(webmaster, case.id, "reopen").to_state == "OPEN"


class TestClose:

    def test_close_requires_category_and_resolution(self, session, support_service, make_case, webmaster):
        case = make_case()
        result = support_service.transition(webmaster, case.id, "close")
        assert result.code is FailureCode.GUARD_FAILED
        assert "a known category" in result.reason
        assert "a resolution" in result.reason
        assert _notes(session, case.id) == []

    def test_close_stamps_and_notes(self, session, support_service, make_case, webmaster, deterministic_clock):
        case = make_case(category="ACCOUNT_ACCESS")
        assert support_service.update_case(
            webmaster, case.id, resolution="Password reset", resolution_notes="Sent reset link",
        ).is_success

        result = support_service.transition(webmaster, case.id, "close")
        assert result.is_success
        assert result.entity.closed_at == deterministic_clock.now()
        assert result.entity.closed_by_id == webmaster.member_id
        assert _notes(session, case.id)[-1].content == "Status changed from OPEN to CLOSED"

    def test_closed_case_is_frozen(self, support_service, make_case, webmaster):
        case = make_case(category="OTHER")
        support_service.update_case(webmaster, case.id, resolution="Done", resolution_notes="Done")
        support_service.transition(webmaster, case.id, "close")

        assert support_service.transition(webmaster, case.id, "reopen").code is FailureCode.INVALID_TRANSITION
        assert support_service.update_case(webmaster, case.id, subject="Edited").code is FailureCode.NOT_EDITABLE
        assert support_service.add_note(webmaster, case.id, "Late comment").code is FailureCode.NOT_EDITABLE

    def test_unknown_category_rejected(self, support_service, webmaster):
        result = support_service.open_case(webmaster, "Help", category="ASTROLOGY")
        assert result.code is FailureCode.INVALID_FIELD


class TestStaffNotes:

    def test_add_note(self, session, support_service, make_case, webmaster):
        case = make_case()
        result = support_service.add_note(webmaster, case.id, "  Called the member back  ")
        assert result.is_success
        note = result.entity
        assert note.content == "Called the member back"
        assert note.is_system is False

        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.kind == AuditKind.CREATE.value
        assert entry.action == AuditAction.NOTE_ADDED.value
        assert entry.object_type == "SupportCaseNote"
        assert entry.details["case_id"] == str(case.id)

    def test_blank_note(self, support_service, make_case, webmaster):
        assert support_service.add_note(webmaster, make_case().id, "   ").code is FailureCode.INVALID_FIELD

    def test_member_cannot_add_note(self, support_service, make_case, member):
        assert support_service.add_note(member, make_case().id, "hi").code is FailureCode.FORBIDDEN_CAPABILITY

    def test_missing_case(self, support_service, webmaster):
        assert support_service.add_note(webmaster, uuid4(), "hi").code is FailureCode.NOT_FOUND
