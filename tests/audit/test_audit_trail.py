"""
Audit trail tests.

Verifies:
- Every applied mutation appends exactly one entry in the same transaction
- Rejected requests append nothing; denials append a DENIAL entry
- The hash chain validates end to end and detects tampering
- Selector queries by object, actor and time window
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import delete, func, select, update

from club_kernel.domain.results import FailureCode
from club_kernel.exceptions import AuditChainBrokenError
from club_kernel.models.audit_entry import AuditAction, AuditEntry, AuditKind
from club_kernel.selectors.audit_selector import AuditSelector
from club_kernel.services.audit_trail import AuditTrailService


def _count(session) -> int:
    return session.execute(select(func.count()).select_from(AuditEntry)).scalar_one()


class TestCompleteness:

    def test_each_transition_appends_one_entry(self, session, event_service, make_event, admin):
        event = make_event()
        before = _count(session)

        event_service.transition(admin, event.id, "submit")
        event_service.transition(admin, event.id, "approve")

        assert _count(session) == before + 2
        history = AuditSelector(session).by_object("Event", event.id)
        assert [e.action for e in history] == [AuditAction.ENTITY_CREATED.value, "submit", "approve"]
        assert [e.kind for e in history] == [
            AuditKind.CREATE.value, AuditKind.TRANSITION.value, AuditKind.TRANSITION.value,
        ]
        assert history[-1].before["status"] == "PENDING_APPROVAL"
        assert history[-1].after["status"] == "APPROVED"

    def test_rejection_appends_nothing(self, session, event_service, make_event, admin):
        event = make_event()
        before = _count(session)

        result = event_service.transition(admin, event.id, "publish")
        assert result.code is FailureCode.INVALID_TRANSITION
        assert result.audit_entry_id is None
        assert _count(session) == before

    def test_unauthenticated_is_not_audited(self, session, event_service, make_event):
        event = make_event()
        before = _count(session)

        result = event_service.transition(None, event.id, "submit")
        assert result.code is FailureCode.UNAUTHENTICATED
        assert _count(session) == before

    def test_denial_entry_names_the_attempt(self, session, event_service, make_event, member):
        event = make_event()
        result = event_service.transition(member, event.id, "submit")
        assert result.code is FailureCode.FORBIDDEN_CAPABILITY

        entry = session.get(AuditEntry, result.audit_entry_id)
        assert entry.kind == AuditKind.DENIAL.value
        assert entry.action == AuditAction.ACCESS_DENIED.value
        assert entry.details["attempted_action"] == "submit"
        assert entry.details["capability"] == "events:submit"
        assert entry.details["code"] == FailureCode.FORBIDDEN_CAPABILITY.value
        assert entry.before is None and entry.after is None

    def test_impersonated_write_names_both_members(self, session, event_service, make_event, make_actor):
        staff = uuid4()
        viewer = make_actor("admin", impersonated_by=staff)
        event = make_event()

        result = event_service.transition(viewer, event.id, "submit")
        assert result.code is FailureCode.FORBIDDEN_IMPERSONATION

        dto = AuditSelector(session).denials(limit=1)[0]
        assert dto.actor_id == staff
        assert dto.subject_member_id == viewer.member_id
        assert dto.is_impersonated

    def test_sequence_is_strictly_increasing(self, session, make_event):
        for _ in range(5):
            make_event()
        seqs = session.execute(select(AuditEntry.seq).order_by(AuditEntry.seq)).scalars().all()
        assert seqs == sorted(set(seqs))


class TestChainValidation:

    def test_empty_chain_is_valid(self, session):
        assert AuditTrailService(session).validate_chain() is True

    def test_chain_links_every_entry(self, session, event_service, make_event, admin):
        event = make_event()
        event_service.transition(admin, event.id, "submit")
        event_service.transition(admin, event.id, "approve")

        entries = session.execute(select(AuditEntry).order_by(AuditEntry.seq)).scalars().all()
        assert entries[0].is_genesis
        for prev, entry in zip(entries, entries[1:]):
            assert entry.prev_hash == prev.hash
        assert AuditTrailService(session).validate_chain() is True

    def test_tampered_payload_is_detected(self, session, make_event, disabled_immutability):
        make_event()
        make_event()
        target = session.execute(
            select(AuditEntry).order_by(AuditEntry.seq).limit(1)
        ).scalar_one()
        session.commit()

        with disabled_immutability():
            session.execute(
                update(AuditEntry)
                .where(AuditEntry.id == target.id)
                .values(after={"title": "Rewritten"})
            )
            session.commit()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            AuditTrailService(session).validate_chain()
        assert exc_info.value.audit_entry_id == str(target.id)

    def test_deleted_entry_breaks_the_link(self, session, make_event, disabled_immutability):
        for _ in range(3):
            make_event()
        middle = session.execute(
            select(AuditEntry).order_by(AuditEntry.seq).offset(1).limit(1)
        ).scalar_one()
        session.commit()

        with disabled_immutability():
            session.execute(delete(AuditEntry).where(AuditEntry.id == middle.id))
            session.commit()

        with pytest.raises(AuditChainBrokenError):
            AuditTrailService(session).validate_chain()


class TestAuditSelector:

    def test_by_actor_filters_kind(self, session, event_service, make_event, admin, member):
        event = make_event(admin)
        event_service.transition(admin, event.id, "submit")
        event_service.transition(member, event.id, "approve")

        selector = AuditSelector(session)
        assert len(selector.by_actor(admin.member_id)) == 2
        assert [e.kind for e in selector.by_actor(member.member_id)] == [AuditKind.DENIAL.value]
        assert selector.by_actor(admin.member_id, kind=AuditKind.TRANSITION) != []
        assert selector.by_actor(member.member_id, kind=AuditKind.TRANSITION) == []

    def test_by_time_range_is_half_open(self, session, make_event, deterministic_clock):
        start = deterministic_clock.now()
        make_event()
        deterministic_clock.advance(60)
        make_event()
        deterministic_clock.advance(60)
        make_event()

        selector = AuditSelector(session)
        window = selector.by_time_range(start, start + timedelta(seconds=60))
        assert len(window) == 1
        assert len(selector.by_time_range(start, start + timedelta(seconds=121))) == 3

    def test_newest_first_and_limit(self, session, make_event):
        for _ in range(4):
            make_event()
        selector = AuditSelector(session)

        newest = selector.by_time_range(newest_first=True, limit=2)
        assert len(newest) == 2
        assert newest[0].seq > newest[1].seq
        assert selector.count() == 4
