"""
Event lifecycle through the WorkflowEngine.
"""

from datetime import timedelta
from uuid import uuid4

from sqlalchemy import select

from club_kernel.domain.capabilities import GlobalRole
from club_kernel.domain.results import FailureCode, Outcome
from club_kernel.domain.workflows.events import COMPLETED
from club_kernel.models.audit_entry import AuditAction, AuditEntry, AuditKind
from club_kernel.models.event import Event


def _entries(session, object_id):
    return session.execute(
        select(AuditEntry).where(AuditEntry.object_id == object_id).order_by(AuditEntry.seq)
    ).scalars().all()


class TestCreate:

    def test_create_starts_in_draft_and_is_audited(self, session, event_service, vp_activities):
        result = event_service.create_event(vp_activities, "Garden tour", location="Arboretum")
        assert result.is_success
        assert result.to_state == "DRAFT"
        assert result.entity.status == "DRAFT"
        assert result.entity.created_by_id == vp_activities.member_id

        [entry] = _entries(session, result.entity_id)
        assert entry.kind == AuditKind.CREATE.value
        assert entry.action == AuditAction.ENTITY_CREATED.value
        assert entry.after["title"] == "Garden tour"

    def test_chair_cannot_create(self, event_service, make_actor):
        result = event_service.create_event(make_actor("event-chair"), "Unsanctioned mixer")
        assert result.outcome is Outcome.DENIED
        assert result.code is FailureCode.FORBIDDEN_CAPABILITY

    def test_unauthenticated_create(self, event_service):
        result = event_service.create_event(None, "Anonymous")
        assert result.code is FailureCode.UNAUTHENTICATED
        assert result.http_status == 401


class TestHappyPath:

    def test_submit_approve_publish(self, event_service, make_event, make_actor, vp_activities, deterministic_clock):
        chair = make_actor("event-chair")
        start = deterministic_clock.now() + timedelta(days=10)
        event = make_event(event_chair_id=chair.member_id, start_time=start, end_time=start + timedelta(hours=3))

        submitted = event_service.transition(chair, event.id, "submit")
        assert submitted.is_success, submitted.reason
        assert submitted.entity.submitted_by_id == chair.member_id
        assert submitted.entity.submitted_at == deterministic_clock.now()

        deterministic_clock.advance(60)
        approved = event_service.transition(vp_activities, event.id, "approve", note="Looks great")
        assert approved.is_success
        assert approved.entity.approved_by_id == vp_activities.member_id
        assert approved.entity.approval_notes == "Looks great"

        published = event_service.transition(vp_activities, event.id, "publish")
        assert published.is_success
        assert published.entity.status == "PUBLISHED"
        assert published.entity.published_at == deterministic_clock.now()

    def test_effective_status_completes_after_end(self, event_service, make_event, admin, deterministic_clock):
        start = deterministic_clock.now() + timedelta(hours=1)
        event = make_event(start_time=start)
        for action in ("submit", "approve", "publish"):
            assert event_service.transition(admin, event.id, action).is_success

        reloaded = event_service.session.get(Event, event.id)
        assert event_service.effective_status(reloaded) == "PUBLISHED"
        deterministic_clock.advance(int(timedelta(hours=3).total_seconds()))
        assert event_service.effective_status(reloaded) == COMPLETED
        assert reloaded.status == "PUBLISHED"


class TestRejections:

    def test_approve_without_submit(self, session, event_service, make_event, vp_activities):
        event = make_event()
        result = event_service.transition(vp_activities, event.id, "approve")
        assert result.outcome is Outcome.REJECTED
        assert result.code is FailureCode.INVALID_TRANSITION
        assert result.http_status == 409
        assert "submit" in result.detail["available_actions"]
        assert session.get(Event, event.id).status == "DRAFT"
        assert session.get(Event, event.id).approved_at is None

    def test_publish_without_start_time(self, event_service, make_event, admin):
        event = make_event()
        assert event_service.transition(admin, event.id, "submit").is_success
        assert event_service.transition(admin, event.id, "approve").is_success

        result = event_service.transition(admin, event.id, "publish")
        assert result.code is FailureCode.GUARD_FAILED
        assert result.detail["guard"] == "has_start_time"
        assert result.http_status == 400

    def test_publish_with_end_before_start(self, event_service, make_event, admin, deterministic_clock):
        start = deterministic_clock.now() + timedelta(days=2)
        event = make_event(start_time=start, end_time=start - timedelta(hours=1))
        event_service.transition(admin, event.id, "submit")
        event_service.transition(admin, event.id, "approve")
        result = event_service.transition(admin, event.id, "publish")
        assert result.detail["guard"] == "end_after_start"

    def test_request_changes_requires_note(self, event_service, make_event, admin):
        event = make_event()
        event_service.transition(admin, event.id, "submit")
        result = event_service.transition(admin, event.id, "request_changes", note="   ")
        assert result.code is FailureCode.GUARD_FAILED

        result = event_service.transition(admin, event.id, "request_changes", note="Add a location")
        assert result.is_success
        assert result.entity.change_request_notes == "Add a location"

    def test_unknown_action(self, event_service, make_event, admin):
        result = event_service.transition(admin, make_event().id, "teleport")
        assert result.code is FailureCode.UNKNOWN_ACTION

    def test_missing_event(self, event_service, admin):
        result = event_service.transition(admin, uuid4(), "submit")
        assert result.code is FailureCode.NOT_FOUND
        assert result.http_status == 404

    def test_canceled_is_terminal(self, event_service, make_event, admin):
        event = make_event()
        assert event_service.transition(admin, event.id, "cancel", reason="Venue closed").is_success
        result = event_service.transition(admin, event.id, "submit")
        assert result.code is FailureCode.INVALID_TRANSITION
        assert result.detail["available_actions"] == []

    def test_cancel_from_changes_requested(self, event_service, make_event, admin):
        event = make_event()
        event_service.transition(admin, event.id, "submit")
        event_service.transition(admin, event.id, "request_changes", note="Needs budget")
        result = event_service.transition(admin, event.id, "cancel")
        assert result.is_success
        assert result.entity.canceled_by_id == admin.member_id


class TestAuthorization:

    def test_member_cannot_approve_and_denial_is_audited(self, session, event_service, make_event, admin, member):
        event = make_event()
        event_service.transition(admin, event.id, "submit")

        result = event_service.transition(member, event.id, "approve")
        assert result.outcome is Outcome.DENIED
        assert result.code is FailureCode.FORBIDDEN_CAPABILITY
        assert result.audit_entry_id is not None

        denial = session.get(AuditEntry, result.audit_entry_id)
        assert denial.kind == AuditKind.DENIAL.value
        assert denial.action == AuditAction.ACCESS_DENIED.value
        assert denial.details["attempted_action"] == "approve"
        assert denial.details["code"] == "FORBIDDEN_CAPABILITY"
        assert session.get(Event, event.id).status == "PENDING_APPROVAL"

    def test_impersonation_is_read_only(self, session, event_service, make_event, make_actor, admin):
        event = make_event()
        event_service.transition(admin, event.id, "submit")
        viewer = make_actor("admin", impersonated_by=uuid4())

        result = event_service.transition(viewer, event.id, "approve")
        assert result.code is FailureCode.FORBIDDEN_IMPERSONATION

        denial = session.get(AuditEntry, result.audit_entry_id)
        assert denial.actor_id == viewer.impersonated_by
        assert denial.subject_member_id == viewer.member_id
        assert session.get(Event, event.id).status == "PENDING_APPROVAL"

    def test_impersonation_hides_write_actions(self, event_service, workflow_engine, make_event, make_actor):
        event = make_event()
        viewer = make_actor("admin", impersonated_by=uuid4())
        assert workflow_engine.available_actions("Event", event.id, viewer) == ()

    def test_available_actions_respect_role(self, workflow_engine, make_event, make_actor):
        event = make_event()
        chair = make_actor("event-chair")
        assert workflow_engine.available_actions("Event", event.id, chair) == ("submit",)

    def test_other_chair_is_out_of_scope(self, session, event_service, make_event, make_actor):
        owner, other = make_actor("event-chair"), make_actor("event-chair")
        event = make_event(event_chair_id=owner.member_id)

        result = event_service.transition(other, event.id, "submit")
        assert result.code is FailureCode.OBJECT_OUT_OF_SCOPE
        assert result.http_status == 403
        assert session.get(AuditEntry, result.audit_entry_id).kind == AuditKind.DENIAL.value

        assert event_service.transition(owner, event.id, "submit").is_success

    def test_events_edit_overrides_chair_scope(self, event_service, make_event, make_actor, vp_activities):
        event = make_event(event_chair_id=make_actor("event-chair").member_id)
        assert event_service.transition(vp_activities, event.id, "submit").is_success


class TestContentEdits:

    def test_chair_edits_own_draft(self, session, event_service, make_event, make_actor):
        chair = make_actor("event-chair")
        event = make_event(event_chair_id=chair.member_id)

        result = event_service.update_event(chair, event.id, location="Boathouse", capacity=40)
        assert result.is_success
        assert result.entity.location == "Boathouse"

        entry = _entries(session, event.id)[-1]
        assert entry.kind == AuditKind.UPDATE.value
        assert entry.before == {"capacity": None, "location": None}
        assert entry.after == {"capacity": 40, "location": "Boathouse"}

    def test_not_editable_after_submit(self, event_service, make_event, admin):
        event = make_event()
        event_service.transition(admin, event.id, "submit")
        result = event_service.update_event(admin, event.id, title="Renamed")
        assert result.code is FailureCode.NOT_EDITABLE

    def test_status_is_not_a_content_field(self, session, event_service, make_event, admin):
        event = make_event()
        result = event_service.update_event(admin, event.id, status="PUBLISHED")
        assert result.code is FailureCode.INVALID_FIELD
        assert result.detail["fields"] == ["status"]
        assert session.get(Event, event.id).status == "DRAFT"

    def test_stamp_fields_cannot_be_set_on_create(self, workflow_engine, admin, deterministic_clock):
        result = workflow_engine.create("Event", admin, {
            "title": "Backdated",
            "approved_at": deterministic_clock.now(),
        })
        assert result.code is FailureCode.INVALID_FIELD

    def test_required_field_cannot_be_cleared(self, session, event_service, make_event, admin):
        event = make_event(title="Spring Regatta")
        before = len(_entries(session, event.id))

        result = event_service.update_event(admin, event.id, title=None, location="Dock 3")
        assert result.code is FailureCode.INVALID_FIELD
        assert result.http_status == 400
        assert result.detail["fields"] == ["title"]
        assert session.get(Event, event.id).title == "Spring Regatta"
        assert len(_entries(session, event.id)) == before

    def test_required_field_missing_on_create(self, event_service, admin):
        result = event_service.create_event(admin, None)
        assert result.code is FailureCode.INVALID_FIELD
        assert result.detail["fields"] == ["title"]


class TestClone:

    def test_clone_resets_schedule_and_approval(self, session, event_service, make_event, make_actor, admin, deterministic_clock):
        chair = make_actor("event-chair")
        start = deterministic_clock.now() + timedelta(days=3)
        source = make_event(
            title="Annual Gala",
            description="Black tie",
            location="Ballroom",
            capacity=200,
            start_time=start,
            event_chair_id=chair.member_id,
        )
        for action in ("submit", "approve", "publish"):
            assert event_service.transition(admin, source.id, action).is_success

        result = event_service.clone_event(admin, source.id)
        assert result.is_success
        clone = result.entity
        assert clone.id != source.id
        assert clone.status == "DRAFT"
        assert (clone.title, clone.description, clone.location, clone.capacity) == (
            "Annual Gala", "Black tie", "Ballroom", 200,
        )
        assert clone.start_time is None and clone.end_time is None
        assert clone.event_chair_id is None
        assert clone.approved_at is None and clone.published_at is None
        assert clone.cloned_from_id == source.id
        assert clone.cloned_at == deterministic_clock.now()

        entry = _entries(session, clone.id)[0]
        assert entry.action == AuditAction.ENTITY_CLONED.value
        assert entry.details["source_status"] == "PUBLISHED"

    def test_clone_missing_source(self, event_service, admin):
        assert event_service.clone_event(admin, uuid4()).code is FailureCode.NOT_FOUND

    def test_clone_requires_events_edit(self, event_service, make_event, make_actor):
        result = event_service.clone_event(make_actor(GlobalRole.EVENT_CHAIR), make_event().id)
        assert result.code is FailureCode.FORBIDDEN_CAPABILITY
