"""
Concurrent transitions on one entity.

Expected behavior:
- N threads race the same action; exactly one applies it.
- Every loser gets a typed rejection: CONFLICT when the conditional write
  lost (PostgreSQL, READ COMMITTED), INVALID_TRANSITION when the loser was
  serialized behind the winner and saw the new status (SQLite).
- Exactly one audit entry records the transition.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import func, select

from club_kernel.domain.clock import SystemClock
from club_kernel.domain.results import FailureCode
from club_kernel.models.audit_entry import AuditEntry
from club_kernel.models.event import Event
from club_kernel.models.governance_minutes import GovernanceMinutes
from club_kernel.services.event_service import EventService
from club_kernel.services.minutes_service import MinutesService
from club_kernel.services.workflow_engine import WorkflowEngine
from club_kernel.services.workflow_store import SqlAlchemyWorkflowStore

THREADS = 8


class StaleSnapshotStore(SqlAlchemyWorkflowStore):
    """Serves the first snapshot it read for each entity, forever."""

    def __init__(self, session):
        super().__init__(session)
        self._seen = {}

    def load(self, entity_type, entity_id, lock=False):
        key = (entity_type, entity_id)
        if key not in self._seen:
            self._seen[key] = super().load(entity_type, entity_id, lock=lock)
        return self._seen[key]


class StaleUnlessLockedStore(StaleSnapshotStore):
    """Plain reads are stale; a locked read always reaches the row."""

    def load(self, entity_type, entity_id, lock=False):
        if lock:
            return SqlAlchemyWorkflowStore.load(self, entity_type, entity_id, lock=True)
        return super().load(entity_type, entity_id)


@pytest.mark.slow_locks
class TestTransitionRace:

    def test_exactly_one_approve_wins(self, session, session_factory, event_service, make_event, admin):
        event = make_event()
        assert event_service.transition(admin, event.id, "submit").is_success
        session.close()

        barrier = Barrier(THREADS)

        def approve(_):
            thread_session = session_factory()
            service = EventService(WorkflowEngine(thread_session, clock=SystemClock()))
            barrier.wait()
            return service.transition(admin, event.id, "approve")

        with ThreadPoolExecutor(max_workers=THREADS) as pool:
            results = list(pool.map(approve, range(THREADS)))

        winners = [r for r in results if r.is_success]
        losers = [r for r in results if not r.is_success]
        assert len(winners) == 1
        assert len(losers) == THREADS - 1
        for result in losers:
            assert result.code in (FailureCode.CONFLICT, FailureCode.INVALID_TRANSITION)
            assert result.audit_entry_id is None

        approvals = session.execute(
            select(func.count()).select_from(AuditEntry).where(
                AuditEntry.object_id == event.id, AuditEntry.action == "approve",
            )
        ).scalar_one()
        assert approvals == 1
        assert session.get(Event, event.id).status == "APPROVED"

    def test_racing_different_actions(self, session, session_factory, event_service, make_event, admin):
        """approve and request_changes from PENDING_APPROVAL: one of them, never both."""
        event = make_event()
        assert event_service.transition(admin, event.id, "submit").is_success
        session.close()

        actions = ["approve", "request_changes"] * (THREADS // 2)
        barrier = Barrier(len(actions))

        def act(action):
            service = EventService(WorkflowEngine(session_factory(), clock=SystemClock()))
            barrier.wait()
            params = {"note": "Needs a venue"} if action == "request_changes" else {}
            return action, service.transition(admin, event.id, action, **params)

        with ThreadPoolExecutor(max_workers=len(actions)) as pool:
            results = list(pool.map(act, actions))

        applied = [action for action, r in results if r.is_success]
        assert len(applied) == 1
        expected = {"approve": "APPROVED", "request_changes": "CHANGES_REQUESTED"}[applied[0]]
        assert session.get(Event, event.id).status == expected


class TestStaleWrite:

    def test_stale_snapshot_yields_conflict(self, session, workflow_engine, event_service, make_event, admin, deterministic_clock):
        event = make_event()
        stale = EventService(WorkflowEngine(
            session, clock=deterministic_clock, store=StaleSnapshotStore(session),
        ))
        # prime the cached DRAFT snapshot
        assert stale.transition(admin, event.id, "noop").code is FailureCode.UNKNOWN_ACTION

        assert event_service.transition(admin, event.id, "submit").is_success

        result = stale.transition(admin, event.id, "submit")
        assert result.code is FailureCode.CONFLICT
        assert result.http_status == 409
        assert result.from_state == "DRAFT"
        assert result.detail == {"current_status": "PENDING_APPROVAL"}
        assert result.audit_entry_id is None
        assert session.get(Event, event.id).submitted_by_id == admin.member_id

    def test_guards_read_the_locked_row(self, session, minutes_service, make_minutes, secretary, deterministic_clock):
        minutes = make_minutes(content="Called to order.")
        stale = MinutesService(WorkflowEngine(
            session, clock=deterministic_clock, store=StaleUnlessLockedStore(session),
        ))
        assert stale.transition(secretary, minutes.id, "noop").code is FailureCode.UNKNOWN_ACTION

        assert minutes_service.update_minutes(secretary, minutes.id, content=None).is_success

        result = stale.transition(secretary, minutes.id, "submit")
        assert result.code is FailureCode.GUARD_FAILED
        assert result.detail["guard"] == "has_content"
        assert session.get(GovernanceMinutes, minutes.id).status == "DRAFT"
