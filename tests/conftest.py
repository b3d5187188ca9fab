"""
Pytest fixtures for the club kernel test suite.

Provides:
- A fresh database per test: a SQLite file under tmp_path by default, or
  the PostgreSQL database named by DATABASE_URL (tables truncated per test)
- Deterministic clock, workflow engine and per-entity service fixtures
- Factories for actors, committees, role assignments and workflow entities

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL. When unset, SQLite is used.
"""

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from club_kernel.db.base import Base
from club_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from club_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from club_kernel.db.triggers import install_immutability_triggers, uninstall_immutability_triggers
from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import GlobalRole
from club_kernel.domain.clock import DeterministicClock
from club_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from club_kernel.models.committee import Committee, RoleAssignment
from club_kernel.services.committee_membership_service import CommitteeMembershipService
from club_kernel.services.event_service import EventService
from club_kernel.services.minutes_service import MinutesService
from club_kernel.services.support_case_service import SupportCaseService
from club_kernel.services.transition_plan_service import TransitionPlanService
from club_kernel.services.workflow_engine import WorkflowEngine

# Seeds committees and other rows created outside any workflow
SYSTEM_ACTOR_ID = uuid4()

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture club_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, event_service):
            event_service.transition(...)
            assert any(r["message"] == "transition_applied" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("club_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str | None:
    return os.environ.get("DATABASE_URL")


def _truncate_all_tables(engine):
    """TRUNCATE all tables (bypasses row-level triggers)."""
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        conn.commit()


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """
    Engine for one test.

    SQLite: a new database file per test.  PostgreSQL: tables are dropped
    and recreated, then truncated at teardown.
    """
    url = get_database_url()
    if url:
        eng = init_engine_from_url(url, pool_size=20, max_overflow=20, pool_timeout=10)
        drop_tables()
    else:
        eng = init_engine_from_url(
            f"sqlite:///{tmp_path / 'club_kernel_test.db'}",
            pool_size=10, max_overflow=20, pool_timeout=10,
        )
    create_tables()
    register_immutability_listeners()
    yield eng
    if url:
        _truncate_all_tables(eng)
    reset_engine()


@pytest.fixture(scope="function")
def session(db_engine) -> Generator[Session, None, None]:
    """A session that performs real commits; the database is discarded after."""
    sess = get_session()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """
    Tracked session factory for concurrent threads.

    Each thread creates its own session.  All are closed at teardown.
    """
    factory = get_session_factory()
    created: list[Session] = []
    lock = threading.Lock()

    def tracked_factory() -> Session:
        with lock:
            s = factory()
            created.append(s)
            return s

    yield tracked_factory

    for s in created:
        s.rollback()
        s.close()


@pytest.fixture
def disabled_immutability(db_engine):
    """
    Context manager that lifts both immutability layers (ORM listeners and
    database triggers) so a test can tamper with protected rows directly.
    """

    @contextmanager
    def _disabled():
        unregister_immutability_listeners()
        uninstall_immutability_triggers(db_engine)
        try:
            yield
        finally:
            install_immutability_triggers(db_engine)
            register_immutability_listeners()

    return _disabled


# =============================================================================
# Clock, engine and services
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock(T0)


@pytest.fixture
def workflow_engine(session, deterministic_clock) -> WorkflowEngine:
    return WorkflowEngine(session, clock=deterministic_clock)


@pytest.fixture
def event_service(workflow_engine) -> EventService:
    return EventService(workflow_engine)


@pytest.fixture
def minutes_service(workflow_engine) -> MinutesService:
    return MinutesService(workflow_engine)


@pytest.fixture
def plan_service(workflow_engine) -> TransitionPlanService:
    return TransitionPlanService(workflow_engine)


@pytest.fixture
def support_service(workflow_engine) -> SupportCaseService:
    return SupportCaseService(workflow_engine)


@pytest.fixture
def membership_service(workflow_engine) -> CommitteeMembershipService:
    return CommitteeMembershipService(workflow_engine)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_actor():
    """Build an AuthContext for a role, optionally impersonated."""

    def _make(
        role: GlobalRole | str,
        member_id: UUID | None = None,
        impersonated_by: UUID | None = None,
    ) -> AuthContext:
        return AuthContext(
            member_id=member_id or uuid4(),
            global_role=GlobalRole(role),
            impersonated_by=impersonated_by,
        )

    return _make


@pytest.fixture
def admin(make_actor) -> AuthContext:
    return make_actor(GlobalRole.ADMIN)


@pytest.fixture
def president(make_actor) -> AuthContext:
    return make_actor(GlobalRole.PRESIDENT)


@pytest.fixture
def vp_activities(make_actor) -> AuthContext:
    return make_actor(GlobalRole.VP_ACTIVITIES)


@pytest.fixture
def secretary(make_actor) -> AuthContext:
    return make_actor(GlobalRole.SECRETARY)


@pytest.fixture
def webmaster(make_actor) -> AuthContext:
    return make_actor(GlobalRole.WEBMASTER)


@pytest.fixture
def member(make_actor) -> AuthContext:
    return make_actor(GlobalRole.MEMBER)


@pytest.fixture
def make_committee(session):
    """Persist a committee and return it."""
    counter = {"n": 0}

    def _make(name: str | None = None, is_active: bool = True) -> Committee:
        counter["n"] += 1
        committee = Committee(
            name=name or f"Committee {counter['n']}",
            is_active=is_active,
            created_by_id=SYSTEM_ACTOR_ID,
        )
        session.add(committee)
        session.commit()
        return committee

    return _make


@pytest.fixture
def make_assignment(session, deterministic_clock):
    """Persist a role assignment that is active at the clock's current time."""

    def _make(
        member_id: UUID,
        committee: Committee,
        role_title: str = "Member",
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        granted_role: str | None = None,
    ) -> RoleAssignment:
        assignment = RoleAssignment(
            committee_id=committee.id,
            member_id=member_id,
            role_title=role_title,
            granted_role=granted_role,
            start_at=start_at or deterministic_clock.now() - timedelta(days=30),
            end_at=end_at,
            created_by_id=SYSTEM_ACTOR_ID,
        )
        session.add(assignment)
        session.commit()
        return assignment

    return _make


@pytest.fixture
def make_event(event_service, admin):
    """Create an event through the service (DRAFT) and return the row."""

    def _make(ctx: AuthContext | None = None, **fields):
        fields.setdefault("title", "Spring Social")
        title = fields.pop("title")
        result = event_service.create_event(ctx or admin, title, **fields)
        assert result.is_success, result.reason
        return result.entity

    return _make


@pytest.fixture
def make_minutes(minutes_service, secretary):
    def _make(ctx: AuthContext | None = None, content: str | None = "Called to order.", **fields):
        result = minutes_service.create_minutes(
            ctx or secretary,
            fields.pop("meeting_id", uuid4()),
            fields.pop("title", "Board meeting"),
            content=content,
            **fields,
        )
        assert result.is_success, result.reason
        return result.entity

    return _make


@pytest.fixture
def make_plan(plan_service, president, deterministic_clock):
    def _make(ctx: AuthContext | None = None, **fields):
        result = plan_service.create_plan(
            ctx or president,
            fields.pop("name", "2025 officer turnover"),
            fields.pop("effective_at", deterministic_clock.now() + timedelta(days=7)),
            **fields,
        )
        assert result.is_success, result.reason
        return result.entity

    return _make


@pytest.fixture
def make_case(support_service, webmaster):
    def _make(ctx: AuthContext | None = None, **fields):
        result = support_service.open_case(
            ctx or webmaster,
            fields.pop("subject", "Cannot log in"),
            **fields,
        )
        assert result.is_success, result.reason
        return result.entity

    return _make
