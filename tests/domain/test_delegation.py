"""
DelegationScopeResolver: authority, committee scope and escalation gates.

Uses an in-memory MembershipLookup; the SQLAlchemy lookup is exercised by
the service tests.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import GlobalRole
from club_kernel.domain.delegation import (
    COMMITTEE_NOT_FOUND_REASON,
    INACTIVE_COMMITTEE_REASON,
    NO_AUTHORITY_REASON,
    OUT_OF_SCOPE_REASON,
    CommitteeRef,
    DelegationScopeResolver,
    MembershipLookup,
)
from club_kernel.domain.results import FailureCode

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class InMemoryLookup:
    def __init__(self):
        self.committees: dict[UUID, CommitteeRef] = {}
        self.seats: list[tuple[UUID, UUID, datetime, datetime | None]] = []

    def add_committee(self, is_active: bool = True) -> UUID:
        cid = uuid4()
        self.committees[cid] = CommitteeRef(id=cid, name=f"c-{cid.hex[:6]}", is_active=is_active)
        return cid

    def seat(self, member_id, committee_id, start=None, end=None):
        self.seats.append((member_id, committee_id, start or NOW - timedelta(days=1), end))

    def get_committee(self, committee_id):
        return self.committees.get(committee_id)

    def active_committee_ids(self, member_id, as_of):
        return frozenset(
            cid for mid, cid, start, end in self.seats
            if mid == member_id
            and start <= as_of
            and (end is None or end > as_of)
            and self.committees[cid].is_active
        )

    def all_active_committee_ids(self):
        return frozenset(cid for cid, c in self.committees.items() if c.is_active)


@pytest.fixture
def lookup():
    return InMemoryLookup()


@pytest.fixture
def resolver(lookup):
    return DelegationScopeResolver(lookup)


def _ctx(role, impersonated_by=None):
    return AuthContext(member_id=uuid4(), global_role=role, impersonated_by=impersonated_by)


def test_lookup_satisfies_protocol(lookup):
    assert isinstance(lookup, MembershipLookup)


class TestAuthority:

    @pytest.mark.parametrize("role", ["member", "secretary", "webmaster", "event-chair"])
    def test_roles_without_roles_assign(self, resolver, lookup, role):
        target = lookup.add_committee()
        decision = resolver.check(_ctx(role), target, NOW)
        assert decision.code is FailureCode.DELEGATION_NO_AUTHORITY
        assert decision.reason == NO_AUTHORITY_REASON
        assert decision.http_status == 403

    def test_unauthenticated(self, resolver, lookup):
        decision = resolver.check(None, lookup.add_committee(), NOW)
        assert decision.code is FailureCode.UNAUTHENTICATED

    def test_impersonation(self, resolver, lookup):
        decision = resolver.check(_ctx("admin", impersonated_by=uuid4()), lookup.add_committee(), NOW)
        assert decision.code is FailureCode.FORBIDDEN_IMPERSONATION


class TestScope:

    def test_own_committee_allowed(self, resolver, lookup):
        ctx = _ctx("vp-activities")
        target = lookup.add_committee()
        lookup.seat(ctx.member_id, target)
        decision = resolver.check(ctx, target, NOW)
        assert decision.allowed
        assert decision.assigner_scope == frozenset({target})

    def test_other_committee_denied(self, resolver, lookup):
        ctx = _ctx("vp-activities")
        mine, theirs = lookup.add_committee(), lookup.add_committee()
        lookup.seat(ctx.member_id, mine)
        decision = resolver.check(ctx, theirs, NOW)
        assert decision.code is FailureCode.DELEGATION_OUT_OF_SCOPE
        assert decision.reason == OUT_OF_SCOPE_REASON
        meta = decision.audit_metadata()
        assert meta["assigner_scope"] == [str(mine)]
        assert meta["target_scope"] == str(theirs)

    def test_expired_seat_is_not_scope(self, resolver, lookup):
        ctx = _ctx("president")
        target = lookup.add_committee()
        lookup.seat(ctx.member_id, target, start=NOW - timedelta(days=10), end=NOW)
        assert resolver.check(ctx, target, NOW).code is FailureCode.DELEGATION_OUT_OF_SCOPE

    def test_future_seat_is_not_scope(self, resolver, lookup):
        ctx = _ctx("president")
        target = lookup.add_committee()
        lookup.seat(ctx.member_id, target, start=NOW + timedelta(days=1))
        assert resolver.check(ctx, target, NOW).code is FailureCode.DELEGATION_OUT_OF_SCOPE

    def test_admin_is_org_wide(self, resolver, lookup):
        target = lookup.add_committee()
        decision = resolver.check(_ctx("admin"), target, NOW)
        assert decision.allowed
        assert decision.org_wide

    def test_admin_scope_is_every_active_committee(self, resolver, lookup):
        active = lookup.add_committee()
        lookup.add_committee(is_active=False)
        assert resolver.delegation_scope(_ctx("admin"), NOW) == frozenset({active})

    def test_missing_committee(self, resolver):
        decision = resolver.check(_ctx("admin"), uuid4(), NOW)
        assert decision.code is FailureCode.NOT_FOUND
        assert decision.reason == COMMITTEE_NOT_FOUND_REASON

    def test_inactive_committee(self, resolver, lookup):
        ctx = _ctx("admin")
        target = lookup.add_committee(is_active=False)
        decision = resolver.check(ctx, target, NOW)
        assert decision.code is FailureCode.DELEGATION_OUT_OF_SCOPE
        assert decision.reason == INACTIVE_COMMITTEE_REASON


class TestEscalation:

    def test_cannot_grant_role_with_more_capabilities(self, resolver, lookup):
        ctx = _ctx("vp-communications")
        target = lookup.add_committee()
        lookup.seat(ctx.member_id, target)
        decision = resolver.check(ctx, target, NOW, GlobalRole.PRESIDENT)
        assert decision.code is FailureCode.DELEGATION_ESCALATION
        assert "transitions:approve" in decision.denied_capabilities
        assert decision.target_scope == target

    def test_can_grant_subset_role(self, resolver, lookup):
        ctx = _ctx("president")
        target = lookup.add_committee()
        lookup.seat(ctx.member_id, target)
        assert resolver.check(ctx, target, NOW, GlobalRole.MEMBER).allowed

    def test_admin_grants_admin(self, resolver, lookup):
        assert resolver.check(_ctx("admin"), lookup.add_committee(), NOW, GlobalRole.ADMIN).allowed

    def test_scope_checked_before_escalation(self, resolver, lookup):
        ctx = _ctx("president")
        decision = resolver.check(ctx, lookup.add_committee(), NOW, GlobalRole.ADMIN)
        assert decision.code is FailureCode.DELEGATION_OUT_OF_SCOPE
