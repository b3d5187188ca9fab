"""
SQLAlchemy implementations of the storage contracts the domain declares.

``SqlAlchemyWorkflowStore`` is the only code that writes workflow status.
Its ``compare_and_set`` issues::

    UPDATE <table> SET ... WHERE id = :id AND status = :expected

and reports whether exactly one row matched.  Under PostgreSQL READ
COMMITTED a racing writer blocks on the winner's row lock, re-evaluates
the WHERE clause and matches zero rows.  Under SQLite the writer lock
taken at BEGIN IMMEDIATE serializes the whole unit, so the loser reads the
winner's status before it gets this far.

``insert`` runs inside a SAVEPOINT.  A row that collides with an existing
one on a unique key (two revisions racing for the same minutes version)
rolls back only the savepoint and comes back as None, so the caller can
report CONFLICT instead of losing the whole unit.

``SqlAlchemyMembershipLookup`` answers delegation-scope questions from
committees and role assignments.  It never writes.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from club_kernel.domain.delegation import CommitteeRef
from club_kernel.exceptions import WorkflowNotRegisteredError
from club_kernel.logging_config import get_logger
from club_kernel.models import WORKFLOW_MODELS, Committee, RoleAssignment

logger = get_logger("services.workflow_store")


class SqlAlchemyWorkflowStore:
    """WorkflowStore over the ORM models registered in ``WORKFLOW_MODELS``."""

    def __init__(self, session: Session, models: Mapping[str, type] | None = None):
        self._session = session
        self._models = dict(models or WORKFLOW_MODELS)

    def model_for(self, entity_type: str) -> type:
        try:
            return self._models[entity_type]
        except KeyError:
            raise WorkflowNotRegisteredError(entity_type) from None

    def get(self, entity_type: str, entity_id: UUID, lock: bool = False) -> Any:
        model = self.model_for(entity_type)
        stmt = select(model).where(model.id == entity_id)
        if lock:
            # SELECT ... FOR UPDATE; SQLite already holds the database write lock
            stmt = stmt.with_for_update()
        return self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def load(
        self,
        entity_type: str,
        entity_id: UUID,
        lock: bool = False,
    ) -> Mapping[str, Any] | None:
        entity = self.get(entity_type, entity_id, lock=lock)
        return entity.workflow_snapshot() if entity is not None else None

    def current_status(self, entity_type: str, entity_id: UUID) -> str | None:
        model = self.model_for(entity_type)
        return self._session.execute(
            select(model.status).where(model.id == entity_id)
        ).scalar_one_or_none()

    def compare_and_set(
        self,
        entity_type: str,
        entity_id: UUID,
        expected_status: str,
        values: Mapping[str, Any],
    ) -> bool:
        model = self.model_for(entity_type)
        result = self._session.execute(
            update(model)
            .where(model.id == entity_id, model.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        matched = result.rowcount == 1
        logger.debug(
            "compare_and_set",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "expected_status": expected_status,
                "matched": matched,
            },
        )
        return matched

    def not_null_fields(self, entity_type: str) -> frozenset[str]:
        table = self.model_for(entity_type).__table__
        return frozenset(
            column.key for column in table.columns
            if not column.nullable and not column.primary_key
        )

    def insert(self, entity_type: str, values: Mapping[str, Any]) -> UUID | None:
        model = self.model_for(entity_type)
        entity = model(**values)
        try:
            with self._session.begin_nested():
                self._session.add(entity)
                self._session.flush()
        except IntegrityError:
            logger.warning("insert_conflict", extra={"entity_type": entity_type})
            return None
        return entity.id


class SqlAlchemyMembershipLookup:
    """MembershipLookup over committees and role assignments."""

    def __init__(self, session: Session):
        self._session = session

    def get_committee(self, committee_id: UUID) -> CommitteeRef | None:
        committee = self._session.get(Committee, committee_id)
        if committee is None:
            return None
        return CommitteeRef(id=committee.id, name=committee.name, is_active=committee.is_active)

    def active_committee_ids(self, member_id: UUID, as_of: datetime) -> frozenset[UUID]:
        rows = self._session.execute(
            select(RoleAssignment.committee_id)
            .join(Committee, Committee.id == RoleAssignment.committee_id)
            .where(
                RoleAssignment.member_id == member_id,
                RoleAssignment.start_at <= as_of,
                or_(RoleAssignment.end_at.is_(None), RoleAssignment.end_at > as_of),
                Committee.is_active.is_(True),
            )
            .distinct()
        ).scalars().all()
        return frozenset(rows)

    def all_active_committee_ids(self) -> frozenset[UUID]:
        rows = self._session.execute(
            select(Committee.id).where(Committee.is_active.is_(True))
        ).scalars().all()
        return frozenset(rows)
