"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
LAYERS
===============================================================================

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy's unit of work
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/<dialect>/*.sql (database triggers)
    - Catches raw SQL, bulk UPDATE statements and direct database access

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                     | Rule
---------------------------|---------------------------------------------------
AuditEntry                 | Never updated or deleted
SupportCaseNote            | Never updated or deleted
Workflow entities          | Inserted in the initial state with empty stamps.
 (Event, GovernanceMinutes,| status and stamp columns never change through the
  TransitionPlan,          | ORM; the workflow engine writes them with a
  SupportCase)             | conditional UPDATE.  No column other than row
                           | metadata changes while the row is in a terminal
                           | or sealed state.  Deletes only in the initial
                           | state.
TransitionPlanAssignment   | Inserted, changed or removed only while the parent
                           | plan is DRAFT

Row metadata (updated_at, updated_by_id) is always allowed to change.

===============================================================================
USAGE
===============================================================================

    from club_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to tamper with protected rows call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, select
from sqlalchemy.orm.attributes import get_history

from club_kernel.exceptions import ImmutabilityViolationError
from club_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_ROW_METADATA = frozenset({"updated_at", "updated_by_id"})


def _block(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_columns(target) -> set[str]:
    from sqlalchemy import inspect

    state = inspect(target)
    return {
        attr.key
        for attr in state.mapper.column_attrs
        if get_history(target, attr.key).has_changes()
    }


def _persisted_status(target) -> str | None:
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return target.status


# Append-only rows


def _check_append_only_update(mapper, connection, target):
    _block(type(target).__name__, target.id, "UPDATE", f"{type(target).__name__} records are immutable")


def _check_append_only_delete(mapper, connection, target):
    _block(type(target).__name__, target.id, "DELETE", f"{type(target).__name__} records cannot be deleted")


# Workflow entities


def _check_workflow_insert(mapper, connection, target):
    workflow = type(target).__workflow__
    if target.status is not None and target.status != workflow.initial_state:
        _block(
            workflow.entity_type, target.id, "INSERT",
            f"new rows start in {workflow.initial_state}, not {target.status}",
        )
    stamped = sorted(f for f in workflow.stamped_fields if getattr(target, f) is not None)
    if stamped:
        _block(
            workflow.entity_type, target.id, "INSERT",
            f"stamp fields are written by transitions only: {stamped}",
        )


def _check_workflow_update(mapper, connection, target):
    workflow = type(target).__workflow__
    changed = _changed_columns(target) - _ROW_METADATA
    if not changed:
        return

    if "status" in changed:
        _block(
            workflow.entity_type, target.id, "UPDATE",
            "status changes only through a workflow transition",
        )

    stamped = sorted(changed & workflow.stamped_fields)
    if stamped:
        _block(
            workflow.entity_type, target.id, "UPDATE",
            f"stamp fields are written by transitions only: {stamped}",
        )

    status = _persisted_status(target)
    if status in workflow.immutable_states:
        _block(
            workflow.entity_type, target.id, "UPDATE",
            f"row is {status}; fields {sorted(changed)} cannot change",
        )


def _check_workflow_delete(mapper, connection, target):
    workflow = type(target).__workflow__
    status = _persisted_status(target)
    if status != workflow.initial_state:
        _block(
            workflow.entity_type, target.id, "DELETE",
            f"only {workflow.initial_state} rows can be deleted, row is {status}",
        )


# Transition plan assignments


def _plan_status(connection, plan_id) -> str | None:
    from club_kernel.models.transition_plan import TransitionPlan

    table = TransitionPlan.__table__
    return connection.execute(
        select(table.c.status).where(table.c.id == plan_id)
    ).scalar_one_or_none()


def _check_plan_assignment(operation: str):
    def listener(mapper, connection, target):
        from club_kernel.domain.workflows.transition_plans import PlanStatus

        status = _plan_status(connection, target.plan_id)
        if status != PlanStatus.DRAFT.value:
            _block(
                "TransitionPlanAssignment", target.id, operation,
                f"plan {target.plan_id} is {status}; assignments are frozen",
            )

    listener.__name__ = f"_check_plan_assignment_{operation.lower()}"
    return listener


_check_plan_assignment_insert = _check_plan_assignment("INSERT")
_check_plan_assignment_update = _check_plan_assignment("UPDATE")
_check_plan_assignment_delete = _check_plan_assignment("DELETE")


def _listeners():
    from club_kernel.models import (
        WORKFLOW_MODELS,
        AuditEntry,
        SupportCaseNote,
        TransitionPlanAssignment,
    )

    pairs = []
    for model in (AuditEntry, SupportCaseNote):
        pairs.append((model, "before_update", _check_append_only_update))
        pairs.append((model, "before_delete", _check_append_only_delete))
    for model in WORKFLOW_MODELS.values():
        pairs.append((model, "before_insert", _check_workflow_insert))
        pairs.append((model, "before_update", _check_workflow_update))
        pairs.append((model, "before_delete", _check_workflow_delete))
    pairs.append((TransitionPlanAssignment, "before_insert", _check_plan_assignment_insert))
    pairs.append((TransitionPlanAssignment, "before_update", _check_plan_assignment_update))
    pairs.append((TransitionPlanAssignment, "before_delete", _check_plan_assignment_delete))
    return pairs


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call after the models are importable and before any database work.
    Calling it twice is harmless.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only for tests that deliberately break the rules to prove the
    database triggers or the audit chain validator catch it.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
