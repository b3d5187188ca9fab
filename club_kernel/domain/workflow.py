"""
Canonical workflow types (``club_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the workflow state machines.  Each workflow entity
type (Event, GovernanceMinutes, TransitionPlan, SupportCase) contributes one
``Workflow`` table; the engine in ``services/workflow_engine.py`` is the only
code that interprets it.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.  The storage
contract the engine needs is declared here as the ``WorkflowStore``
protocol.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* No transition leaves a terminal state.
* Each ``(from_state, action)`` pair maps to exactly one ``to_state``.
* Each NOW/ACTOR stamp field is owned by exactly one action.
* Stamp fields and ``status`` are never content fields.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from club_kernel.domain.auth_context import AuthContext
from club_kernel.domain.capabilities import Capability, CapabilityRegistry
from club_kernel.exceptions import WorkflowDefinitionError

GuardCheck = Callable[[Mapping[str, Any], Mapping[str, Any]], "str | None"]


class StampSource(str, Enum):
    NOW = "now"
    ACTOR = "actor"
    PARAM = "param"


@dataclass(frozen=True)
class Stamp:
    """A denormalized field written as a side effect of one transition."""

    field: str
    source: StampSource
    param: str | None = None

    def resolve(self, now: Any, actor_id: UUID, params: Mapping[str, Any]) -> Any:
        if self.source is StampSource.NOW:
            return now
        if self.source is StampSource.ACTOR:
            return actor_id
        value = params.get(self.param or self.field)
        if isinstance(value, str):
            value = value.strip() or None
        return value


@dataclass(frozen=True)
class Guard:
    """A data-integrity precondition checked before a transition fires.

    ``check(snapshot, params)`` returns None when satisfied, otherwise a
    short human-readable failure detail.
    """

    name: str
    description: str
    check: GuardCheck = field(compare=False, repr=False)

    def evaluate(self, snapshot: Mapping[str, Any], params: Mapping[str, Any]) -> str | None:
        return self.check(snapshot, params)


@dataclass(frozen=True)
class ObjectScope:
    """Actor must own the entity (``owner_field``) unless holding the override."""

    owner_field: str
    override_capability: Capability

    def permits(
        self,
        ctx: AuthContext,
        snapshot: Mapping[str, Any],
        registry: CapabilityRegistry,
    ) -> bool:
        if registry.has_capability(ctx.global_role, self.override_capability):
            return True
        owner = snapshot.get(self.owner_field)
        return owner is not None and owner == ctx.member_id


@dataclass(frozen=True)
class Transition:
    """One row of a transition table."""

    from_states: frozenset[str]
    action: str
    to_state: str
    required_capability: Capability
    guards: tuple[Guard, ...] = ()
    stamps: tuple[Stamp, ...] = ()
    effects: tuple[str, ...] = ()
    scope: ObjectScope | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.from_states, frozenset):
            object.__setattr__(self, "from_states", frozenset(self.from_states))


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for one workflow entity type.

    Contract: frozen, validated at construction.
    ``immutable_states`` are the terminal states plus any ``sealed_states``;
    content fields never change once an entity is in one of them.
    """

    entity_type: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()
    sealed_states: tuple[str, ...] = ()
    create_capability: Capability | None = None
    edit_capability: Capability | None = None
    editable_states: tuple[str, ...] = ()
    content_fields: tuple[str, ...] = ()
    edit_scope: ObjectScope | None = None

    def __post_init__(self) -> None:
        problems = self._validate()
        if problems:
            raise WorkflowDefinitionError(self.entity_type, problems)

    def _validate(self) -> list[str]:
        problems: list[str] = []
        states = set(self.states)
        if len(states) != len(self.states):
            problems.append("duplicate states")
        if self.initial_state not in states:
            problems.append(f"initial state {self.initial_state} not declared")
        for name, group in (
            ("terminal", self.terminal_states),
            ("sealed", self.sealed_states),
            ("editable", self.editable_states),
        ):
            unknown = set(group) - states
            if unknown:
                problems.append(f"{name} states not declared: {sorted(unknown)}")
        overlap = set(self.editable_states) & self.immutable_states
        if overlap:
            problems.append(f"states both editable and immutable: {sorted(overlap)}")

        seen: dict[tuple[str, str], str] = {}
        stamp_owner: dict[str, str] = {}
        for t in self.transitions:
            if not t.from_states:
                problems.append(f"{t.action}: empty from_states")
            unknown = (set(t.from_states) | {t.to_state}) - states
            if unknown:
                problems.append(f"{t.action}: undeclared states {sorted(unknown)}")
            leaving = set(t.from_states) & set(self.terminal_states)
            if leaving:
                problems.append(f"{t.action}: leaves terminal states {sorted(leaving)}")
            for src in t.from_states:
                key = (src, t.action)
                if key in seen and seen[key] != t.to_state:
                    problems.append(f"{t.action} from {src} is ambiguous")
                elif key in seen:
                    problems.append(f"{t.action} from {src} is declared twice")
                seen[key] = t.to_state
            for stamp in t.stamps:
                if stamp.field == "status" or stamp.field in self.content_fields:
                    problems.append(f"{t.action}: stamp {stamp.field} is not a stamp field")
                if stamp.source is StampSource.PARAM:
                    continue
                owner = stamp_owner.setdefault(stamp.field, t.action)
                if owner != t.action:
                    problems.append(
                        f"stamp {stamp.field} owned by both {owner} and {t.action}"
                    )
        if "status" in self.content_fields:
            problems.append("status is not a content field")
        return problems

    @property
    def immutable_states(self) -> frozenset[str]:
        return frozenset(self.terminal_states) | frozenset(self.sealed_states)

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions)

    @property
    def stamped_fields(self) -> frozenset[str]:
        return frozenset(s.field for t in self.transitions for s in t.stamps)

    def resolve(self, status: str, action: str) -> Transition | None:
        """The transition for ``action`` from ``status``, or None if illegal."""
        for t in self.transitions:
            if t.action == action and status in t.from_states:
                return t
        return None

    def available_actions(self, status: str) -> tuple[str, ...]:
        return tuple(sorted(t.action for t in self.transitions if status in t.from_states))

    def transition_map(self) -> dict[tuple[str, str], str]:
        """Every legal ``(from_state, action)`` pair and its target."""
        return {
            (src, t.action): t.to_state
            for t in self.transitions
            for src in t.from_states
        }

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal_states


@runtime_checkable
class WorkflowStore(Protocol):
    """
    Storage contract the engine requires.

    ``compare_and_set`` is the conditional write: it applies ``values`` only
    if the row's status still equals ``expected_status`` and reports whether
    it did.  Every status change goes through it.

    ``load(..., lock=True)`` also holds the row until the unit ends, so
    guard inputs cannot change between the guard check and the write.
    ``insert`` returns None when the row collides with an existing one.
    """

    def load(
        self,
        entity_type: str,
        entity_id: UUID,
        lock: bool = False,
    ) -> Mapping[str, Any] | None:
        ...

    def current_status(self, entity_type: str, entity_id: UUID) -> str | None:
        ...

    def compare_and_set(
        self,
        entity_type: str,
        entity_id: UUID,
        expected_status: str,
        values: Mapping[str, Any],
    ) -> bool:
        ...

    def insert(self, entity_type: str, values: Mapping[str, Any]) -> UUID | None:
        ...

    def not_null_fields(self, entity_type: str) -> frozenset[str]:
        ...

    def get(self, entity_type: str, entity_id: UUID, lock: bool = False) -> Any:
        """The stored entity itself, freshly read, or None."""
        ...
