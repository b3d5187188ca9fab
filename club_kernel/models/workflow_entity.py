"""
Mixin shared by every workflow entity model.

Each concrete model names its transition table in ``__workflow__``.  The
immutability listeners and the workflow store both read it, so the table is
the only place a model's states and stamp fields are declared.
"""

from typing import Any, ClassVar

from sqlalchemy import inspect

from club_kernel.domain.workflow import Workflow


class WorkflowEntityMixin:
    __workflow__: ClassVar[Workflow]

    def workflow_snapshot(self) -> dict[str, Any]:
        """Column values keyed by attribute name, for guards and audit."""
        state = inspect(self)
        return {attr.key: getattr(self, attr.key) for attr in state.mapper.column_attrs}
