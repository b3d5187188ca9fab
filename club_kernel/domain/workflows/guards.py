"""Reusable guard builders for the per-entity transition tables."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from club_kernel.domain.workflow import Guard


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def required_param(name: str, param: str, description: str) -> Guard:
    """The caller must supply a non-blank ``param`` with the request."""

    def check(snapshot: Mapping[str, Any], params: Mapping[str, Any]) -> str | None:
        if _blank(params.get(param)):
            return description
        return None

    return Guard(name=name, description=description, check=check)


def required_field(name: str, field_name: str, description: str) -> Guard:
    """The entity must already carry a non-blank ``field_name``."""

    def check(snapshot: Mapping[str, Any], params: Mapping[str, Any]) -> str | None:
        if _blank(snapshot.get(field_name)):
            return description
        return None

    return Guard(name=name, description=description, check=check)
