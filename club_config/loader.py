"""
Settings loader (``club_config.loader``).

Reads one YAML settings file and parses it into ``KernelSettings``.  Every
problem found is collected and reported together in a single
``ConfigurationError``; no field silently falls back to a default when its
value is present but malformed.

Failure modes
-------------
* Missing file  -> ``ConfigurationError``.
* Malformed YAML  -> ``ConfigurationError`` (chained from ``yaml.YAMLError``).
* Unknown keys, wrong types, bad log level  -> ``ConfigurationError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from club_config.schema import (
    LOG_LEVELS,
    AuditSettings,
    DatabaseSettings,
    KernelSettings,
    LoggingSettings,
)
from club_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict (empty file gives an empty dict)."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(str(path), ["file not found"]) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), [f"invalid YAML: {exc}"]) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), ["top level must be a mapping"])
    return data


def _section(
    cls: type,
    raw: Any,
    name: str,
    problems: list[str],
    overrides: Mapping[str, Any] | None = None,
) -> Any:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        problems.append(f"{name}: must be a mapping")
        return None

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(known))
    for key in unknown:
        problems.append(f"{name}.{key}: unknown setting")

    values = {k: v for k, v in raw.items() if k in known}
    values.update(overrides or {})
    for key, value in values.items():
        expected = known[key].type
        if expected in ("bool", bool) and not isinstance(value, bool):
            problems.append(f"{name}.{key}: expected true/false, got {value!r}")
        elif expected in ("int", int) and (isinstance(value, bool) or not isinstance(value, int)):
            problems.append(f"{name}.{key}: expected an integer, got {value!r}")
        elif expected in ("str", str) and not isinstance(value, str):
            problems.append(f"{name}.{key}: expected a string, got {value!r}")

    try:
        return cls(**values)
    except TypeError as exc:
        problems.append(f"{name}: {exc}")
        return None


def parse_settings(
    data: Mapping[str, Any],
    source: str = "<memory>",
    database_url: str | None = None,
) -> KernelSettings:
    """
    Build ``KernelSettings`` from an already-loaded mapping.

    ``database_url``, when given, replaces ``database.url`` from the file.

    Raises:
        ConfigurationError: listing every problem found.
    """
    problems: list[str] = []

    unknown = sorted(set(data) - {"name", "database", "logging", "audit"})
    for key in unknown:
        problems.append(f"{key}: unknown section")

    name = data.get("name", "default")
    if not isinstance(name, str) or not name.strip():
        problems.append("name: must be a non-empty string")

    db_overrides = {"url": database_url} if database_url else None
    database = _section(DatabaseSettings, data.get("database"), "database", problems, db_overrides)
    if database is not None:
        if not database.url:
            problems.append("database.url: required")
        for key in ("pool_size", "pool_timeout"):
            if isinstance(getattr(database, key), int) and getattr(database, key) <= 0:
                problems.append(f"database.{key}: must be positive")

    logging_settings = _section(LoggingSettings, data.get("logging"), "logging", problems)
    if logging_settings is not None:
        level = logging_settings.level
        if isinstance(level, str) and level.upper() in LOG_LEVELS:
            logging_settings = LoggingSettings(level=level.upper())
        else:
            problems.append(f"logging.level: must be one of {', '.join(LOG_LEVELS)}")

    audit = _section(AuditSettings, data.get("audit"), "audit", problems)

    if problems:
        raise ConfigurationError(source, problems)

    return KernelSettings(
        name=name,
        database=database,
        logging=logging_settings,
        audit=audit,
        source=source,
    )


def load_settings(path: Path, database_url: str | None = None) -> KernelSettings:
    return parse_settings(load_yaml_file(path), source=str(path), database_url=database_url)
