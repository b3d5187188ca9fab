"""
club_config -- the single entry point for runtime settings.

Responsibility:
    ``get_active_settings()`` is the only way to obtain settings at runtime.
    It reads one YAML file (the packaged ``sets/default.yaml`` unless a path
    or ``CLUB_KERNEL_CONFIG`` says otherwise) and applies the
    ``CLUB_KERNEL_DATABASE_URL`` override.  ``bootstrap()`` then wires the
    settings into logging, the database engine and the immutability guards.

Failure modes:
    - ``ConfigurationError`` -- missing file, malformed YAML, or any
      validation problem; all problems are reported together.
"""

from __future__ import annotations

import os
from pathlib import Path

from club_config.bootstrap import bootstrap, make_engine
from club_config.loader import load_settings, parse_settings
from club_config.schema import AuditSettings, DatabaseSettings, KernelSettings, LoggingSettings
from club_kernel.logging_config import get_logger

CONFIG_ENV_VAR = "CLUB_KERNEL_CONFIG"
DATABASE_URL_ENV_VAR = "CLUB_KERNEL_DATABASE_URL"

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "sets" / "default.yaml"

_logger = get_logger("config")


def get_active_settings(path: Path | str | None = None) -> KernelSettings:
    """
    Load the active settings.

    Resolution order for the file: ``path``, then ``$CLUB_KERNEL_CONFIG``,
    then the packaged default.  ``$CLUB_KERNEL_DATABASE_URL`` overrides the
    database URL from whichever file is used.

    Raises:
        ConfigurationError: the file is missing or invalid.
    """
    chosen = Path(path or os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_SETTINGS_FILE)
    settings = load_settings(chosen, database_url=os.environ.get(DATABASE_URL_ENV_VAR) or None)
    _logger.info(
        "settings_loaded",
        extra={"settings_name": settings.name, "settings_source": settings.source},
    )
    return settings


__all__ = [
    "AuditSettings",
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "DatabaseSettings",
    "KernelSettings",
    "LoggingSettings",
    "bootstrap",
    "get_active_settings",
    "load_settings",
    "make_engine",
    "parse_settings",
]
