"""
Settings schema (``club_config.schema``).

Frozen dataclasses describing the runtime settings of the kernel.  Parsing
and validation live in ``club_config.loader``; nothing here reads files.
"""

from __future__ import annotations

from dataclasses import dataclass, field

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and pool parameters passed to ``init_engine_from_url``."""

    url: str = ""
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_pre_ping: bool = True
    pool_timeout: int = 30
    pool_recycle: int = 1800
    create_tables: bool = False
    install_triggers: bool = True


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class AuditSettings:
    """
    audit_denials:
        Record security-relevant denials as DENIAL audit entries.
    verify_chain_on_startup:
        Walk the hash chain during bootstrap and refuse to start if broken.
    """

    audit_denials: bool = True
    verify_chain_on_startup: bool = False


@dataclass(frozen=True)
class KernelSettings:
    name: str
    database: DatabaseSettings
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    source: str = "<memory>"
