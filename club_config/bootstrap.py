"""
Kernel bootstrap (``club_config.bootstrap``).

Wires a ``KernelSettings`` into the running process: logging first, then
the engine, then schema and immutability guards.  ``make_engine`` builds a
WorkflowEngine for one session with the settings' audit policy applied.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from club_config.schema import KernelSettings
from club_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from club_kernel.db.immutability import register_immutability_listeners
from club_kernel.domain.clock import Clock
from club_kernel.logging_config import configure_logging, get_logger
from club_kernel.services.audit_trail import AuditTrailService
from club_kernel.services.workflow_engine import WorkflowEngine

logger = get_logger("config.bootstrap")


def bootstrap(settings: KernelSettings) -> None:
    """
    Prepare the kernel for use.

    Raises:
        AuditChainBrokenError: when ``verify_chain_on_startup`` is set and
            the stored chain does not validate.
    """
    configure_logging(level=settings.logging.level)

    db = settings.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=db.pool_pre_ping,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
    if db.create_tables:
        create_tables(install_triggers=db.install_triggers)
    register_immutability_listeners()

    if settings.audit.verify_chain_on_startup:
        with session_scope() as session:
            AuditTrailService(session).validate_chain()

    logger.info(
        "kernel_bootstrapped",
        extra={
            "settings_name": settings.name,
            "settings_source": settings.source,
            "audit_denials": settings.audit.audit_denials,
            "chain_verified": settings.audit.verify_chain_on_startup,
        },
    )


def make_engine(
    settings: KernelSettings,
    session: Session,
    clock: Clock | None = None,
) -> WorkflowEngine:
    return WorkflowEngine(
        session,
        clock=clock,
        audit_denials=settings.audit.audit_denials,
    )
