"""
AuthContext -- the resolved identity of the current request.

Created by the request layer's session resolver, consumed as given.  The
kernel performs no credential verification of its own.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from club_kernel.domain.capabilities import GlobalRole
from club_kernel.logging_config import get_logger

logger = get_logger("domain.auth_context")


@dataclass(frozen=True)
class AuthContext:
    """
    Identity for one request.

    ``impersonated_by`` holds the original actor when an administrator is
    viewing the system as ``member_id``.  Such a context is read-only.
    """

    member_id: UUID
    global_role: GlobalRole
    impersonated_by: UUID | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.global_role, GlobalRole):
            object.__setattr__(self, "global_role", GlobalRole(self.global_role))

    @property
    def is_impersonating(self) -> bool:
        return self.impersonated_by is not None

    @property
    def audit_actor_id(self) -> UUID:
        """The human accountable for an action: the impersonator if present."""
        return self.impersonated_by or self.member_id


ContextResolver = Callable[[], "AuthContext | None"]


def resolve_context(resolver: ContextResolver) -> AuthContext | None:
    """
    Run an external session resolver, failing closed.

    Any error raised while resolving is logged and treated as "no actor",
    which every gate denies as unauthenticated.
    """
    try:
        ctx = resolver()
    except Exception:
        logger.warning("auth_context_resolution_failed", exc_info=True)
        return None
    if ctx is not None and not isinstance(ctx, AuthContext):
        logger.warning(
            "auth_context_resolution_invalid",
            extra={"resolved_type": type(ctx).__name__},
        )
        return None
    return ctx
