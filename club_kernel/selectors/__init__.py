"""Selectors for the club kernel (read side)."""

from club_kernel.selectors.audit_selector import AuditEntryDTO, AuditSelector

__all__ = [
    "AuditEntryDTO",
    "AuditSelector",
]
