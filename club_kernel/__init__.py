"""
Club Kernel

The authorization and workflow core of the club management system:
- Role to capability registry with fail-closed write classification
- Policy enforcement with read-only impersonation
- Committee-scoped delegation of role assignments
- Table-driven workflows for events, minutes, transition plans and support cases
- Conditional status writes with a hash-chained audit trail
"""

__version__ = "0.1.0"
