"""
Typed Exception Hierarchy for the Club Kernel.

===============================================================================
EXCEPTIONS VS. RESULTS
===============================================================================

Expected outcomes of a privileged request are NOT exceptions.  A missing
capability, a scope miss, an illegal transition, a failed guard or a lost
race all come back as typed results (see domain/results.py) that the caller
must inspect.  The classes below cover what is left:

  - persistence I/O failures that the handler maps to a 500-equivalent
  - broken invariants (tampered audit chain, attempted mutation of an
    immutable row)
  - programming and configuration errors (unregistered workflow, malformed
    transition table, invalid settings file)

Every class carries a machine-readable CODE attribute and structured data.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ClubKernelError (base)
    |
    +-- InfrastructureError
    |   +-- AuditWriteError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- WorkflowError
    |   +-- WorkflowNotRegisteredError
    |   +-- WorkflowDefinitionError
    |   +-- EffectNotRegisteredError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Infrastructure  | INFRASTRUCTURE_FAILURE      | Persistence layer I/O failed
                | AUDIT_WRITE_FAILED          | Audit append failed; mutation rolled back
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an immutable row or field
----------------|-----------------------------|-----------------------------------------
Workflow        | WORKFLOW_NOT_REGISTERED     | No table registered for entity type
                | WORKFLOW_DEFINITION_INVALID | Transition table fails validation
                | EFFECT_NOT_REGISTERED       | Table names an unknown side effect
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_INVALID       | Settings file missing or malformed
"""


class ClubKernelError(Exception):
    """Base exception for all club kernel errors."""

    code: str = "CLUB_KERNEL_ERROR"


# Infrastructure


class InfrastructureError(ClubKernelError):
    """
    The persistence layer failed.

    Never a policy decision.  The message deliberately omits the driver's
    error text; the original exception is chained as __cause__.
    """

    code: str = "INFRASTRUCTURE_FAILURE"

    def __init__(self, operation: str, detail: str = "persistence operation failed"):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Infrastructure failure during {operation}: {detail}")


class AuditWriteError(InfrastructureError):
    """The audit append failed, so the enclosing mutation was rolled back."""

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(self, object_type: str, object_id: str, action: str):
        self.object_type = object_type
        self.object_id = object_id
        self.action = action
        super().__init__(
            operation="audit_append",
            detail=f"could not record {action} on {object_type} {object_id}",
        )


# Audit


class AuditError(ClubKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = audit_entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability


class ImmutabilityError(ClubKernelError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record or field.

    Covers audit entries, workflow status and stamp fields written outside
    a declared transition, and content of rows in a sealed status.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Workflow definition


class WorkflowError(ClubKernelError):
    """Base exception for workflow definition and registration errors."""

    code: str = "WORKFLOW_ERROR"


class WorkflowNotRegisteredError(WorkflowError):
    """No workflow table is registered for the requested entity type."""

    code: str = "WORKFLOW_NOT_REGISTERED"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"No workflow registered for entity type {entity_type!r}")


class WorkflowDefinitionError(WorkflowError):
    """A transition table failed structural validation."""

    code: str = "WORKFLOW_DEFINITION_INVALID"

    def __init__(self, workflow: str, problems: list[str]):
        self.workflow = workflow
        self.problems = list(problems)
        super().__init__(
            f"Workflow {workflow!r} is invalid: " + "; ".join(self.problems)
        )


class EffectNotRegisteredError(WorkflowError):
    """A transition names a side effect that has no handler."""

    code: str = "EFFECT_NOT_REGISTERED"

    def __init__(self, workflow: str, effect: str):
        self.workflow = workflow
        self.effect = effect
        super().__init__(
            f"Workflow {workflow!r} references unregistered effect {effect!r}"
        )


# Configuration


class ConfigurationError(ClubKernelError):
    """Runtime settings could not be loaded or failed validation."""

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, source: str, problems: list[str]):
        self.source = source
        self.problems = list(problems)
        super().__init__(
            f"Invalid configuration in {source}: " + "; ".join(self.problems)
        )
