"""
Typed exception hierarchy for the validation kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the validation engine (UI handlers, schedulers, integrations)
must react to failures precisely: a validator who lacks authority is a
different situation from a request that was already finalized, and both
differ from a lost concurrent write that can simply be retried.

Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        service.process(request_id, "u-42", 1, Decision.APPROVED)
    except AlreadyFinalizedError as e:
        return {"error": e.code, "status": e.status}
    except ConcurrentModificationError:
        # Re-read and retry; nothing was written.
        ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ValidationKernelError (base)
    |
    +-- NotFoundError
    |   +-- ValidationRequestNotFoundError
    |   +-- RuleNotFoundError
    |   +-- RuleTemplateNotFoundError
    |   +-- ThresholdPolicyNotFoundError
    |
    +-- ValidationStateError
    |   +-- AlreadyFinalizedError
    |   +-- InsufficientLevelError
    |   +-- LevelAlreadyAdvancedError
    |   +-- InvalidValidationTransitionError
    |
    +-- RuleConfigurationError
    |   +-- InvalidRuleConfigurationError
    |   +-- InvalidThresholdPolicyError
    |   +-- ThresholdPolicyExistsError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|------------------------------------
Lookup       | VALIDATION_REQUEST_NOT_FOUND | Unknown request id
             | RULE_NOT_FOUND               | Unknown rule id
             | RULE_TEMPLATE_NOT_FOUND      | Unknown template id
             | THRESHOLD_POLICY_NOT_FOUND   | Unknown threshold policy
-------------|------------------------------|------------------------------------
State        | ALREADY_FINALIZED            | Decision/cancel on a terminal request
             | INSUFFICIENT_LEVEL           | Validator below the active minimum
             | LEVEL_ALREADY_ADVANCED       | Caller acted on a stale level
             | INVALID_VALIDATION_TRANSITION| Edge missing from transition table
-------------|------------------------------|------------------------------------
Rules        | INVALID_RULE_CONFIGURATION   | Rule rejected at save time
             | INVALID_THRESHOLD_POLICY     | Threshold policy rejected at save time
             | THRESHOLD_POLICY_EXISTS      | Second policy for the same scope
-------------|------------------------------|------------------------------------
Concurrency  | CONCURRENT_MODIFICATION      | Version check failed on write
-------------|------------------------------|------------------------------------
Immutability | IMMUTABILITY_VIOLATION       | Update/delete of a history record
-------------|------------------------------|------------------------------------
Audit        | AUDIT_CHAIN_BROKEN           | Hash chain validation failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConcurrencyError is retryable: nothing was persisted by the losing
   call, so re-read the request and decide again.

2. AlreadyFinalizedError is the idempotent answer for late or duplicate
   decisions. It carries the terminal ``status`` so callers can show it.

3. AuditChainBrokenError means someone edited the audit table directly.
   Stop and investigate.

===============================================================================
"""


class ValidationKernelError(Exception):
    """
    Base exception for all validation kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "VALIDATION_KERNEL_ERROR"


# Lookup exceptions


class NotFoundError(ValidationKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ValidationRequestNotFoundError(NotFoundError):
    """Validation request with given ID was not found."""

    code: str = "VALIDATION_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Validation request not found: {request_id}")


class RuleNotFoundError(NotFoundError):
    """Rule with given ID was not found."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


class RuleTemplateNotFoundError(NotFoundError):
    """Rule template with given ID was not found."""

    code: str = "RULE_TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Rule template not found: {template_id}")


class ThresholdPolicyNotFoundError(NotFoundError):
    """Threshold policy with given ID or scope was not found."""

    code: str = "THRESHOLD_POLICY_NOT_FOUND"

    def __init__(self, policy_ref: str):
        self.policy_ref = policy_ref
        super().__init__(f"Threshold policy not found: {policy_ref}")


# State machine exceptions


class ValidationStateError(ValidationKernelError):
    """Base exception for request lifecycle violations."""

    code: str = "VALIDATION_STATE_ERROR"


class AlreadyFinalizedError(ValidationStateError):
    """
    The request is in a terminal status.

    Raised for every decision or cancellation attempt after the request
    was approved, rejected, auto-approved, or cancelled. No validation
    record is written when this is raised.
    """

    code: str = "ALREADY_FINALIZED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Validation request {request_id} is already finalized ({status})"
        )


class InsufficientLevelError(ValidationStateError):
    """The validator's authority is below what the request currently needs."""

    code: str = "INSUFFICIENT_LEVEL"

    def __init__(self, request_id: str, validator_level: int, required_level: int):
        self.request_id = request_id
        self.validator_level = validator_level
        self.required_level = required_level
        super().__init__(
            f"Validator level {validator_level} cannot act on request "
            f"{request_id}: level {required_level} or higher required"
        )


class LevelAlreadyAdvancedError(ValidationStateError):
    """The caller decided on a level the request has already moved past."""

    code: str = "LEVEL_ALREADY_ADVANCED"

    def __init__(self, request_id: str, expected_level: int, current_level: int):
        self.request_id = request_id
        self.expected_level = expected_level
        self.current_level = current_level
        super().__init__(
            f"Validation request {request_id} is at level {current_level}, "
            f"not {expected_level}"
        )


class InvalidValidationTransitionError(ValidationStateError):
    """Status change not present in the lifecycle transition table."""

    code: str = "INVALID_VALIDATION_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid validation transition: {from_status} -> {to_status}"
        )


# Rule configuration exceptions


class RuleConfigurationError(ValidationKernelError):
    """Base exception for rule administration errors."""

    code: str = "RULE_CONFIGURATION_ERROR"


class InvalidRuleConfigurationError(RuleConfigurationError):
    """
    Rule rejected at save time.

    Carries every problem found, not only the first, so an editor can
    show them together.
    """

    code: str = "INVALID_RULE_CONFIGURATION"

    def __init__(self, rule_name: str, errors: list[str] | tuple[str, ...]):
        self.rule_name = rule_name
        self.errors = tuple(errors)
        super().__init__(
            f"Invalid rule '{rule_name}': " + "; ".join(self.errors)
        )


class InvalidThresholdPolicyError(RuleConfigurationError):
    """Threshold policy rejected at save time, with every problem found."""

    code: str = "INVALID_THRESHOLD_POLICY"

    def __init__(self, policy_key: str, errors: list[str] | tuple[str, ...]):
        self.policy_key = policy_key
        self.errors = tuple(errors)
        super().__init__(
            f"Invalid threshold policy '{policy_key}': " + "; ".join(self.errors)
        )


class ThresholdPolicyExistsError(RuleConfigurationError):
    """A policy already covers this workspace, entity type and category."""

    code: str = "THRESHOLD_POLICY_EXISTS"

    def __init__(self, policy_key: str):
        self.policy_key = policy_key
        super().__init__(f"A threshold policy already exists for {policy_key}")


# Concurrency exceptions


class ConcurrencyError(ValidationKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Another writer changed the entity between read and write."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(ValidationKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Validation records and audit events are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit exceptions


class AuditError(ValidationKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
