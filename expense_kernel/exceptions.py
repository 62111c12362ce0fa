"""
Typed Exception Hierarchy for the Expense Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval decisions are surfaced to clients, retried by callers, and written
to audit logs.  Every failure therefore carries:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA as attributes (not just a message string)

Example:
    try:
        service.act(expense_id, actor_id, "approve")
    except StepAlreadyResolvedError as e:
        return {"error": e.code, "expense_id": e.expense_id}
    except ConflictError:
        refetch_and_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ExpenseKernelError (base)
    |
    +-- ValidationError
    |   +-- RuleValidationError
    |   +-- InvalidActionError
    |   +-- UnknownApproverError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedApproverError
    |   +-- ViewNotPermittedError
    |
    +-- NotFoundError
    |   +-- ExpenseNotFoundError
    |   +-- RuleNotFoundError
    |
    +-- ConflictError
    |   +-- ExpenseAlreadyResolvedError
    |   +-- StepAlreadyResolvedError
    |   +-- ConcurrentModificationError
    |   +-- InvalidExpenseTransitionError
    |
    +-- CurrencyConversionError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | RULE_VALIDATION_FAILED      | Malformed rule definition
                | INVALID_ACTION              | Action is not approve/reject
                | UNKNOWN_APPROVER            | Specific approver not in directory
----------------|-----------------------------|-----------------------------------------
Authorization   | NOT_AUTHORIZED_APPROVER     | No pending instance in current sequence
                | VIEW_NOT_PERMITTED          | Viewer may not read the expense
----------------|-----------------------------|-----------------------------------------
Not found       | EXPENSE_NOT_FOUND           | Expense ID doesn't exist
                | RULE_NOT_FOUND              | Rule ID doesn't exist for the company
----------------|-----------------------------|-----------------------------------------
Conflict        | EXPENSE_ALREADY_RESOLVED    | Action on approved/rejected expense
                | STEP_ALREADY_RESOLVED       | Actor's instance already acted on
                | CONCURRENT_MODIFICATION     | Optimistic version check failed
                | INVALID_EXPENSE_TRANSITION  | Illegal status edge
----------------|-----------------------------|-----------------------------------------
Currency        | CURRENCY_CONVERSION_FAILED  | Converter could not convert
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only history row

===============================================================================
HANDLING PATTERNS
===============================================================================

- ValidationError     -> 400, never retried automatically
- AuthorizationError  -> 403 client-facing denial
- NotFoundError       -> 404
- ConflictError       -> 409, caller refetches and retries or reports
                         "already handled"
- CurrencyConversionError is recovered inside submission (falls back to the
  unconverted amount) and never reaches the submitter.
"""


class ExpenseKernelError(Exception):
    """
    Base exception for all expense kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "EXPENSE_KERNEL_ERROR"


# Validation exceptions


class ValidationError(ExpenseKernelError):
    """Base exception for malformed input."""

    code: str = "VALIDATION_ERROR"


class RuleValidationError(ValidationError):
    """Approval rule definition is malformed."""

    code: str = "RULE_VALIDATION_FAILED"

    def __init__(self, rule_name: str, errors: list[str]):
        self.rule_name = rule_name
        self.errors = list(errors)
        super().__init__(
            f"Approval rule '{rule_name}' is invalid: {'; '.join(self.errors)}"
        )


class InvalidActionError(ValidationError):
    """Approver action is neither approve nor reject."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: str):
        self.action = action
        super().__init__(
            f'Invalid action {action!r}. Use "approve" or "reject"'
        )


class UnknownApproverError(ValidationError):
    """One or more specific approvers do not resolve in the company directory."""

    code: str = "UNKNOWN_APPROVER"

    def __init__(self, rule_name: str, approver_ids: list[str]):
        self.rule_name = rule_name
        self.approver_ids = list(approver_ids)
        super().__init__(
            f"Approval rule '{rule_name}' references unknown approvers: "
            f"{', '.join(self.approver_ids)}"
        )


# Authorization exceptions


class AuthorizationError(ExpenseKernelError):
    """Base exception for client-facing denials."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedApproverError(AuthorizationError):
    """Actor has no pending instance in the expense's current sequence."""

    code: str = "NOT_AUTHORIZED_APPROVER"

    def __init__(self, expense_id: str, actor_id: str):
        self.expense_id = expense_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not authorized to act on expense {expense_id}"
        )


class ViewNotPermittedError(AuthorizationError):
    """Viewer is neither the owner, an admin, nor an approving manager."""

    code: str = "VIEW_NOT_PERMITTED"

    def __init__(self, expense_id: str, viewer_id: str):
        self.expense_id = expense_id
        self.viewer_id = viewer_id
        super().__init__(
            f"User {viewer_id} is not authorized to view expense {expense_id}"
        )


# Not-found exceptions


class NotFoundError(ExpenseKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ExpenseNotFoundError(NotFoundError):
    """Expense with given ID was not found."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


class RuleNotFoundError(NotFoundError):
    """Approval rule with given ID was not found for the company."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule not found: {rule_id}")


# Conflict exceptions


class ConflictError(ExpenseKernelError):
    """Base exception for actions that lost a race or target resolved state."""

    code: str = "CONFLICT"


class ExpenseAlreadyResolvedError(ConflictError):
    """Expense is already approved or rejected."""

    code: str = "EXPENSE_ALREADY_RESOLVED"

    def __init__(self, expense_id: str, status: str):
        self.expense_id = expense_id
        self.status = status
        super().__init__(f"Expense {expense_id} is already {status}")


class StepAlreadyResolvedError(ConflictError):
    """Actor's approval step instance has already been acted on."""

    code: str = "STEP_ALREADY_RESOLVED"

    def __init__(self, expense_id: str, actor_id: str, step_status: str):
        self.expense_id = expense_id
        self.actor_id = actor_id
        self.step_status = step_status
        super().__init__(
            f"Approval step of {actor_id} on expense {expense_id} "
            f"is already {step_status}"
        )


class ConcurrentModificationError(ConflictError):
    """Optimistic version check failed: another action won the race."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(
            f"Expense {expense_id} was modified by another transaction"
        )


class InvalidExpenseTransitionError(ConflictError):
    """Status change is not an edge of the expense state machine."""

    code: str = "INVALID_EXPENSE_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid expense transition: {from_status} -> {to_status}"
        )


# Currency exceptions


class CurrencyConversionError(ExpenseKernelError):
    """Converter could not produce a base-currency amount."""

    code: str = "CURRENCY_CONVERSION_FAILED"

    def __init__(self, from_currency: str, to_currency: str, reason: str = ""):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        message = f"Cannot convert {from_currency} to {to_currency}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


# Immutability exceptions


class ImmutabilityViolationError(ExpenseKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
