"""
Typed Exception Hierarchy for the Split Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Creation and settlement are all-or-nothing. The layer above the kernel has
to decide, per failure, whether to show the user a message, retry, or give
up. Parsing message strings for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (ids, Money amounts, invariant)

Example:
    try:
        service.settle_own_debt(expense_id, participant_id, amount)
    except SettlementRangeError as e:
        api_response(code=e.code, remaining=e.remaining.to_wire())
    except SettlementStateConflict:
        # never surfaced on first occurrence -- retry with fresh state
        ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SplitKernelError:

    SplitKernelError (base)
    |
    +-- ExpenseValidationError
    |   +-- SplitValidationError
    |   +-- PayerValidationError
    |   +-- InvalidExpenseInputError
    |   +-- UnknownParticipantError
    |
    +-- LookupFailureError
    |   +-- ExpenseNotFoundError
    |   +-- ParticipantNotFoundError
    |
    +-- SettlementError
    |   +-- SettlementRangeError
    |   +-- NotEligibleError
    |
    +-- ConcurrencyError
        +-- SettlementStateConflict

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | SPLIT_VALIDATION_FAILED     | Strategy invariant violated
                | PAYER_VALIDATION_FAILED     | Paid sum != total, unknown payer
                | INVALID_EXPENSE_INPUT       | Raw input malformed / wrong scale
                | UNKNOWN_PARTICIPANT         | Directory has no such participant
----------------|-----------------------------|-----------------------------------------
Lookup          | EXPENSE_NOT_FOUND           | Expense id not persisted
                | PARTICIPANT_NOT_FOUND       | Participant not part of the expense
----------------|-----------------------------|-----------------------------------------
Settlement      | SETTLEMENT_OUT_OF_RANGE     | Amount outside [0, remaining]
                | NOT_ELIGIBLE                | Wrong side of the balance
----------------|-----------------------------|-----------------------------------------
Concurrency     | SETTLEMENT_STATE_CONFLICT   | Concurrent write detected (retryable)

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Domain exceptions inherit from Exception, not ValueError, so they can be
   caught as a group without swallowing programming errors. Money misuse
   (float input, currency mixing) stays a TypeError / ValueError.

2. ``retryable`` is a class attribute. Only SettlementStateConflict sets it;
   every other error is terminal for the request.

===============================================================================
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from split_kernel.domain.values import Money
    from split_kernel.invariants import SplitInvariant


class SplitKernelError(Exception):
    """
    Base exception for all split kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SPLIT_KERNEL_ERROR"
    retryable: bool = False


# Validation exceptions


class ExpenseValidationError(SplitKernelError):
    """Base exception for input that must prevent expense creation."""

    code: str = "EXPENSE_VALIDATION_ERROR"


class SplitValidationError(ExpenseValidationError):
    """A split strategy invariant was violated."""

    code: str = "SPLIT_VALIDATION_FAILED"

    def __init__(
        self,
        invariant: SplitInvariant,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.invariant = invariant
        self.details = details or {}
        super().__init__(f"{invariant.value}: {message}")


class PayerValidationError(ExpenseValidationError):
    """The payer configuration does not cover the expense total."""

    code: str = "PAYER_VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        total: Money | None = None,
        paid_sum: Money | None = None,
    ):
        self.total = total
        self.paid_sum = paid_sum
        super().__init__(message)


class InvalidExpenseInputError(ExpenseValidationError):
    """Raw expense input is malformed (missing keys, wrong types or scale)."""

    code: str = "INVALID_EXPENSE_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid expense input '{field}': {reason}")


class UnknownParticipantError(ExpenseValidationError):
    """The directory collaborator does not know this participant id."""

    code: str = "UNKNOWN_PARTICIPANT"

    def __init__(self, participant_id: str):
        self.participant_id = participant_id
        super().__init__(f"Unknown participant: {participant_id}")


# Lookup exceptions


class LookupFailureError(SplitKernelError):
    """Base exception for missing expenses or participants."""

    code: str = "LOOKUP_FAILURE"


class ExpenseNotFoundError(LookupFailureError):
    """Expense with given ID was not found."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


class ParticipantNotFoundError(LookupFailureError):
    """Participant is not part of the expense."""

    code: str = "PARTICIPANT_NOT_FOUND"

    def __init__(self, expense_id: str, participant_id: str):
        self.expense_id = expense_id
        self.participant_id = participant_id
        super().__init__(
            f"Participant {participant_id} is not part of expense {expense_id}"
        )


# Settlement exceptions


class SettlementError(SplitKernelError):
    """Base exception for settlement requests."""

    code: str = "SETTLEMENT_ERROR"


class SettlementRangeError(SettlementError):
    """Requested settlement amount lies outside [0, remaining]."""

    code: str = "SETTLEMENT_OUT_OF_RANGE"

    def __init__(
        self,
        expense_id: str,
        participant_id: str,
        requested: Money,
        remaining: Money,
    ):
        self.expense_id = expense_id
        self.participant_id = participant_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Settlement of {requested} for {participant_id} on expense "
            f"{expense_id} is outside [0, {remaining}]"
        )


class NotEligibleError(SettlementError):
    """The participant is on the wrong side of the balance for this call."""

    code: str = "NOT_ELIGIBLE"

    def __init__(self, expense_id: str, participant_id: str, reason: str):
        self.expense_id = expense_id
        self.participant_id = participant_id
        self.reason = reason
        super().__init__(
            f"Participant {participant_id} on expense {expense_id} "
            f"is not eligible: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(SplitKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class SettlementStateConflict(ConcurrencyError):
    """
    A settlement record was modified by another writer, or could not be
    held exclusively in time.

    Retryable by design: callers retry with freshly loaded state.
    """

    code: str = "SETTLEMENT_STATE_CONFLICT"
    retryable: bool = True

    def __init__(self, expense_id: str, participant_id: str | None = None):
        self.expense_id = expense_id
        self.participant_id = participant_id
        target = f"participant {participant_id}" if participant_id else "records"
        super().__init__(
            f"Settlement conflict on expense {expense_id} ({target}): "
            "record was modified by another writer"
        )
