"""
Ledger Error Taxonomy

Every failure the ledger surfaces carries a `kind`, so callers can tell
what to do with it without matching on concrete classes:
- VALIDATION: client-fixable, never retried
- NOT_FOUND: unknown budget / user / transaction
- TRANSIENT: retry-safe (fallback-mode concurrency conflicts only)
- INTERNAL: store failure; the unit of work was rolled back
"""

from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    INTERNAL = "internal"


class LedgerError(Exception):
    """Base exception for ledger operations."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT


# =============================================================================
# NOT FOUND
# =============================================================================

class BudgetNotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, budget_id: UUID):
        super().__init__(f"Budget not found: {budget_id}", {"budget_id": str(budget_id)})
        self.budget_id = budget_id


class UserNotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, user_ref: str):
        super().__init__(f"User not found: {user_ref}", {"user": user_ref})


class TransactionNotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, transaction_id: UUID):
        super().__init__(
            f"Transaction not found: {transaction_id}",
            {"transaction_id": str(transaction_id)},
        )


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(LedgerError):
    """Client-fixable problem with the request."""
    kind = ErrorKind.VALIDATION


class NegativeBalanceRejectedError(ValidationError):
    """The cascade would drive a budget below zero. Nothing was applied."""

    def __init__(self, budget_id: UUID, before: Decimal, after: Decimal):
        super().__init__(
            f"Insufficient balance in budget {budget_id}: {before} -> {after}",
            {"budget_id": str(budget_id), "before": str(before), "after": str(after)},
        )
        self.budget_id = budget_id
        self.before = before
        self.after = after


class HierarchyViolationError(ValidationError):
    """A budget amount breaks the monthly/weekly/daily caps."""


class DayLockedError(ValidationError):
    def __init__(self, user_id: UUID, on_date):
        super().__init__(
            f"Day {on_date} is locked",
            {"user_id": str(user_id), "date": str(on_date)},
        )


# =============================================================================
# TRANSIENT / INTERNAL
# =============================================================================

class ConcurrencyConflictError(LedgerError):
    """
    A conditional update lost a race in fallback mode.

    Partial updates were compensated before this was raised; the caller
    may simply retry.
    """
    kind = ErrorKind.TRANSIENT


class LedgerCommitError(LedgerError):
    """The store failed while committing; the whole cascade was rolled back."""
    kind = ErrorKind.INTERNAL


class TransactionCapabilityError(LedgerError):
    """Production deployment without multi-document transactions."""
    kind = ErrorKind.INTERNAL
