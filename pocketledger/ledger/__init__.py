"""
Ledger Core Package

The transactional heart of Pocket Ledger: cascade posting, the two
consistency modes, day rollups and availability reconciliation.
"""

from pocketledger.ledger.errors import (
    BudgetNotFoundError,
    ConcurrencyConflictError,
    DayLockedError,
    ErrorKind,
    HierarchyViolationError,
    LedgerCommitError,
    LedgerError,
    NegativeBalanceRejectedError,
    TransactionCapabilityError,
    TransactionNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from pocketledger.ledger.capability import (
    ConsistencyMode,
    TransactionCapabilityDetector,
)
from pocketledger.ledger.availability import AvailabilityCheck, AvailabilityReconciler
from pocketledger.ledger.days import (
    DayLockSource,
    DayReconciler,
    StoreDayLockSource,
)
from pocketledger.ledger.mutation import (
    BalanceGuard,
    BudgetDelta,
    CompensationSaga,
    LedgerMutation,
    LedgerMutator,
    MutationOutcome,
)
from pocketledger.ledger.cascade import CascadeEngine, ExpenseResult, GainResult
from pocketledger.ledger.budgets import BudgetManager

__all__ = [
    # Errors
    "BudgetNotFoundError",
    "ConcurrencyConflictError",
    "DayLockedError",
    "ErrorKind",
    "HierarchyViolationError",
    "LedgerCommitError",
    "LedgerError",
    "NegativeBalanceRejectedError",
    "TransactionCapabilityError",
    "TransactionNotFoundError",
    "UserNotFoundError",
    "ValidationError",
    # Capability
    "ConsistencyMode",
    "TransactionCapabilityDetector",
    # Reconcilers
    "AvailabilityCheck",
    "AvailabilityReconciler",
    "DayLockSource",
    "DayReconciler",
    "StoreDayLockSource",
    # Mutation
    "BalanceGuard",
    "BudgetDelta",
    "CompensationSaga",
    "LedgerMutation",
    "LedgerMutator",
    "MutationOutcome",
    # Engines
    "BudgetManager",
    "CascadeEngine",
    "ExpenseResult",
    "GainResult",
]
