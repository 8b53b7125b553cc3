"""
Data Models Package

This package contains all Pydantic models used by Pocket Ledger.
All data flowing through the ledger must conform to these schemas.
"""

from pocketledger.models.ledger import (
    Budget,
    BudgetFrequency,
    BudgetOrigin,
    BudgetView,
    Day,
    DayRollup,
    HierarchyValidation,
    Money,
    Transaction,
    TransactionRequest,
    TransactionType,
    to_money,
    utc_now,
    utc_today,
)
from pocketledger.models.journal import (
    AffectedBudget,
    JournalEntry,
    JournalEntryBuilder,
    JournalEntryType,
    LedgerRule,
)

__all__ = [
    # Ledger models
    "Budget",
    "BudgetFrequency",
    "BudgetOrigin",
    "BudgetView",
    "Day",
    "DayRollup",
    "HierarchyValidation",
    "Money",
    "Transaction",
    "TransactionRequest",
    "TransactionType",
    "to_money",
    "utc_now",
    "utc_today",
    # Journal models
    "AffectedBudget",
    "JournalEntry",
    "JournalEntryBuilder",
    "JournalEntryType",
    "LedgerRule",
]
