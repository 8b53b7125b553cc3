"""
Journal Models for Pocket Ledger

Every balance-affecting or reconciling operation writes one JournalEntry.
This provides:
1. A forensic trail of every before/after budget balance
2. The rule that fired (cascade, fallback, reconciliation, allocation)
3. The ability to reconstruct how a balance got where it is

DESIGN DECISION: Journal entries are append-only. We never delete or modify them.
They are written in the same unit of work as the balance change they describe.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from pocketledger.models.ledger import Money, to_money, utc_now


class JournalEntryType(str, Enum):
    """Kind of ledger movement recorded."""
    EXPENSE = "expense"
    GAIN = "gain"
    ADJUSTMENT = "adjustment"


class LedgerRule(str, Enum):
    """
    Tags identifying which rule produced a journal entry.

    Rules applied through the conditional-update path are recorded with a
    `_fallback` suffix so the two consistency modes stay distinguishable.
    """
    CASCADE_EXPENSE = "cascade_expense"
    GAIN_TO_SAVINGS = "gain_to_savings"
    RECONCILE_PRIMARY = "reconcile_primary_current_amount"
    ALLOCATION_WEEKLY_FROM_MONTH = "allocation_weekly_from_month"
    INITIAL_BUDGET_ALLOCATION = "initial_budget_allocation"

    def tag(self, fallback: bool = False) -> str:
        return f"{self.value}_fallback" if fallback else self.value


class AffectedBudget(BaseModel):
    """One budget's balance before and after an operation."""
    model_config = ConfigDict(frozen=True)

    budget_id: UUID
    before: Money
    after: Money

    @property
    def delta(self) -> Decimal:
        return self.after - self.before


class JournalEntry(BaseModel):
    """
    A single immutable ledger journal record.

    `amount` is positive for expenses and gains; adjustments carry the signed
    correction that was applied.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    created_at: dt.datetime = Field(default_factory=utc_now)

    tx_type: JournalEntryType
    amount: Money
    comment: Optional[str] = Field(default=None, max_length=500)
    affected: list[AffectedBudget] = Field(default_factory=list)
    rule_applied: str = Field(..., min_length=1)
    meta: dict[str, Any] = Field(default_factory=dict)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "journal_entry_id": str(self.id),
            "user_id": str(self.user_id),
            "created_at": self.created_at.isoformat(),
            "tx_type": self.tx_type.value,
            "amount": str(self.amount),
            "rule_applied": self.rule_applied,
            "affected": [
                {
                    "budget_id": str(a.budget_id),
                    "before": str(a.before),
                    "after": str(a.after),
                }
                for a in self.affected
            ],
            "meta": self.meta,
        }


class JournalEntryBuilder:
    """
    Helper class to build journal entries for each ledger rule.

    Usage:
        entry = JournalEntryBuilder.cascade_expense(user_id, amount, affected, ...)
        entry = JournalEntryBuilder.reconcile_primary(user_id, budget_id, before, after)
    """

    @staticmethod
    def cascade_expense(
        user_id: UUID,
        amount: Decimal,
        affected: list[AffectedBudget],
        source_budget_id: UUID,
        comment: Optional[str] = None,
        fallback: bool = False,
    ) -> JournalEntry:
        return JournalEntry(
            user_id=user_id,
            tx_type=JournalEntryType.EXPENSE,
            amount=amount,
            comment=comment,
            affected=affected,
            rule_applied=LedgerRule.CASCADE_EXPENSE.tag(fallback),
            meta={"source_budget": str(source_budget_id)},
        )

    @staticmethod
    def gain_to_savings(
        user_id: UUID,
        amount: Decimal,
        comment: Optional[str] = None,
        budget_id: Optional[UUID] = None,
    ) -> JournalEntry:
        return JournalEntry(
            user_id=user_id,
            tx_type=JournalEntryType.GAIN,
            amount=amount,
            comment=comment,
            affected=[],
            rule_applied=LedgerRule.GAIN_TO_SAVINGS.value,
            meta={"budget": str(budget_id)} if budget_id else {},
        )

    @staticmethod
    def reconcile_primary(
        user_id: UUID,
        budget_id: UUID,
        before: Decimal,
        after: Decimal,
    ) -> JournalEntry:
        return JournalEntry(
            user_id=user_id,
            tx_type=JournalEntryType.ADJUSTMENT,
            amount=to_money(after - before),
            comment="Automatic reconciliation of primary current amount",
            affected=[AffectedBudget(budget_id=budget_id, before=before, after=after)],
            rule_applied=LedgerRule.RECONCILE_PRIMARY.value,
        )

    @staticmethod
    def weekly_allocation(
        user_id: UUID,
        amount: Decimal,
        affected: list[AffectedBudget],
        weekly_budget_id: UUID,
        weekly_name: str,
        fallback: bool = False,
    ) -> JournalEntry:
        # The new weekly budget is listed at its full amount alongside the parent.
        return JournalEntry(
            user_id=user_id,
            tx_type=JournalEntryType.EXPENSE,
            amount=amount,
            comment=f"Automatic allocation of weekly budget {weekly_name}",
            affected=[
                *affected,
                AffectedBudget(budget_id=weekly_budget_id, before=amount, after=amount),
            ],
            rule_applied=LedgerRule.ALLOCATION_WEEKLY_FROM_MONTH.tag(fallback),
        )

    @staticmethod
    def initial_allocation(
        user_id: UUID,
        affected: list[AffectedBudget],
        fallback: bool = False,
    ) -> JournalEntry:
        return JournalEntry(
            user_id=user_id,
            tx_type=JournalEntryType.ADJUSTMENT,
            amount=Decimal("0"),
            comment="Budget initial setup: monthly primary + weekly + daily allocations",
            affected=affected,
            rule_applied=LedgerRule.INITIAL_BUDGET_ALLOCATION.tag(fallback),
        )
