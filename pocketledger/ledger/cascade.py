"""
Cascade Engine

Applies expenses and gains across the budget hierarchy.

EXPENSE of X against a target budget:
1. Cascade set = target + its immediate parent only
   (daily -> weekly, weekly -> primary monthly, monthly -> nothing).
   Depth is deliberately 1: a daily expense never touches the monthly budget.
2. Every budget in the set must stay >= 0 after subtracting X,
   otherwise the whole expense is rejected.
3. Balances, the transaction record and one `cascade_expense` journal entry
   are written together, then the day rollup is refreshed.

GAIN: recorded as a transaction plus a `gain_to_savings` journal entry.
Gains never raise any budget's balance; they only show up in `Day.gains`.

Both are refused on a locked day.
"""

import datetime as dt
from decimal import Decimal
from functools import partial
from typing import Callable, Optional
from uuid import UUID

from pydantic import BaseModel

from pocketledger.audit import AuditLogger
from pocketledger.ledger.capability import ConsistencyMode
from pocketledger.ledger.days import DayLockSource
from pocketledger.ledger.errors import (
    BudgetNotFoundError,
    DayLockedError,
    ValidationError,
)
from pocketledger.ledger.mutation import (
    BudgetDelta,
    LedgerMutation,
    LedgerMutator,
)
from pocketledger.models.ledger import (
    Budget,
    BudgetFrequency,
    DayRollup,
    Transaction,
    TransactionType,
    to_money,
    utc_today,
)
from pocketledger.models.journal import AffectedBudget, JournalEntryBuilder
from pocketledger.services.storage import LedgerStore


class ExpenseResult(BaseModel):
    """Outcome of a posted expense."""

    transaction_id: UUID
    journal_entry_id: UUID
    affected: list[AffectedBudget]
    mode: ConsistencyMode
    day: Optional[DayRollup] = None


class GainResult(BaseModel):
    """Outcome of a recorded gain."""

    transaction_id: UUID
    journal_entry_id: UUID
    mode: ConsistencyMode
    day: Optional[DayRollup] = None


class CascadeEngine:
    """Posts expenses and gains through the ledger mutator."""

    def __init__(
        self,
        store: LedgerStore,
        mutator: LedgerMutator,
        lock_source: DayLockSource,
        audit_logger: Optional[AuditLogger] = None,
        today: Callable[[], dt.date] = utc_today,
    ):
        self._store = store
        self._mutator = mutator
        self._locks = lock_source
        self._audit = audit_logger or AuditLogger()
        self._today = today

    async def resolve_cascade(self, budget: Budget) -> list[Budget]:
        """The budget followed by its immediate parent, if it has one."""
        parent = None
        if budget.frequency == BudgetFrequency.DAILY:
            parent = await self._store.find_budget_by_frequency(
                budget.user_id, BudgetFrequency.WEEKLY
            )
        elif budget.frequency == BudgetFrequency.WEEKLY:
            parent = await self._store.find_primary_budget(budget.user_id)

        if parent is None or parent.id == budget.id:
            return [budget]
        return [budget, parent]

    async def _owned_budget(self, user_id: UUID, budget_id: UUID) -> Budget:
        budget = await self._store.get_budget(budget_id)
        if budget is None or budget.user_id != user_id:
            self._audit.log_rejection("lookup_budget", user_id, "budget not found",
                                      {"budget_id": str(budget_id)})
            raise BudgetNotFoundError(budget_id)
        return budget

    async def _ensure_unlocked(self, operation: str, user_id: UUID, on_date: dt.date) -> None:
        if await self._locks.is_locked(user_id, on_date):
            error = DayLockedError(user_id, on_date)
            self._audit.log_rejection(operation, user_id, error.message, error.details)
            raise error

    @staticmethod
    def _positive(amount: Decimal) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero", {"amount": str(amount)})
        return amount

    async def apply_expense(
        self,
        user_id: UUID,
        budget_id: UUID,
        amount: Decimal,
        comment: str = "",
        on_date: Optional[dt.date] = None,
    ) -> ExpenseResult:
        """
        Post an expense against a budget and its immediate parent.

        Raises:
            BudgetNotFoundError, NegativeBalanceRejectedError,
            ConcurrencyConflictError, DayLockedError
        """
        amount = self._positive(amount)
        on_date = on_date or self._today()
        await self._ensure_unlocked("apply_expense", user_id, on_date)

        budget = await self._owned_budget(user_id, budget_id)
        chain = await self.resolve_cascade(budget)

        transaction = Transaction(
            user_id=user_id,
            budget_id=budget.id,
            type=TransactionType.EXPENSE,
            amount=amount,
            comment=comment,
            date=on_date,
        )
        outcome = await self._mutator.apply(LedgerMutation(
            user_id=user_id,
            operation="apply_expense",
            deltas=[BudgetDelta(budget_id=b.id, delta=-amount) for b in chain],
            journal=partial(
                JournalEntryBuilder.cascade_expense,
                user_id=user_id,
                amount=amount,
                source_budget_id=budget.id,
                comment=comment or None,
            ),
            transaction=transaction,
            reconcile_date=on_date,
        ))

        return ExpenseResult(
            transaction_id=transaction.id,
            journal_entry_id=outcome.journal_entry.id,
            affected=outcome.affected,
            mode=outcome.mode,
            day=outcome.day.to_rollup() if outcome.day else None,
        )

    async def apply_gain(
        self,
        user_id: UUID,
        amount: Decimal,
        comment: str = "",
        budget_id: Optional[UUID] = None,
        on_date: Optional[dt.date] = None,
    ) -> GainResult:
        """
        Record a gain. No budget balance changes.

        Raises:
            BudgetNotFoundError: `budget_id` given but unknown
            DayLockedError
        """
        amount = self._positive(amount)
        on_date = on_date or self._today()
        await self._ensure_unlocked("apply_gain", user_id, on_date)

        if budget_id is not None:
            await self._owned_budget(user_id, budget_id)

        transaction = Transaction(
            user_id=user_id,
            budget_id=budget_id,
            type=TransactionType.GAIN,
            amount=amount,
            comment=comment,
            date=on_date,
        )

        def journal(affected, fallback):
            return JournalEntryBuilder.gain_to_savings(
                user_id=user_id,
                amount=amount,
                comment=comment or None,
                budget_id=budget_id,
            )

        outcome = await self._mutator.apply(LedgerMutation(
            user_id=user_id,
            operation="apply_gain",
            deltas=[],
            journal=journal,
            transaction=transaction,
            reconcile_date=on_date,
        ))

        return GainResult(
            transaction_id=transaction.id,
            journal_entry_id=outcome.journal_entry.id,
            mode=outcome.mode,
            day=outcome.day.to_rollup() if outcome.day else None,
        )
