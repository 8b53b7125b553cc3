"""
In-Memory Ledger Store

Used for development and for tests. It can be built with or without
multi-document transaction support so both consistency modes of the ledger
can be exercised deterministically.

Transactions run against a private working copy of the whole state and
are swapped in at commit; they are serialized by a single lock, which makes
them serializable. Writes made outside a transaction take the same lock, so
a commit never overwrites them.

Every operation yields to the event loop first, the way a real network
round-trip would, so concurrent requests genuinely interleave.
"""

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from pocketledger.models.ledger import (
    Budget,
    BudgetFrequency,
    Day,
    Transaction,
    TransactionType,
)
from pocketledger.models.journal import JournalEntry
from pocketledger.services.storage.interface import (
    DuplicateError,
    LedgerStore,
    NotFoundError,
    TransactionsUnsupportedError,
)


T = TypeVar("T")


@dataclass
class _LedgerState:
    """One consistent copy of the four collections."""

    budgets: dict[UUID, Budget] = field(default_factory=dict)
    transactions: dict[UUID, Transaction] = field(default_factory=dict)
    days: dict[tuple[UUID, date], Day] = field(default_factory=dict)
    journal: list[JournalEntry] = field(default_factory=list)

    def clone(self) -> "_LedgerState":
        return copy.deepcopy(self)


class MemoryLedgerStore(LedgerStore):
    """
    Dictionary-backed ledger store.

    Args:
        supports_transactions: When False, `run_in_transaction` raises
            TransactionsUnsupportedError, as a standalone MongoDB would.
    """

    def __init__(self, supports_transactions: bool = True):
        self._supports_transactions = supports_transactions
        self._state = _LedgerState()
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _view(self, session: Optional[_LedgerState]) -> _LedgerState:
        return session if session is not None else self._state

    async def _write(self, session: Optional[_LedgerState], fn: Callable[[_LedgerState], T]) -> T:
        await asyncio.sleep(0)
        if session is not None:
            return fn(session)
        async with self._lock:
            return fn(self._state)

    async def _read(self, session: Optional[_LedgerState], fn: Callable[[_LedgerState], T]) -> T:
        await asyncio.sleep(0)
        return fn(self._view(session))

    @staticmethod
    def _require_budget(state: _LedgerState, budget_id: UUID) -> Budget:
        budget = state.budgets.get(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run_in_transaction(
        self,
        fn: Callable[[Any], Awaitable[T]],
    ) -> T:
        if not self._supports_transactions:
            raise TransactionsUnsupportedError(
                "In-memory store configured without transaction support"
            )
        async with self._lock:
            working = self._state.clone()
            result = await fn(working)
            # Commit: the working copy becomes the committed state.
            self._state = working
            return result

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def get_budget(self, budget_id: UUID, session=None) -> Optional[Budget]:
        def op(state: _LedgerState) -> Optional[Budget]:
            budget = state.budgets.get(budget_id)
            return budget.model_copy() if budget else None
        return await self._read(session, op)

    async def list_budgets(self, user_id: UUID, session=None) -> list[Budget]:
        def op(state: _LedgerState) -> list[Budget]:
            budgets = [b for b in state.budgets.values() if b.user_id == user_id]
            budgets.sort(key=lambda b: b.created_at)
            return [b.model_copy() for b in budgets]
        return await self._read(session, op)

    async def find_primary_budget(self, user_id: UUID, session=None) -> Optional[Budget]:
        for budget in await self.list_budgets(user_id, session=session):
            if budget.is_primary and budget.frequency == BudgetFrequency.MONTHLY:
                return budget
        return None

    async def find_budget_by_frequency(
        self,
        user_id: UUID,
        frequency: BudgetFrequency,
        session=None,
    ) -> Optional[Budget]:
        for budget in await self.list_budgets(user_id, session=session):
            if budget.frequency == frequency:
                return budget
        return None

    async def find_budget_by_client_id(
        self,
        user_id: UUID,
        client_id: str,
        session=None,
    ) -> Optional[Budget]:
        for budget in await self.list_budgets(user_id, session=session):
            if budget.client_id == client_id:
                return budget
        return None

    async def insert_budget(self, budget: Budget, session=None) -> Budget:
        def op(state: _LedgerState) -> Budget:
            if budget.id in state.budgets:
                raise DuplicateError(f"Budget already exists: {budget.id}")
            state.budgets[budget.id] = budget.model_copy()
            return budget.model_copy()
        return await self._write(session, op)

    async def update_budget(self, budget: Budget, session=None) -> Budget:
        def op(state: _LedgerState) -> Budget:
            stored = self._require_budget(state, budget.id)
            stored.name = budget.name
            stored.amount = budget.amount
            return stored.model_copy()
        return await self._write(session, op)

    async def delete_budget(self, budget_id: UUID, session=None) -> bool:
        def op(state: _LedgerState) -> bool:
            return state.budgets.pop(budget_id, None) is not None
        return await self._write(session, op)

    async def set_current_amount(
        self,
        budget_id: UUID,
        amount: Decimal,
        session=None,
    ) -> Budget:
        def op(state: _LedgerState) -> Budget:
            stored = self._require_budget(state, budget_id)
            stored.current_amount = amount
            return stored.model_copy()
        return await self._write(session, op)

    async def adjust_current_amount(
        self,
        budget_id: UUID,
        delta: Decimal,
        session=None,
    ) -> Budget:
        def op(state: _LedgerState) -> Budget:
            stored = self._require_budget(state, budget_id)
            stored.current_amount = stored.current_amount + delta
            return stored.model_copy()
        return await self._write(session, op)

    async def adjust_current_amount_if(
        self,
        budget_id: UUID,
        delta: Decimal,
        floor: Decimal = Decimal("0"),
        session=None,
    ) -> Optional[Budget]:
        def op(state: _LedgerState) -> Optional[Budget]:
            stored = state.budgets.get(budget_id)
            if stored is None or stored.current_amount + delta < floor:
                return None
            stored.current_amount = stored.current_amount + delta
            return stored.model_copy()
        return await self._write(session, op)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert_transaction(self, transaction: Transaction, session=None) -> Transaction:
        def op(state: _LedgerState) -> Transaction:
            if transaction.id in state.transactions:
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            state.transactions[transaction.id] = transaction
            return transaction
        return await self._write(session, op)

    async def get_transaction(self, transaction_id: UUID, session=None) -> Optional[Transaction]:
        return await self._read(session, lambda state: state.transactions.get(transaction_id))

    async def list_transactions(
        self,
        user_id: UUID,
        on_date: Optional[date] = None,
        month: Optional[date] = None,
        tx_type: Optional[TransactionType] = None,
        session=None,
    ) -> list[Transaction]:
        def matches(tx: Transaction) -> bool:
            if tx.user_id != user_id:
                return False
            if on_date and tx.date != on_date:
                return False
            if month and (tx.date.year, tx.date.month) != (month.year, month.month):
                return False
            if tx_type and tx.type != tx_type:
                return False
            return True

        def op(state: _LedgerState) -> list[Transaction]:
            found = [tx for tx in state.transactions.values() if matches(tx)]
            found.sort(key=lambda tx: tx.created_at)
            return found
        return await self._read(session, op)

    async def remove_transaction(self, transaction_id: UUID, session=None) -> bool:
        def op(state: _LedgerState) -> bool:
            return state.transactions.pop(transaction_id, None) is not None
        return await self._write(session, op)

    # -------------------------------------------------------------------------
    # Days
    # -------------------------------------------------------------------------

    async def get_day(self, user_id: UUID, on_date: date, session=None) -> Optional[Day]:
        def op(state: _LedgerState) -> Optional[Day]:
            day = state.days.get((user_id, on_date))
            return day.model_copy() if day else None
        return await self._read(session, op)

    async def get_latest_day_before(
        self,
        user_id: UUID,
        on_date: date,
        session=None,
    ) -> Optional[Day]:
        def op(state: _LedgerState) -> Optional[Day]:
            earlier = [
                day for (uid, d), day in state.days.items()
                if uid == user_id and d < on_date
            ]
            if not earlier:
                return None
            return max(earlier, key=lambda day: day.date).model_copy()
        return await self._read(session, op)

    async def insert_day(self, day: Day, session=None) -> Day:
        def op(state: _LedgerState) -> Day:
            key = (day.user_id, day.date)
            if key in state.days:
                raise DuplicateError(f"Day already exists: {day.user_id} {day.date}")
            state.days[key] = day.model_copy()
            return day.model_copy()
        return await self._write(session, op)

    async def update_day(self, day: Day, session=None) -> Day:
        def op(state: _LedgerState) -> Day:
            key = (day.user_id, day.date)
            if key not in state.days:
                raise NotFoundError(f"Day not found: {day.user_id} {day.date}")
            state.days[key] = day.model_copy()
            return day.model_copy()
        return await self._write(session, op)

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    async def append_journal_entry(self, entry: JournalEntry, session=None) -> JournalEntry:
        def op(state: _LedgerState) -> JournalEntry:
            state.journal.append(entry)
            return entry
        return await self._write(session, op)

    async def list_journal_entries(
        self,
        user_id: UUID,
        limit: int = 100,
        session=None,
    ) -> list[JournalEntry]:
        def op(state: _LedgerState) -> list[JournalEntry]:
            entries = [e for e in state.journal if e.user_id == user_id]
            return entries[-limit:] if limit else entries
        return await self._read(session, op)
