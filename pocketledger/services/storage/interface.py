"""
Abstract Ledger Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run on MongoDB (with or without multi-document transactions)
2. Use in-memory storage for testing and development
3. Keep a spreadsheet backend for users who want to see their data
4. Keep ledger logic decoupled from storage implementation

Every operation takes an optional `session`. Inside `run_in_transaction`
the session is passed through so reads and writes join the atomic unit;
outside it, each call stands alone.

The interface is intentionally small - just the operations the ledger needs.
"""

from abc import ABC, abstractmethod
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


T = TypeVar("T")


class LedgerStore(ABC):
    """
    Abstract interface for the four ledger collections:
    budgets, transactions, days and journal entries.

    Transactions and journal entries are append-only.
    Days are unique per (user_id, date).
    """

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the backend connection (no-op by default)."""

    async def close(self) -> None:
        """Release backend resources (no-op by default)."""

    @abstractmethod
    async def run_in_transaction(
        self,
        fn: Callable[[Any], Awaitable[T]],
    ) -> T:
        """
        Run `fn(session)` as one atomic, isolated unit.

        Any exception raised by `fn` aborts the unit, leaving no trace,
        and is re-raised.

        Raises:
            TransactionsUnsupportedError: If the backend cannot do this
        """
        pass

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_budget(self, budget_id: UUID, session=None) -> Optional[Budget]:
        """Retrieve a budget by ID, or None."""
        pass

    @abstractmethod
    async def list_budgets(self, user_id: UUID, session=None) -> list[Budget]:
        """All budgets of a user, oldest first."""
        pass

    @abstractmethod
    async def find_primary_budget(self, user_id: UUID, session=None) -> Optional[Budget]:
        """The user's primary monthly budget, if any."""
        pass

    @abstractmethod
    async def find_budget_by_frequency(
        self,
        user_id: UUID,
        frequency: BudgetFrequency,
        session=None,
    ) -> Optional[Budget]:
        """
        The user's first (oldest) budget with this frequency.

        For monthly this may return a non-primary budget; use
        `find_primary_budget` for the cascade root.
        """
        pass

    @abstractmethod
    async def find_budget_by_client_id(
        self,
        user_id: UUID,
        client_id: str,
        session=None,
    ) -> Optional[Budget]:
        """Lookup for idempotent creation."""
        pass

    @abstractmethod
    async def insert_budget(self, budget: Budget, session=None) -> Budget:
        """
        Persist a new budget.

        Raises:
            DuplicateError: If the ID already exists
        """
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget, session=None) -> Budget:
        """
        Update the editable fields (name, amount) of a budget.

        Balances are never written through here; see `set_current_amount`
        and the adjust methods.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID, session=None) -> bool:
        """Delete a budget. Its transactions are kept."""
        pass

    @abstractmethod
    async def set_current_amount(
        self,
        budget_id: UUID,
        amount: Decimal,
        session=None,
    ) -> Budget:
        """
        Overwrite a budget's running balance.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def adjust_current_amount(
        self,
        budget_id: UUID,
        delta: Decimal,
        session=None,
    ) -> Budget:
        """
        Unconditionally add `delta` to a budget's running balance.

        Used to compensate a conditional update that has to be undone.

        Raises:
            NotFoundError: If the budget doesn't exist
        """
        pass

    @abstractmethod
    async def adjust_current_amount_if(
        self,
        budget_id: UUID,
        delta: Decimal,
        floor: Decimal = Decimal("0"),
        session=None,
    ) -> Optional[Budget]:
        """
        Atomically add `delta` only if the result stays >= `floor`.

        This is the compare-and-swap the fallback path relies on:
        "decrement by X only if current >= X".

        Returns:
            The updated budget, or None if the condition did not hold
            (or the budget no longer exists)
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction, session=None) -> Transaction:
        """Append a transaction record."""
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID, session=None) -> Optional[Transaction]:
        """Retrieve a transaction by ID, or None."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: UUID,
        on_date: Optional[date] = None,
        month: Optional[date] = None,
        tx_type: Optional[TransactionType] = None,
        session=None,
    ) -> list[Transaction]:
        """
        List a user's transactions in creation order.

        Args:
            user_id: Owner
            on_date: Only transactions dated this day
            month: Only transactions in the month containing this date
            tx_type: Only expenses or only gains
        """
        pass

    @abstractmethod
    async def remove_transaction(self, transaction_id: UUID, session=None) -> bool:
        """
        Remove a transaction record.

        Only for undoing a record whose surrounding operation failed before
        it was acknowledged. Acknowledged transactions are never removed.
        """
        pass

    # -------------------------------------------------------------------------
    # Days
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_day(self, user_id: UUID, on_date: date, session=None) -> Optional[Day]:
        """The rollup for (user_id, on_date), or None."""
        pass

    @abstractmethod
    async def get_latest_day_before(
        self,
        user_id: UUID,
        on_date: date,
        session=None,
    ) -> Optional[Day]:
        """The most recent rollup strictly before `on_date`, or None."""
        pass

    @abstractmethod
    async def insert_day(self, day: Day, session=None) -> Day:
        """
        Create a rollup.

        Raises:
            DuplicateError: If (user_id, date) already exists
        """
        pass

    @abstractmethod
    async def update_day(self, day: Day, session=None) -> Day:
        """
        Replace an existing rollup.

        Raises:
            NotFoundError: If (user_id, date) doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    @abstractmethod
    async def append_journal_entry(self, entry: JournalEntry, session=None) -> JournalEntry:
        """Append a journal entry. Never modified afterwards."""
        pass

    @abstractmethod
    async def list_journal_entries(
        self,
        user_id: UUID,
        limit: int = 100,
        session=None,
    ) -> list[JournalEntry]:
        """A user's journal entries in chronological order (oldest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class TransactionsUnsupportedError(StorageError):
    """The backend cannot run multi-document atomic transactions."""
    pass
