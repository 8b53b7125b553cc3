"""
Day Reconciler

Keeps the per-(user, date) rollup consistent with transaction history.

- `initial_pocket` is a snapshot of the most recent earlier day's
  `final_pocket` (0 when there is none), taken when the day is first created
  and never recomputed.
- `gains` / `expenses` are re-summed from the day's transactions on every
  touch, and `final_pocket = initial_pocket + gains - expenses`.
- `budgets_available` comes from the Availability Reconciler.

A locked day is never rewritten. A Day is otherwise a cache: transactions
are authoritative, so a lost update is repaired by the
next touch.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pocketledger.audit import AuditLogger
from pocketledger.ledger.availability import AvailabilityReconciler
from pocketledger.ledger.errors import DayLockedError
from pocketledger.models.ledger import Day, TransactionType, utc_now
from pocketledger.models.journal import JournalEntry
from pocketledger.services.storage import DuplicateError, LedgerStore


ZERO = Decimal("0.00")


class DayLockSource(ABC):
    """Read-only view of which days are locked."""

    @abstractmethod
    async def is_locked(self, user_id: UUID, on_date: date) -> bool:
        pass


class StoreDayLockSource(DayLockSource):
    """Lock flag as stored on the Day record itself."""

    def __init__(self, store: LedgerStore):
        self._store = store

    async def is_locked(self, user_id: UUID, on_date: date) -> bool:
        day = await self._store.get_day(user_id, on_date)
        return bool(day and day.locked)


class DayReconciler:
    """Creates, recomputes and locks Day rollups."""

    def __init__(
        self,
        store: LedgerStore,
        availability: AvailabilityReconciler,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._availability = availability
        self._audit = audit_logger or AuditLogger()

    async def get_or_create_day(self, user_id: UUID, on_date: date, session=None) -> Day:
        """Load the day, creating it from the previous day's final pocket."""
        day = await self._store.get_day(user_id, on_date, session=session)
        if day is not None:
            return day

        previous = await self._store.get_latest_day_before(user_id, on_date, session=session)
        opening = previous.final_pocket if previous else ZERO
        day = Day(
            user_id=user_id,
            date=on_date,
            initial_pocket=opening,
            final_pocket=opening,
        )
        try:
            return await self._store.insert_day(day, session=session)
        except DuplicateError:
            # Inside a transaction the unit is already doomed; let it abort.
            if session is not None:
                raise
            existing = await self._store.get_day(user_id, on_date)
            if existing is None:
                raise
            return existing

    async def ensure_unlocked(self, user_id: UUID, on_date: date, session=None) -> None:
        """
        Raises:
            DayLockedError: The stored day carries the lock flag
        """
        day = await self._store.get_day(user_id, on_date, session=session)
        if day is not None and day.locked:
            raise DayLockedError(user_id, on_date)

    async def refresh(
        self, user_id: UUID, on_date: date, session=None
    ) -> tuple[Day, Optional[JournalEntry]]:
        """
        Re-sum the day's transactions and store the refreshed rollup.

        Inside a transaction (`session` given) the availability correction
        written alongside is returned unlogged, for the caller to log once
        the unit commits. Without a session it is already durable and is
        logged here.

        Raises:
            DayLockedError: The day was locked before the refresh landed
        """
        day = await self.get_or_create_day(user_id, on_date, session=session)
        if day.locked:
            raise DayLockedError(user_id, on_date)

        transactions = await self._store.list_transactions(
            user_id, on_date=on_date, session=session
        )
        gains = sum((tx.amount for tx in transactions if tx.type == TransactionType.GAIN), ZERO)
        expenses = sum(
            (tx.amount for tx in transactions if tx.type == TransactionType.EXPENSE), ZERO
        )
        check = await self._availability.check(user_id, on_date, session=session)
        pending = check.correction
        if session is None and pending is not None:
            self._audit.log_journal_entry(pending)
            pending = None

        updated = day.with_totals(
            gains=gains, expenses=expenses, budgets_available=check.available
        )
        return await self._store.update_day(updated, session=session), pending

    async def reconcile(self, user_id: UUID, on_date: date) -> Day:
        """Refresh outside any transaction."""
        day, _ = await self.refresh(user_id, on_date)
        return day

    async def get_rollup(self, user_id: UUID, on_date: date) -> Day:
        """Current rollup for a date; locked days are returned as stored."""
        day = await self.get_or_create_day(user_id, on_date)
        if day.locked:
            return day
        return await self.reconcile(user_id, on_date)

    async def lock_day(self, user_id: UUID, on_date: date) -> Day:
        """Take a final snapshot of the day and mark it locked."""
        day = await self.get_or_create_day(user_id, on_date)
        if day.locked:
            return day
        day = await self.reconcile(user_id, on_date)
        locked = day.model_copy(update={"locked": True, "updated_at": utc_now()})
        return await self._store.update_day(locked)
