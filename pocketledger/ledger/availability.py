"""
Availability Reconciler

"Available this month" is recomputed from history:

    available = max(0, primary.initial_amount - sum(this month's expenses))

independently of the primary budget's incrementally maintained
`current_amount`. When the two disagree by more than the tolerance, the
stored value is overwritten with the recomputed one and an adjustment
journal entry records the correction. This is the safety net for drift
left behind by partial failures or fallback-mode races.

The stored `current_amount` is the running balance for the current month
only. Figures for any other month are computed and returned, never written
back.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from pocketledger.audit import AuditLogger
from pocketledger.models.ledger import TransactionType, to_money, utc_today
from pocketledger.models.journal import JournalEntry, JournalEntryBuilder
from pocketledger.services.storage import LedgerStore


ZERO = Decimal("0.00")


@dataclass(frozen=True)
class AvailabilityCheck:
    """A recomputed figure and the correction it wrote, if any."""
    available: Decimal
    correction: Optional[JournalEntry] = None


class AvailabilityReconciler:
    """Computes and self-heals the primary budget's monthly availability."""

    def __init__(
        self,
        store: LedgerStore,
        tolerance: Decimal = Decimal("0.01"),
        audit_logger: Optional[AuditLogger] = None,
        today: Callable[[], date] = utc_today,
    ):
        self._store = store
        self._tolerance = tolerance
        self._audit = audit_logger or AuditLogger()
        self._today = today

    def is_current_month(self, on_date: date) -> bool:
        today = self._today()
        return (on_date.year, on_date.month) == (today.year, today.month)

    async def check(
        self,
        user_id: UUID,
        on_date: Optional[date] = None,
        session=None,
    ) -> AvailabilityCheck:
        """
        Recompute availability for the month containing `on_date`.

        Only the current month heals the stored primary balance. Writes go
        through `session` when given, so the correction joins the caller's
        atomic unit; logging the correction is left to the caller, after
        commit.
        """
        on_date = on_date or self._today()

        primary = await self._store.find_primary_budget(user_id, session=session)
        if primary is None:
            return AvailabilityCheck(available=ZERO)

        expenses = await self._store.list_transactions(
            user_id,
            month=on_date,
            tx_type=TransactionType.EXPENSE,
            session=session,
        )
        spent = sum((tx.amount for tx in expenses), ZERO)
        available = max(ZERO, to_money(primary.initial_amount - spent))

        if not self.is_current_month(on_date):
            return AvailabilityCheck(available=available)

        stored = primary.current_amount
        if abs(stored - available) <= self._tolerance:
            return AvailabilityCheck(available=available)

        await self._store.set_current_amount(primary.id, available, session=session)
        entry = JournalEntryBuilder.reconcile_primary(
            user_id=user_id,
            budget_id=primary.id,
            before=stored,
            after=available,
        )
        await self._store.append_journal_entry(entry, session=session)
        return AvailabilityCheck(available=available, correction=entry)

    async def available_this_month(
        self,
        user_id: UUID,
        on_date: Optional[date] = None,
    ) -> Decimal:
        """Recompute, heal and log in one standalone step."""
        result = await self.check(user_id, on_date)
        if result.correction is not None:
            self._audit.log_journal_entry(result.correction)
        return result.available
