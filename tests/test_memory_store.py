"""
Tests for the in-memory ledger store.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pocketledger.models import (
    Budget,
    BudgetFrequency,
    Day,
    JournalEntryBuilder,
)
from pocketledger.services.storage import (
    DuplicateError,
    MemoryLedgerStore,
    NotFoundError,
    TransactionsUnsupportedError,
)


def make_budget(user_id, amount="100", frequency=BudgetFrequency.DAILY) -> Budget:
    return Budget(user_id=user_id, name="Test", frequency=frequency, amount=Decimal(amount))


class TestTransactions:
    """Unit-of-work semantics."""

    async def test_commit_publishes_writes(self, user_id):
        """Test that writes made through the session become visible on commit."""
        store = MemoryLedgerStore()
        budget = make_budget(user_id)

        async def unit(session):
            await store.insert_budget(budget, session=session)
            assert await store.get_budget(budget.id) is None
            return "done"

        assert await store.run_in_transaction(unit) == "done"
        assert await store.get_budget(budget.id) is not None

    async def test_error_discards_writes(self, user_id):
        """Test that an exception inside the unit leaves the store untouched."""
        store = MemoryLedgerStore()
        budget = await store.insert_budget(make_budget(user_id))

        async def unit(session):
            await store.set_current_amount(budget.id, Decimal("1"), session=session)
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            await store.run_in_transaction(unit)
        assert (await store.get_budget(budget.id)).current_amount == Decimal("100.00")

    async def test_unsupported(self):
        """Test the standalone-server behaviour."""
        store = MemoryLedgerStore(supports_transactions=False)

        async def unit(session):
            return None

        with pytest.raises(TransactionsUnsupportedError):
            await store.run_in_transaction(unit)


class TestBudgets:
    """Budget collection."""

    async def test_conditional_update_respects_floor(self, user_id):
        """Test that the conditional update refuses to go below the floor."""
        store = MemoryLedgerStore()
        budget = await store.insert_budget(make_budget(user_id, "10"))

        assert await store.adjust_current_amount_if(budget.id, Decimal("-10.01")) is None
        updated = await store.adjust_current_amount_if(budget.id, Decimal("-10"))

        assert updated.current_amount == Decimal("0.00")

    async def test_conditional_update_on_missing_budget(self):
        """Test that a missing budget is reported as a lost update."""
        store = MemoryLedgerStore()

        assert await store.adjust_current_amount_if(uuid4(), Decimal("-1")) is None

    async def test_returned_budgets_are_copies(self, user_id):
        """Test that callers cannot mutate stored state by accident."""
        store = MemoryLedgerStore()
        budget = await store.insert_budget(make_budget(user_id))

        fetched = await store.get_budget(budget.id)
        fetched.name = "Changed"

        assert (await store.get_budget(budget.id)).name == "Test"

    async def test_duplicate_and_missing(self, user_id):
        """Test duplicate inserts and updates of unknown budgets."""
        store = MemoryLedgerStore()
        budget = await store.insert_budget(make_budget(user_id))

        with pytest.raises(DuplicateError):
            await store.insert_budget(budget)
        with pytest.raises(NotFoundError):
            await store.set_current_amount(uuid4(), Decimal("1"))

    async def test_find_helpers(self, user_id):
        """Test primary, frequency and client-id lookups."""
        store = MemoryLedgerStore()
        primary = await store.insert_budget(Budget(
            user_id=user_id,
            name="Salary",
            frequency=BudgetFrequency.MONTHLY,
            is_primary=True,
            amount=Decimal("1000"),
        ))
        weekly = await store.insert_budget(Budget(
            user_id=user_id,
            name="Week",
            frequency=BudgetFrequency.WEEKLY,
            amount=Decimal("100"),
            client_id="abc",
        ))

        assert (await store.find_primary_budget(user_id)).id == primary.id
        assert (await store.find_budget_by_frequency(user_id, BudgetFrequency.WEEKLY)).id == weekly.id
        assert (await store.find_budget_by_client_id(user_id, "abc")).id == weekly.id
        assert await store.find_primary_budget(uuid4()) is None


class TestDaysAndJournal:
    """Days and the journal."""

    async def test_latest_day_before(self, user_id):
        """Test that the most recent strictly earlier day is returned."""
        store = MemoryLedgerStore()
        for d in (date(2026, 3, 1), date(2026, 3, 5), date(2026, 3, 9)):
            await store.insert_day(Day(user_id=user_id, date=d))

        latest = await store.get_latest_day_before(user_id, date(2026, 3, 9))

        assert latest.date == date(2026, 3, 5)
        assert await store.get_latest_day_before(user_id, date(2026, 3, 1)) is None

    async def test_day_is_unique_per_user_and_date(self, user_id):
        """Test the (user, date) uniqueness."""
        store = MemoryLedgerStore()
        await store.insert_day(Day(user_id=user_id, date=date(2026, 3, 1)))

        with pytest.raises(DuplicateError):
            await store.insert_day(Day(user_id=user_id, date=date(2026, 3, 1)))

    async def test_journal_limit_keeps_newest(self, user_id):
        """Test that the journal listing returns the most recent entries."""
        store = MemoryLedgerStore()
        for amount in range(1, 6):
            await store.append_journal_entry(
                JournalEntryBuilder.gain_to_savings(user_id=user_id, amount=Decimal(amount))
            )

        entries = await store.list_journal_entries(user_id, limit=2)

        assert [e.amount for e in entries] == [Decimal("4.00"), Decimal("5.00")]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
