"""
Tests for budget creation, editing and derived allocation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from pocketledger.ledger import (
    BudgetNotFoundError,
    HierarchyViolationError,
    NegativeBalanceRejectedError,
    ValidationError,
)
from pocketledger.models import BudgetFrequency, BudgetOrigin, LedgerRule


class TestWeeklyAllocation:
    """Weekly budgets are carved out of the primary monthly budget."""

    async def test_weekly_is_deducted_from_primary(self, service, user_id):
        """Test that creating a weekly budget charges the primary."""
        primary = await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("2800"), is_primary=True
        )

        weekly = await service.create_budget(user_id, "Week", BudgetFrequency.WEEKLY, Decimal("700"))

        assert weekly.origin == BudgetOrigin.DERIVED
        assert await service.get_remaining(primary.id) == Decimal("2100.00")
        assert await service.get_remaining(weekly.id) == Decimal("700.00")

        entries = [
            e for e in await service.list_journal(user_id)
            if e.rule_applied.startswith(LedgerRule.ALLOCATION_WEEKLY_FROM_MONTH.value)
        ]
        assert len(entries) == 1
        affected = {a.budget_id: a for a in entries[0].affected}
        assert affected[primary.id].before == Decimal("2800.00")
        assert affected[primary.id].after == Decimal("2100.00")
        assert affected[weekly.id].after == Decimal("700.00")

    async def test_weekly_requires_primary(self, service, user_id):
        """Test that a weekly budget cannot be allocated from nothing."""
        with pytest.raises(ValidationError, match="No primary monthly budget"):
            await service.create_budget(user_id, "Week", BudgetFrequency.WEEKLY, Decimal("100"))

        assert await service.list_budgets(user_id) == []

    async def test_allocation_cannot_overdraw_primary(self, service, user_id):
        """Test that the primary balance bounds how many weeks can be allocated."""
        primary = await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("400"), is_primary=True
        )
        for week in range(4):
            await service.create_budget(user_id, f"Week {week}", BudgetFrequency.WEEKLY, Decimal("100"))

        with pytest.raises(NegativeBalanceRejectedError):
            await service.create_budget(user_id, "Week 5", BudgetFrequency.WEEKLY, Decimal("100"))

        assert len(await service.list_budgets(user_id)) == 5
        assert await service.get_remaining(primary.id) == Decimal("0.00")

    async def test_creation_is_idempotent_per_client_id(self, service, user_id):
        """Test that a repeated request with the same client id creates nothing new."""
        primary = await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("2800"), is_primary=True
        )

        first = await service.create_budget(
            user_id, "Week", BudgetFrequency.WEEKLY, Decimal("700"), client_id="req-1"
        )
        second = await service.create_budget(
            user_id, "Week", BudgetFrequency.WEEKLY, Decimal("700"), client_id="req-1"
        )

        assert first.id == second.id
        assert len(await service.list_budgets(user_id)) == 2
        assert await service.get_remaining(primary.id) == Decimal("2100.00")


class TestDefaultHierarchy:
    """One-shot monthly + weekly + daily setup."""

    async def test_default_amounts_and_balances(self, service, user_id):
        """Test the derived amounts and the deductions down the chain."""
        monthly, weekly, daily = await service.create_default_hierarchy(user_id, Decimal("2800"))

        assert (monthly.name, weekly.name, daily.name) == (
            "Main Salary", "Weekly Allowance", "Daily Allowance"
        )
        assert monthly.is_primary
        assert weekly.amount == Decimal("700.00")
        assert daily.amount == Decimal("100.00")

        assert monthly.current_amount == Decimal("2100.00")
        assert weekly.current_amount == Decimal("600.00")
        assert daily.current_amount == Decimal("100.00")
        assert await service.get_remaining(weekly.id) == Decimal("600.00")

    async def test_daily_is_floored_to_whole_units(self, service, user_id):
        """Test the rounding of derived amounts."""
        _, weekly, daily = await service.create_default_hierarchy(user_id, Decimal("1001"))

        assert weekly.amount == Decimal("250.25")
        assert daily.amount == Decimal("35.00")

    async def test_single_journal_entry(self, service, user_id):
        """Test that the setup is journaled once with all three budgets."""
        budgets = await service.create_default_hierarchy(user_id, Decimal("2800"))

        entries = await service.list_journal(user_id)
        assert len(entries) == 1
        assert entries[0].rule_applied == LedgerRule.INITIAL_BUDGET_ALLOCATION.tag(
            service.mode.is_fallback
        )
        assert {a.budget_id for a in entries[0].affected} == {b.id for b in budgets}

    async def test_refuses_second_primary(self, service, user_id):
        """Test that the hierarchy cannot be created twice."""
        await service.create_default_hierarchy(user_id, Decimal("2800"))

        with pytest.raises(HierarchyViolationError, match="already exists"):
            await service.create_default_hierarchy(user_id, Decimal("2800"))

    async def test_refuses_non_positive_amount(self, service, user_id):
        """Test that a zero monthly amount is refused."""
        with pytest.raises(HierarchyViolationError):
            await service.create_default_hierarchy(user_id, Decimal("0"))


class TestBudgetEdits:
    """Edits, deletes and reads."""

    async def test_primary_amount_edit_is_refused(self, service, user_id):
        """Test that the primary amount never changes."""
        primary = await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("2800"), is_primary=True
        )

        with pytest.raises(HierarchyViolationError, match="Primary budget amount cannot be changed"):
            await service.update_budget(primary.id, user_id, amount=Decimal("3000"))

    async def test_rename(self, service, user_id):
        """Test that names can always change."""
        primary = await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("2800"), is_primary=True
        )

        updated = await service.update_budget(primary.id, user_id, name="Paycheck")

        assert updated.name == "Paycheck"
        assert updated.amount == Decimal("2800.00")

    async def test_edit_does_not_touch_balance(self, service, user_id):
        """Test that an amount edit changes the nominal amount only."""
        daily = await service.create_budget(user_id, "Today", BudgetFrequency.DAILY, Decimal("50"))

        updated = await service.update_budget(daily.id, user_id, amount=Decimal("80"))

        assert updated.amount == Decimal("80.00")
        assert updated.current_amount == Decimal("50.00")

    async def test_foreign_budget_is_not_found(self, service, user_id):
        """Test that another user's budget cannot be edited or deleted."""
        daily = await service.create_budget(user_id, "Today", BudgetFrequency.DAILY, Decimal("50"))

        with pytest.raises(BudgetNotFoundError):
            await service.update_budget(daily.id, uuid4(), name="Mine")
        with pytest.raises(BudgetNotFoundError):
            await service.delete_budget(daily.id, uuid4())

    async def test_delete(self, service, user_id):
        """Test that a deleted budget is gone."""
        daily = await service.create_budget(user_id, "Today", BudgetFrequency.DAILY, Decimal("50"))

        assert await service.delete_budget(daily.id, user_id) is True
        with pytest.raises(BudgetNotFoundError):
            await service.get_remaining(daily.id)

    async def test_list_budgets(self, service, user_id):
        """Test the listing with remaining amounts."""
        await service.create_default_hierarchy(user_id, Decimal("2800"))

        views = await service.list_budgets(user_id)

        assert [v.frequency for v in views] == [
            BudgetFrequency.MONTHLY, BudgetFrequency.WEEKLY, BudgetFrequency.DAILY
        ]
        assert [v.remaining for v in views] == [
            Decimal("2100.00"), Decimal("600.00"), Decimal("100.00")
        ]


class TestPocketMoney:
    """Pocket money is the weekly balance, or a quarter of the month."""

    async def test_from_weekly_balance(self, service, user_id):
        """Test that the weekly budget's balance is used when present."""
        await service.create_default_hierarchy(user_id, Decimal("2800"))

        assert await service.get_pocket_money(user_id) == Decimal("600.00")

    async def test_from_primary_without_weekly(self, service, user_id):
        """Test the quarter-of-the-month fallback."""
        await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("1000"), is_primary=True
        )

        assert await service.get_pocket_money(user_id) == Decimal("250.00")

    async def test_nothing_configured(self, service, user_id):
        """Test that a user without budgets has no pocket money."""
        assert await service.get_pocket_money(user_id) == Decimal("0.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
