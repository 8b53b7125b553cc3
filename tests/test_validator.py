"""
Tests for the budget hierarchy caps.
"""

from decimal import Decimal

import pytest

from pocketledger.ledger import HierarchyViolationError
from pocketledger.models import Budget, BudgetFrequency
from pocketledger.services.storage import MemoryLedgerStore
from pocketledger.validation import BudgetHierarchyValidator


class TestHierarchyScenario:
    """The monthly / weekly / daily caps end to end."""

    async def test_caps_walkthrough(self, service, user_id):
        """Test creation and edits around every boundary."""
        primary = await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("400000"), is_primary=True
        )

        weekly = await service.create_budget(
            user_id, "Week", BudgetFrequency.WEEKLY, Decimal("100000")
        )
        assert weekly.amount == Decimal("100000.00")
        assert await service.get_remaining(primary.id) == Decimal("300000.00")

        with pytest.raises(HierarchyViolationError) as exc_info:
            await service.update_budget(weekly.id, user_id, amount=Decimal("100001"))
        assert exc_info.value.message == "Weekly budget cannot exceed 100000 (monthly / 4)"

        daily = await service.create_budget(
            user_id, "Today", BudgetFrequency.DAILY, Decimal("14285")
        )
        assert daily.amount == Decimal("14285.00")

        with pytest.raises(HierarchyViolationError) as exc_info:
            await service.create_budget(user_id, "Too much", BudgetFrequency.DAILY, Decimal("14286"))
        assert exc_info.value.message == "Daily budget cannot exceed 14285 (monthly / 28)"

    async def test_rejected_edit_keeps_amount(self, service, user_id):
        """Test that a refused edit changes nothing."""
        await service.create_budget(
            user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("400000"), is_primary=True
        )
        weekly = await service.create_budget(user_id, "Week", BudgetFrequency.WEEKLY, Decimal("100000"))

        with pytest.raises(HierarchyViolationError):
            await service.update_budget(weekly.id, user_id, amount=Decimal("100001"))

        views = {b.id: b for b in await service.list_budgets(user_id)}
        assert views[weekly.id].amount == Decimal("100000.00")


class TestBudgetHierarchyValidator:
    """Individual rules."""

    @pytest.fixture
    def store(self):
        return MemoryLedgerStore()

    @pytest.fixture
    def validator(self, store):
        return BudgetHierarchyValidator(store)

    async def add(self, store, user_id, frequency, amount, is_primary=False):
        return await store.insert_budget(Budget(
            user_id=user_id,
            name=frequency.value,
            frequency=frequency,
            is_primary=is_primary,
            amount=Decimal(amount),
        ))

    async def test_amount_must_be_positive(self, validator, user_id):
        """Test that zero is refused."""
        result = await validator.validate(user_id, BudgetFrequency.DAILY, Decimal("0"))

        assert not result.valid
        assert result.message == "Budget amount must be positive"

    async def test_sub_cent_amount_is_not_positive(self, validator, user_id):
        """Test that an amount rounding to zero cents is refused."""
        result = await validator.validate(user_id, BudgetFrequency.DAILY, Decimal("0.004"))

        assert not result.valid
        assert result.message == "Budget amount must be positive"

    async def test_primary_must_be_monthly(self, validator, user_id):
        """Test that a weekly primary is refused."""
        result = await validator.validate(
            user_id, BudgetFrequency.WEEKLY, Decimal("10"), is_primary=True
        )

        assert result.message == "Primary budget must be monthly"

    async def test_only_one_primary(self, validator, store, user_id):
        """Test that a second primary budget is refused."""
        await self.add(store, user_id, BudgetFrequency.MONTHLY, "1000", is_primary=True)

        result = await validator.validate(
            user_id, BudgetFrequency.MONTHLY, Decimal("500"), is_primary=True
        )

        assert result.message == "A primary budget already exists and cannot be recreated"

    async def test_non_primary_monthly_is_unchecked(self, validator, store, user_id):
        """Test that extra monthly budgets are not capped."""
        await self.add(store, user_id, BudgetFrequency.MONTHLY, "1000", is_primary=True)

        result = await validator.validate(user_id, BudgetFrequency.MONTHLY, Decimal("5000"))

        assert result.valid

    async def test_daily_capped_by_weekly(self, validator, store, user_id):
        """Test the weekly / 7 cap when it is tighter than monthly / 28."""
        await self.add(store, user_id, BudgetFrequency.MONTHLY, "400000", is_primary=True)
        await self.add(store, user_id, BudgetFrequency.WEEKLY, "70000")

        assert (await validator.validate(user_id, BudgetFrequency.DAILY, Decimal("10000"))).valid
        result = await validator.validate(user_id, BudgetFrequency.DAILY, Decimal("10001"))

        assert result.message == "Daily budget cannot exceed 10000 (weekly / 7)"

    async def test_caps_use_primary_baseline(self, validator, store, user_id):
        """Test that spending from the primary does not tighten the caps."""
        primary = await self.add(store, user_id, BudgetFrequency.MONTHLY, "400000", is_primary=True)
        await store.set_current_amount(primary.id, Decimal("10"))

        result = await validator.validate(user_id, BudgetFrequency.WEEKLY, Decimal("100000"))

        assert result.valid

    async def test_without_primary_nothing_is_capped(self, validator, user_id):
        """Test that caps only apply once a primary exists."""
        result = await validator.validate(user_id, BudgetFrequency.WEEKLY, Decimal("999999"))

        assert result.valid

    async def test_primary_amount_is_immutable(self, validator, user_id):
        """Test that primary amount edits are always refused."""
        result = await validator.validate_edit(
            user_id, BudgetFrequency.MONTHLY, Decimal("1"), is_primary=True
        )

        assert result.message == "Primary budget amount cannot be changed"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
