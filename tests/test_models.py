"""
Tests for Pocket Ledger models

Test strategy:
1. Unit tests for the Pydantic schemas and their validators
2. Ledger behaviour is covered per component in the other test modules
3. No real stores in tests (the in-memory store or fakes only)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from pocketledger.ledger.errors import (
    BudgetNotFoundError,
    ConcurrencyConflictError,
    DayLockedError,
    ErrorKind,
    LedgerCommitError,
    NegativeBalanceRejectedError,
)
from pocketledger.models.ledger import (
    Budget,
    BudgetFrequency,
    BudgetOrigin,
    BudgetView,
    Day,
    Transaction,
    TransactionRequest,
    TransactionType,
    to_money,
)
from pocketledger.models.journal import (
    AffectedBudget,
    JournalEntryBuilder,
    JournalEntryType,
    LedgerRule,
)


class TestBudgetModel:
    """Tests for the Budget schema."""

    def test_budget_defaults_baselines_to_amount(self):
        """Test that initial and current amounts start at the nominal amount."""
        budget = Budget(
            user_id=uuid4(),
            name="Groceries",
            frequency=BudgetFrequency.WEEKLY,
            amount=Decimal("250"),
        )
        assert budget.initial_amount == Decimal("250.00")
        assert budget.current_amount == Decimal("250.00")
        assert budget.origin == BudgetOrigin.MANUAL

    def test_budget_strips_whitespace(self):
        """Test that whitespace is stripped from the budget name."""
        budget = Budget(
            user_id=uuid4(),
            name="  Rent  ",
            frequency=BudgetFrequency.MONTHLY,
            amount=Decimal("1000"),
        )
        assert budget.name == "Rent"

    def test_budget_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        with pytest.raises(ValueError):
            Budget(
                user_id=uuid4(),
                name="Test",
                frequency=BudgetFrequency.DAILY,
                amount=Decimal("0"),
            )

    def test_sub_cent_amount_is_rejected(self):
        """Test that an amount rounding to zero fails the positivity check."""
        with pytest.raises(ValueError):
            Budget(
                user_id=uuid4(),
                name="Test",
                frequency=BudgetFrequency.DAILY,
                amount=Decimal("0.004"),
            )
        with pytest.raises(ValueError):
            TransactionRequest(
                user_id="+15550001111",
                type=TransactionType.GAIN,
                amount="0.004",
                comment="dust",
            )

    def test_amount_rounding_up_to_a_cent_is_kept(self):
        """Test that half a cent rounds up and stays valid."""
        budget = Budget(
            user_id=uuid4(),
            name="Test",
            frequency=BudgetFrequency.DAILY,
            amount=Decimal("0.005"),
        )
        assert budget.amount == Decimal("0.01")

    def test_malformed_amount_is_a_validation_error(self):
        with pytest.raises(ValueError):
            Budget(
                user_id=uuid4(),
                name="Test",
                frequency=BudgetFrequency.DAILY,
                amount="ten",
            )

    def test_primary_budget_must_be_monthly(self):
        """Test that a weekly budget cannot be primary."""
        with pytest.raises(ValueError, match="Primary budget must be monthly"):
            Budget(
                user_id=uuid4(),
                name="Test",
                frequency=BudgetFrequency.WEEKLY,
                amount=Decimal("100"),
                is_primary=True,
            )

    def test_current_amount_cannot_go_negative(self):
        """Test that assignment validation keeps the running balance >= 0."""
        budget = Budget(
            user_id=uuid4(),
            name="Test",
            frequency=BudgetFrequency.DAILY,
            amount=Decimal("10"),
        )
        with pytest.raises(ValueError):
            budget.current_amount = Decimal("-0.01")

    def test_amounts_are_quantized_to_cents(self):
        """Test that amounts are rounded half-up to cents."""
        assert to_money(Decimal("10.005")) == Decimal("10.01")
        assert to_money(Decimal("3")) == Decimal("3.00")

    def test_budget_view_reports_remaining(self):
        """Test BudgetView carries the floored running balance."""
        budget = Budget(
            user_id=uuid4(),
            name="Week",
            frequency=BudgetFrequency.WEEKLY,
            amount=Decimal("100"),
            current_amount=Decimal("40"),
        )
        view = BudgetView.from_budget(budget)
        assert view.remaining == Decimal("40.00")
        assert view.amount == Decimal("100.00")


class TestTransactionModels:
    """Tests for transactions and inbound requests."""

    def test_transaction_is_immutable(self):
        """Test that a recorded transaction cannot be edited."""
        tx = Transaction(
            user_id=uuid4(),
            budget_id=uuid4(),
            type=TransactionType.EXPENSE,
            amount=Decimal("12.50"),
            date=date(2026, 3, 10),
        )
        with pytest.raises(ValueError):
            tx.amount = Decimal("1")

    def test_transaction_time_format(self):
        """Test that the time field must be HH:MM."""
        with pytest.raises(ValueError):
            Transaction(
                user_id=uuid4(),
                type=TransactionType.GAIN,
                amount=Decimal("5"),
                date=date(2026, 3, 10),
                time="9am",
            )

    def test_request_requires_budget_for_expense(self):
        """Test that an expense request without a budget is rejected."""
        with pytest.raises(ValueError, match="budget_id is required"):
            TransactionRequest(
                user_id="+15550001111",
                type=TransactionType.EXPENSE,
                amount=Decimal("10"),
                comment="coffee",
            )

    def test_request_rejects_empty_comment(self):
        """Test that the comment is mandatory."""
        with pytest.raises(ValueError):
            TransactionRequest(
                user_id="+15550001111",
                type=TransactionType.GAIN,
                amount=Decimal("10"),
                comment="   ",
            )

    def test_request_rejects_oversized_comment(self):
        """Test the comment length limit."""
        with pytest.raises(ValueError):
            TransactionRequest(
                user_id="+15550001111",
                type=TransactionType.GAIN,
                amount=Decimal("10"),
                comment="x" * 501,
            )

    def test_gain_request_without_budget(self):
        """Test that gains do not need a budget."""
        request = TransactionRequest(
            user_id="+15550001111",
            type=TransactionType.GAIN,
            amount=Decimal("10"),
            comment="refund",
        )
        assert request.budget_id is None


class TestDayModel:
    """Tests for the Day rollup."""

    def test_with_totals_keeps_initial_pocket(self):
        """Test that re-summing never touches the opening snapshot."""
        day = Day(user_id=uuid4(), date=date(2026, 3, 10), initial_pocket=Decimal("50"))
        updated = day.with_totals(
            gains=Decimal("20"),
            expenses=Decimal("5"),
            budgets_available=Decimal("100"),
        )
        assert updated.initial_pocket == Decimal("50.00")
        assert updated.final_pocket == Decimal("65.00")
        assert updated.is_coherent

    def test_final_pocket_may_be_negative(self):
        """Test that spending more than the opening pocket is representable."""
        day = Day(user_id=uuid4(), date=date(2026, 3, 10))
        updated = day.with_totals(
            gains=Decimal("0"),
            expenses=Decimal("30"),
            budgets_available=Decimal("0"),
        )
        assert updated.final_pocket == Decimal("-30.00")

    def test_to_rollup(self):
        """Test the caller-facing projection."""
        day = Day(user_id=uuid4(), date=date(2026, 3, 10), locked=True)
        rollup = day.to_rollup()
        assert rollup.date == date(2026, 3, 10)
        assert rollup.locked is True


class TestJournalModels:
    """Tests for journal entries and rule tags."""

    def test_rule_tag_fallback_suffix(self):
        """Test that fallback-mode rules carry the suffix."""
        assert LedgerRule.CASCADE_EXPENSE.tag() == "cascade_expense"
        assert LedgerRule.CASCADE_EXPENSE.tag(fallback=True) == "cascade_expense_fallback"

    def test_affected_budget_delta(self):
        """Test the before/after delta."""
        affected = AffectedBudget(budget_id=uuid4(), before=Decimal("100"), after=Decimal("40"))
        assert affected.delta == Decimal("-60.00")

    def test_cascade_expense_entry(self):
        """Test the cascade expense builder."""
        user_id, daily_id, weekly_id = uuid4(), uuid4(), uuid4()
        entry = JournalEntryBuilder.cascade_expense(
            user_id=user_id,
            amount=Decimal("15"),
            affected=[
                AffectedBudget(budget_id=daily_id, before=Decimal("20"), after=Decimal("5")),
                AffectedBudget(budget_id=weekly_id, before=Decimal("100"), after=Decimal("85")),
            ],
            source_budget_id=daily_id,
            comment="lunch",
        )
        assert entry.tx_type == JournalEntryType.EXPENSE
        assert entry.rule_applied == "cascade_expense"
        assert entry.meta == {"source_budget": str(daily_id)}

    def test_reconcile_entry_carries_signed_correction(self):
        """Test that an adjustment records after - before."""
        entry = JournalEntryBuilder.reconcile_primary(
            user_id=uuid4(),
            budget_id=uuid4(),
            before=Decimal("300"),
            after=Decimal("250"),
        )
        assert entry.tx_type == JournalEntryType.ADJUSTMENT
        assert entry.amount == Decimal("-50.00")

    def test_weekly_allocation_lists_new_budget(self):
        """Test that the allocated weekly budget is listed at its full amount."""
        weekly_id = uuid4()
        entry = JournalEntryBuilder.weekly_allocation(
            user_id=uuid4(),
            amount=Decimal("100"),
            affected=[],
            weekly_budget_id=weekly_id,
            weekly_name="Week",
            fallback=True,
        )
        assert entry.rule_applied == "allocation_weekly_from_month_fallback"
        assert entry.affected[-1].budget_id == weekly_id
        assert entry.affected[-1].before == entry.affected[-1].after == Decimal("100.00")

    def test_journal_entry_to_log_dict(self):
        """Test JournalEntry conversion to log dict."""
        entry = JournalEntryBuilder.gain_to_savings(
            user_id=uuid4(),
            amount=Decimal("42"),
            comment="refund",
        )
        log_dict = entry.to_log_dict()
        assert log_dict["tx_type"] == "gain"
        assert log_dict["amount"] == "42.00"
        assert log_dict["rule_applied"] == "gain_to_savings"
        assert log_dict["affected"] == []


class TestLedgerErrors:
    """Tests for the error taxonomy."""

    def test_error_kinds(self):
        """Test that each error reports the kind callers branch on."""
        assert BudgetNotFoundError(uuid4()).kind == ErrorKind.NOT_FOUND
        assert DayLockedError(uuid4(), date(2026, 3, 10)).kind == ErrorKind.VALIDATION
        assert LedgerCommitError("boom").kind == ErrorKind.INTERNAL

    def test_only_conflicts_are_retryable(self):
        """Test that only fallback conflicts are retry-safe."""
        assert ConcurrencyConflictError("race").retryable
        assert not NegativeBalanceRejectedError(uuid4(), Decimal("1"), Decimal("-1")).retryable
        assert not LedgerCommitError("boom").retryable


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
