"""
Tests for the MongoDB store that need no server: document codecs, month
bounds and driver error translation.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from bson.decimal128 import Decimal128
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError

from pocketledger.config import MongoDBSettings
from pocketledger.models import (
    AffectedBudget,
    Budget,
    BudgetFrequency,
    Day,
    JournalEntryBuilder,
    Transaction,
    TransactionType,
)
from pocketledger.services.storage import (
    ConnectionError,
    DuplicateError,
    MongoLedgerStore,
    StorageError,
    TransactionsUnsupportedError,
)
from pocketledger.services.storage.mongodb import (
    _translate_errors,
    budget_to_document,
    day_to_document,
    document_to_budget,
    document_to_day,
    document_to_journal_entry,
    document_to_transaction,
    journal_entry_to_document,
    month_range,
    transaction_to_document,
)


class TestDocumentCodecs:
    """Model <-> document conversion."""

    def test_budget_amounts_are_decimal128(self, user_id):
        """Test that balances are stored exactly."""
        budget = Budget(
            user_id=user_id,
            name="Week",
            frequency=BudgetFrequency.WEEKLY,
            amount=Decimal("100"),
            current_amount=Decimal("0.10"),
        )

        doc = budget_to_document(budget)

        assert doc["_id"] == str(budget.id)
        assert isinstance(doc["current_amount"], Decimal128)
        assert document_to_budget(doc) == budget

    def test_transaction_date_is_iso_string(self, user_id):
        """Test that dates are stored as sortable strings."""
        tx = Transaction(
            user_id=user_id,
            type=TransactionType.GAIN,
            amount=Decimal("3"),
            date=date(2026, 3, 10),
        )

        doc = transaction_to_document(tx)

        assert doc["date"] == "2026-03-10"
        assert doc["budget_id"] is None
        assert document_to_transaction(doc) == tx

    def test_day(self, user_id):
        """Test a day document."""
        day = Day(user_id=user_id, date=date(2026, 3, 10), final_pocket=Decimal("-4"))

        assert document_to_day(day_to_document(day)) == day

    def test_journal_entry(self, user_id):
        """Test that affected balances survive as Decimal128."""
        entry = JournalEntryBuilder.cascade_expense(
            user_id=user_id,
            amount=Decimal("5"),
            affected=[AffectedBudget(budget_id=uuid4(), before=Decimal("10"), after=Decimal("5"))],
            source_budget_id=uuid4(),
        )

        doc = journal_entry_to_document(entry)

        assert isinstance(doc["affected"][0]["after"], Decimal128)
        assert document_to_journal_entry(doc) == entry


class TestMonthRange:
    """String bounds for month filters."""

    def test_mid_year(self):
        assert month_range(date(2026, 3, 10)) == ("2026-03-01", "2026-04-01")

    def test_december_rolls_over(self):
        assert month_range(date(2026, 12, 31)) == ("2026-12-01", "2027-01-01")

    def test_february(self):
        assert month_range(date(2028, 2, 29)) == ("2028-02-01", "2028-03-01")


class TestErrorTranslation:
    """Driver errors mapped onto storage errors."""

    def test_duplicate_key(self):
        with pytest.raises(DuplicateError):
            with _translate_errors("insert day"):
                raise DuplicateKeyError("E11000 duplicate key", code=11000)

    def test_standalone_server(self):
        """Test that the replica-set-only error means no transactions."""
        with pytest.raises(TransactionsUnsupportedError):
            with _translate_errors("run transaction"):
                raise OperationFailure(
                    "Transaction numbers are only allowed on a replica set member or mongos",
                    code=20,
                )

    def test_transient_errors_pass_through(self):
        """Test that retryable transaction errors reach the driver's retry loop."""
        error = OperationFailure(
            "write conflict",
            code=112,
            details={"errorLabels": ["TransientTransactionError"]},
        )

        with pytest.raises(OperationFailure):
            with _translate_errors("update budget"):
                raise error

    def test_other_errors(self):
        with pytest.raises(StorageError, match="Failed to get budget"):
            with _translate_errors("get budget"):
                raise PyMongoError("boom")


class TestMongoLedgerStore:
    """Behaviour before a connection exists."""

    async def test_requires_connection(self):
        """Test that operations fail clearly before connect()."""
        store = MongoLedgerStore(MongoDBSettings())

        with pytest.raises(ConnectionError):
            await store.get_budget(uuid4())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
