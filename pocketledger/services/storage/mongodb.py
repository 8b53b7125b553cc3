"""
MongoDB Storage Implementation

DESIGN DECISION: MongoDB (through motor) is the production backend.
- On a replica set or mongos, `run_in_transaction` gives the ledger real
  multi-document ACID transactions.
- On a standalone server the same code still works; the capability probe
  sees the failure and the ledger switches to conditional updates.

Layout:
- budgets, transactions, days, journal_entries collections
- `_id` is the string form of the model UUID
- amounts are Decimal128 so `$inc` stays exact
- dates are ISO strings (YYYY-MM-DD), so month filters are string ranges
- days carry a unique (user_id, date) index
"""

from contextlib import contextmanager
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar
from uuid import UUID

from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, OperationFailure, PyMongoError
from tenacity import retry, stop_after_attempt, wait_exponential

from pocketledger.config import MongoDBSettings
from pocketledger.models.ledger import (
    Budget,
    BudgetFrequency,
    BudgetOrigin,
    Day,
    Transaction,
    TransactionType,
)
from pocketledger.models.journal import (
    AffectedBudget,
    JournalEntry,
    JournalEntryType,
)
from pocketledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStore,
    NotFoundError,
    StorageError,
    TransactionsUnsupportedError,
)


T = TypeVar("T")

# "Transaction numbers are only allowed on a replica set member or mongos"
ILLEGAL_OPERATION = 20


def _dec(value: Decimal) -> Decimal128:
    return Decimal128(Decimal(value))


def _undec(value: Any) -> Decimal:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


def _is_transactions_unsupported(error: PyMongoError) -> bool:
    if isinstance(error, OperationFailure) and error.code == ILLEGAL_OPERATION:
        return True
    return "Transaction numbers are only allowed" in str(error)


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    """
    Map driver errors onto the storage exceptions.

    Errors labelled TransientTransactionError are re-raised untouched so
    `with_transaction` can retry the whole unit.
    """
    try:
        yield
    except DuplicateKeyError as e:
        raise DuplicateError(f"Failed to {action}: duplicate key") from e
    except PyMongoError as e:
        if e.has_error_label("TransientTransactionError"):
            raise
        if _is_transactions_unsupported(e):
            raise TransactionsUnsupportedError(str(e)) from e
        raise StorageError(f"Failed to {action}: {e}") from e


# =============================================================================
# DOCUMENT CODECS
# =============================================================================

def budget_to_document(budget: Budget) -> dict:
    return {
        "_id": str(budget.id),
        "user_id": str(budget.user_id),
        "name": budget.name,
        "frequency": budget.frequency.value,
        "is_primary": budget.is_primary,
        "amount": _dec(budget.amount),
        "initial_amount": _dec(budget.initial_amount),
        "current_amount": _dec(budget.current_amount),
        "origin": budget.origin.value,
        "client_id": budget.client_id,
        "created_at": budget.created_at,
    }


def document_to_budget(doc: dict) -> Budget:
    return Budget(
        id=UUID(doc["_id"]),
        user_id=UUID(doc["user_id"]),
        name=doc["name"],
        frequency=BudgetFrequency(doc["frequency"]),
        is_primary=doc.get("is_primary", False),
        amount=_undec(doc["amount"]),
        initial_amount=_undec(doc["initial_amount"]),
        current_amount=_undec(doc["current_amount"]),
        origin=BudgetOrigin(doc.get("origin", BudgetOrigin.MANUAL.value)),
        client_id=doc.get("client_id"),
        created_at=doc["created_at"],
    )


def transaction_to_document(transaction: Transaction) -> dict:
    return {
        "_id": str(transaction.id),
        "user_id": str(transaction.user_id),
        "budget_id": str(transaction.budget_id) if transaction.budget_id else None,
        "type": transaction.type.value,
        "amount": _dec(transaction.amount),
        "comment": transaction.comment,
        "date": transaction.date.isoformat(),
        "time": transaction.time,
        "created_at": transaction.created_at,
    }


def document_to_transaction(doc: dict) -> Transaction:
    return Transaction(
        id=UUID(doc["_id"]),
        user_id=UUID(doc["user_id"]),
        budget_id=UUID(doc["budget_id"]) if doc.get("budget_id") else None,
        type=TransactionType(doc["type"]),
        amount=_undec(doc["amount"]),
        comment=doc.get("comment", ""),
        date=date.fromisoformat(doc["date"]),
        time=doc["time"],
        created_at=doc["created_at"],
    )


def day_to_document(day: Day) -> dict:
    return {
        "user_id": str(day.user_id),
        "date": day.date.isoformat(),
        "initial_pocket": _dec(day.initial_pocket),
        "budgets_available": _dec(day.budgets_available),
        "gains": _dec(day.gains),
        "expenses": _dec(day.expenses),
        "final_pocket": _dec(day.final_pocket),
        "locked": day.locked,
        "created_at": day.created_at,
        "updated_at": day.updated_at,
    }


def document_to_day(doc: dict) -> Day:
    return Day(
        user_id=UUID(doc["user_id"]),
        date=date.fromisoformat(doc["date"]),
        initial_pocket=_undec(doc["initial_pocket"]),
        budgets_available=_undec(doc["budgets_available"]),
        gains=_undec(doc["gains"]),
        expenses=_undec(doc["expenses"]),
        final_pocket=_undec(doc["final_pocket"]),
        locked=doc.get("locked", False),
        created_at=doc["created_at"],
        updated_at=doc["updated_at"],
    )


def journal_entry_to_document(entry: JournalEntry) -> dict:
    return {
        "_id": str(entry.id),
        "user_id": str(entry.user_id),
        "created_at": entry.created_at,
        "tx_type": entry.tx_type.value,
        "amount": _dec(entry.amount),
        "comment": entry.comment,
        "affected": [
            {
                "budget_id": str(a.budget_id),
                "before": _dec(a.before),
                "after": _dec(a.after),
            }
            for a in entry.affected
        ],
        "rule_applied": entry.rule_applied,
        "meta": entry.meta,
    }


def document_to_journal_entry(doc: dict) -> JournalEntry:
    return JournalEntry(
        id=UUID(doc["_id"]),
        user_id=UUID(doc["user_id"]),
        created_at=doc["created_at"],
        tx_type=JournalEntryType(doc["tx_type"]),
        amount=_undec(doc["amount"]),
        comment=doc.get("comment"),
        affected=[
            AffectedBudget(
                budget_id=UUID(a["budget_id"]),
                before=_undec(a["before"]),
                after=_undec(a["after"]),
            )
            for a in doc.get("affected", [])
        ],
        rule_applied=doc["rule_applied"],
        meta=doc.get("meta", {}),
    )


def month_range(month: date) -> tuple[str, str]:
    """ISO bounds [first day of month, first day of next month)."""
    start = month.replace(day=1)
    following = (start + timedelta(days=32)).replace(day=1)
    return start.isoformat(), following.isoformat()


# =============================================================================
# STORE
# =============================================================================

class MongoLedgerStore(LedgerStore):
    """
    MongoDB implementation of the ledger store.

    The session handed to `run_in_transaction` callbacks is a motor
    client session; every method forwards it to the driver.
    """

    def __init__(
        self,
        settings: MongoDBSettings,
        client: Optional[AsyncIOMotorClient] = None,
    ):
        self._settings = settings
        self._client = client
        self._db: Optional[AsyncIOMotorDatabase] = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def connect(self) -> None:
        """Connect, ping the server and make sure indexes exist."""
        if self._client is None:
            self._client = AsyncIOMotorClient(
                self._settings.uri,
                serverSelectionTimeoutMS=self._settings.server_selection_timeout_ms,
                tz_aware=True,
            )
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise ConnectionError(f"Failed to connect to MongoDB: {e}")
        self._db = self._client[self._settings.database_name]
        await self.create_indexes()

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None

    async def create_indexes(self) -> None:
        db = self._require_db()
        with _translate_errors("create indexes"):
            await db.days.create_index(
                [("user_id", ASCENDING), ("date", ASCENDING)],
                unique=True,
            )
            await db.budgets.create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
            await db.transactions.create_index([("user_id", ASCENDING), ("date", ASCENDING)])
            await db.journal_entries.create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])

    def _require_db(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            raise ConnectionError("MongoDB store is not connected")
        return self._db

    async def run_in_transaction(
        self,
        fn: Callable[[Any], Awaitable[T]],
    ) -> T:
        self._require_db()
        async with await self._client.start_session() as session:
            with _translate_errors("run transaction"):
                return await session.with_transaction(fn)

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def get_budget(self, budget_id: UUID, session=None) -> Optional[Budget]:
        with _translate_errors("get budget"):
            doc = await self._require_db().budgets.find_one(
                {"_id": str(budget_id)}, session=session
            )
        return document_to_budget(doc) if doc else None

    async def list_budgets(self, user_id: UUID, session=None) -> list[Budget]:
        with _translate_errors("list budgets"):
            cursor = self._require_db().budgets.find(
                {"user_id": str(user_id)}, session=session
            ).sort("created_at", ASCENDING)
            docs = await cursor.to_list(length=None)
        return [document_to_budget(doc) for doc in docs]

    async def _find_one_budget(self, query: dict, session) -> Optional[Budget]:
        with _translate_errors("find budget"):
            cursor = self._require_db().budgets.find(query, session=session)
            docs = await cursor.sort("created_at", ASCENDING).limit(1).to_list(length=1)
        return document_to_budget(docs[0]) if docs else None

    async def find_primary_budget(self, user_id: UUID, session=None) -> Optional[Budget]:
        return await self._find_one_budget(
            {
                "user_id": str(user_id),
                "is_primary": True,
                "frequency": BudgetFrequency.MONTHLY.value,
            },
            session,
        )

    async def find_budget_by_frequency(
        self,
        user_id: UUID,
        frequency: BudgetFrequency,
        session=None,
    ) -> Optional[Budget]:
        return await self._find_one_budget(
            {"user_id": str(user_id), "frequency": frequency.value},
            session,
        )

    async def find_budget_by_client_id(
        self,
        user_id: UUID,
        client_id: str,
        session=None,
    ) -> Optional[Budget]:
        return await self._find_one_budget(
            {"user_id": str(user_id), "client_id": client_id},
            session,
        )

    async def insert_budget(self, budget: Budget, session=None) -> Budget:
        with _translate_errors("save budget"):
            await self._require_db().budgets.insert_one(
                budget_to_document(budget), session=session
            )
        return budget

    async def update_budget(self, budget: Budget, session=None) -> Budget:
        with _translate_errors("update budget"):
            doc = await self._require_db().budgets.find_one_and_update(
                {"_id": str(budget.id)},
                {"$set": {"name": budget.name, "amount": _dec(budget.amount)}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        if doc is None:
            raise NotFoundError(f"Budget not found: {budget.id}")
        return document_to_budget(doc)

    async def delete_budget(self, budget_id: UUID, session=None) -> bool:
        with _translate_errors("delete budget"):
            result = await self._require_db().budgets.delete_one(
                {"_id": str(budget_id)}, session=session
            )
        return result.deleted_count == 1

    async def set_current_amount(
        self,
        budget_id: UUID,
        amount: Decimal,
        session=None,
    ) -> Budget:
        with _translate_errors("set current amount"):
            doc = await self._require_db().budgets.find_one_and_update(
                {"_id": str(budget_id)},
                {"$set": {"current_amount": _dec(amount)}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        if doc is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return document_to_budget(doc)

    async def adjust_current_amount(
        self,
        budget_id: UUID,
        delta: Decimal,
        session=None,
    ) -> Budget:
        with _translate_errors("adjust current amount"):
            doc = await self._require_db().budgets.find_one_and_update(
                {"_id": str(budget_id)},
                {"$inc": {"current_amount": _dec(delta)}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        if doc is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return document_to_budget(doc)

    async def adjust_current_amount_if(
        self,
        budget_id: UUID,
        delta: Decimal,
        floor: Decimal = Decimal("0"),
        session=None,
    ) -> Optional[Budget]:
        # current + delta >= floor  <=>  current >= floor - delta
        with _translate_errors("conditionally adjust current amount"):
            doc = await self._require_db().budgets.find_one_and_update(
                {
                    "_id": str(budget_id),
                    "current_amount": {"$gte": _dec(floor - delta)},
                },
                {"$inc": {"current_amount": _dec(delta)}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        return document_to_budget(doc) if doc else None

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert_transaction(self, transaction: Transaction, session=None) -> Transaction:
        with _translate_errors("save transaction"):
            await self._require_db().transactions.insert_one(
                transaction_to_document(transaction), session=session
            )
        return transaction

    async def get_transaction(self, transaction_id: UUID, session=None) -> Optional[Transaction]:
        with _translate_errors("get transaction"):
            doc = await self._require_db().transactions.find_one(
                {"_id": str(transaction_id)}, session=session
            )
        return document_to_transaction(doc) if doc else None

    async def list_transactions(
        self,
        user_id: UUID,
        on_date: Optional[date] = None,
        month: Optional[date] = None,
        tx_type: Optional[TransactionType] = None,
        session=None,
    ) -> list[Transaction]:
        query: dict[str, Any] = {"user_id": str(user_id)}
        if on_date:
            query["date"] = on_date.isoformat()
        elif month:
            start, end = month_range(month)
            query["date"] = {"$gte": start, "$lt": end}
        if tx_type:
            query["type"] = tx_type.value

        with _translate_errors("list transactions"):
            cursor = self._require_db().transactions.find(query, session=session)
            docs = await cursor.sort("created_at", ASCENDING).to_list(length=None)
        transactions = [document_to_transaction(doc) for doc in docs]
        if on_date and month:
            transactions = [
                tx for tx in transactions
                if (tx.date.year, tx.date.month) == (month.year, month.month)
            ]
        return transactions

    async def remove_transaction(self, transaction_id: UUID, session=None) -> bool:
        with _translate_errors("remove transaction"):
            result = await self._require_db().transactions.delete_one(
                {"_id": str(transaction_id)}, session=session
            )
        return result.deleted_count == 1

    # -------------------------------------------------------------------------
    # Days
    # -------------------------------------------------------------------------

    async def get_day(self, user_id: UUID, on_date: date, session=None) -> Optional[Day]:
        with _translate_errors("get day"):
            doc = await self._require_db().days.find_one(
                {"user_id": str(user_id), "date": on_date.isoformat()},
                session=session,
            )
        return document_to_day(doc) if doc else None

    async def get_latest_day_before(
        self,
        user_id: UUID,
        on_date: date,
        session=None,
    ) -> Optional[Day]:
        with _translate_errors("get previous day"):
            cursor = self._require_db().days.find(
                {"user_id": str(user_id), "date": {"$lt": on_date.isoformat()}},
                session=session,
            )
            docs = await cursor.sort("date", DESCENDING).limit(1).to_list(length=1)
        return document_to_day(docs[0]) if docs else None

    async def insert_day(self, day: Day, session=None) -> Day:
        with _translate_errors("save day"):
            await self._require_db().days.insert_one(day_to_document(day), session=session)
        return day

    async def update_day(self, day: Day, session=None) -> Day:
        document = day_to_document(day)
        with _translate_errors("update day"):
            result = await self._require_db().days.replace_one(
                {"user_id": document["user_id"], "date": document["date"]},
                document,
                session=session,
            )
        if result.matched_count == 0:
            raise NotFoundError(f"Day not found: {day.user_id} {day.date}")
        return day

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    async def append_journal_entry(self, entry: JournalEntry, session=None) -> JournalEntry:
        with _translate_errors("write journal entry"):
            await self._require_db().journal_entries.insert_one(
                journal_entry_to_document(entry), session=session
            )
        return entry

    async def list_journal_entries(
        self,
        user_id: UUID,
        limit: int = 100,
        session=None,
    ) -> list[JournalEntry]:
        with _translate_errors("read journal"):
            cursor = self._require_db().journal_entries.find(
                {"user_id": str(user_id)}, session=session
            ).sort("created_at", DESCENDING)
            if limit:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=None)
        return [document_to_journal_entry(doc) for doc in reversed(docs)]
