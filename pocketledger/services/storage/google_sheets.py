"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a ledger backend because:
1. Non-technical users can view their budgets directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions: the ledger always runs in fallback mode on this backend
- The conditional balance update is a read-check-write guarded by a
  process-local lock, so it is only safe with a single writer process
- Limited query capabilities (we filter in Python)
- gspread blocks, so sheet calls run on worker threads

Every row is written with value_input_option="RAW" so Sheets never
reinterprets dates or amounts.
"""

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import gspread
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from tenacity import AsyncRetrying, retry, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from pocketledger.config import GoogleSheetsSettings, get_settings
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


# Column mappings for Budgets sheet
BUDGET_COLUMNS = [
    "id",
    "user_id",
    "name",
    "frequency",
    "is_primary",
    "amount",
    "initial_amount",
    "current_amount",
    "origin",
    "client_id",
    "created_at",
]

# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "budget_id",
    "type",
    "amount",
    "comment",
    "date",
    "time",
    "created_at",
]

# Column mappings for Days sheet
DAY_COLUMNS = [
    "user_id",
    "date",
    "initial_pocket",
    "budgets_available",
    "gains",
    "expenses",
    "final_pocket",
    "locked",
    "created_at",
    "updated_at",
]

# Column mappings for Journal sheet
JOURNAL_COLUMNS = [
    "id",
    "user_id",
    "created_at",
    "tx_type",
    "amount",
    "comment",
    "rule_applied",
    "affected_json",
    "meta_json",
]

CURRENT_AMOUNT_COLUMN = BUDGET_COLUMNS.index("current_amount") + 1


def _cell(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


# =============================================================================
# ROW CODECS
# =============================================================================

def budget_to_row(budget: Budget) -> list:
    """Convert a Budget to a spreadsheet row."""
    return [
        str(budget.id),
        str(budget.user_id),
        budget.name,
        budget.frequency.value,
        str(budget.is_primary),
        str(budget.amount),
        str(budget.initial_amount),
        str(budget.current_amount),
        budget.origin.value,
        budget.client_id or "",
        budget.created_at.isoformat(),
    ]


def row_to_budget(row: list) -> Budget:
    """Convert a spreadsheet row to a Budget."""
    return Budget(
        id=UUID(_cell(row, 0)),
        user_id=UUID(_cell(row, 1)),
        name=_cell(row, 2),
        frequency=BudgetFrequency(_cell(row, 3)),
        is_primary=_cell(row, 4).lower() == "true",
        amount=Decimal(_cell(row, 5)),
        initial_amount=Decimal(_cell(row, 6)),
        current_amount=Decimal(_cell(row, 7)),
        origin=BudgetOrigin(_cell(row, 8, BudgetOrigin.MANUAL.value)),
        client_id=_cell(row, 9) or None,
        created_at=datetime.fromisoformat(_cell(row, 10)),
    )


def transaction_to_row(transaction: Transaction) -> list:
    """Convert a Transaction to a spreadsheet row."""
    return [
        str(transaction.id),
        str(transaction.user_id),
        str(transaction.budget_id) if transaction.budget_id else "",
        transaction.type.value,
        str(transaction.amount),
        transaction.comment,
        transaction.date.isoformat(),
        transaction.time,
        transaction.created_at.isoformat(),
    ]


def row_to_transaction(row: list) -> Transaction:
    """Convert a spreadsheet row to a Transaction."""
    return Transaction(
        id=UUID(_cell(row, 0)),
        user_id=UUID(_cell(row, 1)),
        budget_id=UUID(_cell(row, 2)) if _cell(row, 2) else None,
        type=TransactionType(_cell(row, 3)),
        amount=Decimal(_cell(row, 4)),
        comment=_cell(row, 5),
        date=date.fromisoformat(_cell(row, 6)),
        time=_cell(row, 7),
        created_at=datetime.fromisoformat(_cell(row, 8)),
    )


def day_to_row(day: Day) -> list:
    """Convert a Day rollup to a spreadsheet row."""
    return [
        str(day.user_id),
        day.date.isoformat(),
        str(day.initial_pocket),
        str(day.budgets_available),
        str(day.gains),
        str(day.expenses),
        str(day.final_pocket),
        str(day.locked),
        day.created_at.isoformat(),
        day.updated_at.isoformat(),
    ]


def row_to_day(row: list) -> Day:
    """Convert a spreadsheet row to a Day rollup."""
    return Day(
        user_id=UUID(_cell(row, 0)),
        date=date.fromisoformat(_cell(row, 1)),
        initial_pocket=Decimal(_cell(row, 2, "0")),
        budgets_available=Decimal(_cell(row, 3, "0")),
        gains=Decimal(_cell(row, 4, "0")),
        expenses=Decimal(_cell(row, 5, "0")),
        final_pocket=Decimal(_cell(row, 6, "0")),
        locked=_cell(row, 7).lower() == "true",
        created_at=datetime.fromisoformat(_cell(row, 8)),
        updated_at=datetime.fromisoformat(_cell(row, 9)),
    )


def journal_entry_to_row(entry: JournalEntry) -> list:
    """Convert a JournalEntry to a spreadsheet row."""
    return [
        str(entry.id),
        str(entry.user_id),
        entry.created_at.isoformat(),
        entry.tx_type.value,
        str(entry.amount),
        entry.comment or "",
        entry.rule_applied,
        json.dumps([a.model_dump(mode="json") for a in entry.affected]),
        json.dumps(entry.meta, default=str),
    ]


def row_to_journal_entry(row: list) -> JournalEntry:
    """Convert a spreadsheet row to a JournalEntry."""
    affected_json = _cell(row, 7)
    meta_json = _cell(row, 8)
    return JournalEntry(
        id=UUID(_cell(row, 0)),
        user_id=UUID(_cell(row, 1)),
        created_at=datetime.fromisoformat(_cell(row, 2)),
        tx_type=JournalEntryType(_cell(row, 3)),
        amount=Decimal(_cell(row, 4)),
        comment=_cell(row, 5) or None,
        rule_applied=_cell(row, 6),
        affected=[AffectedBudget(**a) for a in json.loads(affected_json)] if affected_json else [],
        meta=json.loads(meta_json) if meta_json else {},
    )


# =============================================================================
# CLIENT
# =============================================================================

class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._sheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        """Get or create a worksheet with its header row."""
        if title in self._sheets:
            return self._sheets[title]
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        self._sheets[title] = sheet
        return sheet

    def get_budgets_sheet(self) -> gspread.Worksheet:
        return self._get_sheet(self._settings.budgets_sheet_name, BUDGET_COLUMNS, 200)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self._get_sheet(self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, 5000)

    def get_days_sheet(self) -> gspread.Worksheet:
        return self._get_sheet(self._settings.days_sheet_name, DAY_COLUMNS, 1000)

    def get_journal_sheet(self) -> gspread.Worksheet:
        # More rows: every ledger operation appends here
        return self._get_sheet(self._settings.journal_sheet_name, JOURNAL_COLUMNS, 10000)


# =============================================================================
# STORE
# =============================================================================

SheetGetter = Callable[[], gspread.Worksheet]


class GoogleSheetsLedgerStore(LedgerStore):
    """
    Google Sheets implementation of the ledger store.

    One worksheet per collection, one record per row. Structured fields of
    journal entries (affected budgets, meta) are JSON-serialized.

    gspread is synchronous, so every sheet call runs on a worker thread
    through `asyncio.to_thread`. Read-check-write sequences hold
    `_write_lock` across their threaded calls.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        append_wait: Optional[wait_base] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._write_lock = asyncio.Lock()
        self._append_wait = append_wait or wait_exponential(multiplier=1, min=2, max=10)

    async def connect(self) -> None:
        try:
            await asyncio.to_thread(self._client.get_spreadsheet)
        except ConnectionError:
            raise
        except Exception as e:
            raise ConnectionError(f"Failed to open spreadsheet: {e}")

    async def run_in_transaction(
        self,
        fn: Callable[[Any], Awaitable[T]],
    ) -> T:
        raise TransactionsUnsupportedError("Google Sheets has no multi-row transactions")

    # -------------------------------------------------------------------------
    # Row helpers (blocking; called through asyncio.to_thread)
    # -------------------------------------------------------------------------

    @staticmethod
    def _rows(sheet: gspread.Worksheet) -> list[tuple[int, list]]:
        """Data rows with their 1-based sheet index (row 1 is the header)."""
        return [
            (idx, row)
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2)
            if row and row[0]
        ]

    def _find_by_id(self, get_sheet: SheetGetter, record_id: UUID) -> Optional[tuple[int, list]]:
        for idx, row in self._rows(get_sheet()):
            if row[0] == str(record_id):
                return idx, row
        return None

    def _user_rows(self, get_sheet: SheetGetter, user_column: int, user_id: UUID) -> list[list]:
        return [
            row for _, row in self._rows(get_sheet())
            if _cell(row, user_column) == str(user_id)
        ]

    def _find_budget_row(self, budget_id: UUID) -> Optional[tuple[int, Budget]]:
        found = self._find_by_id(self._client.get_budgets_sheet, budget_id)
        return (found[0], row_to_budget(found[1])) if found else None

    def _find_day_row(self, user_id: UUID, on_date: date) -> Optional[tuple[int, Day]]:
        for idx, row in self._rows(self._client.get_days_sheet()):
            if row[0] == str(user_id) and _cell(row, 1) == on_date.isoformat():
                return idx, row_to_day(row)
        return None

    @staticmethod
    def _write_row(get_sheet: SheetGetter, idx: int, row: list) -> None:
        cell_range = f"{rowcol_to_a1(idx, 1)}:{rowcol_to_a1(idx, len(row))}"
        get_sheet().batch_update(
            [{"range": cell_range, "values": [row]}],
            value_input_option="RAW",
        )

    @staticmethod
    def _delete_row(get_sheet: SheetGetter, idx: int) -> None:
        get_sheet().delete_rows(idx)

    def _append_row(self, get_sheet: SheetGetter, row: list, skip_if_present: bool = False) -> None:
        sheet = get_sheet()
        if skip_if_present and any(stored[0] == row[0] for _, stored in self._rows(sheet)):
            return
        sheet.append_row(row, value_input_option="RAW")

    def _store_current_amount(self, idx: int, amount: Decimal) -> None:
        self._client.get_budgets_sheet().update_cell(idx, CURRENT_AMOUNT_COLUMN, str(amount))

    async def _append_with_retry(self, get_sheet: SheetGetter, row: list) -> None:
        """
        Append a row keyed by its first cell, retrying API failures.

        An append whose response was lost may still have landed, so every
        retry looks for the key first and skips the append if it is there.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=self._append_wait,
            reraise=True,
        ):
            with attempt:
                await asyncio.to_thread(
                    self._append_row, get_sheet, row, attempt.retry_state.attempt_number > 1
                )

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def get_budget(self, budget_id: UUID, session=None) -> Optional[Budget]:
        try:
            found = await asyncio.to_thread(self._find_budget_row, budget_id)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get budget: {e}")

    async def list_budgets(self, user_id: UUID, session=None) -> list[Budget]:
        try:
            rows = await asyncio.to_thread(
                self._user_rows, self._client.get_budgets_sheet, 1, user_id
            )
            budgets = [row_to_budget(row) for row in rows]
            budgets.sort(key=lambda b: b.created_at)
            return budgets
        except Exception as e:
            raise StorageError(f"Failed to list budgets: {e}")

    async def find_primary_budget(self, user_id: UUID, session=None) -> Optional[Budget]:
        for budget in await self.list_budgets(user_id):
            if budget.is_primary and budget.frequency == BudgetFrequency.MONTHLY:
                return budget
        return None

    async def find_budget_by_frequency(
        self,
        user_id: UUID,
        frequency: BudgetFrequency,
        session=None,
    ) -> Optional[Budget]:
        for budget in await self.list_budgets(user_id):
            if budget.frequency == frequency:
                return budget
        return None

    async def find_budget_by_client_id(
        self,
        user_id: UUID,
        client_id: str,
        session=None,
    ) -> Optional[Budget]:
        for budget in await self.list_budgets(user_id):
            if budget.client_id == client_id:
                return budget
        return None

    async def insert_budget(self, budget: Budget, session=None) -> Budget:
        async with self._write_lock:
            if await asyncio.to_thread(self._find_budget_row, budget.id):
                raise DuplicateError(f"Budget already exists: {budget.id}")
            try:
                await asyncio.to_thread(
                    self._append_row, self._client.get_budgets_sheet, budget_to_row(budget)
                )
                return budget
            except Exception as e:
                raise StorageError(f"Failed to save budget: {e}")

    async def update_budget(self, budget: Budget, session=None) -> Budget:
        async with self._write_lock:
            found = await asyncio.to_thread(self._find_budget_row, budget.id)
            if found is None:
                raise NotFoundError(f"Budget not found: {budget.id}")
            idx, stored = found
            stored.name = budget.name
            stored.amount = budget.amount
            try:
                await asyncio.to_thread(
                    self._write_row, self._client.get_budgets_sheet, idx, budget_to_row(stored)
                )
            except Exception as e:
                raise StorageError(f"Failed to update budget: {e}")
            return stored

    async def delete_budget(self, budget_id: UUID, session=None) -> bool:
        async with self._write_lock:
            found = await asyncio.to_thread(self._find_budget_row, budget_id)
            if found is None:
                return False
            try:
                await asyncio.to_thread(self._delete_row, self._client.get_budgets_sheet, found[0])
                return True
            except Exception as e:
                raise StorageError(f"Failed to delete budget: {e}")

    async def set_current_amount(
        self,
        budget_id: UUID,
        amount: Decimal,
        session=None,
    ) -> Budget:
        async with self._write_lock:
            found = await asyncio.to_thread(self._find_budget_row, budget_id)
            if found is None:
                raise NotFoundError(f"Budget not found: {budget_id}")
            idx, budget = found
            budget.current_amount = amount
            await asyncio.to_thread(self._store_current_amount, idx, budget.current_amount)
            return budget

    async def adjust_current_amount(
        self,
        budget_id: UUID,
        delta: Decimal,
        session=None,
    ) -> Budget:
        async with self._write_lock:
            found = await asyncio.to_thread(self._find_budget_row, budget_id)
            if found is None:
                raise NotFoundError(f"Budget not found: {budget_id}")
            idx, budget = found
            budget.current_amount = budget.current_amount + delta
            await asyncio.to_thread(self._store_current_amount, idx, budget.current_amount)
            return budget

    async def adjust_current_amount_if(
        self,
        budget_id: UUID,
        delta: Decimal,
        floor: Decimal = Decimal("0"),
        session=None,
    ) -> Optional[Budget]:
        async with self._write_lock:
            found = await asyncio.to_thread(self._find_budget_row, budget_id)
            if found is None:
                return None
            idx, budget = found
            if budget.current_amount + delta < floor:
                return None
            budget.current_amount = budget.current_amount + delta
            await asyncio.to_thread(self._store_current_amount, idx, budget.current_amount)
            return budget

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert_transaction(self, transaction: Transaction, session=None) -> Transaction:
        try:
            await self._append_with_retry(
                self._client.get_transactions_sheet, transaction_to_row(transaction)
            )
            return transaction
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction(self, transaction_id: UUID, session=None) -> Optional[Transaction]:
        try:
            found = await asyncio.to_thread(
                self._find_by_id, self._client.get_transactions_sheet, transaction_id
            )
            return row_to_transaction(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def list_transactions(
        self,
        user_id: UUID,
        on_date: Optional[date] = None,
        month: Optional[date] = None,
        tx_type: Optional[TransactionType] = None,
        session=None,
    ) -> list[Transaction]:
        try:
            rows = await asyncio.to_thread(
                self._user_rows, self._client.get_transactions_sheet, 1, user_id
            )
            transactions = []
            for row in rows:
                tx = row_to_transaction(row)

                # Apply filters
                if on_date and tx.date != on_date:
                    continue
                if month and (tx.date.year, tx.date.month) != (month.year, month.month):
                    continue
                if tx_type and tx.type != tx_type:
                    continue

                transactions.append(tx)

            transactions.sort(key=lambda tx: tx.created_at)
            return transactions
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

    async def remove_transaction(self, transaction_id: UUID, session=None) -> bool:
        async with self._write_lock:
            try:
                found = await asyncio.to_thread(
                    self._find_by_id, self._client.get_transactions_sheet, transaction_id
                )
                if found is None:
                    return False
                await asyncio.to_thread(
                    self._delete_row, self._client.get_transactions_sheet, found[0]
                )
                return True
            except Exception as e:
                raise StorageError(f"Failed to remove transaction: {e}")

    # -------------------------------------------------------------------------
    # Days
    # -------------------------------------------------------------------------

    async def get_day(self, user_id: UUID, on_date: date, session=None) -> Optional[Day]:
        try:
            found = await asyncio.to_thread(self._find_day_row, user_id, on_date)
            return found[1] if found else None
        except Exception as e:
            raise StorageError(f"Failed to get day: {e}")

    async def get_latest_day_before(
        self,
        user_id: UUID,
        on_date: date,
        session=None,
    ) -> Optional[Day]:
        try:
            rows = await asyncio.to_thread(
                self._user_rows, self._client.get_days_sheet, 0, user_id
            )
            earlier = [
                row_to_day(row)
                for row in rows
                if date.fromisoformat(_cell(row, 1)) < on_date
            ]
        except Exception as e:
            raise StorageError(f"Failed to read days: {e}")
        return max(earlier, key=lambda d: d.date) if earlier else None

    async def insert_day(self, day: Day, session=None) -> Day:
        async with self._write_lock:
            if await asyncio.to_thread(self._find_day_row, day.user_id, day.date):
                raise DuplicateError(f"Day already exists: {day.user_id} {day.date}")
            try:
                await asyncio.to_thread(
                    self._append_row, self._client.get_days_sheet, day_to_row(day)
                )
                return day
            except Exception as e:
                raise StorageError(f"Failed to save day: {e}")

    async def update_day(self, day: Day, session=None) -> Day:
        async with self._write_lock:
            found = await asyncio.to_thread(self._find_day_row, day.user_id, day.date)
            if found is None:
                raise NotFoundError(f"Day not found: {day.user_id} {day.date}")
            try:
                await asyncio.to_thread(
                    self._write_row, self._client.get_days_sheet, found[0], day_to_row(day)
                )
                return day
            except Exception as e:
                raise StorageError(f"Failed to update day: {e}")

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    async def append_journal_entry(self, entry: JournalEntry, session=None) -> JournalEntry:
        try:
            await self._append_with_retry(
                self._client.get_journal_sheet, journal_entry_to_row(entry)
            )
            return entry
        except Exception as e:
            raise StorageError(f"Failed to write journal entry: {e}")

    async def list_journal_entries(
        self,
        user_id: UUID,
        limit: int = 100,
        session=None,
    ) -> list[JournalEntry]:
        try:
            rows = await asyncio.to_thread(
                self._user_rows, self._client.get_journal_sheet, 1, user_id
            )
            entries = [row_to_journal_entry(row) for row in rows]
        except Exception as e:
            raise StorageError(f"Failed to read journal: {e}")
        entries.sort(key=lambda e: e.created_at)
        return entries[-limit:] if limit else entries
