"""
Main Orchestrator for Pocket Ledger

This module ties together all the ledger components and exposes the
operations callers use (CLI, HTTP layer, savings-group features):
1. Posting (expense / gain, with optional conflict retry)
2. Budgets (create, edit, delete, default hierarchy, pocket money)
3. Reads (remaining, availability, day rollup, journal)

DESIGN DECISION: The consistency mode is decided once, by the capability
detector, in `create_ledger_service`. It is handed to the service as a
value, so both modes can be built side by side in tests.
"""

import datetime as dt
from decimal import Decimal
from typing import Callable, Optional, Union
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from pocketledger.audit import AuditLogger
from pocketledger.config import LedgerSettings, Settings, get_settings
from pocketledger.ledger import (
    AvailabilityReconciler,
    BudgetManager,
    CascadeEngine,
    ConcurrencyConflictError,
    ConsistencyMode,
    DayLockSource,
    DayReconciler,
    ExpenseResult,
    GainResult,
    LedgerMutator,
    StoreDayLockSource,
    TransactionCapabilityDetector,
    TransactionCapabilityError,
    TransactionNotFoundError,
    UserNotFoundError,
)
from pocketledger.models.ledger import (
    Budget,
    BudgetFrequency,
    BudgetView,
    DayRollup,
    HierarchyValidation,
    Transaction,
    TransactionRequest,
    TransactionType,
    utc_today,
)
from pocketledger.models.journal import JournalEntry
from pocketledger.services.identity import IdentityResolver
from pocketledger.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    LedgerStore,
    MemoryLedgerStore,
    MongoLedgerStore,
)
from pocketledger.validation import BudgetHierarchyValidator


class LedgerService:
    """
    Facade over the ledger core.

    Args:
        store: A connected ledger store
        mode: Consistency mode from the capability detector
        settings: Ledger tuning (tolerance, retries, hierarchy divisors)
        identity: Resolves opaque user references for `submit_transaction`
        lock_source: Which days are locked; defaults to the Day records
        detector: Kept so `reconnect` can re-probe the store
        today: Clock for default dates and the current month; UTC by default
    """

    def __init__(
        self,
        store: LedgerStore,
        mode: ConsistencyMode,
        settings: Optional[LedgerSettings] = None,
        identity: Optional[IdentityResolver] = None,
        lock_source: Optional[DayLockSource] = None,
        detector: Optional[TransactionCapabilityDetector] = None,
        audit_logger: Optional[AuditLogger] = None,
        today: Callable[[], dt.date] = utc_today,
    ):
        self._store = store
        self._settings = settings or LedgerSettings()
        self._identity = identity
        self._lock_source = lock_source or StoreDayLockSource(store)
        self._detector = detector
        self._audit = audit_logger or AuditLogger()
        self._today = today
        self._wire(mode)

    def _wire(self, mode: ConsistencyMode) -> None:
        settings = self._settings
        self._mode = mode
        self._availability = AvailabilityReconciler(
            self._store,
            tolerance=settings.reconcile_tolerance,
            audit_logger=self._audit,
            today=self._today,
        )
        self._days = DayReconciler(self._store, self._availability, self._audit)
        self._mutator = LedgerMutator(self._store, mode, self._days, self._audit)
        self._validator = BudgetHierarchyValidator(
            self._store,
            weekly_divisor=settings.weekly_divisor,
            daily_from_monthly_divisor=settings.daily_from_monthly_divisor,
            daily_from_weekly_divisor=settings.daily_from_weekly_divisor,
        )
        self._cascade = CascadeEngine(
            self._store, self._mutator, self._lock_source, self._audit, today=self._today
        )
        self._budgets = BudgetManager(
            self._store,
            self._validator,
            self._mutator,
            weekly_divisor=settings.weekly_divisor,
            daily_from_weekly_divisor=settings.daily_from_weekly_divisor,
            audit_logger=self._audit,
        )

    @property
    def mode(self) -> ConsistencyMode:
        return self._mode

    @property
    def store(self) -> LedgerStore:
        return self._store

    async def reconnect(self) -> ConsistencyMode:
        """Reopen the store and re-probe its transaction capability."""
        await self._store.close()
        await self._store.connect()
        if self._detector is not None:
            self._wire(await self._detector.refresh())
        return self._mode

    async def close(self) -> None:
        await self._store.close()

    # -------------------------------------------------------------------------
    # Posting
    # -------------------------------------------------------------------------

    async def apply_expense(
        self,
        user_id: UUID,
        budget_id: UUID,
        amount: Decimal,
        comment: str = "",
        on_date: Optional[dt.date] = None,
    ) -> ExpenseResult:
        return await self._cascade.apply_expense(user_id, budget_id, amount, comment, on_date)

    async def apply_expense_with_retry(
        self,
        user_id: UUID,
        budget_id: UUID,
        amount: Decimal,
        comment: str = "",
        on_date: Optional[dt.date] = None,
    ) -> ExpenseResult:
        """
        Post an expense, retrying concurrency conflicts.

        Only `ConcurrencyConflictError` is retried (it leaves nothing
        behind); every other error surfaces on the first attempt.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ConcurrencyConflictError),
            stop=stop_after_attempt(self._settings.conflict_retry_attempts),
            wait=wait_random_exponential(multiplier=0.01, max=0.25),
            reraise=True,
        ):
            with attempt:
                return await self.apply_expense(user_id, budget_id, amount, comment, on_date)

    async def apply_gain(
        self,
        user_id: UUID,
        amount: Decimal,
        comment: str = "",
        budget_id: Optional[UUID] = None,
        on_date: Optional[dt.date] = None,
    ) -> GainResult:
        return await self._cascade.apply_gain(user_id, amount, comment, budget_id, on_date)

    async def submit_transaction(
        self,
        request: TransactionRequest,
    ) -> Union[ExpenseResult, GainResult]:
        """
        Entry point for pre-validated inbound requests.

        Resolves the opaque user reference, then posts the expense (with
        conflict retry) or the gain.
        """
        if self._identity is None:
            try:
                user_id = UUID(request.user_id)
            except ValueError:
                raise UserNotFoundError(request.user_id)
        else:
            user_id = await self._identity.resolve(request.user_id)

        if request.type == TransactionType.EXPENSE:
            return await self.apply_expense_with_retry(
                user_id,
                request.budget_id,
                request.amount,
                request.comment,
                request.transaction_date,
            )
        return await self.apply_gain(
            user_id,
            request.amount,
            request.comment,
            request.budget_id,
            request.transaction_date,
        )

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    async def validate_budget_creation(
        self,
        user_id: UUID,
        frequency: BudgetFrequency,
        amount: Decimal,
        is_primary: bool = False,
    ) -> HierarchyValidation:
        return await self._validator.validate(user_id, frequency, amount, is_primary=is_primary)

    async def create_budget(
        self,
        user_id: UUID,
        name: str,
        frequency: BudgetFrequency,
        amount: Decimal,
        is_primary: bool = False,
        client_id: Optional[str] = None,
    ) -> Budget:
        return await self._budgets.create_budget(
            user_id, name, frequency, amount, is_primary=is_primary, client_id=client_id
        )

    async def create_default_hierarchy(self, user_id: UUID, monthly_amount: Decimal) -> list[Budget]:
        return await self._budgets.create_default_hierarchy(user_id, monthly_amount)

    async def update_budget(
        self,
        budget_id: UUID,
        user_id: Optional[UUID] = None,
        name: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> Budget:
        return await self._budgets.update_budget(budget_id, user_id, name=name, amount=amount)

    async def delete_budget(self, budget_id: UUID, user_id: Optional[UUID] = None) -> bool:
        return await self._budgets.delete_budget(budget_id, user_id)

    async def list_budgets(self, user_id: UUID) -> list[BudgetView]:
        return await self._budgets.list_budgets(user_id)

    async def get_pocket_money(self, user_id: UUID) -> Decimal:
        return await self._budgets.get_pocket_money(user_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_remaining(self, budget_id: UUID, user_id: Optional[UUID] = None) -> Decimal:
        return await self._budgets.get_remaining(budget_id, user_id)

    async def get_available_this_month(
        self,
        user_id: UUID,
        on_date: Optional[dt.date] = None,
    ) -> Decimal:
        return await self._availability.available_this_month(user_id, on_date)

    async def get_day_rollup(self, user_id: UUID, on_date: Optional[dt.date] = None) -> DayRollup:
        day = await self._days.get_rollup(user_id, on_date or self._today())
        return day.to_rollup()

    async def lock_day(self, user_id: UUID, on_date: dt.date) -> DayRollup:
        """Called by whatever closes a day (end-of-day job, admin action)."""
        day = await self._days.lock_day(user_id, on_date)
        return day.to_rollup()

    async def get_transaction(self, transaction_id: UUID) -> Transaction:
        transaction = await self._store.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    async def list_journal(self, user_id: UUID, limit: int = 100) -> list[JournalEntry]:
        return await self._store.list_journal_entries(user_id, limit=limit)


def build_store(settings: Settings) -> LedgerStore:
    """Instantiate the store selected by LEDGER_STORAGE_BACKEND."""
    backend = settings.ledger.storage_backend
    if backend == "mongodb":
        return MongoLedgerStore(settings.mongodb)
    if backend == "google_sheets":
        return GoogleSheetsLedgerStore(GoogleSheetsClient(settings.google_sheets))
    return MemoryLedgerStore()


async def create_ledger_service(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStore] = None,
    identity: Optional[IdentityResolver] = None,
) -> LedgerService:
    """
    Factory function to create the ledger service.

    Connects the store, probes transaction support once and wires every
    component with the resulting mode.

    Raises:
        TransactionCapabilityError: Production without transactions (and
            without the explicit weak-consistency override)
    """
    settings = settings or get_settings()
    app = settings.app
    audit_logger = AuditLogger()

    store = store or build_store(settings)
    await store.connect()

    detector = TransactionCapabilityDetector(
        store,
        is_production=app.is_production,
        allow_weak_consistency=app.allow_weak_consistency,
        environment=app.app_environment,
        audit_logger=audit_logger,
    )
    try:
        mode = await detector.detect()
    except TransactionCapabilityError:
        await store.close()
        raise

    return LedgerService(
        store,
        mode,
        settings=settings.ledger,
        identity=identity,
        detector=detector,
        audit_logger=audit_logger,
    )
