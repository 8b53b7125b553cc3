"""
Ledger Mutation Primitive

DESIGN DECISION: Every balance-changing operation (expense posting, weekly
allocation, default hierarchy setup) is expressed as one `LedgerMutation`:
an ordered list of (budget, delta) pairs, a guard on the resulting
balances, and the records to write alongside. `LedgerMutator` applies it
under whichever consistency mode the process started in.

TRANSACTIONAL MODE:
- Inside one `run_in_transaction`: refuse a locked day, then load, guard,
  write balances, records, journal entry and the day rollup. Any failure
  aborts the whole unit.

FALLBACK MODE:
- Guard against a snapshot first (rejects without touching anything).
- Apply each delta as a conditional update, in order, pushing an undo step
  onto a `CompensationSaga` after each successful write.
- Re-check the day lock before the transaction record is written.
- A lost race, a locked day or a store failure runs the undo steps in
  reverse and surfaces a conflict (or the error itself).
- The day rollup is refreshed after the saga; a failure there is logged,
  never raised, because the rollup is rebuilt on the next touch. A day
  locked in between keeps its snapshot.

Readers may briefly see a fallback cascade half-applied. That weaker
guarantee is the price of running without transactions.

An availability correction written inside the transactional unit is
logged only after the unit commits, right after the mutation's own entry.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from functools import partial
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from pocketledger.audit import AuditLogger
from pocketledger.ledger.capability import ConsistencyMode
from pocketledger.ledger.days import DayReconciler
from pocketledger.ledger.errors import (
    BudgetNotFoundError,
    ConcurrencyConflictError,
    ErrorKind,
    LedgerCommitError,
    LedgerError,
    NegativeBalanceRejectedError,
)
from pocketledger.models.ledger import Budget, Day, Transaction, to_money
from pocketledger.models.journal import AffectedBudget, JournalEntry
from pocketledger.services.storage import LedgerStore, StorageError


# Builds the journal entry once the affected balances are known.
# Called as factory(affected=[...], fallback=bool).
JournalFactory = Callable[..., JournalEntry]


@dataclass(frozen=True)
class BudgetDelta:
    """Signed change to one budget's running balance."""
    budget_id: UUID
    delta: Decimal


@dataclass(frozen=True)
class BalanceGuard:
    """Every resulting balance must stay at or above `floor`."""
    floor: Decimal = Decimal("0")

    def allows(self, after: Decimal) -> bool:
        return after >= self.floor


@dataclass
class LedgerMutation:
    """One unit of ledger work."""
    user_id: UUID
    operation: str
    deltas: list[BudgetDelta]
    journal: JournalFactory
    guard: BalanceGuard = field(default_factory=BalanceGuard)
    transaction: Optional[Transaction] = None
    new_budgets: list[Budget] = field(default_factory=list)
    reconcile_date: Optional[date] = None


@dataclass(frozen=True)
class MutationOutcome:
    """What a committed mutation wrote."""
    mode: ConsistencyMode
    affected: list[AffectedBudget]
    journal_entry: JournalEntry
    transaction: Optional[Transaction] = None
    budgets: list[Budget] = field(default_factory=list)
    day: Optional[Day] = None
    corrections: list[JournalEntry] = field(default_factory=list)


# =============================================================================
# COMPENSATION SAGA
# =============================================================================

@dataclass(frozen=True)
class SagaStep:
    name: str
    undo: Callable[[], Awaitable[Any]]


class CompensationSaga:
    """
    Ordered record of applied steps, each with its undo.

    `compensate` runs the undo steps newest-first. A failing undo is logged
    and the remaining steps still run.
    """

    def __init__(self, audit_logger: AuditLogger):
        self._steps: list[SagaStep] = []
        self._audit = audit_logger

    def record(self, name: str, undo: Callable[[], Awaitable[Any]]) -> None:
        self._steps.append(SagaStep(name=name, undo=undo))

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    async def compensate(self) -> list[str]:
        """Undo everything recorded. Returns the names of steps that failed."""
        failed = []
        for step in reversed(self._steps):
            try:
                await step.undo()
                self._audit.log_compensation(step.name, succeeded=True)
            except (StorageError, LedgerError) as e:
                self._audit.log_compensation(step.name, succeeded=False, error=str(e))
                failed.append(step.name)
        self._steps.clear()
        return failed


# =============================================================================
# MUTATOR
# =============================================================================

class LedgerMutator:
    """
    Applies ledger mutations under one fixed consistency mode.

    The mode is decided once at startup and injected here; it is never
    looked up per request.
    """

    def __init__(
        self,
        store: LedgerStore,
        mode: ConsistencyMode,
        day_reconciler: DayReconciler,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._mode = mode
        self._days = day_reconciler
        self._audit = audit_logger or AuditLogger()

    @property
    def mode(self) -> ConsistencyMode:
        return self._mode

    async def apply(self, mutation: LedgerMutation) -> MutationOutcome:
        """
        Apply a mutation all-or-nothing.

        Raises:
            BudgetNotFoundError: A budget in the set is missing or not the user's
            NegativeBalanceRejectedError: The guard refused a resulting balance
            ConcurrencyConflictError: Fallback mode lost a race (retry-safe)
            DayLockedError: The target day was locked while the mutation ran
            LedgerCommitError: The store failed; nothing was applied
        """
        try:
            if self._mode.is_fallback:
                outcome = await self._apply_fallback(mutation)
            else:
                outcome = await self._apply_transactional(mutation)
        except LedgerError as e:
            if e.kind in (ErrorKind.VALIDATION, ErrorKind.NOT_FOUND):
                self._audit.log_rejection(
                    mutation.operation, mutation.user_id, e.message, e.details
                )
            raise

        self._audit.log_journal_entry(outcome.journal_entry)
        for correction in outcome.corrections:
            self._audit.log_journal_entry(correction)
        return outcome

    async def _check(self, mutation: LedgerMutation, session=None) -> list[AffectedBudget]:
        """Load every budget in the set and run the guard on its new balance."""
        affected = []
        for change in mutation.deltas:
            budget = await self._store.get_budget(change.budget_id, session=session)
            if budget is None or budget.user_id != mutation.user_id:
                raise BudgetNotFoundError(change.budget_id)
            before = budget.current_amount
            after = to_money(before + change.delta)
            if not mutation.guard.allows(after):
                raise NegativeBalanceRejectedError(budget.id, before, after)
            affected.append(AffectedBudget(budget_id=budget.id, before=before, after=after))
        return affected

    # -------------------------------------------------------------------------
    # Transactional mode
    # -------------------------------------------------------------------------

    async def _apply_transactional(self, mutation: LedgerMutation) -> MutationOutcome:
        store = self._store

        async def unit(session) -> MutationOutcome:
            if mutation.reconcile_date is not None:
                await self._days.ensure_unlocked(
                    mutation.user_id, mutation.reconcile_date, session=session
                )

            for budget in mutation.new_budgets:
                await store.insert_budget(budget, session=session)

            affected = await self._check(mutation, session=session)
            for change in affected:
                await store.set_current_amount(change.budget_id, change.after, session=session)

            if mutation.transaction is not None:
                await store.insert_transaction(mutation.transaction, session=session)

            entry = mutation.journal(affected=affected, fallback=False)
            await store.append_journal_entry(entry, session=session)

            day, correction = None, None
            if mutation.reconcile_date is not None:
                day, correction = await self._days.refresh(
                    mutation.user_id, mutation.reconcile_date, session=session
                )

            return MutationOutcome(
                mode=self._mode,
                affected=affected,
                journal_entry=entry,
                transaction=mutation.transaction,
                budgets=list(mutation.new_budgets),
                day=day,
                corrections=[correction] if correction else [],
            )

        try:
            return await store.run_in_transaction(unit)
        except StorageError as e:
            self._audit.log_error(type(e).__name__, str(e), {"operation": mutation.operation})
            raise LedgerCommitError(
                f"Failed to commit {mutation.operation}: {e}",
                {"operation": mutation.operation},
            ) from e

    # -------------------------------------------------------------------------
    # Fallback mode
    # -------------------------------------------------------------------------

    async def _apply_fallback(self, mutation: LedgerMutation) -> MutationOutcome:
        store = self._store
        saga = CompensationSaga(self._audit)

        try:
            for budget in mutation.new_budgets:
                await store.insert_budget(budget)
                saga.record(f"delete_budget:{budget.id}", partial(store.delete_budget, budget.id))

            # Snapshot guard: a plain rejection must leave no trace at all.
            await self._check(mutation)

            affected = []
            for change in mutation.deltas:
                updated = await store.adjust_current_amount_if(
                    change.budget_id, change.delta, floor=mutation.guard.floor
                )
                if updated is None:
                    self._audit.log_conflict(
                        mutation.operation, mutation.user_id, change.budget_id
                    )
                    raise ConcurrencyConflictError(
                        f"Budget {change.budget_id} changed concurrently; retry the operation",
                        {"budget_id": str(change.budget_id), "operation": mutation.operation},
                    )
                saga.record(
                    f"restore_budget:{change.budget_id}",
                    partial(store.adjust_current_amount, change.budget_id, -change.delta),
                )
                affected.append(AffectedBudget(
                    budget_id=change.budget_id,
                    before=updated.current_amount - change.delta,
                    after=updated.current_amount,
                ))

            if mutation.reconcile_date is not None:
                await self._days.ensure_unlocked(mutation.user_id, mutation.reconcile_date)

            if mutation.transaction is not None:
                await store.insert_transaction(mutation.transaction)
                saga.record(
                    f"remove_transaction:{mutation.transaction.id}",
                    partial(store.remove_transaction, mutation.transaction.id),
                )

            entry = mutation.journal(affected=affected, fallback=True)
            await store.append_journal_entry(entry)

        except (LedgerError, StorageError) as error:
            failed = await saga.compensate()
            if failed:
                raise LedgerCommitError(
                    f"{mutation.operation} failed and could not be fully compensated",
                    {"operation": mutation.operation, "failed_steps": failed},
                ) from error
            if isinstance(error, StorageError):
                raise LedgerCommitError(
                    f"Failed to apply {mutation.operation}: {error}",
                    {"operation": mutation.operation},
                ) from error
            raise

        day = None
        if mutation.reconcile_date is not None:
            try:
                day = await self._days.reconcile(mutation.user_id, mutation.reconcile_date)
            except (LedgerError, StorageError) as e:
                self._audit.log_day_reconcile_failed(
                    mutation.user_id, mutation.reconcile_date, str(e)
                )

        return MutationOutcome(
            mode=self._mode,
            affected=affected,
            journal_entry=entry,
            transaction=mutation.transaction,
            budgets=list(mutation.new_budgets),
            day=day,
        )
