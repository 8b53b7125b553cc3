"""
Budget Management

Creation, editing and derived allocation of budgets.

- A weekly (non-primary) budget is allocated out of the primary monthly
  budget: its amount is deducted from the primary's balance in the same
  unit of work that creates it.
- The default hierarchy (primary monthly + weekly + daily) is created in a
  single mutation, each child deducted from its parent.
- Creation is idempotent per `client_id`.
- Edits touch name and amount only. Frequency never changes, the primary
  amount never changes, and amounts are re-validated against the caps.
"""

from decimal import ROUND_FLOOR, Decimal
from functools import partial
from typing import Optional
from uuid import UUID

from pocketledger.audit import AuditLogger
from pocketledger.ledger.errors import (
    BudgetNotFoundError,
    HierarchyViolationError,
    ValidationError,
)
from pocketledger.ledger.mutation import (
    BudgetDelta,
    LedgerMutation,
    LedgerMutator,
)
from pocketledger.models.ledger import (
    CENT,
    Budget,
    BudgetFrequency,
    BudgetOrigin,
    BudgetView,
    to_money,
)
from pocketledger.models.journal import AffectedBudget, JournalEntryBuilder
from pocketledger.services.storage import LedgerStore
from pocketledger.validation import BudgetHierarchyValidator


DEFAULT_MONTHLY_NAME = "Main Salary"
DEFAULT_WEEKLY_NAME = "Weekly Allowance"
DEFAULT_DAILY_NAME = "Daily Allowance"


class BudgetManager:
    """Budget lifecycle on top of the validator and the mutator."""

    def __init__(
        self,
        store: LedgerStore,
        validator: BudgetHierarchyValidator,
        mutator: LedgerMutator,
        weekly_divisor: int = 4,
        daily_from_weekly_divisor: int = 7,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._validator = validator
        self._mutator = mutator
        self._weekly_divisor = weekly_divisor
        self._daily_divisor = daily_from_weekly_divisor
        self._audit = audit_logger or AuditLogger()

    async def _owned_budget(self, budget_id: UUID, user_id: Optional[UUID]) -> Budget:
        budget = await self._store.get_budget(budget_id)
        if budget is None or (user_id is not None and budget.user_id != user_id):
            raise BudgetNotFoundError(budget_id)
        return budget

    def _reject(self, operation: str, user_id: UUID, message: str) -> HierarchyViolationError:
        self._audit.log_rejection(operation, user_id, message)
        return HierarchyViolationError(message)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def create_budget(
        self,
        user_id: UUID,
        name: str,
        frequency: BudgetFrequency,
        amount: Decimal,
        is_primary: bool = False,
        client_id: Optional[str] = None,
    ) -> Budget:
        """
        Create a budget.

        Weekly non-primary budgets are allocated from the primary monthly
        budget and fail if there is none or it cannot cover the amount.

        Raises:
            HierarchyViolationError: Amount or primary rules violated
            NegativeBalanceRejectedError: Primary cannot fund a weekly budget
            ConcurrencyConflictError: Fallback allocation lost a race
        """
        if client_id:
            existing = await self._store.find_budget_by_client_id(user_id, client_id)
            if existing is not None:
                return existing

        validation = await self._validator.validate(
            user_id, frequency, amount, is_primary=is_primary
        )
        if not validation.valid:
            raise self._reject("create_budget", user_id, validation.message)

        allocate = not is_primary and frequency == BudgetFrequency.WEEKLY
        budget = Budget(
            user_id=user_id,
            name=name,
            frequency=frequency,
            is_primary=is_primary,
            amount=amount,
            origin=BudgetOrigin.DERIVED if allocate else BudgetOrigin.MANUAL,
            client_id=client_id,
        )

        if allocate:
            return await self._allocate_weekly(budget)

        return await self._store.insert_budget(budget)

    async def _allocate_weekly(self, weekly: Budget) -> Budget:
        primary = await self._store.find_primary_budget(weekly.user_id)
        if primary is None:
            message = "No primary monthly budget to allocate the weekly budget from"
            self._audit.log_rejection("allocate_weekly", weekly.user_id, message)
            raise ValidationError(message)

        await self._mutator.apply(LedgerMutation(
            user_id=weekly.user_id,
            operation="allocate_weekly",
            deltas=[BudgetDelta(budget_id=primary.id, delta=-weekly.amount)],
            journal=partial(
                JournalEntryBuilder.weekly_allocation,
                user_id=weekly.user_id,
                amount=weekly.amount,
                weekly_budget_id=weekly.id,
                weekly_name=weekly.name,
            ),
            new_budgets=[weekly],
        ))
        return weekly

    async def create_default_hierarchy(
        self,
        user_id: UUID,
        monthly_amount: Decimal,
    ) -> list[Budget]:
        """
        Create primary monthly, weekly (monthly / 4) and daily (weekly / 7,
        floored to a whole unit) budgets in one mutation.

        The weekly budget is deducted from the monthly one and the daily
        from the weekly one; a single `initial_budget_allocation` entry
        records all three.
        """
        monthly_amount = to_money(monthly_amount)
        if monthly_amount <= 0:
            raise self._reject("create_default_hierarchy", user_id, "Budget amount must be positive")
        if await self._store.find_primary_budget(user_id) is not None:
            raise self._reject(
                "create_default_hierarchy",
                user_id,
                "A primary budget already exists and cannot be recreated",
            )

        weekly_amount = (monthly_amount / self._weekly_divisor).quantize(CENT, rounding=ROUND_FLOOR)
        daily_amount = (weekly_amount / self._daily_divisor).quantize(Decimal("1"), rounding=ROUND_FLOOR)
        if daily_amount <= 0:
            raise self._reject(
                "create_default_hierarchy",
                user_id,
                "Monthly amount is too small to derive a daily budget",
            )

        monthly = Budget(
            user_id=user_id,
            name=DEFAULT_MONTHLY_NAME,
            frequency=BudgetFrequency.MONTHLY,
            is_primary=True,
            amount=monthly_amount,
        )
        weekly = Budget(
            user_id=user_id,
            name=DEFAULT_WEEKLY_NAME,
            frequency=BudgetFrequency.WEEKLY,
            amount=weekly_amount,
            origin=BudgetOrigin.DERIVED,
        )
        daily = Budget(
            user_id=user_id,
            name=DEFAULT_DAILY_NAME,
            frequency=BudgetFrequency.DAILY,
            amount=daily_amount,
            origin=BudgetOrigin.DERIVED,
        )

        def journal(affected, fallback):
            return JournalEntryBuilder.initial_allocation(
                user_id=user_id,
                affected=[
                    *affected,
                    AffectedBudget(budget_id=daily.id, before=daily_amount, after=daily_amount),
                ],
                fallback=fallback,
            )

        outcome = await self._mutator.apply(LedgerMutation(
            user_id=user_id,
            operation="create_default_hierarchy",
            deltas=[
                BudgetDelta(budget_id=monthly.id, delta=-weekly_amount),
                BudgetDelta(budget_id=weekly.id, delta=-daily_amount),
            ],
            journal=journal,
            new_budgets=[monthly, weekly, daily],
        ))

        balances = {a.budget_id: a.after for a in outcome.affected}
        return [
            b.model_copy(update={"current_amount": balances.get(b.id, b.current_amount)})
            for b in (monthly, weekly, daily)
        ]

    # -------------------------------------------------------------------------
    # Edit / delete
    # -------------------------------------------------------------------------

    async def update_budget(
        self,
        budget_id: UUID,
        user_id: Optional[UUID] = None,
        name: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> Budget:
        """
        Edit name and/or amount.

        Raises:
            BudgetNotFoundError
            HierarchyViolationError: Primary amount edit or cap violation
        """
        budget = await self._owned_budget(budget_id, user_id)

        if amount is not None:
            validation = await self._validator.validate_edit(
                budget.user_id, budget.frequency, amount, budget.is_primary
            )
            if not validation.valid:
                raise self._reject("update_budget", budget.user_id, validation.message)
            budget.amount = amount

        if name:
            budget.name = name

        return await self._store.update_budget(budget)

    async def delete_budget(self, budget_id: UUID, user_id: Optional[UUID] = None) -> bool:
        """Delete a budget; its transactions stay in the history."""
        budget = await self._owned_budget(budget_id, user_id)
        return await self._store.delete_budget(budget.id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_remaining(self, budget_id: UUID, user_id: Optional[UUID] = None) -> Decimal:
        """The budget's running balance, floored at zero."""
        budget = await self._owned_budget(budget_id, user_id)
        return budget.remaining

    async def list_budgets(self, user_id: UUID) -> list[BudgetView]:
        return [BudgetView.from_budget(b) for b in await self._store.list_budgets(user_id)]

    async def get_pocket_money(self, user_id: UUID) -> Decimal:
        """
        Pocket money is the weekly budget's balance, floored at zero.

        Without a weekly budget it falls back to a quarter of the primary
        monthly baseline, and to zero without either.
        """
        weekly = await self._store.find_budget_by_frequency(user_id, BudgetFrequency.WEEKLY)
        if weekly is not None:
            return weekly.remaining

        primary = await self._store.find_primary_budget(user_id)
        if primary is None:
            return Decimal("0.00")
        return max(Decimal("0.00"), to_money(primary.initial_amount / self._weekly_divisor))
