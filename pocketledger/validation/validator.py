"""
Budget Hierarchy Validation

DESIGN DECISION: The monthly -> weekly -> daily caps are checked against
the store on every budget creation and every amount edit:
- weekly <= primary monthly initial amount / 4
- daily  <= primary monthly initial amount / 28
- daily  <= weekly amount / 7
- at most one primary budget per user, and it must be monthly

Frequency is immutable after creation, so a frequency edit never needs
re-validation.

IMPORTANT: Validation NEVER silently fixes an amount.
It reports the cap that was exceeded and leaves the decision to the caller.
"""

import math
from decimal import Decimal
from uuid import UUID

from pocketledger.models.ledger import BudgetFrequency, HierarchyValidation, to_money
from pocketledger.services.storage import LedgerStore


class BudgetHierarchyValidator:
    """
    Validates a budget amount against the user's existing hierarchy.

    The primary budget's `initial_amount` is the baseline for every cap, so
    allocations and expenses drawn from it never loosen or tighten the caps.
    """

    def __init__(
        self,
        store: LedgerStore,
        weekly_divisor: int = 4,
        daily_from_monthly_divisor: int = 28,
        daily_from_weekly_divisor: int = 7,
    ):
        self._store = store
        self._weekly_divisor = weekly_divisor
        self._daily_from_monthly = daily_from_monthly_divisor
        self._daily_from_weekly = daily_from_weekly_divisor

    async def validate(
        self,
        user_id: UUID,
        frequency: BudgetFrequency,
        amount: Decimal,
        is_primary: bool = False,
        session=None,
    ) -> HierarchyValidation:
        """
        Check one (frequency, amount) pair for a user.

        Args:
            user_id: Owner of the hierarchy
            frequency: Frequency of the budget being created or edited
            amount: Proposed nominal amount
            is_primary: True when creating the primary budget

        Returns:
            HierarchyValidation with the first failing rule's message
        """
        if amount is None or to_money(amount) <= 0:
            return HierarchyValidation.rejected("Budget amount must be positive")
        amount = to_money(amount)

        primary = await self._store.find_primary_budget(user_id, session=session)

        if is_primary:
            if frequency != BudgetFrequency.MONTHLY:
                return HierarchyValidation.rejected("Primary budget must be monthly")
            if primary is not None:
                return HierarchyValidation.rejected(
                    "A primary budget already exists and cannot be recreated"
                )
            return HierarchyValidation.ok()

        if frequency == BudgetFrequency.WEEKLY and primary:
            max_weekly = primary.initial_amount / self._weekly_divisor
            if amount > max_weekly:
                return HierarchyValidation.rejected(
                    f"Weekly budget cannot exceed {math.floor(max_weekly)} "
                    f"(monthly / {self._weekly_divisor})"
                )

        if frequency == BudgetFrequency.DAILY:
            if primary:
                max_daily = primary.initial_amount / self._daily_from_monthly
                if amount > max_daily:
                    return HierarchyValidation.rejected(
                        f"Daily budget cannot exceed {math.floor(max_daily)} "
                        f"(monthly / {self._daily_from_monthly})"
                    )

            weekly = await self._store.find_budget_by_frequency(
                user_id, BudgetFrequency.WEEKLY, session=session
            )
            if weekly:
                max_from_weekly = weekly.amount / self._daily_from_weekly
                if amount > max_from_weekly:
                    return HierarchyValidation.rejected(
                        f"Daily budget cannot exceed {math.floor(max_from_weekly)} "
                        f"(weekly / {self._daily_from_weekly})"
                    )

        return HierarchyValidation.ok()

    async def validate_edit(
        self,
        user_id: UUID,
        frequency: BudgetFrequency,
        amount: Decimal,
        is_primary: bool,
    ) -> HierarchyValidation:
        """Amount edits: the primary amount is immutable, others re-check caps."""
        if is_primary:
            return HierarchyValidation.rejected("Primary budget amount cannot be changed")
        return await self.validate(user_id, frequency, amount)

