"""
Core Data Models for Pocket Ledger

These models define the strict schemas for everything the ledger stores:
1. Budget - the only contended, mutable balance holder
2. Transaction - append-only record of an expense or gain
3. Day - materialized per-day rollup (a cache, never authoritative)

DESIGN DECISION: Amounts are Decimal, quantized to cents on the way in.
Float drift would make the "never negative" invariant unreliable at the
boundary (an expense of exactly `current_amount` must land on exactly 0).
"""

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BeforeValidator,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Quantize an amount to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def utc_now() -> dt.datetime:
    """Timezone-aware current UTC time."""
    return dt.datetime.now(dt.timezone.utc)


def utc_today() -> dt.date:
    """Current UTC calendar date."""
    return utc_now().date()


def _quantize_input(value):
    # Runs before the gt/ge constraints so they see the stored value.
    if isinstance(value, bool) or value is None:
        return value
    try:
        return to_money(Decimal(str(value)))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


Money = Annotated[Decimal, BeforeValidator(_quantize_input)]


# =============================================================================
# ENUMS
# =============================================================================

class BudgetFrequency(str, Enum):
    """
    Budget period.

    The hierarchy is monthly -> weekly -> daily. A cascade only ever reaches
    the immediate parent.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class BudgetOrigin(str, Enum):
    """How a budget came to exist."""
    MANUAL = "manual"      # created directly by the user
    DERIVED = "derived"    # allocated out of a parent budget


class TransactionType(str, Enum):
    """Ledger transaction kind."""
    EXPENSE = "expense"
    GAIN = "gain"


# =============================================================================
# BUDGET
# =============================================================================

class Budget(BaseModel):
    """
    A budget in the monthly -> weekly -> daily hierarchy.

    `current_amount` is the single source of truth for "remaining".
    `initial_amount` is the baseline set at creation and never changes for a
    primary budget. `amount` is the nominal, user-facing value.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    frequency: BudgetFrequency
    is_primary: bool = False

    amount: Money = Field(..., gt=0, description="Nominal/display amount")
    initial_amount: Money = Field(..., ge=0, description="Baseline at creation")
    current_amount: Money = Field(..., ge=0, description="Running balance")

    origin: BudgetOrigin = BudgetOrigin.MANUAL
    client_id: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Caller-supplied key making creation idempotent"
    )
    created_at: dt.datetime = Field(default_factory=utc_now)

    @model_validator(mode="before")
    @classmethod
    def default_baselines(cls, data):
        """A budget starts with initial = current = amount unless told otherwise."""
        if isinstance(data, dict) and data.get("amount") is not None:
            if data.get("initial_amount") is None:
                data = {**data, "initial_amount": data["amount"]}
            if data.get("current_amount") is None:
                data = {**data, "current_amount": data["amount"]}
        return data

    @model_validator(mode="after")
    def primary_is_monthly(self) -> "Budget":
        if self.is_primary and self.frequency != BudgetFrequency.MONTHLY:
            raise ValueError("Primary budget must be monthly")
        return self

    @property
    def remaining(self) -> Decimal:
        """Remaining amount, floored at zero."""
        return max(Decimal("0.00"), self.current_amount)


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(BaseModel):
    """
    A recorded expense or gain.

    Append-only: once persisted it is never edited.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    budget_id: Optional[UUID] = None
    type: TransactionType
    amount: Money = Field(..., gt=0)
    comment: str = Field(default="", max_length=500)
    date: dt.date
    time: str = Field(
        default_factory=lambda: utc_now().strftime("%H:%M"),
        pattern=r"^\d{2}:\d{2}$",
    )
    created_at: dt.datetime = Field(default_factory=utc_now)


# =============================================================================
# DAY ROLLUP
# =============================================================================

class DayRollup(BaseModel):
    """What callers see for a given day."""

    date: dt.date
    initial_pocket: Decimal
    budgets_available: Decimal
    gains: Decimal
    expenses: Decimal
    final_pocket: Decimal
    locked: bool


class Day(BaseModel):
    """
    Per-(user, date) rollup.

    Derived state: transaction history is authoritative and this record is a
    cache of its sums. `initial_pocket` is a snapshot of the previous day's
    `final_pocket`, fixed when the day is first created.
    """
    model_config = ConfigDict(validate_assignment=True)

    user_id: UUID
    date: dt.date
    initial_pocket: Money = Decimal("0.00")
    budgets_available: Money = Field(default=Decimal("0.00"), ge=0)
    gains: Money = Field(default=Decimal("0.00"), ge=0)
    expenses: Money = Field(default=Decimal("0.00"), ge=0)
    final_pocket: Money = Decimal("0.00")
    locked: bool = False
    created_at: dt.datetime = Field(default_factory=utc_now)
    updated_at: dt.datetime = Field(default_factory=utc_now)

    def with_totals(
        self,
        gains: Decimal,
        expenses: Decimal,
        budgets_available: Decimal,
    ) -> "Day":
        """Return a copy carrying new sums; `initial_pocket` is never touched."""
        return Day(
            user_id=self.user_id,
            date=self.date,
            initial_pocket=self.initial_pocket,
            budgets_available=budgets_available,
            gains=gains,
            expenses=expenses,
            final_pocket=self.initial_pocket + gains - expenses,
            locked=self.locked,
            created_at=self.created_at,
            updated_at=utc_now(),
        )

    @property
    def is_coherent(self) -> bool:
        return self.final_pocket == self.initial_pocket + self.gains - self.expenses

    def to_rollup(self) -> DayRollup:
        return DayRollup(
            date=self.date,
            initial_pocket=self.initial_pocket,
            budgets_available=self.budgets_available,
            gains=self.gains,
            expenses=self.expenses,
            final_pocket=self.final_pocket,
            locked=self.locked,
        )


# =============================================================================
# REQUESTS & RESULTS
# =============================================================================

class TransactionRequest(BaseModel):
    """
    Inbound transaction request, as pre-validated before the ledger sees it.

    Catches shape problems (missing fields, non-positive amounts, oversized
    comments) so the cascade engine only deals with ledger rules.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Money = Field(..., gt=0)
    comment: str = Field(..., min_length=1, max_length=500)
    budget_id: Optional[UUID] = None
    transaction_date: Optional[dt.date] = None

    @model_validator(mode="after")
    def expense_needs_budget(self) -> "TransactionRequest":
        if self.type == TransactionType.EXPENSE and self.budget_id is None:
            raise ValueError("budget_id is required for an expense")
        return self


class HierarchyValidation(BaseModel):
    """Outcome of a budget hierarchy check."""

    valid: bool
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "HierarchyValidation":
        return cls(valid=True)

    @classmethod
    def rejected(cls, message: str) -> "HierarchyValidation":
        return cls(valid=False, message=message)


class BudgetView(BaseModel):
    """Budget as listed to callers, with its remaining amount."""

    id: UUID
    name: str
    amount: Decimal
    frequency: BudgetFrequency
    is_primary: bool
    remaining: Decimal

    @classmethod
    def from_budget(cls, budget: Budget) -> "BudgetView":
        return cls(
            id=budget.id,
            name=budget.name,
            amount=budget.amount,
            frequency=budget.frequency,
            is_primary=budget.is_primary,
            remaining=budget.remaining,
        )
