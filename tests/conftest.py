"""
Shared fixtures.

Ledger behaviour must be identical in both consistency modes, so the
`service` fixture is parametrized over them: every test that uses it runs
once against a transactional store and once against the conditional-update
fallback.

The service clock is pinned to LEDGER_DATE, so that month is the current
one and its availability self-heals.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pocketledger.ledger import ConsistencyMode
from pocketledger.models import BudgetFrequency
from pocketledger.orchestrator import LedgerService
from pocketledger.services.storage import MemoryLedgerStore


LEDGER_DATE = date(2026, 3, 10)


def build_service(mode: ConsistencyMode) -> LedgerService:
    store = MemoryLedgerStore(supports_transactions=not mode.is_fallback)
    return LedgerService(store, mode, today=lambda: LEDGER_DATE)


@pytest.fixture(
    params=[ConsistencyMode.TRANSACTIONAL, ConsistencyMode.FALLBACK],
    ids=lambda mode: mode.value,
)
def service(request) -> LedgerService:
    return build_service(request.param)


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
async def hierarchy(service, user_id):
    """
    Primary 400000, weekly 100000 (allocated from the primary) and a
    manual daily of 1500.
    """
    monthly = await service.create_budget(
        user_id, "Salary", BudgetFrequency.MONTHLY, Decimal("400000"), is_primary=True
    )
    weekly = await service.create_budget(
        user_id, "Week", BudgetFrequency.WEEKLY, Decimal("100000")
    )
    daily = await service.create_budget(
        user_id, "Today", BudgetFrequency.DAILY, Decimal("1500")
    )
    return monthly, weekly, daily
