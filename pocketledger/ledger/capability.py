"""
Transaction-Capability Detector

Probes the store once at startup (and again on reconnect) for atomic
multi-document transactions. The answer is cached and handed to the ledger
as a plain value; nothing re-checks it per request.

The probe must read something inside the transaction: an empty MongoDB
transaction commits client-side without ever reaching the server, so it
would report success even on a standalone.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

from pocketledger.audit import AuditLogger
from pocketledger.ledger.errors import TransactionCapabilityError
from pocketledger.services.storage import (
    LedgerStore,
    StorageError,
    TransactionsUnsupportedError,
)


# Nobody owns this id; the probe read always comes back empty.
PROBE_USER_ID = UUID(int=0)


class ConsistencyMode(str, Enum):
    """How ledger mutations are made atomic."""
    TRANSACTIONAL = "transactional"   # one multi-document transaction
    FALLBACK = "fallback"             # conditional updates + compensation

    @property
    def is_fallback(self) -> bool:
        return self is ConsistencyMode.FALLBACK


class TransactionCapabilityDetector:
    """
    Decides the consistency mode for the lifetime of the process.

    Args:
        store: The connected ledger store
        is_production: Whether this deployment is production
        allow_weak_consistency: Explicit permission to run in fallback mode
            in production
        environment: Environment name, for the log
    """

    def __init__(
        self,
        store: LedgerStore,
        is_production: bool = False,
        allow_weak_consistency: bool = False,
        environment: str = "development",
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._is_production = is_production
        self._allow_weak = allow_weak_consistency
        self._environment = environment
        self._audit = audit_logger or AuditLogger()
        self._mode: Optional[ConsistencyMode] = None
        self._reason: Optional[str] = None

    @property
    def mode(self) -> ConsistencyMode:
        if self._mode is None:
            raise RuntimeError("Transaction capability has not been detected yet")
        return self._mode

    @property
    def reason(self) -> Optional[str]:
        """Why the store was judged non-transactional, if it was."""
        return self._reason

    async def detect(self) -> ConsistencyMode:
        """Probe once; later calls return the cached mode."""
        if self._mode is None:
            await self._probe()
        return self._mode

    async def refresh(self) -> ConsistencyMode:
        """Forget the cached mode and probe again (after a reconnect)."""
        self._mode = None
        self._reason = None
        return await self.detect()

    async def _probe(self) -> None:
        async def read_something(session) -> None:
            await self._store.list_budgets(PROBE_USER_ID, session=session)

        try:
            await self._store.run_in_transaction(read_something)
            mode, reason = ConsistencyMode.TRANSACTIONAL, None
        except TransactionsUnsupportedError as e:
            mode, reason = ConsistencyMode.FALLBACK, str(e)
        except StorageError as e:
            mode, reason = ConsistencyMode.FALLBACK, f"probe failed: {e}"

        self._audit.log_capability(mode.value, self._environment, reason)

        if mode.is_fallback and self._is_production and not self._allow_weak:
            raise TransactionCapabilityError(
                "Store does not support multi-document transactions; refusing to "
                "start in production without ALLOW_WEAK_CONSISTENCY=true",
                {"reason": reason, "environment": self._environment},
            )

        self._mode = mode
        self._reason = reason
