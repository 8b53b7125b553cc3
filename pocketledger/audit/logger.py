"""
Audit Logger

DESIGN DECISION: Every ledger outcome is logged as one structured event.
This provides:
1. An operator's view of what the ledger did and why
2. Visibility into rejections, conflicts and compensations, which leave
   no journal entry behind
3. A record of the consistency mode the process started in

The durable forensic record is the JournalEntry, written inside the same
unit of work as the balance change. This logger never replaces it and never
raises: a logging failure must not break a ledger operation.
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from pocketledger.models.journal import JournalEntry


def configure_logging(level: Optional[int] = None) -> None:
    """
    Configure structlog for local JSON logging.

    Events go through the standard library logger, so `level` (when given)
    sets the root logger threshold.
    """
    if level is not None:
        logging.basicConfig(format="%(message)s", level=level, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central structured logging for the ledger.

    One method per kind of outcome, so event names stay consistent.
    """

    def __init__(self, logger_name: str = "pocketledger.ledger"):
        self._logger = structlog.get_logger(logger_name)

    def log_journal_entry(self, entry: JournalEntry) -> None:
        """Mirror a committed journal entry to the local log."""
        self._logger.info("journal_entry_written", **entry.to_log_dict())

    def log_rejection(
        self,
        operation: str,
        user_id: UUID,
        reason: str,
        details: Optional[dict] = None,
    ) -> None:
        """A request refused for a client-fixable reason."""
        fields = {
            **(details or {}),
            "operation": operation,
            "user_id": str(user_id),
            "reason": reason,
        }
        self._logger.warning("ledger_rejected", **fields)

    def log_conflict(
        self,
        operation: str,
        user_id: UUID,
        budget_id: UUID,
    ) -> None:
        """A conditional update lost a race (fallback mode)."""
        self._logger.warning(
            "ledger_concurrency_conflict",
            operation=operation,
            user_id=str(user_id),
            budget_id=str(budget_id),
        )

    def log_compensation(
        self,
        step: str,
        succeeded: bool,
        error: Optional[str] = None,
    ) -> None:
        """One undo step of a compensation saga."""
        if succeeded:
            self._logger.info("compensation_step_applied", step=step)
        else:
            self._logger.error("compensation_step_failed", step=step, error=error)

    def log_day_reconcile_failed(
        self,
        user_id: UUID,
        on_date: date,
        error: str,
    ) -> None:
        self._logger.error(
            "day_reconcile_failed",
            user_id=str(user_id),
            date=on_date.isoformat(),
            error=error,
        )

    def log_capability(
        self,
        mode: str,
        environment: str,
        reason: Optional[str] = None,
    ) -> None:
        """The consistency mode chosen at startup."""
        self._logger.info(
            "transaction_capability_detected",
            mode=mode,
            environment=environment,
            reason=reason,
        )

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        fields = {
            **(details or {}),
            "error_type": error_type,
            "error_message": error_message,
        }
        self._logger.error("ledger_error", **fields)
