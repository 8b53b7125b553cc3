"""
Startup check.

    python -m pocketledger

Validates configuration, connects the configured store, probes its
transaction support and reports the consistency mode. Exits non-zero when
the process would refuse to serve (bad settings, unreachable store, or
production without transactions).
"""

import asyncio
import logging
import sys

import structlog

from pocketledger.audit import configure_logging
from pocketledger.config import get_settings, validate_all_settings
from pocketledger.ledger import TransactionCapabilityError
from pocketledger.orchestrator import create_ledger_service
from pocketledger.services.storage import StorageError


async def main() -> int:
    settings = get_settings()
    configure_logging(logging.DEBUG if settings.app.debug_mode else logging.INFO)
    logger = structlog.get_logger("pocketledger")

    results = validate_all_settings()
    failed = {k: v for k, v in results.items() if k.endswith("_error")}
    if failed:
        logger.error("settings_invalid", **failed)
        return 2

    try:
        service = await create_ledger_service(settings)
    except TransactionCapabilityError as e:
        logger.error("startup_refused", message=e.message, **e.details)
        return 1
    except StorageError as e:
        logger.error("store_unavailable", error=str(e))
        return 1

    logger.info(
        "ledger_ready",
        backend=settings.ledger.storage_backend,
        mode=service.mode.value,
        environment=settings.app.app_environment,
    )
    await service.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
