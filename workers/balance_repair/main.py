"""Asynchronous worker applying outstanding chama balance increments."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from chama.core.config import get_settings
from chama.db.session import SessionLocal
from chama.obs import BALANCE_REPAIR_COUNTER, PENDING_PURGE_COUNTER
from chama.services.balance_repair import BalanceRepairService, RepairReport
from chama.workers.observability import configure_worker, current_traceparent, worker_span

LOGGER = logging.getLogger(__name__)


async def run_once(service: BalanceRepairService) -> RepairReport:
    """Execute a single repair cycle."""

    with worker_span("balance_repair.cycle"):
        report = service.run_cycle(now=datetime.now(tz=UTC))
        if report.repaired_contributions:
            BALANCE_REPAIR_COUNTER.inc(report.repaired_contributions)
        if report.purged_pending_requests:
            PENDING_PURGE_COUNTER.inc(report.purged_pending_requests)
        LOGGER.info(
            "balance repair cycle complete",
            extra={
                "repaired_contributions": report.repaired_contributions,
                "purged_pending_requests": report.purged_pending_requests,
                "traceparent": current_traceparent(),
            },
        )
    return report


async def run() -> None:
    """Continuously run repair cycles at the configured cadence."""

    settings = get_settings()
    configure_worker("balance-repair-worker")
    interval = max(30, settings.balance_repair_interval_seconds)
    LOGGER.info("starting balance repair worker", extra={"interval_seconds": interval})
    while True:
        with SessionLocal() as session:
            await run_once(BalanceRepairService(session, settings=settings))
        await asyncio.sleep(interval)


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown
        LOGGER.info("balance repair worker stopped")


if __name__ == "__main__":
    main()
