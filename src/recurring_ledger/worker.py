"""Process entry point wiring the generation jobs into the scheduler."""

import asyncio
import signal
import sys

import structlog

from recurring_ledger.config import get_settings
from recurring_ledger.jobs import BudgetGenerationJob, TransactionGenerationJob
from recurring_ledger.scheduler import JobScheduler
from recurring_ledger.sources import (
    APIBudgetStore,
    APIBudgetTemplateSource,
    APITransactionStore,
    APITransactionTemplateSource,
    LedgerAPIClient,
)

logger = structlog.get_logger(__name__)


def build_scheduler(client: LedgerAPIClient) -> JobScheduler:
    """Register the budget and transaction jobs against the ledger API."""
    scheduler = JobScheduler()
    scheduler.register(
        BudgetGenerationJob(APIBudgetTemplateSource(client), APIBudgetStore(client))
    )
    scheduler.register(
        TransactionGenerationJob(
            APITransactionTemplateSource(client), APITransactionStore(client)
        )
    )
    return scheduler


async def serve(scheduler: JobScheduler) -> bool:
    """Run the scheduler until SIGINT/SIGTERM, then shut it down."""
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows event loops cannot install signal handlers
            pass

    scheduler.start(shutdown)
    logger.info("worker_started", status=scheduler.get_status())
    await scheduler.wait_stopped()
    stopped = await scheduler.stop(get_settings().scheduler_shutdown_timeout_seconds)
    logger.info("worker_stopped", clean=stopped)
    return stopped


async def main() -> None:
    """Main entry point for the recurring ledger worker.

    Usage:
        # Run on the configured daily schedules until interrupted
        python -m recurring_ledger.worker

        # Run every job once and exit
        python -m recurring_ledger.worker --once
    """
    import argparse

    from recurring_ledger.config import configure_logging

    configure_logging()

    parser = argparse.ArgumentParser(
        description="Generate recurring budgets and transactions from templates",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run every job immediately, one time, then exit",
    )
    parser.add_argument(
        "--api-url",
        type=str,
        default=None,
        help="Ledger API base URL (default: LEDGER_API_URL)",
    )
    args = parser.parse_args()

    try:
        async with LedgerAPIClient(base_url=args.api_url) as client:
            scheduler = build_scheduler(client)
            if args.once:
                for job in scheduler.jobs:
                    await scheduler.run_now(job.name)
                logger.info("single_run_completed", status=scheduler.get_status())
            elif not await serve(scheduler):
                sys.exit(1)
    except Exception as e:
        logger.exception("worker_error", error=str(e))
        sys.exit(1)


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
