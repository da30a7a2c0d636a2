"""
Lease reaper for abandoned jobs.

Claims already treat expired leases as eligible work, so the reaper is not
needed for correctness. It makes recovery explicit, dead-letters jobs whose
final attempt was abandoned, applies the retention purge, and keeps the
queue depth gauges fresh.
"""

import asyncio
import os
import signal
from datetime import datetime, timedelta

from prometheus_client import start_http_server

from jobqueue.config import get_settings
from jobqueue.db import close_db, init_db
from jobqueue.observability.logging import (
    bind_process_context,
    clear_process_context,
    get_logger,
    setup_logging,
)
from jobqueue.observability.tracing import setup_tracing
from jobqueue.queue import JobQueue
from jobqueue.types.job import SweepResult

logger = get_logger(__name__)


class Reaper:
    """
    Periodic maintenance loop over one queue.

    Runs periodically to:
    1. Return abandoned running jobs to PENDING, or FAILED when out of attempts
    2. Purge finished jobs past the retention window, if configured
    3. Refresh queue depth metrics
    """

    def __init__(
        self,
        queue: JobQueue,
        interval_seconds: int | None = None,
        retention: timedelta | None = None,
        reaper_id: str | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            queue: The queue to maintain.
            interval_seconds: Seconds between reaper runs.
            retention: Age after which finished jobs are purged.
            reaper_id: Identifier for logs. Defaults to hostname + PID.
        """
        settings = get_settings()
        self.queue = queue
        self.interval = interval_seconds or settings.reaper_interval_seconds
        if retention is None and settings.purge_retention_seconds is not None:
            retention = timedelta(seconds=settings.purge_retention_seconds)
        self.retention = retention
        self.reaper_id = reaper_id or f"reaper-{os.uname().nodename}-{os.getpid()}"
        self._running = False

    async def start(self) -> None:
        """Start the reaper loop."""
        bind_process_context(self.reaper_id, queue=self.queue.name)
        logger.info("Reaper starting", interval_seconds=self.interval)
        self._running = True

        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error in reaper loop")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")
        clear_process_context()

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self, now: datetime | None = None) -> SweepResult:
        """
        Run one maintenance pass (for testing or cron-style execution).

        Args:
            now: Current time, defaults to the wall clock.

        Returns:
            The sweep outcome.
        """
        result = await self.queue.requeue_abandoned(now=now)
        if result.total:
            logger.info(
                "Sweep resolved abandoned jobs",
                requeued=len(result.requeued),
                dead_lettered=len(result.dead_lettered),
            )

        if self.retention is not None:
            purged = await self.queue.purge(older_than=self.retention, now=now)
            if purged:
                logger.info("Purged finished jobs", count=purged)

        await self.queue.stats()
        return result


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging()
    setup_tracing()
    await init_db()

    settings = get_settings()
    start_http_server(settings.prometheus_port)

    queue = JobQueue()
    await queue.ensure_indexes()
    reaper = Reaper(queue)

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
