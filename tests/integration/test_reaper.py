"""
Integration tests for the lease reaper.
"""

from datetime import datetime, timedelta

from jobqueue.constants import LEASE_EXPIRED_ERROR, JobStatus
from jobqueue.queue import JobQueue
from jobqueue.reaper import Reaper


class TestReaper:
    """Tests for the maintenance loop."""

    async def test_run_once_recovers_expired_leases(self, queue: JobQueue, now: datetime):
        """Expired leases go back to the queue; live ones are untouched."""
        abandoned_id = await queue.schedule("echo", b"", now=now - timedelta(seconds=1))
        live_id = await queue.schedule("echo", b"", now=now)
        await queue.claim(["echo"], timedelta(seconds=5), now=now)
        await queue.claim(["echo"], timedelta(minutes=5), now=now)

        reaper = Reaper(queue, interval_seconds=1)
        result = await reaper.run_once(now=now + timedelta(seconds=10))

        assert result.requeued == [abandoned_id]
        assert result.dead_lettered == []

        recovered = await queue.get(abandoned_id)
        assert recovered.status == JobStatus.PENDING
        assert recovered.lease_owner is None
        assert (await queue.get(live_id)).status == JobStatus.RUNNING

        # New worker can claim it
        handle = await queue.claim(["echo"], now=now + timedelta(seconds=10))
        assert handle.id == abandoned_id
        assert handle.attempts == 2

    async def test_run_once_dead_letters_abandoned_last_attempt(
        self, queue: JobQueue, now: datetime
    ):
        job_id = await queue.schedule("echo", b"", max_retries=0, now=now)
        await queue.claim(["echo"], timedelta(seconds=5), now=now)

        result = await Reaper(queue, interval_seconds=1).run_once(now=now + timedelta(minutes=1))

        assert result.dead_lettered == [job_id]
        job = await queue.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.last_error == LEASE_EXPIRED_ERROR

    async def test_run_once_purges_with_retention(self, queue: JobQueue, now: datetime):
        job_id = await queue.schedule("echo", b"", now=now)
        await queue.claim(["echo"], now=now)
        await queue.complete(job_id, attempt=1, now=now)

        reaper = Reaper(queue, interval_seconds=1, retention=timedelta(days=1))
        await reaper.run_once(now=now + timedelta(hours=1))
        assert (await queue.stats())["done"] == 1

        await reaper.run_once(now=now + timedelta(days=2))
        assert (await queue.stats())["done"] == 0

    async def test_stop(self, queue: JobQueue):
        reaper = Reaper(queue, interval_seconds=1)
        await reaper.stop()
        assert reaper._running is False
