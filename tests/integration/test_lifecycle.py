"""
Integration tests for the full job lifecycle through the queue facade.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from jobqueue.constants import JobStatus
from jobqueue.errors import LeaseLost
from jobqueue.queue import JobQueue


class TestJobLifecycle:
    """End-to-end scenarios across schedule, claim, heartbeat and resolution."""

    async def test_full_job_lifecycle_success(self, queue: JobQueue, now: datetime):
        """Test complete job lifecycle: schedule -> claim -> heartbeat -> complete."""
        job_id = await queue.schedule("echo", b"A", timedelta(0), now=now)

        handle = await queue.claim(["echo"], now=now)
        assert handle is not None
        assert handle.id == job_id
        assert handle.attempts == 1

        renewed = await queue.heartbeat(
            job_id, attempt=handle.attempts, now=now + timedelta(seconds=5)
        )
        assert renewed.status == JobStatus.RUNNING

        done = await queue.complete(
            job_id, attempt=handle.attempts, now=now + timedelta(seconds=6)
        )
        assert done.status == JobStatus.DONE

        assert await queue.claim(["echo"], now=now + timedelta(days=1)) is None

    async def test_retry_then_dead_letter(self, queue: JobQueue, now: datetime):
        """A job with max_retries=1 is retried once and then dead-lettered."""
        job_id = await queue.schedule("flaky", b"B", max_retries=1, now=now)

        first = await queue.claim(["flaky"], now=now)
        await queue.fail(job_id, "first failure", attempt=first.attempts, now=now)

        job = await queue.get(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1
        assert first.attempts == 1

        retry_at = job.scheduled_at
        second = await queue.claim(["flaky"], now=retry_at)
        assert second is not None
        assert second.attempts == 2

        await queue.fail(job_id, "second failure", attempt=second.attempts, now=retry_at)

        job = await queue.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.last_error == "second failure"

    @pytest.mark.parametrize("max_retries", [0, 1, 3])
    async def test_retry_exhaustion(self, queue: JobQueue, now: datetime, max_retries: int):
        """k retries allow k + 1 attempts; afterwards the job is never claimable."""
        job_id = await queue.schedule("flaky", b"", max_retries=max_retries, now=now)
        clock = now

        for expected_attempt in range(1, max_retries + 2):
            handle = await queue.claim(["flaky"], now=clock)
            assert handle is not None
            assert handle.attempts == expected_attempt
            job = await queue.fail(
                handle.id, f"failure {expected_attempt}", attempt=handle.attempts, now=clock
            )
            clock = max(clock, job.scheduled_at)

        job = await queue.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == max_retries + 1
        assert await queue.claim(["flaky"], now=clock + timedelta(days=365)) is None
        sweep = await queue.requeue_abandoned(now=clock + timedelta(days=365))
        assert sweep.total == 0
        assert (await queue.get(job_id)).status == JobStatus.FAILED

    async def test_crashed_worker_lease_reclaimed(self, queue: JobQueue, now: datetime):
        """A job abandoned without heartbeats is reclaimed by another worker."""
        job_id = await queue.schedule("echo", b"C", now=now)

        crashed = await queue.claim(
            ["echo"], timedelta(seconds=1), worker_id="crashed-worker", now=now
        )
        assert crashed.attempts == 1

        rescued = await queue.claim(
            ["echo"],
            timedelta(seconds=30),
            worker_id="new-worker",
            now=now + timedelta(seconds=2),
        )
        assert rescued is not None
        assert rescued.id == job_id
        assert rescued.attempts == 2
        assert rescued.job.lease_owner == "new-worker"

        with pytest.raises(LeaseLost):
            await crashed.heartbeat()

    async def test_concurrent_workers_no_duplicate_claim(self, queue: JobQueue, now: datetime):
        """Test that multiple workers don't claim the same job."""
        job_id = await queue.schedule("echo", b"", now=now)

        results = await asyncio.gather(
            *(queue.claim(["echo"], worker_id=f"worker-{i}", now=now) for i in range(25))
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].id == job_id

    async def test_concurrent_workers_drain_queue_once(self, queue: JobQueue, now: datetime):
        """Every job is handed out exactly once across a pool of workers."""
        job_ids = {await queue.schedule("echo", str(i).encode(), now=now) for i in range(20)}
        claimed: list[str] = []

        async def worker(name: str) -> None:
            while True:
                handle = await queue.claim(["echo"], worker_id=name, now=now)
                if handle is None:
                    return
                claimed.append(handle.id)
                await handle.complete()

        await asyncio.gather(*(worker(f"worker-{i}") for i in range(5)))

        assert sorted(claimed) == sorted(job_ids)
        assert (await queue.stats())["done"] == 20
