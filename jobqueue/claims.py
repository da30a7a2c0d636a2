"""
Claim protocol.

Atomic claim of the next eligible job plus the conditional heartbeat,
complete and fail transitions. Every transition that assumes the caller
holds a job carries that assumption in the filter of the same
``find_one_and_update`` that performs the write.
"""

import logging
from datetime import datetime, timedelta
from typing import NoReturn, Sequence

from pymongo import ASCENDING, DESCENDING

from jobqueue.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_QUEUE,
    LEASE_EXPIRED_ERROR,
    JobStatus,
)
from jobqueue.db.repository import JobRepository
from jobqueue.errors import JobNotFound, LeaseLost
from jobqueue.observability.metrics import get_metrics
from jobqueue.policy import (
    abandoned_filter,
    can_retry,
    compute_backoff,
    compute_lease_expiry,
    eligibility_filter,
)
from jobqueue.types.job import Job, SweepResult

logger = logging.getLogger(__name__)

# Highest priority first, then oldest scheduled_at
CLAIM_ORDER = [("priority", DESCENDING), ("scheduled_at", ASCENDING)]


class ClaimProtocol:
    """
    Lease-based ownership of jobs on top of single-document atomicity.

    ``attempts`` doubles as a fencing token: each claim increments it, so a
    caller that passes the ``attempts`` value it was handed at claim time can
    never act on a later claim of the same job by another worker.
    """

    def __init__(
        self,
        repository: JobRepository,
        queue: str = DEFAULT_QUEUE,
        backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS,
    ):
        self._repo = repository
        self.queue = queue
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._metrics = get_metrics()

    async def claim(
        self,
        now: datetime,
        lease_duration: timedelta,
        job_types: Sequence[str],
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Atomically take the next eligible job.

        Selection, the status change, the new lease and the attempt
        increment happen in one ``find_one_and_update``; two workers can
        never both receive the same job.

        Args:
            now: Current time.
            lease_duration: How long the lease is valid without a heartbeat.
            job_types: Job types the caller can handle.
            worker_id: Optional owner recorded for diagnostics.

        Returns:
            The claimed job, or None if nothing is eligible.
        """
        if not job_types:
            return None

        job = await self._repo.find_one_and_update(
            eligibility_filter(now, job_types, self.queue),
            {
                "$set": {
                    "status": JobStatus.RUNNING.value,
                    "lease_expires_at": compute_lease_expiry(now, lease_duration),
                    "lease_owner": worker_id,
                    "updated_at": now,
                },
                "$inc": {"attempts": 1},
            },
            sort=CLAIM_ORDER,
        )

        if job is not None:
            self._metrics.record_job_claimed(job.queue, job.job_type)
            logger.info(
                "Claimed job",
                extra={
                    "job_id": job.id,
                    "job_type": job.job_type,
                    "attempts": job.attempts,
                    "worker_id": worker_id,
                },
            )
        return job

    async def heartbeat(
        self,
        job_id: str,
        now: datetime,
        lease_duration: timedelta,
        attempt: int,
    ) -> Job:
        """
        Extend the lease on a running job.

        Only a live lease can be renewed: once it has expired the job may
        already be handed to another worker, so the caller must stop.

        Args:
            job_id: The job id.
            now: Current time.
            lease_duration: New lease length counted from ``now``.
            attempt: Fencing token from the claim.

        Returns:
            The job with its renewed lease.

        Raises:
            LeaseLost: If the lease expired or the job is no longer running
                under this claim.
            JobNotFound: If the job does not exist.
        """
        job = await self._repo.update_if(
            job_id,
            {**self._held(attempt), "lease_expires_at": {"$gt": now}},
            {
                "$set": {
                    "lease_expires_at": compute_lease_expiry(now, lease_duration),
                    "updated_at": now,
                }
            },
        )
        if job is None:
            await self._lease_lost(job_id, "heartbeat")

        logger.debug(
            "Extended lease",
            extra={"job_id": job_id, "lease_expires_at": job.lease_expires_at.isoformat()},
        )
        return job

    async def complete(
        self,
        job_id: str,
        now: datetime,
        attempt: int,
    ) -> Job:
        """
        Mark a running job as done.

        Raises:
            LeaseLost: If the job is no longer running under this claim,
                including a second ``complete`` on the same job.
            JobNotFound: If the job does not exist.
        """
        job = await self._repo.update_if(
            job_id,
            self._held(attempt),
            {
                "$set": {
                    "status": JobStatus.DONE.value,
                    "completed_at": now,
                    "updated_at": now,
                    "lease_expires_at": None,
                }
            },
        )
        if job is None:
            await self._lease_lost(job_id, "complete")

        self._metrics.record_job_outcome(job.queue, job.job_type, "done")
        logger.info("Job completed", extra={"job_id": job_id, "attempts": job.attempts})
        return job

    async def fail(
        self,
        job_id: str,
        error_message: str,
        now: datetime,
        attempt: int,
    ) -> Job:
        """
        Record a failed attempt and either schedule a retry or dead-letter.

        The retry decision compares ``attempts`` with ``max_retries``; both
        branches are expressed as filters, so the store picks the branch in
        the same atomic step that writes it.

        Args:
            job_id: The job id.
            error_message: Failure message kept as ``last_error``.
            now: Current time.
            attempt: Fencing token from the claim.

        Returns:
            The job in its new PENDING or FAILED state.

        Raises:
            LeaseLost: If the job is no longer running under this claim.
            JobNotFound: If the job does not exist.
        """
        held = self._held(attempt)
        backoff = compute_backoff(attempt, self.backoff_base_seconds, self.backoff_max_seconds)

        job = await self._repo.update_if(
            job_id,
            {**held, "max_retries": {"$gte": attempt}},
            {
                "$set": {
                    "status": JobStatus.PENDING.value,
                    "scheduled_at": now + backoff,
                    "last_error": error_message,
                    "lease_expires_at": None,
                    "lease_owner": None,
                    "updated_at": now,
                }
            },
        )
        if job is not None:
            self._metrics.record_job_outcome(job.queue, job.job_type, "retried")
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": job_id,
                    "attempts": job.attempts,
                    "retry_at": job.scheduled_at.isoformat(),
                    "error": error_message,
                },
            )
            return job

        job = await self._repo.update_if(
            job_id,
            {**held, "max_retries": {"$lt": attempt}},
            {
                "$set": {
                    "status": JobStatus.FAILED.value,
                    "last_error": error_message,
                    "completed_at": now,
                    "lease_expires_at": None,
                    "updated_at": now,
                }
            },
        )
        if job is None:
            await self._lease_lost(job_id, "fail")

        self._metrics.record_job_outcome(job.queue, job.job_type, "dead_lettered")
        logger.warning(
            f"Job dead-lettered after {job.attempts} attempts",
            extra={"job_id": job_id, "error": error_message},
        )
        return job

    async def requeue_abandoned(self, now: datetime, limit: int = 100) -> SweepResult:
        """
        Resolve running jobs whose lease expired.

        Claims already treat these jobs as eligible, so the sweep only makes
        the state explicit: jobs with attempts left go back to PENDING and
        jobs whose last allowed attempt was abandoned are dead-lettered.
        Each update is fenced on the observed ``attempts`` and lease expiry,
        so a job reclaimed or renewed since the scan is left alone.

        Args:
            now: Current time.
            limit: Maximum number of jobs examined in one pass.

        Returns:
            Ids of requeued and dead-lettered jobs.
        """
        result = SweepResult()
        candidates = await self._repo.find(
            abandoned_filter(now, self.queue),
            sort=[("lease_expires_at", ASCENDING)],
            limit=limit,
        )

        for candidate in candidates:
            expected = {
                "status": JobStatus.RUNNING.value,
                "attempts": candidate.attempts,
                "lease_expires_at": {"$lte": now},
            }
            if can_retry(candidate.attempts, candidate.max_retries):
                job = await self._repo.update_if(
                    candidate.id,
                    expected,
                    {
                        "$set": {
                            "status": JobStatus.PENDING.value,
                            "scheduled_at": now,
                            "lease_expires_at": None,
                            "lease_owner": None,
                            "updated_at": now,
                        }
                    },
                )
                if job is not None:
                    result.requeued.append(job.id)
            else:
                job = await self._repo.update_if(
                    candidate.id,
                    expected,
                    {
                        "$set": {
                            "status": JobStatus.FAILED.value,
                            "last_error": LEASE_EXPIRED_ERROR,
                            "completed_at": now,
                            "lease_expires_at": None,
                            "updated_at": now,
                        }
                    },
                )
                if job is not None:
                    result.dead_lettered.append(job.id)
                    self._metrics.record_job_outcome(job.queue, job.job_type, "dead_lettered")

        self._metrics.record_lease_recovered(self.queue, "requeued", len(result.requeued))
        self._metrics.record_lease_recovered(self.queue, "dead_lettered", len(result.dead_lettered))

        if result.total:
            logger.info(
                f"Recovered {result.total} abandoned jobs",
                extra={
                    "requeued": len(result.requeued),
                    "dead_lettered": len(result.dead_lettered),
                },
            )
        return result

    @staticmethod
    def _held(attempt: int) -> dict[str, object]:
        """Filter fragment asserting the caller still holds the job."""
        return {"status": JobStatus.RUNNING.value, "attempts": attempt}

    async def _lease_lost(self, job_id: str, operation: str) -> NoReturn:
        """Raise the error explaining why a conditional update matched nothing."""
        if await self._repo.get(job_id) is None:
            raise JobNotFound(job_id)

        self._metrics.record_lease_lost(operation)
        logger.warning(
            "Lease lost",
            extra={"job_id": job_id, "operation": operation},
        )
        raise LeaseLost(job_id)
