"""
Queue facade.

The public contract producers and workers use. Composes the job
repository, the lease policy and the claim protocol; holds no job state of
its own, since many independent processes share the same collection.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any, Sequence

from jobqueue.claims import ClaimProtocol
from jobqueue.config import Settings, get_settings
from jobqueue.constants import (
    DEFAULT_PRIORITY,
    SPAN_CLAIM_JOB,
    SPAN_COMPLETE_JOB,
    SPAN_FAIL_JOB,
    SPAN_HEARTBEAT,
    SPAN_REQUEUE_ABANDONED,
    SPAN_SCHEDULE_JOB,
    TERMINAL_STATUSES,
    JobStatus,
)
from jobqueue.db.connection import get_jobs_collection
from jobqueue.db.models import new_job_document
from jobqueue.db.repository import JobRepository
from jobqueue.errors import JobNotFound, NoJobAvailable
from jobqueue.handle import JobHandle
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer, set_span_attributes
from jobqueue.policy import utcnow
from jobqueue.types.job import Job, SweepResult

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Durable job queue on a MongoDB collection.

    Guarantees at-least-once execution with mutual exclusion: each eligible
    job is handed to at most one caller of ``claim`` at a time, and a job
    whose worker disappears becomes claimable again once its lease expires.

    Every time-dependent method accepts an optional ``now`` so callers (and
    tests) can drive the clock; it defaults to ``policy.utcnow()``.
    """

    def __init__(
        self,
        collection: Any | None = None,
        settings: Settings | None = None,
        queue: str | None = None,
    ):
        """
        Initialize the queue.

        Args:
            collection: Jobs collection. Defaults to the configured one.
            settings: Settings instance. Defaults to the cached settings.
            queue: Queue name. Defaults to ``settings.queue_name``.
        """
        self._settings = settings or get_settings()
        self.name = queue or self._settings.queue_name
        self._repo = JobRepository(
            collection if collection is not None else get_jobs_collection()
        )
        self._claims = ClaimProtocol(
            self._repo,
            queue=self.name,
            backoff_base_seconds=self._settings.backoff_base_seconds,
            backoff_max_seconds=self._settings.backoff_max_seconds,
        )
        self._metrics = get_metrics()
        self._tracer = get_tracer()

    @property
    def repository(self) -> JobRepository:
        return self._repo

    @property
    def default_lease_duration(self) -> timedelta:
        return timedelta(seconds=self._settings.default_lease_duration_seconds)

    def _lease_or_default(self, lease_duration: timedelta | None) -> timedelta:
        if lease_duration is None:
            return self.default_lease_duration
        return lease_duration

    async def ensure_indexes(self) -> list[str]:
        """Create the collection indexes. Safe to call on every startup."""
        return await self._repo.ensure_indexes()

    async def schedule(
        self,
        job_type: str,
        payload: bytes,
        delay: timedelta = timedelta(0),
        *,
        max_retries: int | None = None,
        priority: int = DEFAULT_PRIORITY,
        now: datetime | None = None,
    ) -> str:
        """
        Add a job that becomes eligible after ``delay``.

        Args:
            job_type: Name of the handler that processes the payload.
            payload: Opaque serialized payload.
            delay: Time before the job can be claimed.
            max_retries: Retries allowed after the first attempt.
            priority: Higher values are claimed first.
            now: Current time.

        Returns:
            The new job id.
        """
        now = now or utcnow()
        return await self.schedule_at(
            job_type,
            payload,
            now + delay,
            max_retries=max_retries,
            priority=priority,
            now=now,
        )

    async def schedule_at(
        self,
        job_type: str,
        payload: bytes,
        scheduled_at: datetime,
        *,
        max_retries: int | None = None,
        priority: int = DEFAULT_PRIORITY,
        now: datetime | None = None,
    ) -> str:
        """
        Add a job that becomes eligible at ``scheduled_at``.

        Returns:
            The new job id.

        Raises:
            ValueError: If ``max_retries`` is negative.
        """
        if max_retries is None:
            max_retries = self._settings.default_max_retries
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        now = now or utcnow()
        with self._tracer.start_as_current_span(SPAN_SCHEDULE_JOB) as span:
            set_span_attributes(span, job_type=job_type, payload_size=len(payload))
            job = await self._repo.insert(
                new_job_document(
                    job_type=job_type,
                    payload=payload,
                    queue=self.name,
                    scheduled_at=scheduled_at,
                    now=now,
                    max_retries=max_retries,
                    priority=priority,
                )
            )
            set_span_attributes(span, job_id=job.id)

        self._metrics.record_job_scheduled(self.name, job_type)
        logger.info(
            "Scheduled job",
            extra={
                "job_id": job.id,
                "job_type": job_type,
                "scheduled_at": scheduled_at.isoformat(),
            },
        )
        return job.id

    async def claim(
        self,
        job_types: Sequence[str],
        lease_duration: timedelta | None = None,
        *,
        worker_id: str | None = None,
        now: datetime | None = None,
    ) -> JobHandle | None:
        """
        Claim the next eligible job of one of ``job_types``.

        Returns:
            A handle on the claimed job, or None if nothing is eligible.
        """
        with self._tracer.start_as_current_span(SPAN_CLAIM_JOB) as span:
            set_span_attributes(span, job_types=",".join(job_types), worker_id=worker_id)
            job = await self._claims.claim(
                now or utcnow(),
                self._lease_or_default(lease_duration),
                job_types,
                worker_id=worker_id,
            )
            if job is None:
                return None
            set_span_attributes(span, job_id=job.id, attempts=job.attempts)
        return JobHandle(job, self)

    async def claim_or_raise(
        self,
        job_types: Sequence[str],
        lease_duration: timedelta | None = None,
        *,
        worker_id: str | None = None,
        now: datetime | None = None,
    ) -> JobHandle:
        """
        Like ``claim`` but reports an empty queue as ``NoJobAvailable``.
        """
        handle = await self.claim(job_types, lease_duration, worker_id=worker_id, now=now)
        if handle is None:
            raise NoJobAvailable(f"No eligible job for types {list(job_types)}")
        return handle

    async def heartbeat(
        self,
        job_id: str,
        lease_duration: timedelta | None = None,
        *,
        attempt: int,
        now: datetime | None = None,
    ) -> Job:
        """
        Extend a live lease on a running job.

        ``attempt`` is the value returned by the claim; a worker whose job
        was reclaimed in the meantime gets ``LeaseLost``.
        """
        with self._tracer.start_as_current_span(SPAN_HEARTBEAT) as span:
            set_span_attributes(span, job_id=job_id, attempt=attempt)
            return await self._claims.heartbeat(
                job_id,
                now or utcnow(),
                self._lease_or_default(lease_duration),
                attempt=attempt,
            )

    async def complete(
        self,
        job_id: str,
        *,
        attempt: int,
        now: datetime | None = None,
    ) -> Job:
        """Mark a running job as done, fenced on the claim's ``attempt``."""
        with self._tracer.start_as_current_span(SPAN_COMPLETE_JOB) as span:
            set_span_attributes(span, job_id=job_id, attempt=attempt)
            return await self._claims.complete(job_id, now or utcnow(), attempt=attempt)

    async def fail(
        self,
        job_id: str,
        error_message: str,
        *,
        attempt: int,
        now: datetime | None = None,
    ) -> Job:
        """Record a failed attempt; retries after backoff or dead-letters."""
        with self._tracer.start_as_current_span(SPAN_FAIL_JOB) as span:
            set_span_attributes(span, job_id=job_id, attempt=attempt)
            job = await self._claims.fail(
                job_id, error_message, now or utcnow(), attempt=attempt
            )
            set_span_attributes(span, status=job.status.value)
            return job

    async def get(self, job_id: str) -> Job:
        """
        Get a job by ID.

        Raises:
            JobNotFound: If the job does not exist.
        """
        job = await self._repo.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def cancel(self, job_id: str) -> None:
        """
        Remove a job that has not been claimed yet.

        Raises:
            JobNotFound: If no pending job has this id.
        """
        removed = await self._repo.delete_if(
            job_id, {"queue": self.name, "status": JobStatus.PENDING.value}
        )
        if removed is None:
            raise JobNotFound(job_id)
        logger.info("Cancelled job", extra={"job_id": job_id})

    async def unschedule(self, job_id: str, job_type: str) -> bytes:
        """
        Remove a pending job of the given type and hand back its payload.

        Raises:
            JobNotFound: If no pending job of that type has this id.
        """
        removed = await self._repo.delete_if(
            job_id,
            {
                "queue": self.name,
                "status": JobStatus.PENDING.value,
                "job_type": job_type,
            },
        )
        if removed is None:
            raise JobNotFound(job_id)
        logger.info("Unscheduled job", extra={"job_id": job_id, "job_type": job_type})
        return removed.payload

    async def requeue_abandoned(
        self,
        limit: int = 100,
        *,
        now: datetime | None = None,
    ) -> SweepResult:
        """
        Maintenance sweep over running jobs with expired leases.

        Optional: claims already pick up abandoned jobs on their own.
        """
        with self._tracer.start_as_current_span(SPAN_REQUEUE_ABANDONED) as span:
            result = await self._claims.requeue_abandoned(now or utcnow(), limit=limit)
            set_span_attributes(
                span,
                requeued=len(result.requeued),
                dead_lettered=len(result.dead_lettered),
            )
            return result

    async def purge(
        self,
        statuses: Iterable[JobStatus] = TERMINAL_STATUSES,
        older_than: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        """
        Delete finished jobs.

        Args:
            statuses: Terminal statuses to purge.
            older_than: Only purge jobs finished at least this long ago.
            now: Current time.

        Returns:
            Number of deleted jobs.

        Raises:
            ValueError: If a non-terminal status is requested.
        """
        statuses = [JobStatus(s) for s in statuses]
        live = [s for s in statuses if s not in TERMINAL_STATUSES]
        if live:
            raise ValueError(f"Cannot purge non-terminal statuses: {live}")

        query: dict[str, Any] = {
            "queue": self.name,
            "status": {"$in": [s.value for s in statuses]},
        }
        if older_than is not None:
            query["completed_at"] = {"$lte": (now or utcnow()) - older_than}

        count = await self._repo.delete_many(query)
        if count:
            logger.info(f"Purged {count} jobs", extra={"statuses": [s.value for s in statuses]})
        return count

    async def stats(self) -> dict[str, int]:
        """
        Get job counts for every status in this queue.

        Also refreshes the queue depth gauges.
        """
        counts = await self._repo.count_by_status(self.name)
        stats = {status.value: counts.get(status.value, 0) for status in JobStatus}
        self._metrics.update_queue_depth(self.name, stats)
        return stats
