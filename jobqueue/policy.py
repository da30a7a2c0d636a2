"""
Clock and lease policy.

Pure functions deciding lease expiry, retry backoff and claim eligibility.
Nothing here reads the wall clock except ``utcnow``; every other function is
deterministic in its arguments so the store filter and the in-memory
predicate can be checked against each other.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from jobqueue.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_QUEUE,
    JobStatus,
)
from jobqueue.types.job import Job

# 2**32 seconds is far beyond any sane cap; bounding the exponent keeps the
# float arithmetic finite for arbitrarily large attempt counts.
_MAX_BACKOFF_EXPONENT = 32


def utcnow() -> datetime:
    """
    Get the current UTC time at BSON precision.

    MongoDB stores dates with millisecond resolution, so timestamps are
    truncated here to make values read back from the store compare equal
    to the ones that were written.
    """
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


def compute_lease_expiry(now: datetime, lease_duration: timedelta) -> datetime:
    """Get the instant after which a lease taken at ``now`` is abandoned."""
    return now + lease_duration


def compute_backoff(
    attempts: int,
    base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
    max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS,
) -> timedelta:
    """
    Get the retry delay after a failed attempt.

    Exponential in the attempt count and capped at ``max_seconds``. Attempt
    counts of 0 and 1 both map to ``base_seconds``, which keeps the function
    non-decreasing over all ``attempts >= 0``.

    Args:
        attempts: Number of claims the job has had so far.
        base_seconds: Delay after the first failed attempt.
        max_seconds: Upper bound on the delay.

    Returns:
        The delay before the job becomes eligible again.
    """
    exponent = min(max(attempts - 1, 0), _MAX_BACKOFF_EXPONENT)
    return timedelta(seconds=min(max_seconds, base_seconds * (2**exponent)))


def can_retry(attempts: int, max_retries: int) -> bool:
    """A job may be claimed ``max_retries + 1`` times in total."""
    return attempts <= max_retries


def is_eligible(job: Job, now: datetime) -> bool:
    """
    Check whether a job can be claimed at ``now``.

    A pending job is eligible once its scheduled time has passed. A running
    job whose lease has expired is treated as abandoned pending work, as long
    as the abandoned claim was not its last allowed attempt. A job abandoned
    on its last attempt (always the case with ``max_retries=0``) is only
    resolved by the ``requeue_abandoned`` sweep, which dead-letters it.
    """
    if job.status == JobStatus.PENDING:
        return job.scheduled_at <= now
    if job.status == JobStatus.RUNNING:
        return (
            job.lease_expires_at is not None
            and job.lease_expires_at <= now
            and can_retry(job.attempts, job.max_retries)
        )
    return False


def eligibility_filter(
    now: datetime,
    job_types: Sequence[str],
    queue: str = DEFAULT_QUEUE,
) -> dict[str, Any]:
    """
    Build the store filter equivalent to ``is_eligible``.

    Each ``$or`` branch starts with ``status`` followed by the time field so
    it is served by the ``(status, scheduled_at)`` and
    ``(status, lease_expires_at)`` indexes respectively.
    """
    return {
        "queue": queue,
        "job_type": {"$in": list(job_types)},
        "$or": [
            {
                "status": JobStatus.PENDING.value,
                "scheduled_at": {"$lte": now},
            },
            {
                "status": JobStatus.RUNNING.value,
                "lease_expires_at": {"$lte": now},
                "$expr": {"$lte": ["$attempts", "$max_retries"]},
            },
        ],
    }


def abandoned_filter(now: datetime, queue: str = DEFAULT_QUEUE) -> dict[str, Any]:
    """Build the store filter matching running jobs with expired leases."""
    return {
        "queue": queue,
        "status": JobStatus.RUNNING.value,
        "lease_expires_at": {"$lte": now},
    }
