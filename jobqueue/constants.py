"""
Application constants.
Centralized location for all constant values used across the queue.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> RUNNING (claim)
    - RUNNING -> RUNNING (heartbeat)
    - RUNNING -> DONE (complete)
    - RUNNING -> PENDING (fail with retries left, after backoff)
    - RUNNING -> FAILED (fail with retries exhausted, dead-lettered)
    - RUNNING with expired lease is claimable again without a write
    """

    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"
    DONE = "done"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.DONE, JobStatus.FAILED})

# Default values
DEFAULT_QUEUE = "default"
DEFAULT_PRIORITY = 0
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 300.0

# Error recorded when the sweep dead-letters an abandoned final attempt
LEASE_EXPIRED_ERROR = "lease expired"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_SCHEDULED = "jobs_scheduled_total"
METRIC_JOBS_CLAIMED = "jobs_claimed_total"
METRIC_JOB_OUTCOMES = "job_outcomes_total"
METRIC_LEASE_LOST = "lease_lost_total"
METRIC_LEASE_RECOVERED = "lease_recovered_total"
METRIC_STORE_ERRORS = "store_errors_total"

# Trace span names
SPAN_SCHEDULE_JOB = "schedule_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_HEARTBEAT = "heartbeat"
SPAN_COMPLETE_JOB = "complete_job"
SPAN_FAIL_JOB = "fail_job"
SPAN_REQUEUE_ABANDONED = "requeue_abandoned"
