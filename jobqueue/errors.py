"""
Queue error taxonomy.

Every error is reported to the immediate caller; the queue never retries
store I/O on its own. An empty claim is not an error: ``JobQueue.claim``
returns ``None`` and only ``claim_or_raise`` raises ``NoJobAvailable``.
"""


class QueueError(Exception):
    """Base class for all queue errors."""


class StoreUnavailable(QueueError):
    """Transient failure talking to the document store."""


class JobNotFound(QueueError):
    """The referenced job id does not exist."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class LeaseLost(QueueError):
    """
    The caller no longer holds the job.

    Raised when a heartbeat, complete or fail finds the job outside the
    ``running`` state the caller assumed, either because another worker
    reclaimed it after the lease expired or because it was already resolved.
    The worker must stop processing and must not retry the call.
    """

    def __init__(self, job_id: str):
        super().__init__(f"Lease lost on job {job_id}")
        self.job_id = job_id


class NoJobAvailable(QueueError):
    """No eligible job was found for the requested job types."""
