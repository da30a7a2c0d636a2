"""
Handle on a claimed job.
"""

from datetime import timedelta
from typing import TYPE_CHECKING

from jobqueue.types.job import Job

if TYPE_CHECKING:
    from jobqueue.queue import JobQueue


class JobHandle:
    """
    A claimed job bound to the queue it came from.

    Every call passes the claim's ``attempts`` as fencing token, so a handle
    kept past its lease cannot touch a later claim of the same job.
    """

    def __init__(self, job: Job, queue: "JobQueue"):
        self._job = job
        self._queue = queue

    @property
    def job(self) -> Job:
        """Latest snapshot seen by this handle."""
        return self._job

    @property
    def id(self) -> str:
        return self._job.id

    @property
    def job_type(self) -> str:
        return self._job.job_type

    @property
    def payload(self) -> bytes:
        return self._job.payload

    @property
    def attempts(self) -> int:
        return self._job.attempts

    async def heartbeat(self, lease_duration: timedelta | None = None) -> Job:
        """Extend the lease; raises ``LeaseLost`` if another worker owns the job."""
        self._job = await self._queue.heartbeat(
            self.id, lease_duration, attempt=self.attempts
        )
        return self._job

    async def complete(self) -> Job:
        self._job = await self._queue.complete(self.id, attempt=self.attempts)
        return self._job

    async def fail(self, error_message: str) -> Job:
        self._job = await self._queue.fail(self.id, error_message, attempt=self.attempts)
        return self._job

    def __repr__(self) -> str:
        return f"JobHandle({self._job!r})"
