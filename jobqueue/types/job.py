"""
Job-related type definitions.
"""

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from jobqueue.constants import DEFAULT_PRIORITY, DEFAULT_QUEUE, JobStatus


class Job(BaseModel):
    """
    Snapshot of a job document as last read from the store.

    The store is the single source of truth; a ``Job`` is never written
    back, only used to read fields and as the source of the fencing
    ``attempts`` value for follow-up calls.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    job_type: str
    payload: bytes
    status: JobStatus
    queue: str = DEFAULT_QUEUE
    priority: int = DEFAULT_PRIORITY
    scheduled_at: datetime
    created_at: datetime
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    lease_expires_at: datetime | None = None
    lease_owner: str | None = None
    attempts: int = 0
    max_retries: int
    last_error: str | None = None

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.job_type}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_retries + 1})"
        )


@dataclass
class SweepResult:
    """Outcome of one ``requeue_abandoned`` pass."""

    requeued: list[str] = field(default_factory=list)
    dead_lettered: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.requeued) + len(self.dead_lettered)
