"""
Job document layout.
Maps between stored job documents and the ``Job`` model and declares the
indexes the claim protocol relies on.
"""

from datetime import datetime
from typing import Any, Mapping

from bson import Binary, ObjectId
from pymongo import ASCENDING, DESCENDING, IndexModel

from jobqueue.constants import JobStatus
from jobqueue.types.job import Job

JOB_INDEXES: list[IndexModel] = [
    # Pending branch of the eligibility predicate
    IndexModel(
        [("status", ASCENDING), ("scheduled_at", ASCENDING)],
        name="ix_jobs_status_scheduled_at",
    ),
    # Abandoned-lease branch of the eligibility predicate
    IndexModel(
        [("status", ASCENDING), ("lease_expires_at", ASCENDING)],
        name="ix_jobs_status_lease_expires_at",
    ),
    # Claim ordering within a queue
    IndexModel(
        [
            ("queue", ASCENDING),
            ("job_type", ASCENDING),
            ("status", ASCENDING),
            ("priority", DESCENDING),
            ("scheduled_at", ASCENDING),
        ],
        name="ix_jobs_claim_order",
    ),
    # Retention purge
    IndexModel(
        [("status", ASCENDING), ("completed_at", ASCENDING)],
        name="ix_jobs_status_completed_at",
    ),
]


def new_job_document(
    job_type: str,
    payload: bytes,
    queue: str,
    scheduled_at: datetime,
    now: datetime,
    max_retries: int,
    priority: int,
) -> dict[str, Any]:
    """
    Build the document for a freshly scheduled job.

    The ObjectId is generated client-side so the id is known before the
    insert returns and sorts by creation time.
    """
    return {
        "_id": ObjectId(),
        "queue": queue,
        "job_type": job_type,
        "payload": Binary(payload),
        "status": JobStatus.PENDING.value,
        "priority": priority,
        "scheduled_at": scheduled_at,
        "created_at": now,
        "updated_at": now,
        "completed_at": None,
        "lease_expires_at": None,
        "lease_owner": None,
        "attempts": 0,
        "max_retries": max_retries,
        "last_error": None,
    }


def from_document(doc: Mapping[str, Any]) -> Job:
    """Convert a stored document into a ``Job`` snapshot."""
    return Job(
        id=str(doc["_id"]),
        job_type=doc["job_type"],
        payload=bytes(doc["payload"]),
        status=JobStatus(doc["status"]),
        queue=doc["queue"],
        priority=doc.get("priority", 0),
        scheduled_at=doc["scheduled_at"],
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at"),
        completed_at=doc.get("completed_at"),
        lease_expires_at=doc.get("lease_expires_at"),
        lease_owner=doc.get("lease_owner"),
        attempts=doc["attempts"],
        max_retries=doc["max_retries"],
        last_error=doc.get("last_error"),
    )
