"""
Job repository for document store operations.
Implements the single-document data access patterns for job management.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Mapping, Sequence

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from jobqueue.db.models import JOB_INDEXES, from_document
from jobqueue.errors import JobNotFound, StoreUnavailable
from jobqueue.observability.metrics import get_metrics
from jobqueue.types.job import Job

logger = logging.getLogger(__name__)

Sort = Sequence[tuple[str, int]]


def to_object_id(job_id: str) -> ObjectId:
    """
    Parse a job id.

    Raises:
        JobNotFound: If the id cannot name any stored job.
    """
    if isinstance(job_id, ObjectId):
        return job_id
    if not ObjectId.is_valid(job_id):
        raise JobNotFound(str(job_id))
    return ObjectId(job_id)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into ``StoreUnavailable``."""
    try:
        yield
    except PyMongoError as e:
        logger.warning(
            "Document store operation failed",
            extra={"operation": operation, "error": str(e)},
        )
        get_metrics().record_store_error(operation)
        raise StoreUnavailable(f"{operation} failed: {e}") from e


class JobRepository:
    """
    Repository for job documents.

    Every method touches at most one document atomically, except the bulk
    helpers used for housekeeping (``delete_many``, ``find``), which make no
    atomicity promise across documents. Correctness of the claim protocol
    rests only on ``find_one_and_update`` and ``update_if``.
    """

    def __init__(self, collection: Any):
        """
        Initialize the repository with a jobs collection.

        Args:
            collection: A motor collection (or one exposing the same
                coroutine methods).
        """
        self._collection = collection

    async def ensure_indexes(self) -> list[str]:
        """
        Create the indexes the eligibility filter and purge rely on.

        Returns:
            Names of the indexes.
        """
        with store_errors("ensure_indexes"):
            names = await self._collection.create_indexes(JOB_INDEXES)
        logger.info("Ensured job indexes", extra={"indexes": names})
        return names

    async def insert(self, document: dict[str, Any]) -> Job:
        """
        Insert a new job document.

        Args:
            document: The full document, including its ``_id``.

        Returns:
            The stored job.
        """
        with store_errors("insert"):
            await self._collection.insert_one(document)
        return from_document(document)

    async def get(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        try:
            oid = to_object_id(job_id)
        except JobNotFound:
            return None
        with store_errors("get"):
            doc = await self._collection.find_one({"_id": oid})
        return from_document(doc) if doc is not None else None

    async def update_if(
        self,
        job_id: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Job | None:
        """
        Update a job only if it still has the expected field values.

        The expected values and the update travel in one
        ``find_one_and_update``, so the version check and the write are a
        single atomic step on the server.

        Args:
            job_id: The job id.
            expected: Field values the document must currently hold.
            changes: A MongoDB update document.

        Returns:
            The updated Job, or None if nothing matched.
        """
        query = {"_id": to_object_id(job_id), **expected}
        with store_errors("update_if"):
            doc = await self._collection.find_one_and_update(
                query,
                changes,
                return_document=ReturnDocument.AFTER,
            )
        return from_document(doc) if doc is not None else None

    async def find_one_and_update(
        self,
        query: Mapping[str, Any],
        changes: Mapping[str, Any],
        sort: Sort | None = None,
    ) -> Job | None:
        """
        Atomically select the first matching job and update it.

        Args:
            query: Selection filter.
            changes: A MongoDB update document.
            sort: Ordering used to pick among matches.

        Returns:
            The job after the update, or None if nothing matched.
        """
        with store_errors("find_one_and_update"):
            doc = await self._collection.find_one_and_update(
                dict(query),
                changes,
                sort=list(sort) if sort else None,
                return_document=ReturnDocument.AFTER,
            )
        return from_document(doc) if doc is not None else None

    async def find(
        self,
        query: Mapping[str, Any],
        sort: Sort | None = None,
        limit: int = 0,
    ) -> list[Job]:
        """
        List jobs matching a filter.

        Args:
            query: Selection filter.
            sort: Optional ordering.
            limit: Maximum number of jobs, 0 for no limit.

        Returns:
            Snapshots of the matching jobs.
        """
        with store_errors("find"):
            cursor = self._collection.find(dict(query), sort=list(sort) if sort else None, limit=limit)
            docs = await cursor.to_list(length=None)
        return [from_document(doc) for doc in docs]

    async def delete(self, job_id: str) -> bool:
        """
        Delete a job by ID.

        Returns:
            True if a document was removed.
        """
        with store_errors("delete"):
            result = await self._collection.delete_one({"_id": to_object_id(job_id)})
        return result.deleted_count > 0

    async def delete_if(self, job_id: str, expected: Mapping[str, Any]) -> Job | None:
        """
        Delete a job only if it still has the expected field values.

        Returns:
            The removed job, or None if nothing matched.
        """
        query = {"_id": to_object_id(job_id), **expected}
        with store_errors("delete_if"):
            doc = await self._collection.find_one_and_delete(query)
        return from_document(doc) if doc is not None else None

    async def delete_many(self, query: Mapping[str, Any]) -> int:
        """
        Delete every job matching a filter.

        Returns:
            Number of removed documents.
        """
        with store_errors("delete_many"):
            result = await self._collection.delete_many(dict(query))
        return result.deleted_count

    async def count_by_status(self, queue: str | None = None) -> dict[str, int]:
        """
        Get job counts by status.

        Args:
            queue: Optional queue filter.

        Returns:
            Dictionary of status -> count.
        """
        pipeline: list[dict[str, Any]] = []
        if queue is not None:
            pipeline.append({"$match": {"queue": queue}})
        pipeline.append({"$group": {"_id": "$status", "count": {"$sum": 1}}})

        with store_errors("count_by_status"):
            rows = await self._collection.aggregate(pipeline).to_list(length=None)
        return {row["_id"]: row["count"] for row in rows}
