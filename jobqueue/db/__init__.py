"""
Database module.
Contains the connection, document layout, and repository for jobs.
"""

from jobqueue.db.connection import (
    close_db,
    get_client,
    get_database,
    get_jobs_collection,
    init_db,
)
from jobqueue.db.models import JOB_INDEXES, from_document, new_job_document
from jobqueue.db.repository import JobRepository

__all__ = [
    "get_client",
    "get_database",
    "get_jobs_collection",
    "init_db",
    "close_db",
    "JOB_INDEXES",
    "from_document",
    "new_job_document",
    "JobRepository",
]
