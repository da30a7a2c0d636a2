"""
Database connection management.
Handles the motor client and access to the jobs collection.
"""

import logging

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)

from jobqueue.config import get_settings

logger = logging.getLogger(__name__)

# Global client instance
_client: AsyncIOMotorClient | None = None


def get_client() -> AsyncIOMotorClient:
    """
    Get or create the motor client.

    Datetimes are decoded as timezone-aware UTC so they compare cleanly with
    the values produced by ``jobqueue.policy.utcnow``.

    Returns:
        AsyncIOMotorClient: The shared client instance.
    """
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncIOMotorClient(
            settings.mongodb_url,
            tz_aware=True,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        )
    return _client


async def init_db() -> None:
    """
    Initialize the database connection.
    Should be called on process startup.
    """
    client = get_client()
    await client.admin.command("ping")
    logger.info("Database connection initialized")


async def close_db() -> None:
    """
    Close the database connection.
    Should be called on process shutdown.
    """
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("Database connection closed")


def get_database() -> AsyncIOMotorDatabase:
    """Get the configured database."""
    return get_client()[get_settings().mongodb_database]


def get_jobs_collection() -> AsyncIOMotorCollection:
    """Get the jobs collection, the only persisted state of the queue."""
    return get_database()[get_settings().mongodb_jobs_collection]
