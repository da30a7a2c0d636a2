"""
Pytest configuration and shared fixtures.

Tests run against a real MongoDB when ``TEST_MONGODB_URL`` is set and
against ``mongomock`` otherwise.
"""

import asyncio
import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import mongomock
import pytest
import pytest_asyncio

from jobqueue.config import Settings
from jobqueue.queue import JobQueue

TEST_MONGODB_URL = os.getenv("TEST_MONGODB_URL")

# Fixed clock origin; millisecond precision like BSON dates
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class _MockCursor:
    """Async ``to_list`` over a mongomock cursor."""

    def __init__(self, cursor: Any):
        self._cursor = cursor

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class AsyncMongoMockCollection:
    """
    Coroutine facade over a mongomock collection.

    Exposes the subset of the motor collection API the repository uses.
    Every call yields to the event loop once before touching the store, so
    gathered coroutines interleave between operations as they do over real
    driver I/O, while each single operation stays atomic as on a server.
    """

    def __init__(self, collection: mongomock.Collection):
        self.sync = collection

    async def create_indexes(self, indexes, **kwargs):
        await asyncio.sleep(0)
        return self.sync.create_indexes(indexes, **kwargs)

    async def insert_one(self, document, **kwargs):
        await asyncio.sleep(0)
        return self.sync.insert_one(document, **kwargs)

    async def find_one(self, query=None, **kwargs):
        await asyncio.sleep(0)
        return self.sync.find_one(query, **kwargs)

    async def find_one_and_update(self, query, update, **kwargs):
        await asyncio.sleep(0)
        return self.sync.find_one_and_update(query, update, **kwargs)

    async def find_one_and_delete(self, query, **kwargs):
        await asyncio.sleep(0)
        return self.sync.find_one_and_delete(query, **kwargs)

    async def delete_one(self, query, **kwargs):
        await asyncio.sleep(0)
        return self.sync.delete_one(query, **kwargs)

    async def delete_many(self, query, **kwargs):
        await asyncio.sleep(0)
        return self.sync.delete_many(query, **kwargs)

    async def update_one(self, query, update, **kwargs):
        await asyncio.sleep(0)
        return self.sync.update_one(query, update, **kwargs)

    async def update_many(self, query, update, **kwargs):
        await asyncio.sleep(0)
        return self.sync.update_many(query, update, **kwargs)

    async def index_information(self):
        await asyncio.sleep(0)
        return self.sync.index_information()

    def find(self, query=None, sort=None, limit=0, **kwargs):
        return _MockCursor(self.sync.find(query, sort=sort, limit=limit, **kwargs))

    def aggregate(self, pipeline, **kwargs):
        return _MockCursor(self.sync.aggregate(pipeline, **kwargs))


@pytest_asyncio.fixture
async def jobs_collection() -> AsyncGenerator[Any]:
    """Create an empty jobs collection for one test."""
    name = f"jobs_{uuid4().hex[:8]}"

    if TEST_MONGODB_URL:
        from motor.motor_asyncio import AsyncIOMotorClient

        client = AsyncIOMotorClient(TEST_MONGODB_URL, tz_aware=True)
        collection = client["jobqueue_test"][name]
        yield collection
        await collection.drop()
        client.close()
    else:
        client = mongomock.MongoClient(tz_aware=True)
        yield AsyncMongoMockCollection(client["jobqueue_test"][name])


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        log_level="DEBUG",
        log_format="console",
        default_lease_duration_seconds=30,
        default_max_retries=3,
        backoff_base_seconds=1.0,
        backoff_max_seconds=60.0,
        reaper_interval_seconds=1,
    )


@pytest_asyncio.fixture
async def queue(jobs_collection: Any, test_settings: Settings) -> JobQueue:
    """Create a queue with its indexes in place."""
    q = JobQueue(collection=jobs_collection, settings=test_settings)
    await q.ensure_indexes()
    return q


@pytest.fixture
def now() -> datetime:
    """Fixed current time for deterministic lease arithmetic."""
    return T0


@pytest.fixture
def sample_payload() -> bytes:
    """Create a sample opaque payload."""
    return b'{"message": "Hello, World!"}'
