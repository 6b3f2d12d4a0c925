"""
Pytest configuration and shared fixtures.

This module provides:
- Environment variable setup for tests
- An in-memory MongoDB double (mongomock behind an async adapter shaped
  like pymongo's AsyncMongoClient)
- A connected ConnectionManager and a frozen-time clock
"""

import os

import mongomock
import pytest
from pymongo.errors import ConnectionFailure

# Set test environment variables BEFORE any docrepo imports
os.environ["MONGO_URI"] = "mongodb://localhost:27017"
os.environ["MONGO_DATABASE"] = "docrepo_test"
os.environ["MONGO_MAX_RETRIES"] = "3"
os.environ["MONGO_RETRY_DELAY"] = "0.01"
os.environ["LOG_JSON"] = "false"

from docrepo.core.connection import ConnectionConfig, ConnectionManager  # noqa: E402
from docrepo.models.timestamps import MonotonicClock  # noqa: E402

TEST_DB = "docrepo_test"
FROZEN_MS = 1_700_000_000_000


class AsyncCursorDouble:
    """Async facade over a mongomock cursor."""

    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, key_or_list, direction=None):
        self._cursor.sort(key_or_list, direction)
        return self

    def skip(self, count):
        self._cursor.skip(count)
        return self

    def limit(self, count):
        self._cursor.limit(count)
        return self

    async def to_list(self, length=None):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]

    def __aiter__(self):
        self._iter = iter(self._cursor)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class AsyncCollectionDouble:
    """Async facade over a mongomock collection."""

    _ASYNC_METHODS = {
        "insert_one",
        "insert_many",
        "find_one",
        "find_one_and_update",
        "update_one",
        "update_many",
        "delete_one",
        "delete_many",
        "count_documents",
        "distinct",
    }

    def __init__(self, collection):
        self.sync = collection
        self.name = collection.name

    def find(self, *args, **kwargs):
        return AsyncCursorDouble(self.sync.find(*args, **kwargs))

    def __getattr__(self, name):
        if name not in self._ASYNC_METHODS:
            raise AttributeError(name)
        method = getattr(self.sync, name)

        async def call(*args, **kwargs):
            return method(*args, **kwargs)

        return call


class AsyncDatabaseDouble:
    def __init__(self, database, client):
        self.sync = database
        self.name = database.name
        self._client = client

    def __getitem__(self, name):
        return AsyncCollectionDouble(self.sync[name])

    async def command(self, command, **kwargs):
        if command == "ping":
            self._client.ping_calls += 1
            if self._client.failures_left > 0:
                self._client.failures_left -= 1
                raise ConnectionFailure("connection refused")
        return self.sync.command(command, **kwargs)


class AsyncMongoClientDouble:
    """
    Stand-in for pymongo.AsyncMongoClient backed by mongomock.

    Attributes:
        failures_left: Number of upcoming pings that fail with ConnectionFailure
        ping_calls: Pings received so far
        closed: Whether close() was awaited
    """

    def __init__(self, fail_times: int = 0):
        self.sync = mongomock.MongoClient()
        self.failures_left = fail_times
        self.ping_calls = 0
        self.closed = False

    @property
    def admin(self):
        return AsyncDatabaseDouble(self.sync["admin"], self)

    def __getitem__(self, name):
        return AsyncDatabaseDouble(self.sync[name], self)

    async def close(self):
        self.closed = True


@pytest.fixture
def mongo_client():
    """In-memory client that connects on the first ping."""
    return AsyncMongoClientDouble()


@pytest.fixture
def make_client():
    """Factory for clients whose first `fail_times` pings fail."""
    return AsyncMongoClientDouble


@pytest.fixture
def connection_config(mongo_client):
    return ConnectionConfig(
        connection_handle=mongo_client,
        database_name=TEST_DB,
        max_retries=3,
        retry_delay=0.01,
    )


@pytest.fixture
async def manager(connection_config):
    """
    Provide a connected ConnectionManager.

    Tears the connection down after the test.
    """
    manager = ConnectionManager(max_retries=3, retry_delay=0.01)
    await manager.setup(connection_config)
    yield manager
    await manager.teardown()


@pytest.fixture
def frozen_clock():
    """Clock whose wall time never advances; only the monotonic clamp moves it."""
    return MonotonicClock(source=lambda: FROZEN_MS)
