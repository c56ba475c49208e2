from __future__ import annotations

import os
import uuid
from collections.abc import Iterator

import pytest
from redis import Redis
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from docdispatch.store import RedisCollection, SqlCollection, SqlConnection
from tests._memory import MemoryCollection

DEFAULT_TEST_REDIS_URL = "redis://127.0.0.1:6379/0"


@pytest.fixture
def engine() -> Iterator[Engine]:
    """
    In-memory SQLite engine shared by every connection of a test.
    """
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield eng
    eng.dispose()


@pytest.fixture
def sql_connection(engine: Engine) -> SqlConnection:
    connection = SqlConnection(engine, "test_bucket")
    connection.wait_until_ready()
    return connection


@pytest.fixture
def sql_collection(sql_connection: SqlConnection) -> SqlCollection:
    return sql_connection.collection()


@pytest.fixture
def memory_collection() -> MemoryCollection:
    return MemoryCollection()


@pytest.fixture(scope="session")
def redis_url() -> str:
    """
    Redis connection URL for integration tests.

    Set DOCDISPATCH_TEST_REDIS_URL to point at a test server.
    """
    return os.environ.get("DOCDISPATCH_TEST_REDIS_URL", DEFAULT_TEST_REDIS_URL)


@pytest.fixture(scope="session")
def redis_client(redis_url: str) -> Iterator[Redis]:
    """
    Session-scoped Redis client. Redis integration tests are skipped when the
    server is not reachable.
    """
    client = Redis.from_url(redis_url, decode_responses=False)
    try:
        client.ping()
    except Exception as exc:  # pragma: no cover
        client.close()
        pytest.skip(f"Redis test server is not reachable at {redis_url!r}: {exc}")

    yield client
    client.close()


@pytest.fixture
def redis_collection(redis_client: Redis) -> Iterator[RedisCollection]:
    """
    Collection under a per-test bucket; its keys are deleted afterwards.
    """
    bucket = f"test_{uuid.uuid4().hex[:10]}"
    collection = RedisCollection(redis_client, bucket)

    yield collection

    keys = list(redis_client.scan_iter(match=f"{bucket}:*"))
    if keys:
        redis_client.delete(*keys)
