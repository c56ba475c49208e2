from __future__ import annotations

from typing import TYPE_CHECKING

from .base import DEFAULT_COLLECTION, CallOutcome, Collection, StoreConnection
from .redis_store import RedisCollection, RedisConnection
from .sql_store import SqlCollection, SqlConnection

if TYPE_CHECKING:
    from ..config import StoreConfig

_REDIS_SCHEMES = ("redis://", "rediss://", "unix://")


def connect(config: "StoreConfig") -> StoreConnection:
    """
    Open the store named by config.url and wait until it is ready.

    Redis URLs select the Redis adapter; anything else is treated as a
    SQLAlchemy database URL.

    Raises:
        StoreConnectionError: If the store cannot be reached.
    """
    if config.url.startswith(_REDIS_SCHEMES):
        connection: StoreConnection = RedisConnection.from_config(config)
    else:
        connection = SqlConnection.from_config(config)
    try:
        connection.wait_until_ready()
    except Exception:
        connection.close()
        raise
    return connection


__all__ = [
    "DEFAULT_COLLECTION",
    "CallOutcome",
    "Collection",
    "StoreConnection",
    "RedisCollection",
    "RedisConnection",
    "SqlCollection",
    "SqlConnection",
    "connect",
]
