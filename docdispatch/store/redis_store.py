from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Sequence, Union

from redis import Redis
from redis.client import Pipeline
from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import ErrorKind, PerItemOperationError, StoreConnectionError
from ..ops.models import Operation, StoreCall
from .base import DEFAULT_COLLECTION, CallOutcome, Collection, StoreConnection

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)


class RedisCollection(Collection):
    """
    Collection stored as plain Redis strings under "{bucket}:{collection}:{key}".

    Verb mapping:
        get      GET        missing key -> NOT_FOUND
        insert   SET NX     existing key -> ALREADY_EXISTS
        replace  SET XX     missing key -> NOT_FOUND
        upsert   SET
        remove   DEL        nothing deleted -> NOT_FOUND

    bulk() sends every command in one non-transactional pipeline and reads the
    replies per command, so one failing key never hides its siblings' results.
    A connection failure while sending or reading the pipeline is raised.
    """

    supports_bulk = True

    def __init__(self, client: Redis, bucket: str, name: str = DEFAULT_COLLECTION) -> None:
        super().__init__(bucket, name)
        self.client = client

    def document_key(self, key: str) -> str:
        return f"{self.bucket}:{self.name}:{key}"

    def get(self, key: str) -> bytes:
        return self._run(StoreCall(Operation.GET, key))  # type: ignore[return-value]

    def insert(self, key: str, payload: bytes) -> None:
        self._run(StoreCall(Operation.INSERT, key, payload))

    def remove(self, key: str) -> None:
        self._run(StoreCall(Operation.REMOVE, key))

    def replace(self, key: str, payload: bytes) -> None:
        self._run(StoreCall(Operation.REPLACE, key, payload))

    def upsert(self, key: str, payload: bytes) -> None:
        self._run(StoreCall(Operation.UPSERT, key, payload))

    def bulk(self, calls: Sequence[StoreCall]) -> list[CallOutcome]:
        pipe = self.client.pipeline(transaction=False)
        for call in calls:
            self._queue(pipe, call)
        replies = pipe.execute(raise_on_error=False)
        return [self._interpret(call, reply) for call, reply in zip(calls, replies)]

    def _run(self, call: StoreCall) -> Optional[bytes]:
        try:
            reply = self._queue(self.client, call)
        except RedisTimeoutError as exc:
            raise PerItemOperationError(ErrorKind.TIMEOUT, call.key, str(exc)) from exc
        except ResponseError as exc:
            raise PerItemOperationError(ErrorKind.UNKNOWN, call.key, str(exc)) from exc

        outcome = self._interpret(call, reply)
        if isinstance(outcome, PerItemOperationError):
            raise outcome
        return outcome

    def _queue(self, target: Union[Redis, Pipeline], call: StoreCall) -> Any:
        doc_key = self.document_key(call.key)
        if call.operation == Operation.GET:
            return target.get(doc_key)
        if call.operation == Operation.REMOVE:
            return target.delete(doc_key)
        if call.payload is None:
            raise ValueError(f"{call.operation.value} requires a payload")
        if call.operation == Operation.INSERT:
            return target.set(doc_key, call.payload, nx=True)
        if call.operation == Operation.REPLACE:
            return target.set(doc_key, call.payload, xx=True)
        if call.operation == Operation.UPSERT:
            return target.set(doc_key, call.payload)
        raise ValueError(f"Unsupported operation: {call.operation}")

    @staticmethod
    def _interpret(call: StoreCall, reply: Any) -> CallOutcome:
        if isinstance(reply, Exception):
            kind = ErrorKind.TIMEOUT if isinstance(reply, RedisTimeoutError) else ErrorKind.UNKNOWN
            return PerItemOperationError(kind, call.key, str(reply))

        if call.operation == Operation.GET:
            if reply is None:
                return PerItemOperationError(ErrorKind.NOT_FOUND, call.key)
            return reply.encode("utf-8") if isinstance(reply, str) else bytes(reply)
        if call.operation == Operation.INSERT and not reply:
            return PerItemOperationError(ErrorKind.ALREADY_EXISTS, call.key)
        if call.operation in (Operation.REPLACE, Operation.REMOVE) and not reply:
            return PerItemOperationError(ErrorKind.NOT_FOUND, call.key)
        return None


class RedisConnection(StoreConnection):
    """
    Owns a redis-py client. The client's connection pool makes collection
    handles safe to share between threads.
    """

    def __init__(self, client: Redis, bucket: str) -> None:
        super().__init__(bucket)
        self.client = client

    @classmethod
    def from_config(cls, config: "StoreConfig") -> "RedisConnection":
        options: dict[str, Any] = {"decode_responses": False}
        if config.username is not None:
            options["username"] = config.username
        if config.password is not None:
            options["password"] = config.password
        if config.timeout is not None:
            options["socket_timeout"] = config.timeout
            options["socket_connect_timeout"] = config.timeout
        return cls(Redis.from_url(config.url, **options), config.bucket)

    def collection(self, name: Optional[str] = None) -> RedisCollection:
        return RedisCollection(self.client, self.bucket, name or DEFAULT_COLLECTION)

    def wait_until_ready(self) -> None:
        try:
            self.client.ping()
        except RedisError as exc:
            raise StoreConnectionError(f"Redis store is not reachable: {exc}") from exc
        logger.info("Connected to Redis store for bucket %s", self.bucket)

    def close(self) -> None:
        self.client.close()
        logger.info("Closed Redis store for bucket %s", self.bucket)
