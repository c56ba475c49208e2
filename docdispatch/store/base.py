from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence, Union

from ..ops.models import Operation, StoreCall
from ..errors import PerItemOperationError

DEFAULT_COLLECTION = "_default"

# A single call yields the stored bytes (reads), None (mutations) or an item error.
CallOutcome = Union[bytes, None, PerItemOperationError]


class Collection(ABC):
    """
    Handle to one named collection inside a bucket.

    Handles are shared between concurrent batches and must be safe for
    concurrent use; the dispatcher never reconfigures or closes them.

    Item-scoped failures (missing key, existing key, per-call timeout) are
    raised as PerItemOperationError. Any other exception means the call
    itself could not be completed.
    """

    supports_bulk: bool = False

    def __init__(self, bucket: str, name: str) -> None:
        self.bucket = bucket
        self.name = name

    @abstractmethod
    def get(self, key: str) -> bytes:
        ...

    @abstractmethod
    def insert(self, key: str, payload: bytes) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def replace(self, key: str, payload: bytes) -> None:
        ...

    @abstractmethod
    def upsert(self, key: str, payload: bytes) -> None:
        ...

    def execute(self, call: StoreCall) -> Optional[bytes]:
        """Run a single store call."""
        if call.operation == Operation.GET:
            return self.get(call.key)
        if call.operation == Operation.REMOVE:
            self.remove(call.key)
            return None
        if call.payload is None:
            raise ValueError(f"{call.operation.value} requires a payload")
        if call.operation == Operation.INSERT:
            self.insert(call.key, call.payload)
        elif call.operation == Operation.REPLACE:
            self.replace(call.key, call.payload)
        elif call.operation == Operation.UPSERT:
            self.upsert(call.key, call.payload)
        else:
            raise ValueError(f"Unsupported operation: {call.operation}")
        return None

    def bulk(self, calls: Sequence[StoreCall]) -> list[CallOutcome]:
        """
        Submit all calls in a single round trip.

        Returns one outcome per call, in call order. Item errors are returned
        in their slot, not raised. Only available when supports_bulk is True.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support bulk calls")


class StoreConnection(ABC):
    """
    Owner of the underlying client; hands out collection handles.
    """

    def __init__(self, bucket: str) -> None:
        self.bucket = bucket

    @abstractmethod
    def collection(self, name: Optional[str] = None) -> Collection:
        ...

    @abstractmethod
    def wait_until_ready(self) -> None:
        """
        Raises:
            StoreConnectionError: If the store cannot be reached.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        ...
