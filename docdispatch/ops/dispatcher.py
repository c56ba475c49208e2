from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..errors import ConfigErrorReason, ConfigurationError
from .models import Operation, OperationRequest, StoreCall


@dataclass(frozen=True)
class OperationStrategy:
    """
    How one operation kind turns a (key, payload) pair into a store call.
    """
    operation: Operation
    needs_payload: bool
    build: Callable[[str, Optional[bytes]], StoreCall]


def _read(operation: Operation) -> Callable[[str, Optional[bytes]], StoreCall]:
    def build(key: str, payload: Optional[bytes] = None) -> StoreCall:
        return StoreCall(operation=operation, key=key)

    return build


def _write(operation: Operation) -> Callable[[str, Optional[bytes]], StoreCall]:
    def build(key: str, payload: Optional[bytes] = None) -> StoreCall:
        if payload is None:
            raise ValueError(f"{operation.value} requires a payload for key {key!r}")
        return StoreCall(operation=operation, key=key, payload=payload)

    return build


STRATEGIES: dict[Operation, OperationStrategy] = {
    # payload ignored
    Operation.GET: OperationStrategy(Operation.GET, False, _read(Operation.GET)),
    Operation.REMOVE: OperationStrategy(Operation.REMOVE, False, _read(Operation.REMOVE)),
    # store rejects the item if the key already exists
    Operation.INSERT: OperationStrategy(Operation.INSERT, True, _write(Operation.INSERT)),
    # store rejects the item if the key is absent
    Operation.REPLACE: OperationStrategy(Operation.REPLACE, True, _write(Operation.REPLACE)),
    Operation.UPSERT: OperationStrategy(Operation.UPSERT, True, _write(Operation.UPSERT)),
}


def resolve(name: Union[str, Operation, None]) -> OperationStrategy:
    """
    Map an operation name to its strategy. A missing name resolves to GET.

    Raises:
        ConfigurationError: INVALID_OPERATION for unknown names.
    """
    return STRATEGIES[Operation.parse(name)]


class OperationDispatcher:
    """
    Turns per-message requests into store calls for one configured operation.

    All validation happens here, once, at construction:
    - unknown operation names are rejected (INVALID_OPERATION)
    - write operations without a value expression are rejected (VALUE_REQUIRED)

    Usage:
        dispatcher = OperationDispatcher("upsert", value_configured=True)
        call = dispatcher.build(OperationRequest("doc1", b'{"a":1}'))
    """

    def __init__(
        self,
        operation: Union[str, Operation, None] = None,
        *,
        value_configured: bool,
    ) -> None:
        self.strategy = resolve(operation)
        if self.strategy.needs_payload and not value_configured:
            raise ConfigurationError(
                ConfigErrorReason.VALUE_REQUIRED,
                f"operation {self.strategy.operation.value!r} needs a value expression",
            )

    @property
    def operation(self) -> Operation:
        return self.strategy.operation

    def build(self, request: OperationRequest) -> StoreCall:
        return self.strategy.build(request.key, request.payload)
