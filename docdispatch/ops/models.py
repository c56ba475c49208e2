from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from ..errors import ConfigErrorReason, ConfigurationError, ErrorKind, PerItemOperationError


class Operation(str, Enum):
    GET = "get"
    INSERT = "insert"
    REMOVE = "remove"
    REPLACE = "replace"
    UPSERT = "upsert"

    @property
    def needs_payload(self) -> bool:
        return self in (Operation.INSERT, Operation.REPLACE, Operation.UPSERT)

    @classmethod
    def parse(cls, name: Union[str, "Operation", None]) -> "Operation":
        """
        Resolve an operation name. A missing name means GET.

        Raises:
            ConfigurationError: If the name is not a known operation.
        """
        if name is None or name == "":
            return cls.GET
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise ConfigurationError(ConfigErrorReason.INVALID_OPERATION, str(name)) from None


@dataclass(frozen=True)
class OperationRequest:
    """
    The resolved key and payload for one message.
    """
    key: str
    payload: Optional[bytes] = None


@dataclass(frozen=True)
class StoreCall:
    """
    A single store call descriptor, as produced by an operation strategy.
    """
    operation: Operation
    key: str
    payload: Optional[bytes] = None


@dataclass(frozen=True)
class RawBytes:
    data: bytes


@dataclass(frozen=True)
class StructuredValue:
    value: Any


@dataclass(frozen=True)
class Empty:
    pass


@dataclass(frozen=True)
class ItemError:
    kind: ErrorKind
    key: str
    detail: str = ""

    @classmethod
    def from_exception(cls, exc: PerItemOperationError) -> "ItemError":
        return cls(kind=exc.kind, key=exc.key, detail=exc.detail)

    def to_exception(self) -> PerItemOperationError:
        return PerItemOperationError(self.kind, self.key, self.detail)


OperationResult = Union[RawBytes, StructuredValue, Empty, ItemError]
