from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from .errors import ConfigErrorReason, ConfigurationError
from .ops.models import Operation
from .ops.transcoders import TranscoderName
from .store.base import DEFAULT_COLLECTION

DEFAULT_KEY = "${! content() }"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}


def parse_duration(value: Union[str, int, float, None]) -> Optional[float]:
    """
    Convert a duration into seconds.

    Accepts numbers (seconds) or strings such as "250ms", "5s", "1.5m", "1h".
    A bare numeric string is read as seconds.

    Raises:
        ConfigurationError: If the value cannot be parsed or is not positive.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError(ConfigErrorReason.INVALID_TIMEOUT, repr(value))
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(value)
        if match is None:
            raise ConfigurationError(ConfigErrorReason.INVALID_TIMEOUT, repr(value))
        amount, unit = float(match.group(1)), match.group(2) or "s"
        seconds = amount / 1000 if unit == "ms" else amount * _DURATION_UNITS[unit]
    if seconds <= 0:
        raise ConfigurationError(
            ConfigErrorReason.INVALID_TIMEOUT, f"timeout must be > 0, got {value!r}"
        )
    return seconds


_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


def parse_bool(value: Union[str, int, bool]) -> bool:
    """
    Read a flag from a config mapping; strings such as "false" or "off" are accepted.

    Raises:
        ValueError: If the value is not a recognised boolean.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"expected a boolean, got {value!r}")


@dataclass
class StoreConfig:
    """
    Connection settings consumed by the store adapters.

    The timeout applies uniformly to connecting and to every call issued
    against the collection.
    """

    url: str
    bucket: str
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("url cannot be empty")
        if not self.bucket:
            raise ValueError("bucket cannot be empty")
        self.timeout = parse_duration(self.timeout)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoreConfig":
        return cls(
            url=data["url"],
            bucket=data["bucket"],
            username=data.get("username"),
            password=data.get("password"),
            timeout=data.get("timeout"),
        )


@dataclass
class ProcessorConfig:
    """
    Per-processor dispatch settings.

    `value` is either a template string or a callable taking a message and
    returning bytes. Whether a value is required depends on the operation and
    is enforced when the dispatcher is built.
    """

    key: str = DEFAULT_KEY
    value: Optional[Union[str, Callable[..., bytes]]] = None
    operation: Union[str, Operation, None] = Operation.GET
    collection: Optional[str] = None
    transcoder: Union[str, TranscoderName] = TranscoderName.RAW
    bulk: bool = True

    def __post_init__(self) -> None:
        """Normalise enum fields, rejecting unknown names."""
        self.operation = Operation.parse(self.operation)
        self.transcoder = TranscoderName.parse(self.transcoder)
        if not self.key:
            raise ConfigurationError(ConfigErrorReason.INVALID_EXPRESSION, "key cannot be empty")

    @property
    def collection_name(self) -> str:
        return self.collection or DEFAULT_COLLECTION

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProcessorConfig":
        return cls(
            key=data.get("key") or DEFAULT_KEY,
            value=data.get("value"),
            operation=data.get("operation"),
            collection=data.get("collection"),
            transcoder=data.get("transcoder") or TranscoderName.RAW,
            bulk=parse_bool(data["bulk"]) if data.get("bulk") is not None else True,
        )
