from __future__ import annotations

from enum import Enum


class ConfigErrorReason(str, Enum):
    INVALID_OPERATION = "invalid_operation"
    INVALID_TRANSCODER = "invalid_transcoder"
    VALUE_REQUIRED = "value_required"
    INVALID_EXPRESSION = "invalid_expression"
    INVALID_TIMEOUT = "invalid_timeout"


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    TIMEOUT = "timeout"
    # reserved for stores that version documents; no bundled adapter raises it
    CAS_MISMATCH = "cas_mismatch"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


class DocDispatchError(Exception):
    """Base exception for docdispatch errors."""


class ConfigurationError(DocDispatchError):
    """Invalid processor configuration, raised before any message is processed."""

    def __init__(self, reason: ConfigErrorReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


class StoreConnectionError(DocDispatchError):
    """The store is unreachable or not ready at startup."""


class PerItemOperationError(DocDispatchError):
    """Store-side failure scoped to a single key within a batch."""

    def __init__(self, kind: ErrorKind, key: str, detail: str = "") -> None:
        self.kind = kind
        self.key = key
        self.detail = detail
        message = f"{kind.value} (key={key!r})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class BatchError(DocDispatchError):
    """The bulk call failed as a whole; no per-item results exist."""
