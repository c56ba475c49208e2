from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from ..message import Message
from .models import Empty, ItemError, OperationResult, RawBytes, StructuredValue

logger = logging.getLogger(__name__)


def encode_structured(value: Any) -> bytes:
    """Strings become UTF-8, bytes stay as they are, anything else compact JSON."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


class ResultMapper:
    """
    Writes per-item results back onto their messages, in place.

    - ItemError: the error is attached, body unchanged, mapping continues
    - RawBytes: body replaced verbatim
    - StructuredValue: body replaced with its encoded form
    - Empty: body passed through unchanged
    """

    def apply(self, messages: Sequence[Message], results: Sequence[OperationResult]) -> None:
        if len(messages) != len(results):
            raise ValueError(
                f"result count {len(results)} does not match message count {len(messages)}"
            )
        for message, result in zip(messages, results):
            self.apply_one(message, result)

    def apply_one(self, message: Message, result: OperationResult) -> None:
        if isinstance(result, ItemError):
            logger.debug("Attaching %s error for key %r", result.kind.value, result.key)
            message.set_error(result.to_exception())
        elif isinstance(result, RawBytes):
            message.set_bytes(result.data)
        elif isinstance(result, StructuredValue):
            message.set_bytes(encode_structured(result.value))
        elif isinstance(result, Empty):
            pass
        else:
            raise TypeError(f"Unsupported operation result: {result!r}")
