from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Message:
    """
    A stream message as handed over by the host pipeline.

    The body is raw bytes; metadata is a flat string mapping. A failed
    per-item operation is attached as `error` and leaves the body untouched.
    """
    body: bytes = b""
    metadata: dict[str, str] = field(default_factory=dict)
    error: Optional[Exception] = None

    def as_bytes(self) -> bytes:
        return self.body

    def set_bytes(self, body: bytes) -> None:
        self.body = body

    def structured(self) -> Any:
        """
        Parse the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        return json.loads(self.body)

    def meta(self, name: str) -> str:
        return self.metadata.get(name, "")

    def set_error(self, error: Exception) -> None:
        self.error = error
