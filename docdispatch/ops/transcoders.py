from __future__ import annotations

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Union

from ..errors import ConfigErrorReason, ConfigurationError
from .mapper import encode_structured
from .models import OperationResult, RawBytes, StructuredValue


class TranscoderName(str, Enum):
    RAW = "raw"
    RAWJSON = "rawjson"
    RAWSTRING = "rawstring"
    JSON = "json"
    LEGACY = "legacy"

    @classmethod
    def parse(cls, name: Union[str, "TranscoderName", None]) -> "TranscoderName":
        if name is None or name == "":
            return cls.RAW
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise ConfigurationError(ConfigErrorReason.INVALID_TRANSCODER, str(name)) from None


class Transcoder(ABC):
    """
    Converts between message payloads and stored document bytes.

    encode() validates an outgoing payload and returns the bytes to store;
    it raises ValueError when the payload does not fit the encoding.
    decode() turns stored bytes into a read result.
    """

    name: TranscoderName

    def encode(self, payload: bytes) -> bytes:
        return payload

    @abstractmethod
    def decode(self, data: bytes) -> OperationResult:
        ...


class RawTranscoder(Transcoder):
    name = TranscoderName.RAW

    def decode(self, data: bytes) -> OperationResult:
        return RawBytes(data)


class RawJsonTranscoder(Transcoder):
    name = TranscoderName.RAWJSON

    def encode(self, payload: bytes) -> bytes:
        json.loads(payload)
        return payload

    def decode(self, data: bytes) -> OperationResult:
        return RawBytes(data)


class RawStringTranscoder(Transcoder):
    name = TranscoderName.RAWSTRING

    def encode(self, payload: bytes) -> bytes:
        payload.decode("utf-8")
        return payload

    def decode(self, data: bytes) -> OperationResult:
        return StructuredValue(data.decode("utf-8"))


class JsonTranscoder(Transcoder):
    name = TranscoderName.JSON

    def encode(self, payload: bytes) -> bytes:
        json.loads(payload)
        return payload

    def decode(self, data: bytes) -> OperationResult:
        return StructuredValue(json.loads(data))


class LegacyTranscoder(Transcoder):
    """
    Stores payloads verbatim and decodes JSON documents when it can.

    No format flag is kept with the document, so a read only yields a
    decoded value when re-encoding that value gives back the stored bytes
    exactly. Everything else (plain text, JSON strings, JSON with
    insignificant whitespace) comes back as raw bytes.
    """

    name = TranscoderName.LEGACY

    def decode(self, data: bytes) -> OperationResult:
        try:
            value = json.loads(data)
        except ValueError:
            return RawBytes(data)
        if isinstance(value, str) or encode_structured(value) != data:
            return RawBytes(data)
        return StructuredValue(value)


_TRANSCODERS: dict[TranscoderName, type[Transcoder]] = {
    TranscoderName.RAW: RawTranscoder,
    TranscoderName.RAWJSON: RawJsonTranscoder,
    TranscoderName.RAWSTRING: RawStringTranscoder,
    TranscoderName.JSON: JsonTranscoder,
    TranscoderName.LEGACY: LegacyTranscoder,
}


def make_transcoder(name: Union[str, TranscoderName, None]) -> Transcoder:
    """
    Build the transcoder for a configured name (default raw).

    Raises:
        ConfigurationError: If the name is unknown.
    """
    return _TRANSCODERS[TranscoderName.parse(name)]()
