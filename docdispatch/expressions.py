from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .errors import ConfigErrorReason, ConfigurationError, DocDispatchError
from .message import Message
from .ops.mapper import encode_structured

_INTERPOLATION_RE = re.compile(r"""\$\{!?\s*((?:[^}"']|"[^"]*"|'[^']*')*?)\s*\}""")
_CALL_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*(?:\(\s*(.*?)\s*\))?$")
_STRING_ARG_RE = re.compile(r"""^(?:"([^"]*)"|'([^']*)')$""")


class EvaluationError(DocDispatchError):
    """A template could not be evaluated against one message."""

    def __init__(self, message: str, key: str = "") -> None:
        super().__init__(message)
        self.key = key


def _content(message: Message, arg: Optional[str]) -> bytes:
    return message.as_bytes()


def _meta(message: Message, arg: Optional[str]) -> bytes:
    return message.meta(arg or "").encode("utf-8")


def _json(message: Message, arg: Optional[str]) -> bytes:
    try:
        value: Any = message.structured()
    except ValueError as exc:
        raise EvaluationError(f"message body is not valid JSON: {exc}") from exc

    for part in (arg or "").split("."):
        if not part:
            continue
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            raise EvaluationError(f"path {arg!r} not found in message body")
    return encode_structured(value)


_FUNCTIONS: dict[str, tuple[Callable[[Message, Optional[str]], bytes], bool]] = {
    # name -> (function, argument required)
    "content": (_content, False),
    "meta": (_meta, True),
    "json": (_json, False),
}


@dataclass(frozen=True)
class _Call:
    name: str
    arg: Optional[str]

    def __call__(self, message: Message) -> bytes:
        return _FUNCTIONS[self.name][0](message, self.arg)


def _parse_call(expr: str) -> _Call:
    match = _CALL_RE.match(expr)
    if match is None:
        raise ConfigurationError(ConfigErrorReason.INVALID_EXPRESSION, repr(expr))
    name, raw_arg = match.group(1), match.group(2)
    if name not in _FUNCTIONS:
        raise ConfigurationError(
            ConfigErrorReason.INVALID_EXPRESSION, f"unknown function {name!r} in {expr!r}"
        )

    arg: Optional[str] = None
    if raw_arg:
        arg_match = _STRING_ARG_RE.match(raw_arg)
        if arg_match is None:
            raise ConfigurationError(
                ConfigErrorReason.INVALID_EXPRESSION,
                f"argument of {name}() must be a quoted string in {expr!r}",
            )
        arg = arg_match.group(1) if arg_match.group(1) is not None else arg_match.group(2)
    if arg is None and _FUNCTIONS[name][1]:
        raise ConfigurationError(
            ConfigErrorReason.INVALID_EXPRESSION, f"{name}() requires an argument"
        )
    return _Call(name, arg)


class Template:
    """
    Interpolated string such as "user:${! json(\"id\") }".

    Interpolations are `${! expr }` (the `!` is optional). Supported:
        content()       the message body
        meta("name")    a metadata value, empty when missing
        json("a.b")     a field of the JSON body, whole document when empty

    Parsed once; malformed templates raise ConfigurationError.
    """

    def __init__(self, source: str) -> None:
        self.source = source
        self._parts: list[Union[bytes, _Call]] = []
        pos = 0
        for match in _INTERPOLATION_RE.finditer(source):
            if match.start() > pos:
                self._parts.append(self._literal(source[pos:match.start()]))
            self._parts.append(_parse_call(match.group(1)))
            pos = match.end()
        if pos < len(source):
            self._parts.append(self._literal(source[pos:]))

    @staticmethod
    def _literal(text: str) -> bytes:
        if "${" in text:
            raise ConfigurationError(
                ConfigErrorReason.INVALID_EXPRESSION, f"unterminated interpolation in {text!r}"
            )
        return text.encode("utf-8")

    def render(self, message: Message) -> bytes:
        return b"".join(
            part if isinstance(part, bytes) else part(message) for part in self._parts
        )

    def __repr__(self) -> str:
        return f"Template({self.source!r})"


class KeyResolver:
    """Produces the document key for a message."""

    def __init__(self, template: Union[str, Template]) -> None:
        self.template = template if isinstance(template, Template) else Template(template)

    def resolve(self, message: Message) -> str:
        try:
            key = self.template.render(message).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EvaluationError(f"key is not valid UTF-8: {exc}") from exc
        if not key:
            raise EvaluationError(f"key template {self.template.source!r} produced an empty key")
        return key


class ValueBuilder:
    """
    Produces the payload for a message, from a template or a callable.

    Callables receive the message and may return bytes, str, or any
    JSON-serialisable value.
    """

    def __init__(self, source: Union[str, Template, Callable[[Message], Any]]) -> None:
        if isinstance(source, str):
            source = Template(source)
        self.source = source

    def build(self, message: Message) -> bytes:
        if isinstance(self.source, Template):
            return self.source.render(message)
        try:
            return encode_structured(self.source(message))
        except EvaluationError:
            raise
        except Exception as exc:
            raise EvaluationError(f"value function failed: {exc}") from exc
