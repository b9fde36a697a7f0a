"""Envelope codec: JSON with a tagged encoding for values JSON cannot carry.

Plain JSON values pass through untouched.  Everything else is wrapped in a tag
object ``{"__jsonf__": <kind>, "value": ...}``:

* ``undefined`` - the :data:`UNDEFINED` sentinel (a field that is present but unset)
* ``nan`` / ``inf`` / ``-inf`` - non-finite floats
* ``function`` - a :class:`ScriptFunction` (body source plus argument names)
* ``bytes`` - raw bytes, base64 encoded
* ``object`` - a dict that itself contains the tag key, so it is not mistaken
  for a tag on the way back
"""

from __future__ import annotations

import base64
import binascii
import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from browser_puppeteer.errors import MalformedEnvelope

TAG = "__jsonf__"


class _Undefined:
    """Singleton marking a value that is present but undefined."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> _Undefined:
        return self

    def __deepcopy__(self, memo: dict) -> _Undefined:
        return self


UNDEFINED = _Undefined()


@dataclass(frozen=True)
class ScriptFunction:
    """Function source shipped to the agent: a body and its parameter names.

    No closure travels with it; everything the body needs must come in through
    its arguments or the evaluation context.
    """

    body: str
    arg_names: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "arg_names", tuple(self.arg_names))


def _pack(value: Any) -> Any:
    if value is UNDEFINED:
        return {TAG: "undefined"}
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, Enum):
        return _pack(value.value)
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            return {TAG: "nan"}
        if math.isinf(value):
            return {TAG: "inf" if value > 0 else "-inf"}
        return value
    if isinstance(value, ScriptFunction):
        return {
            TAG: "function",
            "value": {"body": value.body, "argNames": list(value.arg_names)},
        }
    if isinstance(value, (bytes, bytearray)):
        return {TAG: "bytes", "value": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, BaseModel):
        return _pack(value.model_dump(by_alias=True, exclude_none=True))
    if isinstance(value, Mapping):
        packed: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"cannot encode non-string key {key!r}")
            packed[key] = _pack(item)
        if TAG in value:
            return {TAG: "object", "value": packed}
        return packed
    if isinstance(value, (list, tuple)):
        return [_pack(item) for item in value]
    raise TypeError(f"cannot encode value of type {type(value).__name__}")


def _unpack_tag(tagged: dict[str, Any]) -> Any:
    kind = tagged[TAG]
    inner = tagged.get("value")

    if kind == "undefined":
        return UNDEFINED
    if kind == "nan":
        return math.nan
    if kind == "inf":
        return math.inf
    if kind == "-inf":
        return -math.inf
    if kind == "object":
        if not isinstance(inner, dict):
            raise MalformedEnvelope("tagged object without a dict value")
        return {key: _unpack(item) for key, item in inner.items()}
    if kind == "function":
        if not isinstance(inner, dict) or not isinstance(inner.get("body"), str):
            raise MalformedEnvelope("tagged function without a body")
        arg_names = inner.get("argNames", [])
        if not isinstance(arg_names, list) or not all(isinstance(n, str) for n in arg_names):
            raise MalformedEnvelope("tagged function with invalid argNames")
        return ScriptFunction(inner["body"], tuple(arg_names))
    if kind == "bytes":
        if not isinstance(inner, str):
            raise MalformedEnvelope("tagged bytes without a string value")
        try:
            return base64.b64decode(inner, validate=True)
        except binascii.Error as e:
            raise MalformedEnvelope(f"invalid base64 payload: {e}") from e
    raise MalformedEnvelope(f"unknown tag kind: {kind!r}")


def _unpack(value: Any) -> Any:
    if isinstance(value, list):
        return [_unpack(item) for item in value]
    if isinstance(value, dict):
        if TAG in value:
            return _unpack_tag(value)
        return {key: _unpack(item) for key, item in value.items()}
    return value


def encode(value: Any) -> str:
    """Serialize *value* into a channel payload."""
    return json.dumps(_pack(value), allow_nan=False, separators=(",", ":"))


def decode(payload: str | bytes) -> Any:
    """Deserialize a channel payload produced by :func:`encode`.

    Raises:
        MalformedEnvelope: the payload is not valid JSON or carries a bad tag.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEnvelope(f"payload is not UTF-8: {e}") from e
    try:
        raw = json.loads(payload)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedEnvelope(f"payload is not JSON: {e}") from e
    return _unpack(raw)


def decode_envelope(payload: str | bytes) -> dict[str, Any]:
    """Decode a payload and check it has the envelope shape ``{"type": str, ...}``."""
    value = decode(payload)
    if not isinstance(value, dict) or not isinstance(value.get("type"), str):
        raise MalformedEnvelope("envelope must be an object with a string 'type'")
    return value
