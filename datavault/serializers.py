"""
Value serialization by content type.

Vault envelopes record the content type of the plaintext so any reader
can deserialize without an external schema:

- ``application/json`` (default) and any ``+json`` media type: orjson;
  bytes are wrapped as {"__vault_bytes_b64__": "<base64>"} for a safe
  JSON round-trip.
- ``application/x-jsonpickle``: jsonpickle, for arbitrary Python objects.
- ``text/*``: UTF-8 text.
- ``application/octet-stream``: raw bytes.

Content types are matched on the media type; parameters such as
``charset`` are ignored.

Security Note:
    The recorded content type is not authenticated, and decoding
    jsonpickle can instantiate arbitrary objects. jsonpickle values are
    only decoded when the caller opts in with ``allow_pickle=True``.
"""
import base64
from typing import Any, Callable, Optional

import orjson
import jsonpickle

CONTENT_JSON = "application/json"
CONTENT_JSONPICKLE = "application/x-jsonpickle"
CONTENT_TEXT = "text/plain"
CONTENT_BINARY = "application/octet-stream"

DEFAULT_CONTENT_TYPE = CONTENT_JSON

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"


class UnsafeContentType(ValueError):
    """Decoding this content type would execute stored data."""


def _json_dumps(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        wrapped = {_BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}
        return orjson.dumps(wrapped)
    return orjson.dumps(value)


def _json_loads(data: bytes) -> Any:
    parsed = orjson.loads(data)
    if isinstance(parsed, dict) and _BYTES_WRAPPER_KEY in parsed and len(parsed) == 1:
        return base64.b64decode(parsed[_BYTES_WRAPPER_KEY])
    return parsed


def _pickle_dumps(value: Any) -> bytes:
    try:
        return jsonpickle.encode(value, keys=True).encode("utf-8")
    except Exception as err:
        raise RuntimeError(err) from err


def _pickle_loads(data: bytes) -> Any:
    try:
        return jsonpickle.decode(data.decode("utf-8"), keys=True)
    except Exception as err:
        raise RuntimeError(err) from err


def _text_dumps(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return str(value).encode("utf-8")


def _binary_dumps(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise TypeError(
            f"{CONTENT_BINARY} values must be bytes, got {type(value).__name__}"
        )
    return bytes(value)


_SERIALIZERS: dict[str, tuple[Callable[[Any], bytes], Callable[[bytes], Any]]] = {
    CONTENT_JSON: (_json_dumps, _json_loads),
    CONTENT_JSONPICKLE: (_pickle_dumps, _pickle_loads),
    CONTENT_TEXT: (_text_dumps, lambda data: data.decode("utf-8")),
    CONTENT_BINARY: (_binary_dumps, bytes),
}


def media_type(content_type: str) -> str:
    """Lower-cased media type of ``content_type``, without parameters."""
    return content_type.split(";", 1)[0].strip().lower()


def serializer_for(content_type: str) -> Optional[str]:
    """Name of the built-in serializer handling ``content_type``, if any."""
    mtype = media_type(content_type)
    if mtype in _SERIALIZERS:
        return mtype
    if mtype.endswith("+json"):
        return CONTENT_JSON
    if mtype.startswith("text/"):
        return CONTENT_TEXT
    return None


def guess_content_type(value: Any) -> str:
    """Pick a content type for a value when the caller gives none."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return CONTENT_BINARY
    return DEFAULT_CONTENT_TYPE


def serialize_value(value: Any, content_type: str = DEFAULT_CONTENT_TYPE) -> bytes:
    """Serialize a Python value to bytes for encryption.

    Raises:
        ValueError: If no built-in serializer handles ``content_type``;
            pass a custom serializer for such values.
    """
    name = serializer_for(content_type)
    if name is None:
        raise ValueError(
            f"No serializer for content type {content_type!r}; "
            "pass a custom serializer"
        )
    dumps, _ = _SERIALIZERS[name]
    return dumps(value)


def deserialize_value(
    data: bytes,
    content_type: str = DEFAULT_CONTENT_TYPE,
    allow_pickle: bool = False,
) -> Any:
    """Deserialize decrypted bytes according to their recorded content type.

    Unknown content types are returned as raw bytes.

    Raises:
        UnsafeContentType: For jsonpickle data unless ``allow_pickle`` is set.
    """
    name = serializer_for(content_type)
    if name is None:
        return bytes(data)
    if name == CONTENT_JSONPICKLE and not allow_pickle:
        raise UnsafeContentType(
            f"Refusing to decode {CONTENT_JSONPICKLE} without allow_pickle"
        )
    _, loads = _SERIALIZERS[name]
    return loads(data)
