"""AMF0 command messages: encoding, parsing and response builders."""

from __future__ import annotations

import math
import struct
import threading
from dataclasses import dataclass, field
from typing import Any

COMMAND_MESSAGE_AMF0 = 20
COMMAND_CSID = 3

_NUMBER = 0x00
_BOOLEAN = 0x01
_STRING = 0x02
_OBJECT = 0x03
_NULL = 0x05
_UNDEFINED = 0x06
_ECMA_ARRAY = 0x08
_OBJECT_END = 0x09
_STRICT_ARRAY = 0x0A
_LONG_STRING = 0x0C

_MAX_SHORT_STRING = 0xFFFF


class AMFError(ValueError):
    """Raised when AMF0 data cannot be encoded or decoded."""


class ProtocolError(Exception):
    """A protocol-level failure, tagged with the operation that failed."""

    def __init__(self, op: str, message: str) -> None:
        super().__init__(f"{op}: {message}")
        self.op = op
        self.message = message


@dataclass
class Message:
    """A complete RTMP message."""

    csid: int = 0
    type_id: int = 0
    timestamp: int = 0
    message_stream_id: int = 0
    message_length: int = 0
    payload: bytes = b""


# ---------------------------------------------------------------- AMF0 ---


def _encode_key(key: str) -> bytes:
    raw = key.encode("utf-8")
    if len(raw) > _MAX_SHORT_STRING:
        raise AMFError(f"object key too long ({len(raw)} bytes)")
    return struct.pack(">H", len(raw)) + raw


def _encode_value(value: Any) -> bytes:
    if value is None:
        return bytes([_NULL])
    if isinstance(value, bool):
        return bytes([_BOOLEAN, 1 if value else 0])
    if isinstance(value, (int, float)):
        return bytes([_NUMBER]) + struct.pack(">d", float(value))
    if isinstance(value, str):
        raw = value.encode("utf-8")
        if len(raw) > _MAX_SHORT_STRING:
            return bytes([_LONG_STRING]) + struct.pack(">I", len(raw)) + raw
        return bytes([_STRING]) + struct.pack(">H", len(raw)) + raw
    if isinstance(value, dict):
        parts = [bytes([_OBJECT])]
        for key, item in value.items():
            if not isinstance(key, str):
                raise AMFError(f"object key must be a string, got {type(key).__name__}")
            parts.append(_encode_key(key))
            parts.append(_encode_value(item))
        parts.append(b"\x00\x00" + bytes([_OBJECT_END]))
        return b"".join(parts)
    if isinstance(value, (list, tuple)):
        parts = [bytes([_STRICT_ARRAY]), struct.pack(">I", len(value))]
        parts.extend(_encode_value(item) for item in value)
        return b"".join(parts)
    raise AMFError(f"unsupported AMF0 value type {type(value).__name__}")


def encode_all(*args: Any) -> bytes:
    """Encode each argument as an AMF0 value and concatenate the results."""
    return b"".join(_encode_value(value) for value in args)


class _Decoder:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(bytes(data))
        self._pos = 0

    @property
    def done(self) -> bool:
        return self._pos >= len(self._data)

    def _take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise AMFError(f"truncated AMF0 data at offset {self._pos}")
        chunk = bytes(self._data[self._pos:end])
        self._pos = end
        return chunk

    def _utf8(self, count: int) -> str:
        raw = self._take(count)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AMFError(f"invalid UTF-8 in string: {exc}") from exc

    def _short_string(self) -> str:
        (length,) = struct.unpack(">H", self._take(2))
        return self._utf8(length)

    def _properties(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        while True:
            (length,) = struct.unpack(">H", self._take(2))
            if length == 0:
                marker = self._take(1)[0]
                if marker == _OBJECT_END:
                    return result
                raise AMFError(f"expected object end marker, got 0x{marker:02x}")
            key = self._utf8(length)
            result[key] = self.value()

    def value(self) -> Any:
        marker = self._take(1)[0]
        if marker == _NUMBER:
            return struct.unpack(">d", self._take(8))[0]
        if marker == _BOOLEAN:
            return self._take(1)[0] != 0
        if marker == _STRING:
            return self._short_string()
        if marker == _LONG_STRING:
            (length,) = struct.unpack(">I", self._take(4))
            return self._utf8(length)
        if marker == _OBJECT:
            return self._properties()
        if marker == _ECMA_ARRAY:
            self._take(4)  # approximate count, unused
            return self._properties()
        if marker in (_NULL, _UNDEFINED):
            return None
        if marker == _STRICT_ARRAY:
            (count,) = struct.unpack(">I", self._take(4))
            return [self.value() for _ in range(count)]
        raise AMFError(f"unsupported AMF0 marker 0x{marker:02x}")


def decode_all(data: bytes) -> list[Any]:
    """Decode every AMF0 value in ``data``."""
    decoder = _Decoder(data)
    values = []
    while not decoder.done:
        values.append(decoder.value())
    return values


# ------------------------------------------------------------- helpers ---


def _decode_command(op: str, msg: Message | None) -> list[Any]:
    if msg is None:
        raise ProtocolError(op, "nil message")
    if msg.type_id != COMMAND_MESSAGE_AMF0:
        raise ProtocolError(op, f"unexpected message type {msg.type_id}")
    try:
        return decode_all(msg.payload)
    except AMFError as exc:
        raise ProtocolError(f"{op}.decode", str(exc)) from exc


def _is_number(value: Any) -> bool:
    return isinstance(value, float)


def _command_message(payload: bytes, stream_id: int = 0) -> Message:
    return Message(
        csid=COMMAND_CSID,
        type_id=COMMAND_MESSAGE_AMF0,
        message_stream_id=stream_id,
        payload=payload,
        message_length=len(payload),
    )


def _encode_response(op: str, *values: Any) -> bytes:
    try:
        return encode_all(*values)
    except AMFError as exc:
        raise ProtocolError(op, f"amf encode: {exc}") from exc


# ------------------------------------------------------------- connect ---


@dataclass
class ConnectCommand:
    """Fields of a parsed ``connect`` command."""

    transaction_id: float
    app: str = ""
    flash_ver: str = ""
    tc_url: str = ""
    object_encoding: float = 0.0
    raw_command_object: dict[str, Any] = field(default_factory=dict)


def parse_connect_command(msg: Message | None) -> ConnectCommand:
    """Parse and validate a ``connect`` command message."""
    op = "connect.parse"
    values = _decode_command(op, msg)
    if len(values) < 3:
        raise ProtocolError(op, f"expected >=3 AMF values, got {len(values)}")
    if values[0] != "connect" or not isinstance(values[0], str):
        raise ProtocolError(op, "first value must be string 'connect'")
    if not _is_number(values[1]):
        raise ProtocolError(op, "second value must be number transaction ID")
    obj = values[2]
    if not isinstance(obj, dict):
        raise ProtocolError(op, "third value must be object commandObject")

    def text(key: str) -> str:
        value = obj.get(key)
        return value if isinstance(value, str) else ""

    encoding = obj.get("objectEncoding")
    command = ConnectCommand(
        transaction_id=values[1],
        app=text("app"),
        flash_ver=text("flashVer"),
        tc_url=text("tcUrl"),
        object_encoding=encoding if _is_number(encoding) else 0.0,
        raw_command_object=obj,
    )
    if not command.app:
        raise ProtocolError("connect.validate", "app field required")
    if command.object_encoding != 0:
        raise ProtocolError(
            "connect.validate",
            f"unsupported objectEncoding {command.object_encoding:.0f} (only 0 supported)",
        )
    return command


def build_connect_response(transaction_id: float, description: str) -> Message:
    """Build the ``_result`` reply to a successful ``connect``."""
    properties = {
        "fmsVer": "FMS/3,0,1,123",
        "capabilities": 31.0,
        "mode": 1.0,
    }
    information = {
        "level": "status",
        "code": "NetConnection.Connect.Success",
        "description": description,
        "data": {"version": "3,0,1,123"},
    }
    payload = _encode_response(
        "connect.response.encode", "_result", float(transaction_id), properties, information
    )
    return _command_message(payload)


# -------------------------------------------------------- createStream ---


@dataclass
class CreateStreamCommand:
    """A parsed ``createStream`` command."""

    transaction_id: float


def parse_create_stream_command(msg: Message | None) -> CreateStreamCommand:
    """Parse a ``createStream`` command message."""
    op = "createstream.parse"
    values = _decode_command(op, msg)
    if len(values) < 3:
        raise ProtocolError(op, f"expected >=3 AMF values, got {len(values)}")
    if values[0] != "createStream" or not isinstance(values[0], str):
        raise ProtocolError(op, "first value must be string 'createStream'")
    if not _is_number(values[1]):
        raise ProtocolError(op, "second value must be number transaction ID")
    return CreateStreamCommand(transaction_id=values[1])


class StreamIDAllocator:
    """Thread-safe allocator of message stream IDs, starting at 1."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next = 1

    def allocate(self) -> int:
        """Return the next stream ID."""
        with self._lock:
            stream_id = self._next
            self._next = (self._next + 1) & 0xFFFFFFFF
            return stream_id


def build_create_stream_response(
    transaction_id: float, allocator: StreamIDAllocator | None
) -> tuple[Message, int]:
    """Build the ``_result`` reply to ``createStream``; returns (message, stream id)."""
    if allocator is None:
        raise ProtocolError("createstream.response", "nil allocator")
    stream_id = allocator.allocate()
    payload = _encode_response(
        "createstream.response.encode",
        "_result",
        float(transaction_id),
        None,
        float(stream_id),
    )
    return _command_message(payload), stream_id


# ---------------------------------------------------------------- play ---


@dataclass
class PlayCommand:
    """A parsed ``play`` command."""

    app: str
    stream_name: str
    stream_key: str
    start: int = -2
    duration: int = -1
    reset: bool = False
    raw_values: list[Any] = field(default_factory=list)


def _as_int(value: Any, default: int) -> int:
    if _is_number(value) and math.isfinite(value):
        return int(value)
    return default


def parse_play_command(msg: Message | None, app: str) -> PlayCommand:
    """Parse a ``play`` command; ``app`` comes from the earlier ``connect``."""
    op = "play.parse"
    values = _decode_command(op, msg)
    if len(values) < 4:
        raise ProtocolError(op, f"expected >=4 AMF values, got {len(values)}")
    if values[0] != "play" or not isinstance(values[0], str):
        raise ProtocolError(op, "first value must be string 'play'")
    stream_name = values[3]
    if not isinstance(stream_name, str) or not stream_name:
        raise ProtocolError(op, "missing stream name")

    start = _as_int(values[4], -2) if len(values) >= 5 else -2
    duration = _as_int(values[5], -1) if len(values) >= 6 else -1
    reset = len(values) >= 7 and values[6] is True

    return PlayCommand(
        app=app,
        stream_name=stream_name,
        stream_key=f"{app}/{stream_name}",
        start=start,
        duration=duration,
        reset=reset,
        raw_values=values,
    )


# ------------------------------------------------------------- publish ---

_PUBLISHING_TYPES = frozenset({"live", "record", "append"})


@dataclass
class PublishCommand:
    """A parsed ``publish`` command."""

    publishing_name: str
    publishing_type: str
    stream_key: str


def parse_publish_command(app: str, msg: Message | None) -> PublishCommand:
    """Parse a ``publish`` command; ``app`` comes from the earlier ``connect``."""
    op = "publish.parse"
    if msg is None:
        raise ProtocolError(op, "nil message")
    if msg.type_id != COMMAND_MESSAGE_AMF0:
        raise ProtocolError(op, f"unexpected message type {msg.type_id}")
    if not app:
        raise ProtocolError(op, "app required to build stream key")
    values = _decode_command(op, msg)
    if len(values) < 5:
        raise ProtocolError(op, f"expected >=5 AMF values, got {len(values)}")
    if values[0] != "publish" or not isinstance(values[0], str):
        raise ProtocolError(op, "first value must be string 'publish'")
    publishing_name = values[3]
    if not isinstance(publishing_name, str):
        raise ProtocolError(op, "publishingName must be string")
    if not publishing_name:
        publishing_name = "default"
    publishing_type = values[4]
    if not isinstance(publishing_type, str) or not publishing_type:
        raise ProtocolError(op, "publishingType required")
    if publishing_type not in _PUBLISHING_TYPES:
        raise ProtocolError(op, f"unsupported publishingType {publishing_type!r}")
    return PublishCommand(
        publishing_name=publishing_name,
        publishing_type=publishing_type,
        stream_key=f"{app}/{publishing_name}",
    )