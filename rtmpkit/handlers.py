"""Server-side handling of ``publish`` and ``play`` commands."""

from __future__ import annotations

import dataclasses
import logging
import struct
from typing import Any, Optional, Protocol

from .commands import (
    COMMAND_MESSAGE_AMF0,
    AMFError,
    Message,
    ProtocolError,
    encode_all,
    parse_play_command,
    parse_publish_command,
)
from .registry import Registry

USER_CONTROL_TYPE_ID = 4
CONTROL_CSID = 2
STATUS_CSID = 5
EVENT_STREAM_BEGIN = 0

_log = logging.getLogger("rtmpkit.handlers")


class Sender(Protocol):
    """The part of a connection the handlers need."""

    def send_message(self, msg: Message) -> Any: ...


def _send(conn: Sender, msg: Message) -> None:
    # Delivery failures are not fatal for the handlers; the caller owns the
    # connection's lifecycle.
    try:
        conn.send_message(msg)
    except Exception as exc:
        _log.debug("send failed: %s", exc)


def stream_begin_message(stream_id: int) -> Message:
    """Build a User Control ``Stream Begin`` event for ``stream_id``."""
    payload = struct.pack(">HI", EVENT_STREAM_BEGIN, stream_id)
    return Message(
        csid=CONTROL_CSID,
        type_id=USER_CONTROL_TYPE_ID,
        message_stream_id=0,
        message_length=len(payload),
        payload=payload,
    )


def build_on_status(stream_id: int, stream_key: str, code: str, description: str) -> Message:
    """Build an AMF0 ``onStatus`` notification on message stream ``stream_id``."""
    info = {
        "level": "status",
        "code": code,
        "description": description,
        "details": stream_key,
    }
    payload = encode_all("onStatus", 0.0, None, info)
    return Message(
        csid=STATUS_CSID,
        type_id=COMMAND_MESSAGE_AMF0,
        message_stream_id=stream_id,
        message_length=len(payload),
        payload=payload,
    )


def handle_publish(
    registry: Optional[Registry], conn: Optional[Sender], app: str, msg: Optional[Message]
) -> Message:
    """Register ``conn`` as publisher of the stream named in ``msg``.

    Sends ``onStatus NetStream.Publish.Start`` and returns it. Raises
    ProtocolError for bad input and PublisherExistsError when the stream
    already has a publisher.
    """
    if registry is None or conn is None or msg is None:
        raise ProtocolError("publish.handle", "nil argument")

    command = parse_publish_command(app, msg)

    stream, _ = registry.create_stream(command.stream_key)
    if stream is None:
        raise ProtocolError("publish.handle", "failed to create stream")

    stream.set_publisher(conn)

    try:
        on_status = build_on_status(
            msg.message_stream_id,
            command.stream_key,
            "NetStream.Publish.Start",
            f"Publishing {command.stream_key}.",
        )
    except AMFError as exc:
        raise ProtocolError("publish.handle.encode", str(exc)) from exc

    _send(conn, on_status)
    return on_status


def publisher_disconnected(
    registry: Optional[Registry], stream_key: str, publisher: Any
) -> None:
    """Clear the stream's publisher if it is ``publisher``."""
    if registry is None or not stream_key or publisher is None:
        return
    stream = registry.get_stream(stream_key)
    if stream is None:
        return
    with stream.lock:
        if stream.publisher is publisher:
            stream.publisher = None


def _sequence_header_for(cached: Message, stream_id: int) -> Message:
    return dataclasses.replace(
        cached, payload=bytes(cached.payload), timestamp=0, message_stream_id=stream_id
    )


def handle_play(
    registry: Optional[Registry], conn: Optional[Sender], app: str, msg: Optional[Message]
) -> Message:
    """Subscribe ``conn`` to the stream named in the ``play`` command ``msg``.

    If the stream is missing or has no publisher, sends and returns
    ``NetStream.Play.StreamNotFound``. Otherwise sends Stream Begin,
    ``NetStream.Play.Start`` and any cached sequence headers, and returns the
    ``Play.Start`` status.
    """
    if registry is None or conn is None or msg is None:
        raise ProtocolError("play.handle", "nil argument")

    command = parse_play_command(msg, app)
    key = command.stream_key
    _log.info("play command stream_key=%s", key)

    stream = registry.get_stream(key)
    if stream is None or stream.publisher is None:
        _log.warning("play command failed - stream not found or no publisher stream_key=%s", key)
        not_found = build_on_status(
            msg.message_stream_id, key, "NetStream.Play.StreamNotFound", f"Stream {key} not found."
        )
        _send(conn, not_found)
        return not_found

    stream.add_subscriber(conn)
    _log.info("Subscriber added stream_key=%s total_subscribers=%d", key, stream.subscriber_count())

    _send(conn, stream_begin_message(msg.message_stream_id))

    try:
        started = build_on_status(
            msg.message_stream_id, key, "NetStream.Play.Start", f"Started playing {key}."
        )
    except AMFError as exc:
        raise ProtocolError("play.handle.encode", str(exc)) from exc
    _send(conn, started)

    with stream.lock:
        audio_header = stream.audio_sequence_header
        video_header = stream.video_sequence_header

    for kind, cached in (("audio", audio_header), ("video", video_header)):
        if cached is None:
            continue
        header = _sequence_header_for(cached, msg.message_stream_id)
        _send(conn, header)
        _log.info(
            "Sent cached %s sequence header to subscriber stream_key=%s size=%d",
            kind,
            key,
            len(header.payload),
        )

    return started


def subscriber_disconnected(
    registry: Optional[Registry], stream_key: str, subscriber: Any
) -> None:
    """Remove ``subscriber`` from the stream's subscribers, if present."""
    if registry is None or not stream_key or subscriber is None:
        return
    stream = registry.get_stream(stream_key)
    if stream is None:
        return
    stream.remove_subscriber(subscriber)