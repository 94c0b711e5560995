"""Thread-safe registry of active streams and media relay to subscribers."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .commands import Message

AUDIO_TYPE_ID = 8
VIDEO_TYPE_ID = 9
_AAC_SOUND_FORMAT = 0x0A
_AVC_CODEC_ID = 7
_DIAGNOSTIC_BYTES = 10

_log = logging.getLogger("rtmpkit.registry")


class PublisherExistsError(Exception):
    """Raised when a stream already has a publisher."""

    def __init__(self) -> None:
        super().__init__("publisher already registered for stream")


def _clone(msg: Message, **changes: Any) -> Message:
    return dataclasses.replace(msg, payload=bytes(msg.payload), **changes)


@dataclass(eq=False)
class Stream:
    """A server-side stream: one publisher and any number of subscribers.

    Subscribers are objects with a ``send_message(msg)`` method; those that
    also provide ``try_send_message(msg)`` returning a bool are fed through it
    so slow subscribers can drop messages instead of blocking.
    """

    key: str
    publisher: Any = None
    subscribers: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    video_codec: str = ""
    audio_codec: str = ""
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    recorder: Any = None
    audio_sequence_header: Optional[Message] = None
    video_sequence_header: Optional[Message] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def set_publisher(self, publisher: Any) -> None:
        """Register ``publisher``; raise PublisherExistsError if one is set."""
        if publisher is None:
            return
        with self.lock:
            if self.publisher is not None:
                raise PublisherExistsError()
            self.publisher = publisher

    def add_subscriber(self, subscriber: Any) -> None:
        """Add ``subscriber`` (``None`` is ignored)."""
        if subscriber is None:
            return
        with self.lock:
            self.subscribers.append(subscriber)

    def remove_subscriber(self, subscriber: Any) -> None:
        """Remove the first subscriber that is ``subscriber``; order is not kept."""
        if subscriber is None:
            return
        with self.lock:
            for index, existing in enumerate(self.subscribers):
                if existing is subscriber:
                    self.subscribers[index] = self.subscribers[-1]
                    self.subscribers.pop()
                    break

    def subscriber_count(self) -> int:
        """Return the current number of subscribers."""
        with self.lock:
            return len(self.subscribers)

    def _cache_sequence_header(self, msg: Message) -> None:
        payload = msg.payload
        if len(payload) < 2 or payload[1] != 0:
            return
        if msg.type_id == VIDEO_TYPE_ID:
            with self.lock:
                self.video_sequence_header = _clone(msg)
            _log.info("Cached video sequence header stream_key=%s size=%d", self.key, len(payload))
        elif msg.type_id == AUDIO_TYPE_ID and payload[0] >> 4 == _AAC_SOUND_FORMAT:
            with self.lock:
                self.audio_sequence_header = _clone(msg)
            _log.info("Cached audio sequence header stream_key=%s size=%d", self.key, len(payload))

    def _log_video_structure(self, msg: Message) -> None:
        payload = msg.payload
        if msg.type_id != VIDEO_TYPE_ID or len(payload) < 5:
            return
        frame_type = (payload[0] >> 4) & 0x0F
        codec_id = payload[0] & 0x0F
        _log.debug(
            "Video packet structure before relay frame_type=%d codec_id=%d "
            "avc_packet_type=%d payload_len=%d first_bytes=%s",
            frame_type,
            codec_id,
            payload[1],
            len(payload),
            bytes(payload[:_DIAGNOSTIC_BYTES]).hex(" ").upper(),
        )
        if codec_id != _AVC_CODEC_ID:
            _log.warning("Invalid AVC codec ID in video packet codec_id=%d expected=%d",
                         codec_id, _AVC_CODEC_ID)

    def broadcast_message(self, msg: Optional[Message]) -> None:
        """Relay a publisher's message to every subscriber, each getting its own copy.

        AVC and AAC sequence headers are cached for subscribers that join later.
        """
        if msg is None:
            return
        self._cache_sequence_header(msg)
        self._log_video_structure(msg)

        with self.lock:
            subscribers = list(self.subscribers)

        for subscriber in subscribers:
            if subscriber is None:
                continue
            relay = _clone(msg)
            try_send = getattr(subscriber, "try_send_message", None)
            if callable(try_send):
                if not try_send(relay):
                    _log.debug("Dropped media message (slow subscriber) stream_key=%s", self.key)
                continue
            try:
                subscriber.send_message(relay)
            except Exception as exc:  # one failing subscriber must not stop the relay
                _log.debug("send to subscriber failed stream_key=%s error=%s", self.key, exc)


class Registry:
    """All active streams, keyed by ``app/stream``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[str, Stream] = {}

    def create_stream(self, key: str) -> tuple[Optional[Stream], bool]:
        """Return ``(stream, created)``, creating the stream if it is new.

        An empty key yields ``(None, False)``.
        """
        if not key:
            return None, False
        with self._lock:
            existing = self._streams.get(key)
            if existing is not None:
                return existing, False
            stream = Stream(key=key)
            self._streams[key] = stream
            return stream, True

    def get_stream(self, key: str) -> Optional[Stream]:
        """Return the stream for ``key`` or ``None``."""
        with self._lock:
            return self._streams.get(key)

    def delete_stream(self, key: str) -> bool:
        """Remove the stream for ``key``; return whether it existed."""
        if not key:
            return False
        with self._lock:
            return self._streams.pop(key, None) is not None

    def streams(self) -> list[Stream]:
        """Return a snapshot of all registered streams."""
        with self._lock:
            return list(self._streams.values())