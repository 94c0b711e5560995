"""Per-connection statistics and logging for incoming media packets."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .commands import Message

AUDIO_TYPE_ID = 8
VIDEO_TYPE_ID = 9
DEFAULT_STATS_INTERVAL = 30.0

CodecDetector = Callable[[bytes], str]


def media_type_name(type_id: int) -> str:
    """Return ``"audio"``, ``"video"`` or ``"unknown"`` for a message type ID."""
    if type_id == AUDIO_TYPE_ID:
        return "audio"
    if type_id == VIDEO_TYPE_ID:
        return "video"
    return "unknown"


@dataclass(frozen=True)
class MediaStats:
    """A snapshot of a connection's media counters."""

    audio_count: int = 0
    video_count: int = 0
    total_bytes: int = 0
    audio_codec: str = ""
    video_codec: str = ""


class MediaLogger:
    """Count audio/video packets and log statistics periodically.

    Codec names are filled in by the optional ``detect_audio_codec`` and
    ``detect_video_codec`` callables, which take the first non-empty payload
    of their kind and return a codec name or raise ``ValueError``.
    """

    def __init__(
        self,
        conn_id: str,
        logger: Optional[logging.Logger] = None,
        stats_interval: float = DEFAULT_STATS_INTERVAL,
        *,
        detect_audio_codec: Optional[CodecDetector] = None,
        detect_video_codec: Optional[CodecDetector] = None,
    ) -> None:
        self.conn_id = conn_id
        self._log = logger or logging.getLogger("rtmpkit.media_logger")
        self.stats_interval = stats_interval or DEFAULT_STATS_INTERVAL
        self._detect_audio = detect_audio_codec
        self._detect_video = detect_video_codec
        self._lock = threading.Lock()
        self._audio_count = 0
        self._video_count = 0
        self._total_bytes = 0
        self._audio_codec = ""
        self._video_codec = ""
        self._first_packet: Optional[float] = None
        self._last_packet: Optional[float] = None
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._stats_loop, name=f"media-stats-{conn_id}", daemon=True
        )
        self._thread.start()

    def __enter__(self) -> "MediaLogger":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @staticmethod
    def _detect(detector: Optional[CodecDetector], payload: bytes) -> str:
        if detector is None or not payload:
            return ""
        try:
            return detector(payload)
        except ValueError:
            return ""

    def process_message(self, msg: Optional[Message]) -> None:
        """Account for ``msg`` if it is an audio or video message."""
        if msg is None or msg.type_id not in (AUDIO_TYPE_ID, VIDEO_TYPE_ID):
            return
        kind = media_type_name(msg.type_id)
        with self._lock:
            now = time.monotonic()
            if self._first_packet is None:
                self._first_packet = now
                self._log.info(
                    "First media packet received conn_id=%s type=%s timestamp=%d",
                    self.conn_id,
                    kind,
                    msg.timestamp,
                )
            self._last_packet = now
            self._total_bytes += len(msg.payload)

            if msg.type_id == AUDIO_TYPE_ID:
                self._audio_count += 1
                if not self._audio_codec:
                    codec = self._detect(self._detect_audio, msg.payload)
                    if codec:
                        self._audio_codec = codec
                        self._log.info(
                            "Audio codec detected conn_id=%s codec=%s", self.conn_id, codec
                        )
            else:
                self._video_count += 1
                if not self._video_codec:
                    codec = self._detect(self._detect_video, msg.payload)
                    if codec:
                        self._video_codec = codec
                        self._log.info(
                            "Video codec detected conn_id=%s codec=%s", self.conn_id, codec
                        )

            self._log.debug(
                "Media packet conn_id=%s type=%s csid=%d msid=%d timestamp=%d "
                "length=%d payload_size=%d",
                self.conn_id,
                kind,
                msg.csid,
                msg.message_stream_id,
                msg.timestamp,
                msg.message_length,
                len(msg.payload),
            )

    def _stats_loop(self) -> None:
        while not self._stopped.wait(self.stats_interval):
            self._log_stats()

    def _log_stats(self) -> None:
        with self._lock:
            if self._audio_count == 0 and self._video_count == 0:
                return
            start = self._first_packet if self._first_packet is not None else time.monotonic()
            duration = time.monotonic() - start
            bitrate = self._total_bytes * 8 / duration / 1000.0 if duration > 0 else 0.0
            self._log.info(
                "Media statistics conn_id=%s audio_packets=%d video_packets=%d "
                "total_bytes=%d bitrate_kbps=%d audio_codec=%s video_codec=%s duration_sec=%d",
                self.conn_id,
                self._audio_count,
                self._video_count,
                self._total_bytes,
                int(bitrate),
                self._audio_codec,
                self._video_codec,
                int(duration),
            )

    def stats(self) -> MediaStats:
        """Return the current counters and detected codecs."""
        with self._lock:
            return MediaStats(
                audio_count=self._audio_count,
                video_count=self._video_count,
                total_bytes=self._total_bytes,
                audio_codec=self._audio_codec,
                video_codec=self._video_codec,
            )

    def stop(self) -> None:
        """Stop periodic logging and log the final statistics once."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._thread.join()
        self._log_stats()