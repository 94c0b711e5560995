"""Routing of AMF0 command messages to registered handlers."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .commands import (
    COMMAND_MESSAGE_AMF0,
    AMFError,
    ConnectCommand,
    CreateStreamCommand,
    Message,
    PlayCommand,
    ProtocolError,
    PublishCommand,
    decode_all,
    parse_connect_command,
    parse_create_stream_command,
    parse_play_command,
    parse_publish_command,
)

_log = logging.getLogger("rtmpkit.dispatcher")

ConnectHandler = Callable[[ConnectCommand, Message], Any]
CreateStreamHandler = Callable[[CreateStreamCommand, Message], Any]
PublishHandler = Callable[[PublishCommand, Message], Any]
PlayHandler = Callable[[PlayCommand, Message], Any]
DeleteStreamHandler = Callable[[list, Message], Any]

_IGNORED_COMMANDS = frozenset({"releaseStream", "FCPublish", "FCUnpublish"})
_PREVIEW_BYTES = 32


def preview_hex(data: bytes, limit: int) -> str:
    """Return the first ``limit`` bytes of ``data`` as space-separated hex."""
    return bytes(data[:limit]).hex(" ")


class Dispatcher:
    """Route AMF0 command messages to the handler registered for the command.

    ``app_provider`` returns the application name negotiated by ``connect``;
    it is consulted when parsing ``publish`` and ``play``. Handler exceptions
    and parse errors propagate to the caller; unknown commands are logged and
    ignored.
    """

    def __init__(
        self,
        app_provider: Optional[Callable[[], str]] = None,
        *,
        on_connect: Optional[ConnectHandler] = None,
        on_create_stream: Optional[CreateStreamHandler] = None,
        on_publish: Optional[PublishHandler] = None,
        on_play: Optional[PlayHandler] = None,
        on_delete_stream: Optional[DeleteStreamHandler] = None,
    ) -> None:
        self.app_provider = app_provider
        self.on_connect = on_connect
        self.on_create_stream = on_create_stream
        self.on_publish = on_publish
        self.on_play = on_play
        self.on_delete_stream = on_delete_stream

    def _current_app(self) -> str:
        return self.app_provider() if self.app_provider is not None else ""

    @staticmethod
    def _no_handler(name: str) -> ProtocolError:
        return ProtocolError("dispatch", f'no handler registered for command "{name}"')

    def dispatch(self, msg: Optional[Message]) -> None:
        """Parse ``msg`` and invoke the matching handler."""
        if msg is None:
            raise ProtocolError("dispatch", "nil message")
        if msg.type_id != COMMAND_MESSAGE_AMF0:
            raise ProtocolError("dispatch", f"unexpected message type {msg.type_id}")
        try:
            values = decode_all(msg.payload)
        except AMFError as exc:
            raise ProtocolError("dispatch.decode", str(exc)) from exc
        if not values:
            raise ProtocolError("dispatch", "empty AMF payload")
        name = values[0]
        if not isinstance(name, str):
            raise ProtocolError("dispatch", "first AMF value not a string (command name)")

        if name == "connect":
            if self.on_connect is None:
                _log.error("no on_connect handler registered")
                raise self._no_handler(name)
            try:
                command = parse_connect_command(msg)
            except ProtocolError as exc:
                _log.error("connect parse error: %s", exc)
                raise
            _log.debug("invoking connect handler app=%s tcUrl=%s", command.app, command.tc_url)
            self.on_connect(command, msg)
        elif name == "createStream":
            if self.on_create_stream is None:
                _log.error("no on_create_stream handler registered")
                raise self._no_handler(name)
            try:
                create = parse_create_stream_command(msg)
            except ProtocolError as exc:
                _log.error("createStream parse error: %s", exc)
                raise
            _log.debug("invoking createStream handler txn_id=%s", create.transaction_id)
            self.on_create_stream(create, msg)
        elif name == "publish":
            if self.on_publish is None:
                raise self._no_handler(name)
            self.on_publish(parse_publish_command(self._current_app(), msg), msg)
        elif name == "play":
            if self.on_play is None:
                raise self._no_handler(name)
            self.on_play(parse_play_command(msg, self._current_app()), msg)
        elif name == "deleteStream":
            if self.on_delete_stream is None:
                raise self._no_handler(name)
            self.on_delete_stream(values, msg)
        elif name in _IGNORED_COMMANDS:
            _log.debug("ignoring optional command name=%s", name)
        else:
            _log.warning(
                "unknown command name=%s len=%d payload_preview=%s",
                name,
                len(values),
                preview_hex(msg.payload, _PREVIEW_BYTES),
            )