# rtmpkit

Building blocks for an RTMP media server, written with the standard library
only:

- `rtmpkit.commands`: an AMF0 encoder and decoder, the `Message` type,
  parsers for the `connect`, `createStream`, `publish` and `play` commands,
  and builders for the `connect` and `createStream` `_result` replies.
- `rtmpkit.dispatcher`: a `Dispatcher` that routes AMF0 command messages to
  handlers.
- `rtmpkit.media_logger`: a per-connection counter and periodic logger for
  audio and video packets.
- `rtmpkit.registry`: a thread-safe `Registry` of streams, each with one
  publisher, any number of subscribers and relay of media to them.
- `rtmpkit.handlers`: `publish` and `play` handling that updates the registry
  and sends the standard `onStatus` and Stream Begin messages.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## AMF0

```python
from rtmpkit.commands import encode_all, decode_all

payload = encode_all("connect", 1.0, {"app": "live", "objectEncoding": 0.0})
assert decode_all(payload) == ["connect", 1.0, {"app": "live", "objectEncoding": 0.0}]
```

`encode_all` accepts `None`, `bool`, `int`/`float` (written as AMF0 numbers),
`str` (long strings above 65535 bytes), `dict` with string keys (objects) and
`list`/`tuple` (strict arrays). `decode_all` returns numbers as `float`,
booleans as `bool`, null and undefined as `None`, objects and ECMA arrays as
`dict`, and strict arrays as `list`. Unsupported or malformed data raises
`AMFError`.

## Parsing commands and building replies

```python
from rtmpkit.commands import (
    Message,
    StreamIDAllocator,
    build_connect_response,
    build_create_stream_response,
    parse_connect_command,
)

msg = Message(type_id=20, payload=payload)
command = parse_connect_command(msg)          # ConnectCommand(app="live", ...)
reply = build_connect_response(command.transaction_id, "Connection succeeded.")

allocator = StreamIDAllocator()
reply, stream_id = build_create_stream_response(2.0, allocator)   # stream_id == 1
```

`parse_connect_command` requires a non-empty `app` and `objectEncoding` 0.
`parse_play_command(msg, app)` and `parse_publish_command(app, msg)` build the
stream key as `app/name`; `play` defaults `start` to -2 and `duration` to -1,
and `publish` accepts the types `live`, `record` and `append` and uses
`default` for an empty publishing name. Every parser raises `ProtocolError`,
whose `op` attribute names the operation that failed.

## Dispatching

```python
from rtmpkit.dispatcher import Dispatcher

state = {"app": ""}

def on_connect(command, msg):
    state["app"] = command.app

dispatcher = Dispatcher(lambda: state["app"], on_connect=on_connect)
dispatcher.dispatch(msg)
```

Handlers can be set for `connect`, `createStream`, `publish`, `play` and
`deleteStream` (as keyword arguments or the `on_*` attributes); the
`deleteStream` handler receives the decoded AMF0 values. A known command with
no handler raises `ProtocolError`, as do parse errors; exceptions from
handlers propagate. `releaseStream`, `FCPublish`, `FCUnpublish` and unknown
commands are logged and ignored.

## Streams, publishing and playback

```python
from rtmpkit.registry import Registry
from rtmpkit.handlers import handle_publish, handle_play

registry = Registry()
handle_publish(registry, publisher_conn, "live", publish_msg)
handle_play(registry, player_conn, "live", play_msg)
registry.get_stream("live/test").broadcast_message(media_msg)
```

A connection is any object with a `send_message(msg)` method. A second
publisher on the same stream key raises `PublisherExistsError`. Playing a
stream that is missing or has no publisher sends and returns
`NetStream.Play.StreamNotFound`. `broadcast_message` gives each subscriber
its own copy, uses `try_send_message(msg)` where a subscriber provides it,
and caches AAC and AVC sequence headers; players that join later receive
them straight after `NetStream.Play.Start`. `publisher_disconnected` and
`subscriber_disconnected` remove a connection from its stream.

## Media statistics

```python
from rtmpkit.media_logger import MediaLogger

with MediaLogger("conn-1", stats_interval=30.0) as media_logger:
    media_logger.process_message(media_msg)
    print(media_logger.stats())   # MediaStats(audio_count=..., video_count=..., ...)
```

Codec names are filled in only when `detect_audio_codec` or
`detect_video_codec` callables are passed in.

## What the package does not do

rtmpkit has no network listener, RTMP handshake or chunk stream reader and
writer: it works on whole `Message` objects, and the caller moves bytes to
and from sockets. It does not record streams to files, relay to remote
servers, or parse audio and video codecs itself, and it has no command-line
program.