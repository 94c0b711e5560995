import pytest

from rtmpkit.commands import Message
from rtmpkit.registry import PublisherExistsError, Registry, Stream


class RecordingSubscriber:
    def __init__(self):
        self.received = []

    def send_message(self, msg):
        self.received.append(msg)


class FailingSubscriber:
    def send_message(self, msg):
        raise OSError("broken pipe")


class TrySubscriber:
    def __init__(self, accept):
        self.accept = accept
        self.offered = []
        self.sent = []

    def try_send_message(self, msg):
        self.offered.append(msg)
        return self.accept

    def send_message(self, msg):
        self.sent.append(msg)


def test_registry_create_and_get():
    registry = Registry()
    stream, created = registry.create_stream("app/stream1")
    assert created is True
    assert stream.key == "app/stream1"
    again, created_again = registry.create_stream("app/stream1")
    assert created_again is False
    assert again is stream
    assert registry.get_stream("app/stream1") is stream
    assert registry.get_stream("missing") is None


def test_registry_create_empty_key():
    registry = Registry()
    assert registry.create_stream("") == (None, False)
    assert registry.streams() == []


def test_registry_publisher():
    registry = Registry()
    stream, _ = registry.create_stream("app/stream2")
    stream.set_publisher("pub1")
    assert stream.publisher == "pub1"
    with pytest.raises(PublisherExistsError):
        stream.set_publisher("pub2")
    assert stream.publisher == "pub1"


def test_set_publisher_none_is_ignored():
    stream = Stream(key="app/x")
    stream.set_publisher(None)
    assert stream.publisher is None


def test_registry_subscribers():
    registry = Registry()
    stream, _ = registry.create_stream("app/stream3")
    stream.add_subscriber(RecordingSubscriber())
    stream.add_subscriber(RecordingSubscriber())
    stream.add_subscriber(None)
    assert stream.subscriber_count() == 2


def test_remove_subscriber_by_identity():
    stream = Stream(key="app/s")
    first, second, third = RecordingSubscriber(), RecordingSubscriber(), RecordingSubscriber()
    for sub in (first, second, third):
        stream.add_subscriber(sub)
    stream.remove_subscriber(first)
    assert stream.subscriber_count() == 2
    assert stream.subscribers == [third, second]
    stream.remove_subscriber(RecordingSubscriber())
    assert stream.subscriber_count() == 2


def test_registry_delete():
    registry = Registry()
    registry.create_stream("app/stream4")
    assert registry.delete_stream("app/stream4") is True
    assert registry.get_stream("app/stream4") is None
    assert registry.delete_stream("app/stream4") is False
    assert registry.delete_stream("") is False


def test_broadcast_delivers_independent_copies():
    stream = Stream(key="live/test")
    a, b = RecordingSubscriber(), RecordingSubscriber()
    stream.add_subscriber(a)
    stream.add_subscriber(b)
    msg = Message(csid=4, type_id=8, timestamp=1000, message_stream_id=1,
                  message_length=3, payload=bytearray(b"\xaf\x01\x02"))
    stream.broadcast_message(msg)
    assert len(a.received) == 1 and len(b.received) == 1
    assert a.received[0] is not msg
    assert a.received[0] is not b.received[0]
    assert a.received[0].payload == b"\xaf\x01\x02"
    assert a.received[0].timestamp == 1000
    assert a.received[0].type_id == 8


def test_broadcast_caches_video_sequence_header():
    stream = Stream(key="live/test")
    msg = Message(csid=6, type_id=9, timestamp=2000, message_stream_id=1,
                  payload=b"\x17\x00\x00\x00\x00\x01\x64")
    stream.broadcast_message(msg)
    header = stream.video_sequence_header
    assert header is not None
    assert header is not msg
    assert header.payload == msg.payload
    assert header.timestamp == 2000
    assert stream.audio_sequence_header is None


def test_broadcast_caches_only_aac_audio_sequence_header():
    stream = Stream(key="live/test")
    stream.broadcast_message(Message(type_id=8, payload=b"\x2f\x00\x01"))
    assert stream.audio_sequence_header is None
    stream.broadcast_message(Message(type_id=8, payload=b"\xaf\x01\x01"))
    assert stream.audio_sequence_header is None
    stream.broadcast_message(Message(type_id=8, payload=b"\xaf\x00\x12\x10"))
    assert stream.audio_sequence_header.payload == b"\xaf\x00\x12\x10"


def test_broadcast_uses_try_send_when_available():
    stream = Stream(key="live/test")
    slow = TrySubscriber(accept=False)
    fast = TrySubscriber(accept=True)
    stream.add_subscriber(slow)
    stream.add_subscriber(fast)
    stream.broadcast_message(Message(type_id=9, payload=b"\x27\x01\x00\x00\x00"))
    assert len(slow.offered) == 1 and slow.sent == []
    assert len(fast.offered) == 1 and fast.sent == []


def test_broadcast_continues_after_failing_subscriber():
    stream = Stream(key="live/test")
    good = RecordingSubscriber()
    stream.add_subscriber(FailingSubscriber())
    stream.add_subscriber(good)
    stream.broadcast_message(Message(type_id=8, payload=b"\xaf\x01"))
    assert [m.payload for m in good.received] == [b"\xaf\x01"]


def test_broadcast_none_message_sends_nothing():
    stream = Stream(key="live/test")
    sub = RecordingSubscriber()
    stream.add_subscriber(sub)
    stream.broadcast_message(None)
    assert sub.received == []
    assert stream.video_sequence_header is None