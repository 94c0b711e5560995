import pytest

from rtmpkit.commands import (
    AMFError,
    COMMAND_MESSAGE_AMF0,
    Message,
    ProtocolError,
    StreamIDAllocator,
    build_connect_response,
    build_create_stream_response,
    decode_all,
    encode_all,
    parse_connect_command,
    parse_create_stream_command,
    parse_play_command,
    parse_publish_command,
)


def command(*values):
    return Message(type_id=20, payload=encode_all(*values))


# ------------------------------------------------------ golden vectors ---

GOLDEN = [
    (0.0, "000000000000000000"),
    (1.5, "003ff8000000000000"),
    (True, "0101"),
    (False, "0100"),
    ("test", "02000474657374"),
    ("", "020000"),
    ({"key": "value"}, "0300036b657902000576616c7565000009"),
    ({"a": {"b": 1.0}}, "030001610300016200" + "3ff0000000000000" + "000009000009"),
    (None, "05"),
    (
        [1.0, 2.0, 3.0],
        "0a00000003" + "003ff0000000000000" + "004000000000000000" + "004008000000000000",
    ),
]


@pytest.mark.parametrize("value,hexdata", GOLDEN)
def test_encode_matches_golden_vectors(value, hexdata):
    assert encode_all(value) == bytes.fromhex(hexdata)


@pytest.mark.parametrize("value,hexdata", GOLDEN)
def test_decode_golden_vectors(value, hexdata):
    assert decode_all(bytes.fromhex(hexdata)) == [value]


def test_round_trip_multiple_values():
    values = ["connect", 1.0, {"app": "live", "n": None, "flag": True}, [1.0, "x"]]
    assert decode_all(encode_all(*values)) == values


def test_decode_truncated_raises():
    with pytest.raises(AMFError):
        decode_all(bytes.fromhex("0000"))


def test_decode_unknown_marker_raises():
    with pytest.raises(AMFError):
        decode_all(b"\x7f")


def test_encode_unsupported_type_raises():
    with pytest.raises(AMFError):
        encode_all(object())


# ------------------------------------------------------------- connect ---


def test_parse_connect_valid():
    cmd = parse_connect_command(
        command(
            "connect",
            1.0,
            {
                "app": "live",
                "flashVer": "LNX 9,0,124,2",
                "tcUrl": "rtmp://localhost:1935/live",
                "objectEncoding": 0.0,
            },
        )
    )
    assert cmd.app == "live"
    assert cmd.flash_ver == "LNX 9,0,124,2"
    assert cmd.tc_url == "rtmp://localhost:1935/live"
    assert cmd.object_encoding == 0
    assert cmd.transaction_id == 1.0


def test_parse_connect_missing_app():
    msg = command(
        "connect",
        1.0,
        {"flashVer": "LNX 9,0,124,2", "tcUrl": "rtmp://localhost:1935/live", "objectEncoding": 0.0},
    )
    with pytest.raises(ProtocolError) as info:
        parse_connect_command(msg)
    assert info.value.op == "connect.validate"


def test_parse_connect_amf3_rejected():
    msg = command(
        "connect",
        1.0,
        {
            "app": "live",
            "flashVer": "LNX 9,0,124,2",
            "tcUrl": "rtmp://localhost:1935/live",
            "objectEncoding": 3.0,
        },
    )
    with pytest.raises(ProtocolError, match="unsupported objectEncoding 3"):
        parse_connect_command(msg)


def test_parse_connect_wrong_type_id():
    msg = Message(type_id=17, payload=encode_all("connect", 1.0, {"app": "live"}))
    with pytest.raises(ProtocolError, match="unexpected message type 17"):
        parse_connect_command(msg)


def test_parse_connect_none_message():
    with pytest.raises(ProtocolError, match="nil message"):
        parse_connect_command(None)


def test_parse_connect_bad_payload():
    with pytest.raises(ProtocolError) as info:
        parse_connect_command(Message(type_id=20, payload=b"\x02\x00"))
    assert info.value.op == "connect.parse.decode"


def test_build_connect_response_structure():
    msg = build_connect_response(1.0, "Connection succeeded.")
    assert msg.type_id == COMMAND_MESSAGE_AMF0
    assert msg.csid == 3
    assert msg.message_stream_id == 0
    assert msg.message_length == len(msg.payload)
    values = decode_all(msg.payload)
    assert len(values) == 4
    assert values[0] == "_result"
    assert values[1] == 1.0
    props, info = values[2], values[3]
    assert props["fmsVer"] == "FMS/3,0,1,123"
    assert props["capabilities"] == 31.0
    assert props["mode"] == 1.0
    assert info["level"] == "status"
    assert info["code"] == "NetConnection.Connect.Success"
    assert info["description"] == "Connection succeeded."


# -------------------------------------------------------- createStream ---


def test_parse_create_stream_valid():
    cmd = parse_create_stream_command(command("createStream", 2.0, None))
    assert cmd.transaction_id == 2.0


def test_parse_create_stream_too_few_values():
    with pytest.raises(ProtocolError, match="expected >=3"):
        parse_create_stream_command(command("createStream", 2.0))


def test_build_create_stream_response_structure():
    msg, sid = build_create_stream_response(5.0, StreamIDAllocator())
    assert sid == 1
    assert msg.type_id == COMMAND_MESSAGE_AMF0
    assert decode_all(msg.payload) == ["_result", 5.0, None, 1.0]


def test_build_create_stream_response_sequential_ids():
    alloc = StreamIDAllocator()
    _, sid1 = build_create_stream_response(1.0, alloc)
    _, sid2 = build_create_stream_response(2.0, alloc)
    assert (sid1, sid2) == (1, 2)


def test_build_create_stream_response_requires_allocator():
    with pytest.raises(ProtocolError, match="nil allocator"):
        build_create_stream_response(1.0, None)


# ---------------------------------------------------------------- play ---


def test_parse_play_valid():
    cmd = parse_play_command(
        command("play", 0.0, None, "testStream", -2.0, -1.0, True), "live"
    )
    assert cmd.stream_name == "testStream"
    assert cmd.stream_key == "live/testStream"
    assert (cmd.start, cmd.duration, cmd.reset) == (-2, -1, True)


def test_parse_play_missing_stream_name():
    with pytest.raises(ProtocolError):
        parse_play_command(command("play", 0.0, None), "live")


def test_parse_play_defaults():
    cmd = parse_play_command(command("play", 0.0, None, "s"), "app")
    assert (cmd.start, cmd.duration, cmd.reset) == (-2, -1, False)
    assert cmd.raw_values == ["play", 0.0, None, "s"]


def test_parse_play_wrong_typed_optionals_use_defaults():
    cmd = parse_play_command(command("play", 0.0, None, "s", "x", "y", 1.0), "app")
    assert (cmd.start, cmd.duration, cmd.reset) == (-2, -1, False)


def test_parse_play_empty_name_rejected():
    with pytest.raises(ProtocolError, match="missing stream name"):
        parse_play_command(command("play", 0.0, None, ""), "app")


# ------------------------------------------------------------- publish ---


def test_parse_publish_valid():
    cmd = parse_publish_command("app", command("publish", 0.0, None, "stream1", "live"))
    assert cmd.stream_key == "app/stream1"
    assert cmd.publishing_type == "live"


def test_parse_publish_missing_publishing_name():
    with pytest.raises(ProtocolError):
        parse_publish_command("app", command("publish", 0.0, None))


def test_parse_publish_empty_name_defaults():
    cmd = parse_publish_command("app", command("publish", 0.0, None, "", "record"))
    assert cmd.publishing_name == "default"
    assert cmd.stream_key == "app/default"


def test_parse_publish_invalid_type():
    with pytest.raises(ProtocolError, match="unsupported publishingType"):
        parse_publish_command("app", command("publish", 0.0, None, "s", "bogus"))


def test_parse_publish_requires_app():
    with pytest.raises(ProtocolError, match="app required"):
        parse_publish_command("", command("publish", 0.0, None, "s", "live"))