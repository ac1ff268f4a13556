import errno
import struct

import pytest

from wolfguard.nlmsg import (
    NLA_HDRLEN,
    NLMSG_DONE,
    NLMSG_ERROR,
    NLMSG_HDRLEN,
    NLM_F_DUMP_INTR,
    AttrDataType,
    Attribute,
    CallbackResult,
    MessageBuilder,
    NetlinkError,
    align,
    parse_attributes,
    parse_messages,
    run_callbacks,
)

DATA_TYPE = 0x10


def _single(builder):
    messages = list(parse_messages(builder.to_bytes()))
    assert len(messages) == 1
    return messages[0]


def test_align_invariants():
    for n in range(64):
        a = align(n)
        assert a % 4 == 0
        assert n <= a < n + 4
    assert align(1) == 4


def test_empty_message_round_trip():
    builder = MessageBuilder(DATA_TYPE, flags=1, seq=7, pid=9)
    data = builder.to_bytes()
    assert len(data) == NLMSG_HDRLEN
    message = _single(builder)
    assert (message.msg_type, message.flags, message.seq, message.pid) == (DATA_TYPE, 1, 7, 9)
    assert message.payload == b""
    assert message.length == NLMSG_HDRLEN


def test_put_u16_round_trip():
    builder = MessageBuilder(DATA_TYPE)
    builder.put_u16(3, 513)
    attrs = _single(builder).attributes()
    assert len(attrs) == 1
    assert attrs[0].type == 3
    assert attrs[0].validate(AttrDataType.U16).u16() == 513


def test_put_strz_round_trip():
    builder = MessageBuilder(DATA_TYPE)
    builder.put_strz(2, "wg0")
    assert len(builder.to_bytes()) == NLMSG_HDRLEN + align(NLA_HDRLEN + len("wg0") + 1)
    (attr,) = _single(builder).attributes()
    assert attr.validate(AttrDataType.NUL_STRING).string() == "wg0"
    assert attr.payload == b"wg0\0"


def test_put_pads_to_alignment():
    builder = MessageBuilder(DATA_TYPE)
    builder.put(1, b"\x01\x02\x03")
    builder.put_u32(2, 77)
    assert len(builder.to_bytes()) % 4 == 0
    first, second = _single(builder).attributes()
    assert first.payload == b"\x01\x02\x03"
    assert second.u32() == 77


def test_u64_round_trip():
    value = 0x0123456789ABCDEF
    builder = MessageBuilder(DATA_TYPE)
    builder.put(4, struct.pack("=Q", value))
    (attr,) = _single(builder).attributes()
    assert attr.validate(AttrDataType.U64).u64() == value


def test_extra_header_and_offset():
    header = bytes([5, 1, 0, 0])
    builder = MessageBuilder(DATA_TYPE)
    builder.put_extra_header(header)
    builder.put_u32(1, 99)
    message = _single(builder)
    assert message.payload[: len(header)] == header
    (attr,) = message.attributes(len(header))
    assert attr.u32() == 99


def test_nested_context_manager():
    builder = MessageBuilder(DATA_TYPE)
    with builder.nest(8):
        builder.put_u32(1, 10)
        builder.put_u32(2, 20)
    (outer,) = _single(builder).attributes()
    assert outer.is_nested
    assert outer.type == 8
    outer.validate(AttrDataType.NESTED)
    assert [(a.type, a.u32()) for a in outer.nested()] == [(1, 10), (2, 20)]


def test_nest_cancelled_on_exception():
    builder = MessageBuilder(DATA_TYPE)
    builder.put_u16(1, 4)
    before = builder.to_bytes()
    with pytest.raises(RuntimeError):
        with builder.nest(8):
            builder.put_u32(2, 5)
            raise RuntimeError("abort")
    assert builder.to_bytes() == before


def test_nest_cancel_explicit():
    builder = MessageBuilder(DATA_TYPE)
    start = builder.nest_start(3)
    builder.put_u32(1, 1)
    builder.nest_cancel(start)
    assert builder.length == NLMSG_HDRLEN
    assert _single(builder).attributes() == []


def test_put_check_respects_buffer_size():
    builder = MessageBuilder(DATA_TYPE, buffer_size=NLMSG_HDRLEN + NLA_HDRLEN + 4)
    assert builder.put_u32_check(1, 11) is True
    assert builder.put_u8_check(2, 1) is False
    assert builder.put_u16_check(3, 1) is False
    assert builder.nest_start_check(4) is None
    attrs = _single(builder).attributes()
    assert [(a.type, a.u32()) for a in attrs] == [(1, 11)]


def test_nest_start_check_returns_offset():
    builder = MessageBuilder(DATA_TYPE, buffer_size=NLMSG_HDRLEN + NLA_HDRLEN)
    start = builder.nest_start_check(6)
    assert start == NLMSG_HDRLEN
    builder.nest_end(start)
    (attr,) = _single(builder).attributes()
    assert attr.type == 6 and attr.nested() == []


@pytest.mark.parametrize(
    "attr, data_type, code",
    [
        (Attribute(1, b"\x01\x02\x03"), AttrDataType.U16, errno.ERANGE),
        (Attribute(1, b"\x01"), AttrDataType.U16, errno.ERANGE),
        (Attribute(1, b"\x01"), AttrDataType.FLAG, errno.ERANGE),
        (Attribute(1, b"abc"), AttrDataType.NUL_STRING, errno.EINVAL),
        (Attribute(1, b""), AttrDataType.NUL_STRING, errno.ERANGE),
        (Attribute(1, b""), AttrDataType.STRING, errno.ERANGE),
        (Attribute(1, b"\x00\x00"), AttrDataType.NESTED, errno.ERANGE),
        (Attribute(1, b""), 99, errno.EINVAL),
    ],
)
def test_validate_errors(attr, data_type, code):
    with pytest.raises(NetlinkError) as info:
        attr.validate(data_type)
    assert info.value.errno == code


def test_validate_accepts_flag_and_empty_nested():
    assert Attribute(1, b"").validate(AttrDataType.FLAG).payload == b""
    assert Attribute(1, b"").validate(AttrDataType.NESTED).nested() == []


def test_type_valid():
    attr = Attribute(5, b"")
    assert attr.type_valid(5) == 5
    with pytest.raises(NetlinkError) as info:
        attr.type_valid(4)
    assert info.value.errno == errno.EOPNOTSUPP


def test_parse_attributes_stops_on_truncated():
    builder = MessageBuilder(DATA_TYPE)
    builder.put_u32(1, 3)
    payload = _single(builder).payload
    attrs = list(parse_attributes(payload + struct.pack("=HH", 64, 2)))
    assert [(a.type, a.u32()) for a in attrs] == [(1, 3)]


def test_parse_messages_stops_on_truncated():
    data = MessageBuilder(DATA_TYPE, seq=1).to_bytes()
    messages = list(parse_messages(data + data[: NLMSG_HDRLEN - 1]))
    assert [m.seq for m in messages] == [1]


def _stream(*builders):
    return b"".join(b.to_bytes() for b in builders)


def test_run_callbacks_collects_until_done():
    first = MessageBuilder(DATA_TYPE, seq=3)
    first.put_u32(1, 100)
    second = MessageBuilder(DATA_TYPE, seq=3)
    second.put_u32(1, 200)
    done = MessageBuilder(NLMSG_DONE, seq=3)
    seen = []

    def collect(message):
        seen.append(message.attributes()[0].u32())
        return CallbackResult.OK

    result = run_callbacks(_stream(first, second, done), 3, 0, collect)
    assert result is CallbackResult.STOP
    assert seen == [100, 200]


def test_run_callbacks_stop_from_data_callback():
    stream = _stream(MessageBuilder(DATA_TYPE), MessageBuilder(DATA_TYPE))
    calls = []

    def stop(message):
        calls.append(message)
        return CallbackResult.STOP

    assert run_callbacks(stream, 0, 0, stop) is CallbackResult.STOP
    assert len(calls) == 1


def test_run_callbacks_mismatches():
    with pytest.raises(NetlinkError) as info:
        run_callbacks(MessageBuilder(DATA_TYPE, pid=5).to_bytes(), 0, 6)
    assert info.value.errno == errno.ESRCH
    with pytest.raises(NetlinkError) as info:
        run_callbacks(MessageBuilder(DATA_TYPE, seq=5).to_bytes(), 6, 0)
    assert info.value.errno == errno.EPROTO
    with pytest.raises(NetlinkError) as info:
        run_callbacks(MessageBuilder(DATA_TYPE, flags=NLM_F_DUMP_INTR).to_bytes())
    assert info.value.errno == errno.EINTR


def _error_message(code):
    builder = MessageBuilder(NLMSG_ERROR)
    builder.put_extra_header(struct.pack("=i", code) + bytes(NLMSG_HDRLEN))
    return builder.to_bytes()


def test_error_message_raises_errno():
    with pytest.raises(NetlinkError) as info:
        run_callbacks(_error_message(-errno.ENOENT))
    assert info.value.errno == errno.ENOENT


def test_error_message_zero_is_ack():
    assert run_callbacks(_error_message(0)) is CallbackResult.STOP


def test_short_error_message_is_bad():
    with pytest.raises(NetlinkError) as info:
        run_callbacks(MessageBuilder(NLMSG_ERROR).to_bytes())
    assert info.value.errno == errno.EBADMSG


def test_control_callback_override():
    stream = _stream(MessageBuilder(NLMSG_DONE))
    assert run_callbacks(stream, 0, 0, None, {NLMSG_DONE: None}) is CallbackResult.OK
    seen = []

    def on_done(message):
        seen.append(message.msg_type)
        return CallbackResult.ERROR

    assert run_callbacks(stream, 0, 0, None, {NLMSG_DONE: on_done}) is CallbackResult.ERROR
    assert seen == [NLMSG_DONE]


def test_put_rejects_oversized_attribute():
    builder = MessageBuilder(DATA_TYPE)
    with pytest.raises(ValueError):
        builder.put(1, bytes(0x10000))
    assert builder.length == NLMSG_HDRLEN