"""Netlink message and attribute encoding, decoding and dispatch.

Messages and attributes use the host's native byte order and are padded
to four-byte boundaries, as the kernel expects.
"""

from __future__ import annotations

import contextlib
import errno
import os
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Iterator, Mapping, Optional, Union

BytesLike = Union[bytes, bytearray, memoryview]

ALIGNTO = 4


def align(length: int) -> int:
    """Round ``length`` up to the netlink alignment boundary."""
    return (length + ALIGNTO - 1) & ~(ALIGNTO - 1)


_NLMSGHDR = struct.Struct("=IHHII")
_NLATTR = struct.Struct("=HH")
_ERROR_CODE = struct.Struct("=i")

NLMSG_HDRLEN = align(_NLMSGHDR.size)
NLA_HDRLEN = align(_NLATTR.size)
_NLMSGERR_SIZE = _ERROR_CODE.size + _NLMSGHDR.size

NLMSG_NOOP = 0x1
NLMSG_ERROR = 0x2
NLMSG_DONE = 0x3
NLMSG_OVERRUN = 0x4
NLMSG_MIN_TYPE = 0x10

NLM_F_REQUEST = 0x01
NLM_F_MULTI = 0x02
NLM_F_ACK = 0x04
NLM_F_ECHO = 0x08
NLM_F_DUMP_INTR = 0x10
NLM_F_ROOT = 0x100
NLM_F_MATCH = 0x200
NLM_F_DUMP = NLM_F_ROOT | NLM_F_MATCH

NLA_F_NESTED = 1 << 15
NLA_F_NET_BYTEORDER = 1 << 14
NLA_TYPE_MASK = ~(NLA_F_NESTED | NLA_F_NET_BYTEORDER) & 0xFFFF

_U16_MAX = 0xFFFF


class NetlinkError(OSError):
    """A netlink operation failed with the given errno."""

    def __init__(self, code: int) -> None:
        super().__init__(code, os.strerror(code))


class AttrDataType(IntEnum):
    """Kinds of attribute payload that can be validated."""

    UNSPEC = 0
    U8 = 1
    U16 = 2
    U32 = 3
    U64 = 4
    STRING = 5
    FLAG = 6
    MSECS = 7
    NESTED = 8
    NESTED_COMPAT = 9
    NUL_STRING = 10
    BINARY = 11


_EXPECTED_LEN = {
    AttrDataType.U8: 1,
    AttrDataType.U16: 2,
    AttrDataType.U32: 4,
    AttrDataType.U64: 8,
    AttrDataType.MSECS: 8,
}


class CallbackResult(IntEnum):
    """What a message callback tells the dispatcher to do next."""

    ERROR = -1
    STOP = 0
    OK = 1


@dataclass(frozen=True)
class Attribute:
    """One netlink attribute: its raw type field and its payload."""

    raw_type: int
    payload: bytes

    @property
    def type(self) -> int:
        """The attribute type with the nested and byte-order flags masked off."""
        return self.raw_type & NLA_TYPE_MASK

    @property
    def is_nested(self) -> bool:
        return bool(self.raw_type & NLA_F_NESTED)

    def type_valid(self, maximum: int) -> int:
        """Return the type, raising EOPNOTSUPP if it exceeds ``maximum``."""
        if self.type > maximum:
            raise NetlinkError(errno.EOPNOTSUPP)
        return self.type

    def validate(self, data_type: Union[AttrDataType, int]) -> "Attribute":
        """Check that the payload fits ``data_type``; return the attribute."""
        try:
            kind = AttrDataType(data_type)
        except ValueError:
            raise NetlinkError(errno.EINVAL) from None
        expected = _EXPECTED_LEN.get(kind, 0)
        size = len(self.payload)
        if size < expected:
            raise NetlinkError(errno.ERANGE)
        if kind is AttrDataType.FLAG:
            if size > 0:
                raise NetlinkError(errno.ERANGE)
        elif kind is AttrDataType.NUL_STRING:
            if size == 0:
                raise NetlinkError(errno.ERANGE)
            if self.payload[-1] != 0:
                raise NetlinkError(errno.EINVAL)
        elif kind is AttrDataType.STRING:
            if size == 0:
                raise NetlinkError(errno.ERANGE)
        elif kind is AttrDataType.NESTED:
            if 0 < size < NLA_HDRLEN:
                raise NetlinkError(errno.ERANGE)
        if expected and size > expected:
            raise NetlinkError(errno.ERANGE)
        return self

    def _unpack(self, fmt: str) -> int:
        try:
            return struct.unpack_from(fmt, self.payload)[0]
        except struct.error:
            raise NetlinkError(errno.ERANGE) from None

    def u8(self) -> int:
        return self._unpack("=B")

    def u16(self) -> int:
        return self._unpack("=H")

    def u32(self) -> int:
        return self._unpack("=I")

    def u64(self) -> int:
        return self._unpack("=Q")

    def string(self) -> str:
        """The payload up to its first NUL byte, decoded as text."""
        raw = self.payload.split(b"\0", 1)[0]
        return raw.decode("utf-8", errors="surrogateescape")

    def nested(self) -> list["Attribute"]:
        """The attributes carried inside this one."""
        return list(parse_attributes(self.payload))


@dataclass(frozen=True)
class Message:
    """One netlink message: header fields and the payload after the header."""

    msg_type: int
    flags: int
    seq: int
    pid: int
    payload: bytes = b""

    @property
    def length(self) -> int:
        """The value of the header's length field."""
        return NLMSG_HDRLEN + len(self.payload)

    def attributes(self, offset: int = 0) -> list[Attribute]:
        """Attributes following an extra header of ``offset`` bytes."""
        return list(parse_attributes(self.payload[align(offset):]))


def parse_attributes(data: BytesLike) -> Iterator[Attribute]:
    """Yield each well-formed attribute in ``data``, stopping at the first bad one."""
    buf = bytes(data)
    offset = 0
    while True:
        remaining = len(buf) - offset
        if remaining < _NLATTR.size:
            return
        length, raw_type = _NLATTR.unpack_from(buf, offset)
        if length < _NLATTR.size or length > remaining:
            return
        yield Attribute(raw_type, buf[offset + NLA_HDRLEN : offset + length])
        offset += align(length)


def parse_messages(data: BytesLike) -> Iterator[Message]:
    """Yield each well-formed message in ``data``, stopping at the first bad one."""
    buf = bytes(data)
    offset = 0
    while True:
        remaining = len(buf) - offset
        if remaining < _NLMSGHDR.size:
            return
        length, msg_type, flags, seq, pid = _NLMSGHDR.unpack_from(buf, offset)
        if length < _NLMSGHDR.size or length > remaining:
            return
        yield Message(msg_type, flags, seq, pid, buf[offset + NLMSG_HDRLEN : offset + length])
        offset += align(length)


class MessageBuilder:
    """Builds one netlink message, attribute by attribute."""

    def __init__(
        self,
        msg_type: int,
        flags: int = 0,
        seq: int = 0,
        pid: int = 0,
        buffer_size: Optional[int] = None,
    ) -> None:
        self.msg_type = msg_type
        self.flags = flags
        self.seq = seq
        self.pid = pid
        self.buffer_size = buffer_size
        self._buf = bytearray(NLMSG_HDRLEN)

    @property
    def length(self) -> int:
        """Current length of the message, header included."""
        return len(self._buf)

    def _fits(self, extra: int) -> bool:
        return self.buffer_size is None or self.length + extra <= self.buffer_size

    def put_extra_header(self, data: BytesLike) -> None:
        """Append a family-specific header, padded to alignment."""
        raw = bytes(data)
        self._buf += raw + bytes(align(len(raw)) - len(raw))

    def put(self, attr_type: int, data: BytesLike) -> None:
        """Append an attribute carrying ``data``."""
        payload = bytes(data)
        attr_len = NLA_HDRLEN + len(payload)
        if attr_len > _U16_MAX:
            raise ValueError(f"attribute of {len(payload)} bytes is too large")
        self._buf += _NLATTR.pack(attr_len, attr_type & 0xFFFF)
        self._buf += payload
        self._buf += bytes(align(len(payload)) - len(payload))

    def put_u16(self, attr_type: int, value: int) -> None:
        self.put(attr_type, struct.pack("=H", value))

    def put_u32(self, attr_type: int, value: int) -> None:
        self.put(attr_type, struct.pack("=I", value))

    def put_strz(self, attr_type: int, text: Union[str, bytes]) -> None:
        """Append a NUL-terminated string attribute."""
        raw = text.encode() if isinstance(text, str) else bytes(text)
        self.put(attr_type, raw + b"\0")

    def put_check(self, attr_type: int, data: BytesLike) -> bool:
        """Append an attribute if it fits in the buffer size; report whether it did."""
        payload = bytes(data)
        if not self._fits(NLA_HDRLEN + align(len(payload))):
            return False
        self.put(attr_type, payload)
        return True

    def put_u8_check(self, attr_type: int, value: int) -> bool:
        return self.put_check(attr_type, struct.pack("=B", value))

    def put_u16_check(self, attr_type: int, value: int) -> bool:
        return self.put_check(attr_type, struct.pack("=H", value))

    def put_u32_check(self, attr_type: int, value: int) -> bool:
        return self.put_check(attr_type, struct.pack("=I", value))

    def nest_start(self, attr_type: int) -> int:
        """Open a nested attribute; return its offset for ``nest_end``."""
        start = self.length
        self._buf += _NLATTR.pack(0, (NLA_F_NESTED | attr_type) & 0xFFFF)
        return start

    def nest_start_check(self, attr_type: int) -> Optional[int]:
        """Open a nested attribute if its header fits, else return None."""
        if not self._fits(NLA_HDRLEN):
            return None
        return self.nest_start(attr_type)

    def nest_end(self, start: int) -> None:
        """Close the nested attribute opened at ``start``."""
        size = self.length - start
        if size > _U16_MAX:
            raise ValueError(f"nested attribute of {size} bytes is too large")
        struct.pack_into("=H", self._buf, start, size)

    def nest_cancel(self, start: int) -> None:
        """Drop the nested attribute opened at ``start`` and all it holds."""
        if not NLMSG_HDRLEN <= start <= self.length:
            raise ValueError(f"no nested attribute can start at offset {start}")
        removed = self.length - start
        del self._buf[start:]
        assert self.length == start and removed >= 0

    @contextlib.contextmanager
    def nest(self, attr_type: int) -> Iterator[int]:
        """Open a nested attribute for the block; cancel it if the block raises."""
        start = self.nest_start(attr_type)
        try:
            yield start
        except BaseException:
            self.nest_cancel(start)
            raise
        self.nest_end(start)

    def to_bytes(self) -> bytes:
        """The finished message with its header filled in."""
        out = bytearray(self._buf)
        _NLMSGHDR.pack_into(out, 0, self.length, self.msg_type, self.flags, self.seq, self.pid)
        return bytes(out)


Callback = Callable[[Message], int]


def _cb_noop(message: Message) -> CallbackResult:
    return CallbackResult.OK


def _cb_error(message: Message) -> CallbackResult:
    if message.length < NLMSG_HDRLEN + _NLMSGERR_SIZE:
        raise NetlinkError(errno.EBADMSG)
    code = _ERROR_CODE.unpack_from(message.payload)[0]
    if code == 0:
        return CallbackResult.STOP
    raise NetlinkError(abs(code))


def _cb_stop(message: Message) -> CallbackResult:
    return CallbackResult.STOP


DEFAULT_CONTROL_CALLBACKS: Mapping[int, Callback] = {
    NLMSG_NOOP: _cb_noop,
    NLMSG_ERROR: _cb_error,
    NLMSG_DONE: _cb_stop,
    NLMSG_OVERRUN: _cb_noop,
}


def _coerce(result: int) -> CallbackResult:
    value = int(result)
    if value < 0:
        return CallbackResult.ERROR
    if value == 0:
        return CallbackResult.STOP
    return CallbackResult.OK


def run_callbacks(
    data: BytesLike,
    seq: int = 0,
    portid: int = 0,
    data_callback: Optional[Callback] = None,
    control_callbacks: Optional[Mapping[int, Optional[Callback]]] = None,
) -> CallbackResult:
    """Dispatch every message in ``data`` to its callback.

    Data messages go to ``data_callback``; control messages go to the entry
    of ``control_callbacks`` for their type (``None`` ignores them) or to the
    built-in handler. Dispatch ends when a callback returns STOP or ERROR.
    Sequence, port and interrupted-dump mismatches raise ``NetlinkError``.
    """
    result = CallbackResult.OK
    for message in parse_messages(data):
        if message.pid and portid and message.pid != portid:
            raise NetlinkError(errno.ESRCH)
        if message.seq and seq and message.seq != seq:
            raise NetlinkError(errno.EPROTO)
        if message.flags & NLM_F_DUMP_INTR:
            raise NetlinkError(errno.EINTR)

        if message.msg_type >= NLMSG_MIN_TYPE:
            callback = data_callback
        elif control_callbacks is not None and message.msg_type in control_callbacks:
            callback = control_callbacks[message.msg_type]
        else:
            callback = DEFAULT_CONTROL_CALLBACKS.get(message.msg_type)

        if callback is None:
            continue
        result = _coerce(callback(message))
        if result <= CallbackResult.STOP:
            return result
    return result