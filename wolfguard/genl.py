"""Netlink sockets and generic netlink family sockets.

``NetlinkSocket`` wraps a raw netlink socket. ``GenlSocket`` resolves a
generic netlink family by name through the controller and then sends
requests to that family and dispatches its replies.
"""

from __future__ import annotations

import errno
import functools
import mmap
import socket
import struct
import time
from typing import Any, Callable, Optional

from .nlmsg import (
    DEFAULT_CONTROL_CALLBACKS,
    NLM_F_ACK,
    NLM_F_MULTI,
    NLM_F_REQUEST,
    NLMSG_DONE,
    NLMSG_ERROR,
    NLMSG_HDRLEN,
    NLMSG_NOOP,
    NLMSG_OVERRUN,
    AttrDataType,
    CallbackResult,
    Message,
    MessageBuilder,
    NetlinkError,
    run_callbacks,
)

AF_NETLINK = getattr(socket, "AF_NETLINK", 16)
MSG_TRUNC = getattr(socket, "MSG_TRUNC", 0x20)

NETLINK_GENERIC = 16
SOCKET_AUTOPID = 0

GENL_ID_CTRL = 0x10
CTRL_CMD_GETFAMILY = 3
CTRL_ATTR_FAMILY_ID = 1
CTRL_ATTR_FAMILY_NAME = 2
CTRL_ATTR_MAX = 10

_GENL_HDR = struct.Struct("=BBH")
_INT = struct.Struct("=i")
_MAX_BUFFER = 8192


@functools.lru_cache(maxsize=None)
def ideal_socket_buffer_size() -> int:
    """The receive buffer size to use: one page, at most 8 KiB."""
    return min(mmap.PAGESIZE, _MAX_BUFFER)


class NetlinkSocket:
    """A raw netlink socket on one bus."""

    def __init__(self, bus: int = NETLINK_GENERIC, sock: Any = None) -> None:
        if sock is None:
            sock = socket.socket(AF_NETLINK, socket.SOCK_RAW, bus)
        self._sock = sock
        self.bus = bus
        self.portid = 0

    def bind(self, groups: int = 0, pid: int = SOCKET_AUTOPID) -> None:
        """Bind to ``pid`` (0 lets the kernel choose) and learn the port id."""
        self._sock.bind((pid, groups))
        name = self._sock.getsockname()
        if not isinstance(name, tuple) or len(name) != 2:
            raise NetlinkError(errno.EINVAL)
        self.portid = int(name[0])

    def sendto(self, data: bytes) -> int:
        """Send ``data`` to the kernel; return the number of bytes sent."""
        return self._sock.sendto(bytes(data), (0, 0))

    def recvfrom(self, bufsize: Optional[int] = None) -> bytes:
        """Receive one datagram, refusing truncated ones."""
        size = ideal_socket_buffer_size() if bufsize is None else bufsize
        data, _ancdata, msg_flags, address = self._sock.recvmsg(size)
        if msg_flags & MSG_TRUNC:
            raise NetlinkError(errno.ENOSPC)
        if not isinstance(address, tuple) or len(address) != 2:
            raise NetlinkError(errno.EINVAL)
        return bytes(data)

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "NetlinkSocket":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def _genl_cb_stop(message: Message) -> CallbackResult:
    if message.flags & NLM_F_MULTI and message.length == NLMSG_HDRLEN + _INT.size:
        code = _INT.unpack_from(message.payload)[0]
        if code:
            raise NetlinkError(abs(code))
    return CallbackResult.STOP


_GENL_CONTROL_CALLBACKS = {
    NLMSG_NOOP: DEFAULT_CONTROL_CALLBACKS[NLMSG_NOOP],
    NLMSG_ERROR: DEFAULT_CONTROL_CALLBACKS[NLMSG_ERROR],
    NLMSG_DONE: _genl_cb_stop,
    NLMSG_OVERRUN: DEFAULT_CONTROL_CALLBACKS[NLMSG_OVERRUN],
}


class GenlSocket:
    """A socket talking to one generic netlink family, resolved by name."""

    def __init__(
        self, family_name: str, version: int = 1, nl: Optional[NetlinkSocket] = None
    ) -> None:
        self._nl = nl if nl is not None else NetlinkSocket(NETLINK_GENERIC)
        self.id = 0
        self.version = version
        self.seq = 0
        self.portid = 0
        try:
            self._nl.bind(0, SOCKET_AUTOPID)
            self.portid = self._nl.portid
            builder = self._prepare(
                CTRL_CMD_GETFAMILY, NLM_F_REQUEST | NLM_F_ACK, GENL_ID_CTRL, 1
            )
            builder.put_strz(CTRL_ATTR_FAMILY_NAME, family_name)
            self.send(builder)
            try:
                self.recv_run(self._family_id_callback)
            except NetlinkError as exc:
                if exc.errno == errno.ENOENT:
                    raise NetlinkError(errno.EPROTONOSUPPORT) from exc
                raise
        except BaseException:
            self._nl.close()
            raise

    def _family_id_callback(self, message: Message) -> CallbackResult:
        table = {}
        error: Optional[NetlinkError] = None
        try:
            for attr in message.attributes(_GENL_HDR.size):
                kind = attr.type_valid(CTRL_ATTR_MAX)
                if kind == CTRL_ATTR_FAMILY_ID:
                    attr.validate(AttrDataType.U16)
                table[kind] = attr
        except NetlinkError as exc:
            error = exc
        family = table.get(CTRL_ATTR_FAMILY_ID)
        if family is None:
            if error is not None:
                raise error
            return CallbackResult.ERROR
        self.id = family.u16()
        return CallbackResult.OK

    def _prepare(self, cmd: int, flags: int, msg_id: int, version: int) -> MessageBuilder:
        self.seq = int(time.time()) & 0xFFFFFFFF
        builder = MessageBuilder(msg_id, flags, self.seq, 0, ideal_socket_buffer_size())
        builder.put_extra_header(_GENL_HDR.pack(cmd, version, 0))
        return builder

    def prepare(self, cmd: int, flags: int) -> MessageBuilder:
        """Start a request for ``cmd`` to this family, with a fresh sequence number."""
        return self._prepare(cmd, flags, self.id, self.version)

    def send(self, builder: MessageBuilder) -> int:
        """Send a finished request; return the number of bytes sent."""
        return self._nl.sendto(builder.to_bytes())

    def recv_run(
        self, callback: Optional[Callable[[Message], int]] = None
    ) -> CallbackResult:
        """Receive replies and feed data messages to ``callback`` until done.

        Errors reported by the kernel raise ``NetlinkError``; a callback that
        returns ERROR without raising is reported as ``ENOSYS``.
        """
        while True:
            data = self._nl.recvfrom(ideal_socket_buffer_size())
            if not data:
                return CallbackResult.STOP
            result = run_callbacks(
                data, self.seq, self.portid, callback, _GENL_CONTROL_CALLBACKS
            )
            if result == CallbackResult.ERROR:
                raise NetlinkError(errno.ENOSYS)
            if result <= CallbackResult.STOP:
                return result

    def close(self) -> None:
        self._nl.close()

    def __enter__(self) -> "GenlSocket":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()