# wolfguard

Pure-Python building blocks for working with a WolfGuard VPN interface:

- `wolfguard.uapi`: the generic netlink family name and version
  (`GENL_NAME`, `GENL_VERSION`), key lengths, and the command, flag and
  attribute numbers (`Command`, `DeviceFlag`, `DeviceAttribute`, `PeerFlag`,
  `PeerAttribute`, `AllowedIpAttribute`).
- `wolfguard.allowedips`: `AllowedIPs`, a longest-prefix-match trie that maps
  IPv4 and IPv6 networks to peers.
- `wolfguard.nlmsg`: builds and parses netlink messages and attributes
  (`MessageBuilder`, `Message`, `Attribute`, `parse_messages`,
  `parse_attributes`, `run_callbacks`); failures raise `NetlinkError`.
- `wolfguard.genl`: a raw netlink socket (`NetlinkSocket`) and a generic
  netlink client that resolves a family by name (`GenlSocket`). Linux only.
- `wolfguard.ptr_ring`: `PtrRing`, a fixed-size FIFO with batched
  consumption, and `resize_multiple` for resizing several rings at once.
- `wolfguard.memneq`: `crypto_memneq`, a constant-time comparison of byte
  strings of equal length.

## Installation

```
pip install .
```

## Allowed IPs

Peers may be any objects; they are matched by identity.

```python
from wolfguard.allowedips import AllowedIPs

table = AllowedIPs()
table.insert("10.0.0.0", 8, "peer-a")
table.insert("10.1.0.0", 16, "peer-b")
table.insert("fd00::", 8, "peer-a")

table.lookup("10.1.2.3")   # "peer-b"
table.lookup("10.9.9.9")   # "peer-a"
table.lookup("192.0.2.1")  # None

table.allowed_ips("peer-a")  # [IPv4Network('10.0.0.0/8'), IPv6Network('fd00::/8')]

table.remove_by_peer("peer-b")
table.lookup("10.1.2.3")   # "peer-a"
```

`lookup_src` and `lookup_dst` take a raw IPv4 or IPv6 packet and look up its
source or destination address. A prefix length outside the address size, or
a peer of `None`, raises `ValueError`.

## Building and parsing a netlink message

```python
from wolfguard.nlmsg import MessageBuilder, parse_messages
from wolfguard.uapi import DeviceAttribute

builder = MessageBuilder(msg_type=0x20, flags=1, seq=1, pid=0, buffer_size=4096)
builder.put_strz(DeviceAttribute.IFNAME, "wg0")
with builder.nest(DeviceAttribute.PEERS):
    pass
data = builder.to_bytes()

for message in parse_messages(data):
    for attr in message.attributes(0):
        print(attr.type, attr.nested() if attr.is_nested else attr.string())
```

The `*_check` methods of `MessageBuilder` return `False` instead of growing
the message past `buffer_size`.

## Generic netlink

```python
from wolfguard.genl import GenlSocket
from wolfguard.uapi import GENL_NAME, GENL_VERSION

with GenlSocket(GENL_NAME, GENL_VERSION) as genl:
    print(genl.id)  # family id assigned by the kernel
```

If the family is not registered, `GenlSocket` raises `NetlinkError` with
`errno.EPROTONOSUPPORT`. `prepare`, `send` and `recv_run` send requests to
the family and feed each reply message to a callback.

## Ring buffer

```python
from wolfguard.ptr_ring import PtrRing

ring = PtrRing(4)
ring.produce("a")
ring.produce("b")
ring.consume()            # "a"
ring.consume_batched(8)   # ["b"]
```

`produce` raises `RingFull` when there is no free slot; `None` cannot be
queued.

## What this package does not do

There is no command-line tool and no high-level API for reading or changing a
device's configuration: the package supplies the attribute numbers and the
message codec, but assembling `Command.GET_DEVICE` and `Command.SET_DEVICE`
requests and interpreting the replies is left to the caller. It performs no
handshake, encryption or packet forwarding.

## Tests

```
pip install .[test]
pytest
```