"""Longest-prefix-match table mapping IP networks to peers.

Each address family has its own binary trie. A node holds a key, a prefix
length and, optionally, a peer; nodes without a peer only join subtrees.
Every peer also keeps the ordered list of nodes that point to it, so its
allowed IPs can be listed or removed without scanning the whole trie.
"""

from __future__ import annotations

import ipaddress
from typing import Any, Optional, Union

AddressLike = Union[
    str, bytes, bytearray, int, ipaddress.IPv4Address, ipaddress.IPv6Address
]
Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_V4_BITS = 32
_V6_BITS = 128


class _Node:
    __slots__ = ("peer", "children", "key", "cidr", "bits")

    def __init__(self, key: int, cidr: int, bits: int, peer: Any = None) -> None:
        self.peer = peer
        self.children: list[Optional[_Node]] = [None, None]
        self.key = key
        self.cidr = cidr
        self.bits = bits

    def choose(self, key: int) -> int:
        """Index of the child that ``key`` descends into below this node."""
        return (key >> (self.bits - 1 - self.cidr)) & 1

    def common_bits(self, key: int) -> int:
        return self.bits - (self.key ^ key).bit_length()

    def prefix_matches(self, key: int) -> bool:
        return self.common_bits(key) >= self.cidr

    def network(self) -> Network:
        host_bits = self.bits - self.cidr
        masked = (self.key >> host_bits) << host_bits
        if self.bits == _V4_BITS:
            return ipaddress.IPv4Network((masked, self.cidr))
        return ipaddress.IPv6Network((masked, self.cidr))


def _to_address(address: AddressLike) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address
    if isinstance(address, (bytes, bytearray, memoryview)):
        return ipaddress.ip_address(bytes(address))
    return ipaddress.ip_address(address)


class AllowedIPs:
    """Routing table of allowed IPs, one trie per address family."""

    def __init__(self) -> None:
        self._roots: dict[int, Optional[_Node]] = {_V4_BITS: None, _V6_BITS: None}
        self._peer_nodes: dict[int, list[_Node]] = {}
        self.seq = 1

    # -- peer node lists -------------------------------------------------

    def _detach(self, node: _Node) -> None:
        if node.peer is None:
            return
        key = id(node.peer)
        nodes = self._peer_nodes.get(key)
        if nodes is not None:
            nodes.remove(node)
            if not nodes:
                del self._peer_nodes[key]
        node.peer = None

    def _attach(self, node: _Node, peer: Any) -> None:
        self._detach(node)
        node.peer = peer
        self._peer_nodes.setdefault(id(peer), []).append(node)

    # -- insertion -------------------------------------------------------

    def _placement(self, key: int, cidr: int, bits: int) -> tuple[Optional[_Node], bool]:
        node = self._roots[bits]
        parent = None
        while node is not None and node.cidr <= cidr and node.prefix_matches(key):
            parent = node
            if parent.cidr == cidr:
                return parent, True
            node = parent.children[parent.choose(key)]
        return parent, False

    def _link(self, parent: Optional[_Node], child: _Node) -> None:
        if parent is None:
            self._roots[child.bits] = child
        else:
            parent.children[parent.choose(child.key)] = child

    def _add(self, bits: int, key: int, cidr: int, peer: Any) -> None:
        if cidr < 0 or cidr > bits:
            raise ValueError(f"prefix length {cidr} out of range for a {bits}-bit address")
        if peer is None:
            raise ValueError("peer must not be None")

        if self._roots[bits] is None:
            node = _Node(key, cidr, bits)
            self._attach(node, peer)
            self._roots[bits] = node
            return

        node, exact = self._placement(key, cidr, bits)
        if exact:
            assert node is not None
            self._attach(node, peer)
            return

        newnode = _Node(key, cidr, bits)
        self._attach(newnode, peer)

        if node is None:
            down = self._roots[bits]
        else:
            down = node.children[node.choose(key)]
            if down is None:
                node.children[node.choose(key)] = newnode
                return
        assert down is not None
        cidr = min(cidr, down.common_bits(key))
        parent = node

        if newnode.cidr == cidr:
            newnode.children[newnode.choose(down.key)] = down
            self._link(parent, newnode)
        else:
            branch = _Node(newnode.key, cidr, bits)
            branch.children[branch.choose(down.key)] = down
            branch.children[branch.choose(newnode.key)] = newnode
            self._link(parent, branch)

    def insert(self, address: AddressLike, cidr: int, peer: Any) -> None:
        """Route ``address/cidr`` to ``peer``, replacing any previous owner."""
        addr = _to_address(address)
        if addr.version == 4:
            self.insert_v4(addr, cidr, peer)
        else:
            self.insert_v6(addr, cidr, peer)

    def insert_v4(self, address: AddressLike, cidr: int, peer: Any) -> None:
        """Route an IPv4 prefix to ``peer``."""
        addr = address if isinstance(address, int) else _to_address(address)
        addr = ipaddress.IPv4Address(addr) if isinstance(addr, int) else addr
        if addr.version != 4:
            raise ValueError(f"{addr} is not an IPv4 address")
        self.seq += 1
        self._add(_V4_BITS, int(addr), cidr, peer)

    def insert_v6(self, address: AddressLike, cidr: int, peer: Any) -> None:
        """Route an IPv6 prefix to ``peer``."""
        addr = address if isinstance(address, int) else _to_address(address)
        addr = ipaddress.IPv6Address(addr) if isinstance(addr, int) else addr
        if addr.version != 6:
            raise ValueError(f"{addr} is not an IPv6 address")
        self.seq += 1
        self._add(_V6_BITS, int(addr), cidr, peer)

    # -- removal ---------------------------------------------------------

    def _prune(self, node: Optional[_Node], peer: Any) -> Optional[_Node]:
        if node is None:
            return None
        node.children[0] = self._prune(node.children[0], peer)
        node.children[1] = self._prune(node.children[1], peer)
        if node.peer is peer:
            self._detach(node)
            if node.children[0] is None or node.children[1] is None:
                return node.children[0] if node.children[0] is not None else node.children[1]
        return node

    def remove_by_peer(self, peer: Any) -> None:
        """Drop every prefix routed to ``peer``."""
        self.seq += 1
        if peer is None:
            return
        for bits in (_V4_BITS, _V6_BITS):
            self._roots[bits] = self._prune(self._roots[bits], peer)
        self._peer_nodes.pop(id(peer), None)

    def clear(self) -> None:
        """Remove every prefix of both families."""
        self.seq += 1
        self._roots = {_V4_BITS: None, _V6_BITS: None}
        self._peer_nodes.clear()

    # -- lookup ----------------------------------------------------------

    def _find(self, bits: int, key: int) -> Any:
        node = self._roots[bits]
        found = None
        while node is not None and node.prefix_matches(key):
            if node.peer is not None:
                found = node.peer
            if node.cidr == bits:
                break
            node = node.children[node.choose(key)]
        return found

    def lookup(self, address: AddressLike) -> Any:
        """Return the peer owning the longest prefix that covers ``address``."""
        addr = _to_address(address)
        bits = _V4_BITS if addr.version == 4 else _V6_BITS
        return self._find(bits, int(addr))

    def _lookup_packet(self, packet: Union[bytes, bytearray, memoryview], source: bool) -> Any:
        data = bytes(packet)
        if not data:
            return None
        version = data[0] >> 4
        if version == 4 and len(data) >= 20:
            raw = data[12:16] if source else data[16:20]
            return self._find(_V4_BITS, int.from_bytes(raw, "big"))
        if version == 6 and len(data) >= 40:
            raw = data[8:24] if source else data[24:40]
            return self._find(_V6_BITS, int.from_bytes(raw, "big"))
        return None

    def lookup_dst(self, packet: Union[bytes, bytearray, memoryview]) -> Any:
        """Return the peer routing the destination address of an IP packet."""
        return self._lookup_packet(packet, source=False)

    def lookup_src(self, packet: Union[bytes, bytearray, memoryview]) -> Any:
        """Return the peer routing the source address of an IP packet."""
        return self._lookup_packet(packet, source=True)

    # -- listing ---------------------------------------------------------

    def allowed_ips(self, peer: Any) -> list[Network]:
        """Networks routed to ``peer``, in the order they were assigned."""
        return [node.network() for node in self._peer_nodes.get(id(peer), [])]