"""Allowed-IP trie, netlink codec, generic netlink client, ring buffer and constant-time compare for WolfGuard."""

__version__ = "0.1.0"
__all__ = ["allowedips", "genl", "memneq", "nlmsg", "ptr_ring", "uapi"]