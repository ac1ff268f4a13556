"""Generic netlink interface definitions for the WolfGuard device.

The device is driven through generic netlink with family ``GENL_NAME`` and
version ``GENL_VERSION``. Two commands exist: ``Command.GET_DEVICE`` (a dump
request answered by several multi-part messages) and ``Command.SET_DEVICE``.
Attributes nest as device -> peers -> peer -> allowed IPs -> allowed IP.
"""

from enum import IntEnum, IntFlag

GENL_NAME = "wolfguard"
GENL_VERSION = 1

CURVE_ID = "ECC_SECP256R1"
PUBLIC_KEY_LEN = 65
"""Size of an uncompressed SECP256R1 public key."""
PRIVATE_KEY_LEN = 32
"""Size of a SECP256R1 private key."""
SYMMETRIC_KEY_LEN = 32
"""Size of an AES-256 key."""
HANDSHAKE_NAME = "Noise_IKpsk2_SECP256R1_AesGcm_SHA256"


class Command(IntEnum):
    """Generic netlink commands understood by the device."""

    GET_DEVICE = 0
    SET_DEVICE = 1


CMD_MAX = max(Command)


class DeviceFlag(IntFlag):
    """Flags carried in ``DeviceAttribute.FLAGS``."""

    REPLACE_PEERS = 1 << 0


DEVICE_F_ALL = DeviceFlag.REPLACE_PEERS


class DeviceAttribute(IntEnum):
    """Top-level attributes of a device message."""

    UNSPEC = 0
    IFINDEX = 1
    IFNAME = 2
    PRIVATE_KEY = 3
    PUBLIC_KEY = 4
    FLAGS = 5
    LISTEN_PORT = 6
    FWMARK = 7
    PEERS = 8


DEVICE_A_MAX = max(DeviceAttribute)


class PeerFlag(IntFlag):
    """Flags carried in ``PeerAttribute.FLAGS``."""

    REMOVE_ME = 1 << 0
    REPLACE_ALLOWEDIPS = 1 << 1
    UPDATE_ONLY = 1 << 2


PEER_F_ALL = PeerFlag.REMOVE_ME | PeerFlag.REPLACE_ALLOWEDIPS | PeerFlag.UPDATE_ONLY


class PeerAttribute(IntEnum):
    """Attributes of one nested peer entry."""

    UNSPEC = 0
    PUBLIC_KEY = 1
    PRESHARED_KEY = 2
    FLAGS = 3
    ENDPOINT = 4
    PERSISTENT_KEEPALIVE_INTERVAL = 5
    LAST_HANDSHAKE_TIME = 6
    RX_BYTES = 7
    TX_BYTES = 8
    ALLOWEDIPS = 9
    PROTOCOL_VERSION = 10


PEER_A_MAX = max(PeerAttribute)


class AllowedIpAttribute(IntEnum):
    """Attributes of one nested allowed-IP entry."""

    UNSPEC = 0
    FAMILY = 1
    IPADDR = 2
    CIDR_MASK = 3


ALLOWEDIP_A_MAX = max(AllowedIpAttribute)