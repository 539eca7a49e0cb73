"""Wake-on-LAN magic packet recognition."""

from dataclasses import dataclass
from typing import Optional


# Magic packet format:
# - 6 bytes of 0xFF
# - MAC address repeated 16 times
SYNC_BYTE = 0xFF
SYNC_LENGTH = 6
MAC_LENGTH = 6
MAC_REPETITIONS = 16
MAGIC_PACKET_SIZE = SYNC_LENGTH + MAC_LENGTH * MAC_REPETITIONS


def format_mac(mac_bytes: bytes) -> str:
    """Format MAC address bytes as lowercase hyphen-separated octets."""
    return '-'.join(f'{octet:02x}' for octet in mac_bytes)


@dataclass(frozen=True)
class MagicPacket:
    """A received magic packet, kept as the raw payload."""

    payload: bytes

    @property
    def mac_bytes(self) -> bytes:
        return self.payload[SYNC_LENGTH:SYNC_LENGTH + MAC_LENGTH]

    @property
    def mac_address(self) -> str:
        return format_mac(self.mac_bytes)

    def __len__(self) -> int:
        return len(self.payload)


def try_parse(datagram: bytes) -> Optional[MagicPacket]:
    """
    Check whether a datagram is a Wake-on-LAN magic packet.

    Only the first and last sync byte and the first MAC byte are inspected;
    the sixteen MAC repetitions are not compared with each other.

    Args:
        datagram: Raw UDP payload

    Returns:
        MagicPacket if the datagram matches, None otherwise
    """
    if len(datagram) != MAGIC_PACKET_SIZE:
        return None

    if datagram[0] != SYNC_BYTE or datagram[SYNC_LENGTH - 1] != SYNC_BYTE:
        return None

    # An all-0xFF datagram is not a magic packet
    if datagram[SYNC_LENGTH] == SYNC_BYTE:
        return None

    return MagicPacket(bytes(datagram))
