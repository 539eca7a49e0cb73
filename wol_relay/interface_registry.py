"""Local IPv4 interface discovery and subnet membership checks."""

import asyncio
import ipaddress
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple, Union


logger = logging.getLogger(__name__)

MAX_INTERFACES = 10
GLOBAL_BROADCAST = "255.255.255.255"

# (interface name, address, netmask, broadcast or None)
AddressEntry = Tuple[str, str, Optional[str], Optional[str]]


@dataclass(frozen=True)
class InterfaceInfo:
    """Address, netmask and broadcast address of one local interface."""

    name: str
    local_address: ipaddress.IPv4Address
    netmask: ipaddress.IPv4Address
    broadcast_address: ipaddress.IPv4Address

    @classmethod
    def from_strings(cls, name: str, address: str, netmask: str,
                     broadcast: Optional[str] = None) -> "InterfaceInfo":
        """Build an entry, computing the directed broadcast address when missing."""
        local_address = ipaddress.IPv4Address(address)
        mask = ipaddress.IPv4Address(netmask)

        if broadcast:
            broadcast_address = ipaddress.IPv4Address(broadcast)
        else:
            host_bits = ~int(mask) & 0xFFFFFFFF
            broadcast_address = ipaddress.IPv4Address(int(local_address) | host_bits)

        return cls(name, local_address, mask, broadcast_address)

    def same_network(self, address: ipaddress.IPv4Address) -> bool:
        """Check if address shares this interface's network prefix."""
        mask = int(self.netmask)
        return (int(address) & mask) == (int(self.local_address) & mask)

    def describe(self) -> str:
        return (f"IP {str(self.local_address):<15} netmask {str(self.netmask):<15} "
                f"broadcast {str(self.broadcast_address):<15}")


class InterfaceRegistry:
    """Immutable, ordered collection of the host's IPv4 interfaces."""

    def __init__(self, interfaces: Iterable[InterfaceInfo] = (),
                 max_interfaces: int = MAX_INTERFACES):
        entries = list(interfaces)
        if len(entries) > max_interfaces:
            logger.warning(f"Found {len(entries)} interfaces, using only the first {max_interfaces}")
            entries = entries[:max_interfaces]
        self._interfaces: Tuple[InterfaceInfo, ...] = tuple(entries)

    def __iter__(self) -> Iterator[InterfaceInfo]:
        return iter(self._interfaces)

    def __len__(self) -> int:
        return len(self._interfaces)

    def __bool__(self) -> bool:
        return bool(self._interfaces)

    def __repr__(self) -> str:
        return f"InterfaceRegistry({list(self._interfaces)!r})"

    @property
    def interfaces(self) -> Tuple[InterfaceInfo, ...]:
        return self._interfaces

    def is_local(self, candidate: Union[str, ipaddress.IPv4Address]) -> bool:
        """
        Check if an address belongs to one of the local networks.

        Args:
            candidate: IPv4 address as string or IPv4Address

        Returns:
            True if the address shares a network prefix with any registered
            interface, False otherwise (always False for an empty registry)
        """
        try:
            address = ipaddress.IPv4Address(candidate)
        except ValueError:
            return False

        return any(info.same_network(address) for info in self._interfaces)

    def broadcast_addresses(self) -> List[str]:
        """Broadcast addresses of all registered interfaces, in discovery order."""
        return [str(info.broadcast_address) for info in self._interfaces]

    def to_dict(self) -> List[dict]:
        return [
            {
                "name": info.name,
                "address": str(info.local_address),
                "netmask": str(info.netmask),
                "broadcast": str(info.broadcast_address),
            }
            for info in self._interfaces
        ]


class InterfaceSource(Protocol):
    """Platform adapter listing IPv4 addresses of all interfaces."""

    def __call__(self) -> Sequence[AddressEntry]:
        ...


class NetifacesSource:
    """Interface enumeration backed by netifaces."""

    def __call__(self) -> List[AddressEntry]:
        import netifaces

        entries: List[AddressEntry] = []
        for interface in netifaces.interfaces():
            addresses = netifaces.ifaddresses(interface)
            for addr in addresses.get(netifaces.AF_INET, []):
                entries.append((
                    interface,
                    addr.get("addr"),
                    addr.get("netmask"),
                    addr.get("broadcast"),
                ))
        return entries


def _usable(name: str, address: Optional[str], netmask: Optional[str],
            exclude: Sequence[str]) -> bool:
    if name in exclude or not address or not netmask:
        return False
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return not ip.is_loopback and not ip.is_unspecified


def discover_interfaces(source: Optional[InterfaceSource] = None,
                        max_interfaces: int = MAX_INTERFACES,
                        exclude: Sequence[str] = ()) -> InterfaceRegistry:
    """
    Discover active, non-loopback IPv4 interfaces.

    Args:
        source: Enumeration backend (netifaces when omitted)
        max_interfaces: Maximum number of interfaces kept
        exclude: Interface names to ignore

    Returns:
        InterfaceRegistry, empty when nothing was found or enumeration failed
    """
    if source is None:
        source = NetifacesSource()

    try:
        entries = source()
    except Exception as e:
        logger.error(f"Interface enumeration failed: {e}")
        return InterfaceRegistry()

    interfaces: List[InterfaceInfo] = []
    for name, address, netmask, broadcast in entries:
        if not _usable(name, address, netmask, exclude):
            continue
        if len(interfaces) >= max_interfaces:
            logger.warning(f"Interface limit of {max_interfaces} reached, ignoring {name} {address}")
            continue
        try:
            info = InterfaceInfo.from_strings(name, address, netmask, broadcast)
        except ValueError as e:
            logger.debug(f"Skipping interface {name}: {e}")
            continue
        logger.info(info.describe())
        interfaces.append(info)

    return InterfaceRegistry(interfaces, max_interfaces=max_interfaces)


async def wait_for_interfaces(discover: Callable[[], InterfaceRegistry],
                              retry_interval: float = 5.0,
                              settle_delay: float = 1.0) -> InterfaceRegistry:
    """Retry discovery until at least one interface is up, then let it settle."""
    logger.info("Waiting for interfaces to get up and running")

    registry = discover()
    while not registry:
        await asyncio.sleep(retry_interval)
        registry = discover()

    if settle_delay > 0:
        await asyncio.sleep(settle_delay)

    return registry
