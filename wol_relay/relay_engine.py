"""UDP receive loop: recognises magic packets and relays the ones from outside."""

import asyncio
import logging
import socket
import time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .broadcast_sender import BroadcastSender, WOL_PORT
from .interface_registry import InterfaceRegistry
from .magic_packet import MAGIC_PACKET_SIZE, try_parse


logger = logging.getLogger(__name__)

RECEIVE_BUFFER_SIZE = 256


class RelayError(Exception):
    """Fatal relay error, optionally caused by an OSError."""

    def __init__(self, message: str, cause: Optional[OSError] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        detail = self.cause.strerror or str(self.cause)
        return f"{self.message}: {detail}"


class StartupError(RelayError):
    """Socket setup, interface discovery or PID file failure."""


class ReceiveError(RelayError):
    """Receive failure on the listening socket."""


class PacketDisposition(Enum):
    """What happened to a received datagram."""
    DISCARDED = "discarded"      # Not a magic packet
    FORWARDED = "forwarded"      # Magic packet from outside, rebroadcast
    SUPPRESSED = "suppressed"    # Magic packet from a local network


class RelayEngine:
    """Owns the listening socket and processes datagrams one at a time."""

    def __init__(self, config: dict, registry: InterfaceRegistry,
                 sock: Optional[socket.socket] = None,
                 sender: Optional[BroadcastSender] = None):
        relay_config = config.get("relay", {})
        self.listen_address = relay_config.get("listen_address", "0.0.0.0")
        self.listen_port = relay_config.get("listen_port", WOL_PORT)
        self.forward_port = relay_config.get("forward_port", WOL_PORT)
        self.receive_buffer_size = relay_config.get("receive_buffer_size", RECEIVE_BUFFER_SIZE)

        self.registry = registry
        self.sock = sock
        self.sender = sender
        if self.sender is None and self.sock is not None:
            self.sender = BroadcastSender(self.sock, self.forward_port)

        self.stats = {
            "packets_received": 0,
            "magic_packets": 0,
            "packets_forwarded": 0,
            "packets_suppressed": 0,
            "packets_discarded": 0,
            "send_failures": 0,
            "last_magic_packet": None
        }

    def open_socket(self) -> socket.socket:
        """Create the broadcast-capable UDP socket and bind the listening port."""
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        except OSError as e:
            raise StartupError("Can't create socket", e) from e

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except OSError as e:
            sock.close()
            raise StartupError("Can't set broadcast socket option", e) from e

        try:
            sock.bind((self.listen_address, self.listen_port))
        except OSError as e:
            sock.close()
            raise StartupError("Can't bind socket", e) from e

        sock.setblocking(False)
        self.sock = sock
        if self.sender is None:
            self.sender = BroadcastSender(sock, self.forward_port)

        logger.debug(f"Listening socket bound to {self.listen_address}:{self.listen_port}")
        return sock

    async def handle_datagram(self, data: bytes, sender_addr: Tuple[str, int]) -> PacketDisposition:
        """Classify one datagram and relay it if it is a magic packet from outside."""
        self.stats["packets_received"] += 1

        packet = try_parse(data)
        if packet is None:
            self.stats["packets_discarded"] += 1
            return PacketDisposition.DISCARDED

        ip, port = sender_addr[0], sender_addr[1]
        self.stats["magic_packets"] += 1
        self.stats["last_magic_packet"] = {
            "mac_address": packet.mac_address,
            "sender": f"{ip}:{port}",
            "time": time.time()
        }
        logger.info(f"Received a magic packet for MAC {packet.mac_address} from {ip}:{port}")

        if self.registry.is_local(ip):
            self.stats["packets_suppressed"] += 1
            return PacketDisposition.SUPPRESSED

        logger.info("   forwarding to...")
        outcomes = await self.sender.fan_out(packet.payload, self.registry)
        self.stats["packets_forwarded"] += 1
        self.stats["send_failures"] += sum(1 for outcome in outcomes if not outcome.sent)
        return PacketDisposition.FORWARDED

    async def _receive(self) -> Tuple[bytes, Tuple[str, int]]:
        loop = asyncio.get_running_loop()
        return await loop.sock_recvfrom(self.sock, self.receive_buffer_size)

    async def serve_forever(self) -> None:
        """Receive and process datagrams until cancelled or the socket fails."""
        if self.sock is None:
            self.open_socket()

        logger.info("Ready, waiting for wol packets...")
        while True:
            try:
                data, sender_addr = await self._receive()
            except OSError as e:
                raise ReceiveError("Can't receive data...", e) from e

            await self.handle_datagram(data, sender_addr)

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "listen_address": f"{self.listen_address}:{self.listen_port}",
            "forward_port": self.forward_port,
            "magic_packet_size": MAGIC_PACKET_SIZE
        }
