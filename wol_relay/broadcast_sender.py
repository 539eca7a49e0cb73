"""Replays magic packets onto the broadcast address of every local subnet."""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional

from .interface_registry import GLOBAL_BROADCAST, InterfaceRegistry


logger = logging.getLogger(__name__)

WOL_PORT = 9


@dataclass(frozen=True)
class SendOutcome:
    """Result of sending the payload to one destination."""

    destination: str
    bytes_written: int
    expected: int
    error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.error is None and self.bytes_written == self.expected


class BroadcastSender:
    """Sends a payload to one or more broadcast addresses, best effort."""

    def __init__(self, sock: socket.socket, port: int = WOL_PORT):
        self.sock = sock
        self.port = port

    async def send(self, payload: bytes, destination: str) -> SendOutcome:
        """
        Send the payload once; a short write counts as a failure.

        The socket is non-blocking, so a full send buffer is waited out by the
        event loop instead of failing the destination.
        """
        loop = asyncio.get_running_loop()
        try:
            written = await loop.sock_sendto(self.sock, payload, (destination, self.port))
        except OSError as e:
            logger.warning(f"Could not send magic packet to {destination}:{self.port}: {e}")
            return SendOutcome(destination, 0, len(payload), str(e))

        outcome = SendOutcome(destination, written, len(payload))
        if outcome.sent:
            logger.info(f"      {destination}")
        else:
            logger.warning(f"Partial send to {destination}:{self.port}: "
                           f"{written} of {len(payload)} bytes")
        return outcome

    async def fan_out(self, payload: bytes, registry: InterfaceRegistry) -> List[SendOutcome]:
        """
        Send the payload to every interface's broadcast address.

        Falls back to the global broadcast address when no interfaces are
        known. Each destination is attempted regardless of earlier failures.
        """
        destinations = registry.broadcast_addresses() or [GLOBAL_BROADCAST]
        return [await self.send(payload, destination) for destination in destinations]
