#!/usr/bin/env python3
"""Tests for broadcast fan-out."""

import socket
import unittest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wol_relay.broadcast_sender import BroadcastSender, SendOutcome
from wol_relay.interface_registry import InterfaceInfo, InterfaceRegistry


PAYLOAD = b'\xff' * 6 + bytes.fromhex('001122334455') * 16


class FakeSocket:
    """Records sendto calls; per-destination results may be overridden."""

    def __init__(self, results=None):
        self.sent = []
        self.results = results or {}

    def gettimeout(self):
        return 0.0

    def sendto(self, data, *args):
        # The event loop retries with sendto(data, flags, address)
        address = args[-1]
        self.sent.append((data, address))
        result = self.results.get(address[0])
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return len(data)


class FullBufferSocket(FakeSocket):
    """Reports a full send buffer on the first attempt, borrowing a real fd to wait on."""

    def __init__(self, real_sock):
        super().__init__()
        self.real_sock = real_sock
        self.attempts = 0

    def fileno(self):
        return self.real_sock.fileno()

    def sendto(self, data, *args):
        self.attempts += 1
        if self.attempts == 1:
            raise BlockingIOError(11, "Resource temporarily unavailable")
        return super().sendto(data, *args)


def make_registry(*specs):
    return InterfaceRegistry(
        InterfaceInfo.from_strings(f"eth{i}", addr, mask) for i, (addr, mask) in enumerate(specs)
    )


class TestSend(unittest.IsolatedAsyncioTestCase):
    """Test single sends."""

    async def test_full_write(self):
        sock = FakeSocket()
        outcome = await BroadcastSender(sock).send(PAYLOAD, "192.168.1.255")

        self.assertTrue(outcome.sent)
        self.assertEqual(outcome.bytes_written, 102)
        self.assertEqual(sock.sent, [(PAYLOAD, ("192.168.1.255", 9))])

    async def test_partial_write_is_failure(self):
        sock = FakeSocket({"192.168.1.255": 50})
        with self.assertLogs("wol_relay.broadcast_sender", level="WARNING"):
            outcome = await BroadcastSender(sock).send(PAYLOAD, "192.168.1.255")

        self.assertFalse(outcome.sent)
        self.assertEqual(outcome.bytes_written, 50)

    async def test_os_error_is_failure(self):
        sock = FakeSocket({"192.168.1.255": OSError(101, "Network is unreachable")})
        with self.assertLogs("wol_relay.broadcast_sender", level="WARNING"):
            outcome = await BroadcastSender(sock).send(PAYLOAD, "192.168.1.255")

        self.assertFalse(outcome.sent)
        self.assertIsNotNone(outcome.error)

    async def test_full_send_buffer_is_retried(self):
        real_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        real_sock.setblocking(False)
        try:
            sock = FullBufferSocket(real_sock)
            with self.assertNoLogs("wol_relay.broadcast_sender", level="WARNING"):
                outcome = await BroadcastSender(sock).send(PAYLOAD, "192.168.1.255")
        finally:
            real_sock.close()

        self.assertTrue(outcome.sent)
        self.assertEqual(sock.attempts, 2)
        self.assertEqual(sock.sent, [(PAYLOAD, ("192.168.1.255", 9))])

    async def test_custom_port(self):
        sock = FakeSocket()
        await BroadcastSender(sock, port=7).send(PAYLOAD, "10.0.0.255")
        self.assertEqual(sock.sent[0][1], ("10.0.0.255", 7))

    def test_outcome_sent(self):
        self.assertTrue(SendOutcome("1.2.3.4", 102, 102).sent)
        self.assertFalse(SendOutcome("1.2.3.4", 101, 102).sent)
        self.assertFalse(SendOutcome("1.2.3.4", 0, 102, "error").sent)


class TestFanOut(unittest.IsolatedAsyncioTestCase):
    """Test fan-out over all interfaces."""

    async def test_empty_registry_uses_global_broadcast(self):
        sock = FakeSocket()
        outcomes = await BroadcastSender(sock).fan_out(PAYLOAD, InterfaceRegistry())

        self.assertEqual(len(outcomes), 1)
        self.assertEqual(sock.sent, [(PAYLOAD, ("255.255.255.255", 9))])

    async def test_one_send_per_interface(self):
        sock = FakeSocket()
        registry = make_registry(("192.168.1.5", "255.255.255.0"), ("10.0.0.5", "255.255.255.0"))
        outcomes = await BroadcastSender(sock).fan_out(PAYLOAD, registry)

        self.assertEqual([address for _, address in sock.sent],
                         [("192.168.1.255", 9), ("10.0.0.255", 9)])
        self.assertTrue(all(outcome.sent for outcome in outcomes))

    async def test_failures_do_not_abort(self):
        sock = FakeSocket({"192.168.1.255": OSError(1, "Operation not permitted")})
        registry = make_registry(("192.168.1.5", "255.255.255.0"), ("10.0.0.5", "255.255.255.0"))

        with self.assertLogs("wol_relay.broadcast_sender", level="WARNING"):
            outcomes = await BroadcastSender(sock).fan_out(PAYLOAD, registry)

        self.assertEqual(len(sock.sent), 2)
        self.assertEqual([outcome.sent for outcome in outcomes], [False, True])

    async def test_partial_write_does_not_abort(self):
        sock = FakeSocket({"192.168.1.255": 10, "10.0.0.255": 10})
        registry = make_registry(("192.168.1.5", "255.255.255.0"), ("10.0.0.5", "255.255.255.0"))

        with self.assertLogs("wol_relay.broadcast_sender", level="WARNING"):
            outcomes = await BroadcastSender(sock).fan_out(PAYLOAD, registry)

        self.assertEqual(len(sock.sent), 2)
        self.assertFalse(any(outcome.sent for outcome in outcomes))


if __name__ == '__main__':
    unittest.main()
