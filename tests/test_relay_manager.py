#!/usr/bin/env python3
"""Tests for relay lifecycle management."""

import asyncio
import errno
import unittest
import sys
import os
import signal
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from wol_relay.daemon import RunMode
from wol_relay.interface_registry import InterfaceInfo, InterfaceRegistry
from wol_relay.relay_engine import ReceiveError, StartupError
from wol_relay.relay_manager import RelayManager, RelayState


CONFIG = {
    "relay": {"listen_address": "127.0.0.1", "listen_port": 0, "forward_port": 9,
              "receive_buffer_size": 256},
    "interfaces": {"max_interfaces": 10, "discovery_retry_interval": 5, "settle_delay": 1,
                   "exclude": []},
}

REGISTRY = InterfaceRegistry([InterfaceInfo.from_strings("eth0", "192.168.1.5", "255.255.255.0")])

# Daemon-mode timings short enough to keep the discovery retry spinning
FAST_RETRY_CONFIG = {
    **CONFIG,
    "interfaces": {"max_interfaces": 10, "discovery_retry_interval": 0.01, "settle_delay": 0,
                   "exclude": []},
}


class TestLoadInterfaces(unittest.IsolatedAsyncioTestCase):
    """Test the run-mode interface policy."""

    async def test_foreground_without_interfaces_is_fatal(self):
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=InterfaceRegistry)
        with self.assertRaises(StartupError):
            await manager.load_interfaces()

    async def test_foreground_discovers_once(self):
        discover = mock.Mock(return_value=REGISTRY)
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=discover)

        registry = await manager.load_interfaces()

        self.assertIs(registry, REGISTRY)
        discover.assert_called_once()

    async def test_daemon_waits_for_interfaces(self):
        discover = mock.Mock(side_effect=[InterfaceRegistry(), REGISTRY])
        manager = RelayManager(CONFIG, RunMode.DAEMON, discover=discover)

        with mock.patch("wol_relay.interface_registry.asyncio.sleep", new=mock.AsyncMock()) as sleep:
            registry = await manager.load_interfaces()

        self.assertIs(registry, REGISTRY)
        self.assertEqual(discover.call_count, 2)
        self.assertEqual([c.args[0] for c in sleep.await_args_list], [5, 1])
        self.assertEqual(manager.current_state, RelayState.WAITING_FOR_INTERFACES)


class TestRelayLifecycle(unittest.IsolatedAsyncioTestCase):
    """Test initialization, run loop and shutdown."""

    async def test_initialize_opens_socket(self):
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=lambda: REGISTRY)
        self.assertTrue(await manager.initialize())
        try:
            self.assertIsNotNone(manager.engine.sock)
            self.assertEqual(manager.current_state, RelayState.INITIALIZING)
        finally:
            await manager.shutdown()
        self.assertEqual(manager.current_state, RelayState.TERMINATED)
        self.assertIsNone(manager.engine.sock)

    async def test_shutdown_request_stops_loop(self):
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=lambda: REGISTRY)
        await manager.initialize()

        with mock.patch.object(manager, "_setup_signal_handlers"):
            run_task = asyncio.create_task(manager.run_forever())
            await asyncio.sleep(0.05)
            self.assertTrue(manager.is_running)
            self.assertEqual(manager.current_state, RelayState.LISTENING)

            manager.request_shutdown()
            await asyncio.wait_for(run_task, timeout=2)

        self.assertFalse(manager.is_running)
        self.assertEqual(manager.current_state, RelayState.TERMINATED)

    async def test_receive_failure_propagates(self):
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=lambda: REGISTRY)
        await manager.initialize()
        manager.engine._receive = mock.AsyncMock(side_effect=OSError(errno.EBADF, "Bad file descriptor"))

        with mock.patch.object(manager, "_setup_signal_handlers"):
            with self.assertRaises(ReceiveError):
                await manager.run_forever()

        self.assertEqual(manager.current_state, RelayState.TERMINATED)

    async def test_sigterm_stops_listening_relay(self):
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=lambda: REGISTRY)
        self.assertTrue(await manager.initialize())

        run_task = asyncio.create_task(manager.run_forever())
        await asyncio.sleep(0.05)
        self.assertEqual(manager.current_state, RelayState.LISTENING)

        with self.assertLogs("wol_relay.relay_manager", level="INFO") as logs:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(run_task, timeout=2)

        self.assertEqual(manager.received_signal, signal.SIGTERM)
        self.assertEqual(manager.current_state, RelayState.TERMINATED)
        self.assertIsNone(manager.engine.sock)
        self.assertIn(f"Signal {signal.SIGTERM} received, closing wolrelay", logs.output[0])

    async def test_sigterm_while_waiting_for_interfaces(self):
        discover = mock.Mock(return_value=InterfaceRegistry())
        manager = RelayManager(FAST_RETRY_CONFIG, RunMode.DAEMON, discover=discover)

        init_task = asyncio.create_task(manager.initialize())
        await asyncio.sleep(0.05)
        self.assertEqual(manager.current_state, RelayState.WAITING_FOR_INTERFACES)

        os.kill(os.getpid(), signal.SIGTERM)
        started = await asyncio.wait_for(init_task, timeout=2)

        self.assertFalse(started)
        self.assertEqual(manager.received_signal, signal.SIGTERM)
        self.assertEqual(manager.current_state, RelayState.TERMINATED)
        self.assertIsNone(manager.engine)
        self.assertGreater(discover.call_count, 1)

        # The abandoned retry loop no longer polls
        calls = discover.call_count
        await asyncio.sleep(0.05)
        self.assertEqual(discover.call_count, calls)

    async def test_run_requires_initialize(self):
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=lambda: REGISTRY)
        with self.assertRaises(RuntimeError):
            await manager.run_forever()

    async def test_status(self):
        manager = RelayManager(CONFIG, RunMode.FOREGROUND, discover=lambda: REGISTRY)
        await manager.initialize()
        try:
            status = manager.get_status()
        finally:
            await manager.shutdown()

        self.assertEqual(status["relay_state"], "initializing")
        self.assertEqual(status["run_mode"], "foreground")
        self.assertEqual(status["interfaces"][0]["broadcast"], "192.168.1.255")
        self.assertEqual(status["statistics"]["magic_packets"], 0)


if __name__ == '__main__':
    unittest.main()
