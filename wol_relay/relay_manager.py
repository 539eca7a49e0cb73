"""Relay lifecycle: interface discovery policy, socket setup, signals and status."""

import asyncio
import logging
import signal
import time
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Optional

from .daemon import RunMode
from .interface_registry import InterfaceRegistry, discover_interfaces, wait_for_interfaces
from .relay_engine import RelayEngine, StartupError


logger = logging.getLogger(__name__)


class RelayState(Enum):
    """Relay operational states."""
    INITIALIZING = "initializing"                       # Loading interfaces, opening socket
    WAITING_FOR_INTERFACES = "waiting_for_interfaces"   # Daemon mode, no interface up yet
    LISTENING = "listening"                             # Receive loop running
    TERMINATED = "terminated"                           # Shut down


class RelayManager:
    """Central coordinator for the Wake-on-LAN relay."""

    def __init__(self, config: dict, run_mode: RunMode = RunMode.FOREGROUND,
                 discover: Optional[Callable[[], InterfaceRegistry]] = None):
        self.config = config
        self.run_mode = run_mode

        interfaces_config = config.get("interfaces", {})
        self.retry_interval = interfaces_config.get("discovery_retry_interval", 5)
        self.settle_delay = interfaces_config.get("settle_delay", 1)
        if discover is None:
            discover = partial(
                discover_interfaces,
                max_interfaces=interfaces_config.get("max_interfaces", 10),
                exclude=interfaces_config.get("exclude", [])
            )
        self.discover = discover

        self.registry: Optional[InterfaceRegistry] = None
        self.engine: Optional[RelayEngine] = None

        # State management
        self.current_state = RelayState.INITIALIZING
        self.state_change_time = time.time()
        self.start_time = time.time()

        # Control
        self.is_running = False
        self.shutdown_event = asyncio.Event()
        self.received_signal: Optional[int] = None
        self._signals_installed = False
        self._serve_task: Optional[asyncio.Task] = None

    def _transition_to_state(self, new_state: RelayState) -> None:
        if new_state == self.current_state:
            return
        logger.debug(f"Relay state transition: {self.current_state.value} -> {new_state.value}")
        self.current_state = new_state
        self.state_change_time = time.time()

    async def load_interfaces(self) -> InterfaceRegistry:
        """Discover interfaces according to the run mode policy."""
        if self.run_mode == RunMode.DAEMON:
            self._transition_to_state(RelayState.WAITING_FOR_INTERFACES)
            registry = await wait_for_interfaces(
                self.discover,
                retry_interval=self.retry_interval,
                settle_delay=self.settle_delay
            )
            logger.info("open socket")
        else:
            registry = self.discover()
            if not registry:
                raise StartupError("Error: Found no interface? Exit!")

        self.registry = registry
        return registry

    async def initialize(self) -> bool:
        """
        Install signal handlers, discover interfaces and open the listening socket.

        Returns:
            False if a shutdown signal arrived before the relay came up

        Raises:
            StartupError: on discovery or socket setup failure
        """
        self._setup_signal_handlers()

        load_task = asyncio.create_task(self.load_interfaces())
        shutdown_task = asyncio.create_task(self.shutdown_event.wait())
        try:
            await asyncio.wait(
                [load_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            shutdown_task.cancel()

        if self.shutdown_event.is_set():
            if load_task.done():
                if not load_task.cancelled():
                    load_task.exception()
            else:
                load_task.cancel()
                try:
                    await load_task
                except asyncio.CancelledError:
                    pass
            self._transition_to_state(RelayState.TERMINATED)
            return False

        registry = load_task.result()
        self._transition_to_state(RelayState.INITIALIZING)

        self.engine = RelayEngine(self.config, registry)
        self.engine.open_socket()
        logger.info(f"Relaying for {len(registry)} interface(s)")
        return True

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        if self._signals_installed:
            return
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Signal {signum} received, closing wolrelay")
            self.received_signal = signum
            self.shutdown_event.set()

        for signame in ['SIGINT', 'SIGQUIT', 'SIGTERM']:
            if not hasattr(signal, signame):
                continue
            signum = getattr(signal, signame)
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(signal_handler, s))

        self._signals_installed = True

    async def run_forever(self) -> None:
        """
        Run the receive loop until a shutdown signal arrives.

        Raises:
            ReceiveError: if the listening socket fails
        """
        if self.engine is None:
            raise RuntimeError("Relay is not initialized")

        self._setup_signal_handlers()
        self.is_running = True
        self._transition_to_state(RelayState.LISTENING)

        self._serve_task = asyncio.create_task(self.engine.serve_forever())
        shutdown_task = asyncio.create_task(self.shutdown_event.wait())

        try:
            await asyncio.wait(
                [self._serve_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )
            if self._serve_task.done():
                # Re-raises the receive failure
                self._serve_task.result()
        finally:
            shutdown_task.cancel()
            await self.shutdown()

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    async def shutdown(self) -> None:
        """Stop the receive loop and close the socket."""
        if self.current_state == RelayState.TERMINATED:
            return

        logger.debug("Shutting down WoL Relay...")
        self.is_running = False

        if self._serve_task and not self._serve_task.done():
            self._serve_task.cancel()
            try:
                await self._serve_task
            except asyncio.CancelledError:
                pass

        if self.engine:
            self.engine.close()

        self._transition_to_state(RelayState.TERMINATED)

    def get_status(self) -> Dict[str, Any]:
        """Get current relay status."""
        current_time = time.time()

        return {
            "relay_state": self.current_state.value,
            "run_mode": self.run_mode.value,
            "is_running": self.is_running,
            "uptime_seconds": current_time - self.start_time,
            "time_in_current_state": current_time - self.state_change_time,
            "interfaces": self.registry.to_dict() if self.registry is not None else [],
            "statistics": self.engine.get_stats() if self.engine else {}
        }
