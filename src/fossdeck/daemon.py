"""Main daemon orchestration - ties all components together."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from fossdeck.commands import CommandExecutor, create_default_executor
from fossdeck.config import Config
from fossdeck.device_store import DeviceStore
from fossdeck.discovery import DiscoveryResponder
from fossdeck.pairing import PairingAuthority
from fossdeck.rate_limit import RateLimiter
from fossdeck.server import DeckServer
from fossdeck.watchdog import IdleWatchdog

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Error during daemon startup."""

    pass


class Daemon:
    """Main daemon orchestrating all components.

    Responsibilities:
    - Load the device allow-list
    - Create the pairing authority shared by every connection
    - Start the WebSocket server, idle watchdog and discovery responder
    - Handle graceful shutdown on SIGINT/SIGTERM
    """

    def __init__(
        self,
        config: Config,
        executor: Optional[CommandExecutor] = None,
        store: Optional[DeviceStore] = None,
    ):
        """Initialize daemon.

        Args:
            config: Daemon configuration.
            executor: Optional injected command executor (for testing).
            store: Optional injected device store (for testing).
        """
        self._config = config
        self._executor = executor
        self._store = store
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

        self.authority: Optional[PairingAuthority] = None
        self._server: Optional[DeckServer] = None
        self._watchdog: Optional[IdleWatchdog] = None
        self._discovery: Optional[DiscoveryResponder] = None

    @property
    def port(self) -> int:
        if self._server:
            return self._server.get_port()
        return self._config.port

    async def start(self) -> None:
        """Start the daemon.

        Raises:
            StartupError: If the server cannot bind its port.
        """
        logger.info("Starting daemon...")
        self._stop_event = asyncio.Event()

        self._initialize_authority()

        if self._executor is None:
            self._executor = create_default_executor(
                handler_timeout=self._config.commands.handler_timeout
            )

        self._server = DeckServer(
            authority=self.authority,
            executor=self._executor,
            announce_code=self._config.pairing.announce_code,
        )
        try:
            await self._server.start(self._config.bind_address, self._config.port)
        except OSError as e:
            raise StartupError(
                f"Cannot listen on {self._config.bind_address}:{self._config.port}: {e}"
            ) from e

        self._watchdog = IdleWatchdog(
            self.authority, interval=self._config.pairing.watchdog_interval
        )
        await self._watchdog.start()

        if self._config.discovery.enabled:
            self._discovery = DiscoveryResponder(
                ws_port=self.port,
                port=self._config.discovery.port,
            )
            await self._discovery.start()

        self._setup_signals()

        self._running = True
        code = self.authority.current_code()
        logger.info(f"Daemon started, pairing code: {code.value}")

    def _initialize_authority(self) -> None:
        if self._store is None:
            path = Path(self._config.store_path) if self._config.store_path else None
            self._store = DeviceStore(path)
            self._store.load()
        logger.info(f"Loaded {len(self._store)} authorized device(s) from {self._store.path}")

        rate = self._config.rate_limit
        self.authority = PairingAuthority(
            store=self._store,
            rate_limiter=RateLimiter(
                max_attempts=rate.max_attempts,
                window=rate.window,
                lockout=rate.lockout,
            ),
            code_ttl=self._config.pairing.code_ttl,
            idle_timeout=self._config.pairing.idle_timeout,
        )

    async def run_forever(self) -> None:
        """Run daemon until shutdown signal."""
        if not self._running:
            await self.start()

        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Request a graceful stop."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig,
                    lambda: asyncio.create_task(self.stop()),
                )
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/thread; Ctrl+C still raises
                logger.debug(f"Signal handler for {sig.name} not installed")

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Shutting down daemon...")
        self._running = False

        if self._discovery:
            await self._discovery.stop()
            self._discovery = None

        # Connections get their shutdown notice before the watchdog stops
        if self._server:
            await self._server.close()
            self._server = None

        if self._watchdog:
            await self._watchdog.stop()
            self._watchdog = None

        logger.info("Daemon shutdown complete")
