"""Idle watchdog for the active session.

Periodically asks the pairing authority to drop a session that has gone
quiet. It runs independently of any connection, so a companion that
vanishes without closing its socket still loses the session once the idle
timeout passes.
"""

import asyncio
import logging
from typing import Optional

from fossdeck.pairing import PairingAuthority

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0


class IdleWatchdog:
    """Background task reclaiming idle sessions.

    Usage:
        watchdog = IdleWatchdog(authority)
        await watchdog.start()
        ...
        await watchdog.stop()
    """

    def __init__(self, authority: PairingAuthority, interval: float = DEFAULT_INTERVAL):
        """Initialize the watchdog.

        Args:
            authority: Authority whose session is monitored.
            interval: Seconds between checks.
        """
        self._authority = authority
        self._interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the watchdog loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(
            f"Idle watchdog started (interval={self._interval}s, "
            f"timeout={self._authority.idle_timeout}s)"
        )

    async def stop(self) -> None:
        """Stop the watchdog loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Idle watchdog stopped")

    def check(self) -> Optional[str]:
        """Run one check; returns the expired device id, if any."""
        return self._authority.expire_idle_if_needed()

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                expired = self.check()
                if expired:
                    logger.info(f"Watchdog reclaimed idle session of {expired[:8]}...")
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Watchdog loop error: {e}")
                await asyncio.sleep(self._interval)
