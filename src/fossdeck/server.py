"""HTTP/WebSocket server for the fossdeck daemon.

Single aiohttp server handling all routes:
- /health - Health check
- /ws - Companion channel (JSON frames, one SessionStateMachine each)
- /api/status - Pairing status (local callers only)
- /api/pairing-code - Rotate the pairing code (local callers only)
- /api/devices - List / revoke authorized devices (local callers only)
"""

import asyncio
import ipaddress
import logging
from typing import Any, Optional

from aiohttp import WSMsgType, web

from fossdeck import __version__
from fossdeck.commands import CommandExecutor
from fossdeck.pairing import PairingAuthority
from fossdeck.session import SessionStateMachine

logger = logging.getLogger(__name__)


class WebSocketChannel:
    """MessageChannel over an aiohttp WebSocket."""

    def __init__(self, ws: web.WebSocketResponse):
        self._ws = ws

    async def send(self, message: dict[str, Any]) -> None:
        await self._ws.send_json(message)

    async def receive(self) -> Optional[str]:
        while True:
            frame = await self._ws.receive()
            if frame.type == WSMsgType.TEXT:
                return frame.data
            if frame.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                return None
            if frame.type == WSMsgType.ERROR:
                logger.warning(f"WebSocket error: {self._ws.exception()}")
                return None
            # Binary and control frames carry no commands

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


def _is_loopback(remote: Optional[str]) -> bool:
    if not remote:
        return False
    try:
        return ipaddress.ip_address(remote).is_loopback
    except ValueError:
        return False


class DeckServer:
    """aiohttp server hosting companion connections and the local API."""

    def __init__(
        self,
        authority: PairingAuthority,
        executor: CommandExecutor,
        announce_code: bool = True,
        shutdown_timeout: float = 5.0,
    ):
        """Initialize server.

        Args:
            authority: Shared pairing authority handed to every connection.
            executor: Runs commands for authenticated connections.
            announce_code: Include the pairing code in hello messages.
            shutdown_timeout: How long close() waits for connections to
                finish their in-flight message and say goodbye.
        """
        self.authority = authority
        self.executor = executor
        self.announce_code = announce_code
        self.shutdown_timeout = shutdown_timeout

        self._shutdown = asyncio.Event()
        self._connections: set[asyncio.Task] = set()

        self.app = web.Application()
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/ws", self._handle_websocket)

        # Local administration API (for CLI)
        self.app.router.add_get("/api/status", self._handle_status)
        self.app.router.add_post("/api/pairing-code", self._handle_rotate_code)
        self.app.router.add_get("/api/devices", self._handle_list_devices)
        self.app.router.add_delete("/api/devices/{device_id}", self._handle_revoke_device)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # Health
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="ok")

    # =========================================================================
    # Companion channel
    # =========================================================================

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Run one companion connection to completion."""
        if self._shutdown.is_set():
            raise web.HTTPServiceUnavailable()

        ws = web.WebSocketResponse()
        await ws.prepare(request)

        source = request.remote
        logger.info(f"Connection opened from {source or 'unknown address'}")

        session = SessionStateMachine(
            authority=self.authority,
            executor=self.executor,
            channel=WebSocketChannel(ws),
            source_address=source,
            announce_code=self.announce_code,
        )

        task = asyncio.current_task()
        self._connections.add(task)
        try:
            await session.run(self._shutdown)
        except Exception as e:
            logger.error(f"Connection error for {source}: {e}")
        finally:
            self._connections.discard(task)
            if not ws.closed:
                await ws.close()
            logger.info(f"Connection closed from {source or 'unknown address'}")

        return ws

    # =========================================================================
    # Local API (for CLI)
    # =========================================================================

    def _require_local(self, request: web.Request) -> None:
        if not _is_loopback(request.remote):
            logger.warning(f"Rejected admin request from {request.remote}")
            raise web.HTTPForbidden()

    async def _handle_status(self, request: web.Request) -> web.Response:
        self._require_local(request)
        status = self.authority.status()
        return web.json_response({
            "version": __version__,
            "paired": status.paired,
            "active_device_id": status.active_device_id,
            "authorized_count": status.authorized_count,
            "pairing_code": status.pairing_code,
            "code_expired": status.code_expired,
            "connections": self.connection_count,
            "save_failures": self.authority.save_failures,
        })

    async def _handle_rotate_code(self, request: web.Request) -> web.Response:
        self._require_local(request)
        before = self.authority.current_code()
        code = self.authority.regenerate_code()
        return web.json_response({
            "pairing_code": code.value,
            "rotated": code.issued_at != before.issued_at,
        })

    async def _handle_list_devices(self, request: web.Request) -> web.Response:
        self._require_local(request)
        active = self.authority.active_session().device_id
        devices = [
            {
                "device_id": device_id,
                "name": device.display_name,
                "added_at": device.added_at,
                "last_seen": device.last_seen,
                "active": device_id == active,
            }
            for device_id, device in self.authority.list_devices()
        ]
        return web.json_response({"devices": devices})

    async def _handle_revoke_device(self, request: web.Request) -> web.Response:
        self._require_local(request)
        device_id = request.match_info["device_id"]

        if not self.authority.revoke(device_id):
            return web.json_response({"error": "Device not found"}, status=404)

        return web.json_response({"status": "revoked", "device_id": device_id})

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def shutdown_connections(self) -> None:
        """Tell every connection to say goodbye and wait for them to finish."""
        self._shutdown.set()
        pending = set(self._connections)
        if not pending:
            return

        logger.info(f"Closing {len(pending)} connection(s)...")
        _, still_running = await asyncio.wait(pending, timeout=self.shutdown_timeout)
        if still_running:
            logger.warning(f"{len(still_running)} connection(s) did not close in time")

    async def close(self) -> None:
        """Close all connections and stop server."""
        await self.shutdown_connections()

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        logger.info("Server closed")
