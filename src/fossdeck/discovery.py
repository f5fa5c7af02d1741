"""LAN discovery responder.

Companions broadcast ``FOSSDECK_DISCOVERY_V1?`` over UDP; the host answers
with a small JSON description of where its WebSocket endpoint lives. The
responder holds no state and grants nothing: pairing and authentication
still happen over the WebSocket.
"""

import asyncio
import json
import logging
import socket
from typing import Optional, Tuple

from fossdeck import __version__

logger = logging.getLogger(__name__)

DEFAULT_PORT = 45321
DISCOVERY_QUERY = b"FOSSDECK_DISCOVERY_V1?"


def build_reply(ws_port: int, name: Optional[str] = None) -> bytes:
    """Discovery reply payload."""
    return json.dumps({
        "name": name or socket.gethostname() or "unknown",
        "proto": "ws",
        "port": ws_port,
        "path": "/ws",
        "version": __version__,
    }).encode()


class DiscoveryProtocol(asyncio.DatagramProtocol):
    """asyncio protocol answering discovery queries."""

    def __init__(self, ws_port: int, name: Optional[str] = None):
        self._reply = build_reply(ws_port, name)
        self._transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        self._transport = transport

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        if data != DISCOVERY_QUERY or self._transport is None:
            return
        logger.debug(f"Discovery query from {addr[0]}")
        self._transport.sendto(self._reply, addr)

    def error_received(self, exc: Exception) -> None:
        logger.error(f"Discovery socket error: {exc}")


class DiscoveryResponder:
    """Owns the UDP endpoint for the lifetime of the daemon."""

    def __init__(
        self,
        ws_port: int,
        port: int = DEFAULT_PORT,
        bind_address: str = "0.0.0.0",
        name: Optional[str] = None,
    ):
        self._ws_port = ws_port
        self._port = port
        self._bind_address = bind_address
        self._name = name
        self._transport: Optional[asyncio.DatagramTransport] = None

    @property
    def port(self) -> int:
        """Bound UDP port (resolved after start when 0 was requested)."""
        if self._transport is not None:
            sock = self._transport.get_extra_info("socket")
            if sock is not None:
                return sock.getsockname()[1]
        return self._port

    async def start(self) -> bool:
        """Start answering queries.

        Returns:
            True if the socket was bound, False otherwise.
        """
        loop = asyncio.get_running_loop()
        try:
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: DiscoveryProtocol(self._ws_port, self._name),
                local_addr=(self._bind_address, self._port),
                allow_broadcast=True,
            )
        except OSError as e:
            logger.error(f"Failed to start discovery on UDP {self._port}: {e}")
            return False

        logger.info(f"Discovery listening on UDP {self.port}")
        return True

    async def stop(self) -> None:
        if self._transport:
            self._transport.close()
            self._transport = None
            logger.info("Discovery stopped")
