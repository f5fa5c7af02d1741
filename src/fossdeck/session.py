"""Per-connection session state machine.

Each companion connection gets one ``SessionStateMachine``. It announces
the host's pairing status, routes pair/auth requests to the
``PairingAuthority`` and only lets commands through to the executor while
this connection's device still owns the authority's active session.

States:
    UNAUTHENTICATED -> AUTHENTICATED -> CLOSED

The local state mirrors the authority but is never trusted on its own: the
authority is consulted before every command and again after every reply, so
a connection displaced by another device (or expired by the watchdog) is
demoted instead of keeping stale access.
"""

import asyncio
import logging
from enum import Enum, auto
from typing import Any, Optional, Protocol

from fossdeck import message as msg
from fossdeck.commands import CommandExecutor
from fossdeck.errors import AuthorizationError, ExecutionError, ProtocolError
from fossdeck.message import AuthRequest, CommandRequest, PairRequest, parse_inbound
from fossdeck.pairing import (
    Authenticated,
    AuthRejected,
    Paired,
    PairingAuthority,
    PairingRejected,
    RateLimited,
)

logger = logging.getLogger(__name__)

SHUTDOWN_MESSAGE = "Server is shutting down"


class SessionState(Enum):
    """Connection states."""

    UNAUTHENTICATED = auto()
    AUTHENTICATED = auto()
    CLOSED = auto()


class MessageChannel(Protocol):
    """Bidirectional JSON message channel for one connection."""

    async def send(self, message: dict[str, Any]) -> None:
        """Send one JSON object."""
        ...

    async def receive(self) -> Optional[str]:
        """Next text frame, or None once the peer has closed."""
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...


class SessionStateMachine:
    """Protocol handling for a single companion connection.

    Attributes:
        source_address: Remote address used as the rate-limiting key, or
            None if the transport could not provide one.
        claimed_device_id: Device this connection authenticated as.
    """

    def __init__(
        self,
        authority: PairingAuthority,
        executor: CommandExecutor,
        channel: MessageChannel,
        source_address: Optional[str],
        announce_code: bool = True,
    ):
        self._authority = authority
        self._executor = executor
        self._channel = channel
        self._announce_code = announce_code
        self.source_address = source_address
        self.claimed_device_id: Optional[str] = None
        self._state = SessionState.UNAUTHENTICATED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state == SessionState.AUTHENTICATED

    async def start(self) -> None:
        """Announce the current pairing status to the new connection."""
        await self._channel.send(msg.hello(self._authority.status(), self._announce_code))

    async def run(self, shutdown: asyncio.Event) -> None:
        """Serve the connection until the peer closes or shutdown is signalled.

        A message already being handled when shutdown is signalled is
        answered before the shutdown notice goes out.
        """
        shutdown_wait = asyncio.ensure_future(shutdown.wait())
        try:
            await self.start()

            while True:
                receive = asyncio.ensure_future(self._channel.receive())
                done, _ = await asyncio.wait(
                    {receive, shutdown_wait},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if receive not in done:
                    receive.cancel()
                    try:
                        await receive
                    except asyncio.CancelledError:
                        pass
                    await self._send_shutdown()
                    break

                text = receive.result()
                if text is None:
                    logger.debug(f"Peer {self.source_address} closed the connection")
                    break

                reply = await self.handle_text(text)
                await self._channel.send(reply)

        except ConnectionError as e:
            logger.debug(f"Connection to {self.source_address} lost: {e}")
        finally:
            shutdown_wait.cancel()
            self._state = SessionState.CLOSED

    async def _send_shutdown(self) -> None:
        try:
            await self._channel.send(msg.shutdown(SHUTDOWN_MESSAGE))
        finally:
            await self._channel.close()

    async def handle_text(self, text: str) -> dict[str, Any]:
        """Handle one inbound frame and produce its reply."""
        try:
            request = parse_inbound(text)
        except ProtocolError as e:
            logger.warning(f"Bad request from {self.source_address}: {e}")
            reply = msg.error(msg.BAD_REQUEST)
        else:
            if isinstance(request, PairRequest):
                reply = self._handle_pair(request)
            elif isinstance(request, AuthRequest):
                reply = self._handle_auth(request)
            else:
                reply = await self._handle_command(request)

        self._revalidate()
        return reply

    def _handle_pair(self, request: PairRequest) -> dict[str, Any]:
        if self.source_address is None:
            return msg.pairing_error(msg.NO_REMOTE_IP)

        outcome = self._authority.attempt_pairing(
            request.code, request.device_id, request.device_name, self.source_address
        )

        if isinstance(outcome, Paired):
            self._become_authenticated(request.device_id)
            return msg.pairing_ok(outcome.token)
        if isinstance(outcome, RateLimited):
            return msg.rate_limited("pair", outcome.retry_after)
        assert isinstance(outcome, PairingRejected)
        return msg.pairing_error(outcome.reason)

    def _handle_auth(self, request: AuthRequest) -> dict[str, Any]:
        if self.source_address is None:
            return msg.auth_error(msg.NO_REMOTE_IP)

        outcome = self._authority.attempt_auth(
            request.device_id, request.token, self.source_address
        )

        if isinstance(outcome, Authenticated):
            self._become_authenticated(request.device_id)
            return msg.auth_ok()
        if isinstance(outcome, RateLimited):
            return msg.rate_limited("auth", outcome.retry_after)
        assert isinstance(outcome, AuthRejected)
        self._demote()
        return msg.auth_error(outcome.reason)

    async def _handle_command(self, request: CommandRequest) -> dict[str, Any]:
        """Run a command for the device that owns the session.

        Ownership is checked before the executor is called.
        """
        try:
            self._require_session()
        except AuthorizationError as e:
            logger.debug(f"Rejected '{request.command}' from {self.source_address}: {e.reason}")
            return msg.error(e.reason)

        self._authority.touch(self.claimed_device_id)

        try:
            return await self._executor.execute(request.command, request.params)
        except ProtocolError as e:
            logger.warning(f"Bad parameters for '{request.command}': {e}")
            return msg.error(msg.BAD_REQUEST)
        except ExecutionError as e:
            logger.error(f"Command error: {e}")
            return msg.error(msg.COMMAND_FAILED)

    def _require_session(self) -> None:
        """Raise unless this connection's device owns the active session."""
        if self._state != SessionState.AUTHENTICATED:
            raise AuthorizationError(msg.NOT_AUTHENTICATED)
        if not self._authority.is_session_owner(self.claimed_device_id):
            self._demote()
            raise AuthorizationError(msg.NOT_AUTHENTICATED)

    def _revalidate(self) -> None:
        if self._state != SessionState.AUTHENTICATED:
            return
        if not self._authority.is_session_owner(self.claimed_device_id):
            self._demote()

    def _become_authenticated(self, device_id: str) -> None:
        self._state = SessionState.AUTHENTICATED
        self.claimed_device_id = device_id

    def _demote(self) -> None:
        if self._state == SessionState.AUTHENTICATED:
            logger.info(
                f"Connection from {self.source_address} no longer holds the session "
                f"({self.claimed_device_id[:8]}...)"
            )
        self._state = SessionState.UNAUTHENTICATED
        self.claimed_device_id = None
