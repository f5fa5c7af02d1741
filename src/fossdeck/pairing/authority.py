"""Pairing authority: owns the pairing code, the active session and the
rate limiter, and decides every pairing and authentication attempt.

All state lives behind one lock. Each public method is a single critical
section and never awaits, so two connections racing to pair or
authenticate are linearized: the last successful caller holds the active
session and the other notices on its next command.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from fossdeck.device_store import AuthorizedDevice, DeviceStore, generate_token, hash_token
from fossdeck.pairing.code import PairingCode, generate_pairing_code
from fossdeck.rate_limit import Locked, RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_CODE_TTL = 300.0
DEFAULT_IDLE_TIMEOUT = 10.0


@dataclass(frozen=True)
class Paired:
    """Pairing succeeded; ``token`` is shown to the companion exactly once."""

    token: str


@dataclass(frozen=True)
class PairingRejected:
    """Pairing failed (``invalid_code`` or ``expired``)."""

    reason: str


@dataclass(frozen=True)
class Authenticated:
    """Token accepted; the device now holds the active session."""


@dataclass(frozen=True)
class AuthRejected:
    """Authentication failed (``invalid_token``)."""

    reason: str


@dataclass(frozen=True)
class RateLimited:
    """Source is locked out for ``retry_after`` more seconds."""

    retry_after: int


PairingOutcome = Union[Paired, PairingRejected, RateLimited]
AuthOutcome = Union[Authenticated, AuthRejected, RateLimited]


@dataclass
class ActiveSession:
    """The single device currently authorized to issue commands.

    ``device_id`` and ``last_seen`` are either both set or both None.
    """

    device_id: Optional[str] = None
    source_address: Optional[str] = None
    last_seen: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.device_id is not None

    def activate(self, device_id: str, source_address: str, now: float) -> None:
        self.device_id = device_id
        self.source_address = source_address
        self.last_seen = now

    def clear(self) -> None:
        self.device_id = None
        self.source_address = None
        self.last_seen = None


@dataclass(frozen=True)
class AuthorityStatus:
    """Snapshot of the authority for announcements and status queries."""

    paired: bool
    active_device_id: Optional[str]
    authorized_count: int
    pairing_code: str
    code_expired: bool


class PairingAuthority:
    """Decides pairing and authentication outcomes.

    Attributes:
        code_ttl: Seconds a pairing code stays valid.
        idle_timeout: Seconds of silence after which the session is dropped.
    """

    def __init__(
        self,
        store: DeviceStore,
        rate_limiter: Optional[RateLimiter] = None,
        code_ttl: float = DEFAULT_CODE_TTL,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        code_generator: Callable[[], str] = generate_pairing_code,
    ):
        """Initialize the authority.

        Args:
            store: Loaded device store; the authority holds the only writer.
            rate_limiter: Per-source limiter. Defaults to 5 failures / 30s.
            code_ttl: Pairing code lifetime in seconds.
            idle_timeout: Session idle timeout in seconds.
            clock: Monotonic time source (injectable for tests).
            code_generator: Produces new pairing code values.
        """
        self._store = store
        self._rate_limiter = rate_limiter or RateLimiter(clock=clock)
        self.code_ttl = code_ttl
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._code_generator = code_generator
        self._lock = threading.Lock()

        self._code = PairingCode(value=code_generator(), issued_at=clock())
        self._session = ActiveSession()

    # ------------------------------------------------------------------
    # Pairing / authentication
    # ------------------------------------------------------------------

    def attempt_pairing(
        self,
        code: str,
        device_id: str,
        display_name: Optional[str],
        source: str,
    ) -> PairingOutcome:
        """Exchange the pairing code for a long-lived token."""
        with self._lock:
            locked = self._rate_limiter.check(source)
            if isinstance(locked, Locked):
                return RateLimited(retry_after=locked.remaining)

            now = self._clock()
            if self._code.is_expired(now, self.code_ttl):
                if self._session.is_active:
                    logger.info("Pairing attempt with expired code while a session is active")
                    return PairingRejected(reason="expired")
                self._rotate_code(now)

            if not self._code.matches(code):
                logger.warning(f"Invalid pairing code from {source}")
                return self._fail(source, PairingRejected(reason="invalid_code"))

            self._rate_limiter.record_success(source)

            token = generate_token()
            self._store.upsert(device_id, display_name, hash_token(token))
            self._session.activate(device_id, source, now)

            logger.info(f"Device paired: {display_name or 'unnamed'} ({device_id[:8]}...) from {source}")
            return Paired(token=token)

    def attempt_auth(self, device_id: str, token: str, source: str) -> AuthOutcome:
        """Authenticate a previously paired device with its token."""
        with self._lock:
            locked = self._rate_limiter.check(source)
            if isinstance(locked, Locked):
                return RateLimited(retry_after=locked.remaining)

            if not self._store.is_authorized(device_id, token):
                logger.warning(f"Invalid token for {device_id[:8]}... from {source}")
                return self._fail(source, AuthRejected(reason="invalid_token"))

            self._rate_limiter.record_success(source)

            previous = self._session.device_id
            self._session.activate(device_id, source, self._clock())
            self._store.touch(device_id)

            if previous is not None and previous != device_id:
                logger.info(f"Session moved from {previous[:8]}... to {device_id[:8]}...")
            logger.info(f"Device authenticated: {device_id[:8]}... from {source}")
            return Authenticated()

    def _fail(self, source: str, rejection):
        """Record a failure; report the attempt that trips the lockout as such."""
        self._rate_limiter.record_failure(source)
        locked = self._rate_limiter.check(source)
        if isinstance(locked, Locked):
            logger.warning(f"Source {source} locked out for {locked.remaining}s")
            return RateLimited(retry_after=locked.remaining)
        return rejection

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def touch(self, device_id: str) -> None:
        """Heartbeat from the session owner on every authenticated command."""
        with self._lock:
            if self._session.device_id != device_id:
                return
            self._session.last_seen = self._clock()
            self._store.touch(device_id)

    def is_session_owner(self, device_id: Optional[str]) -> bool:
        with self._lock:
            return device_id is not None and self._session.device_id == device_id

    def revoke(self, device_id: str) -> bool:
        """Remove a device from the allow-list, ending its session if active.

        Returns:
            True if the device was known.
        """
        with self._lock:
            removed = self._store.remove(device_id)
            if self._session.device_id == device_id:
                self._session.clear()
                logger.info(f"Active session cleared by revocation of {device_id[:8]}...")
            if removed:
                logger.info(f"Device revoked: {device_id[:8]}...")
            return removed

    def expire_idle_if_needed(self) -> Optional[str]:
        """Clear the active session if it has been silent too long.

        Returns:
            The expired device id, or None if nothing was cleared.
        """
        with self._lock:
            if not self._session.is_active:
                return None
            if self._clock() - self._session.last_seen <= self.idle_timeout:
                return None
            device_id = self._session.device_id
            self._session.clear()
            logger.info(f"Session for {device_id[:8]}... expired after {self.idle_timeout:.0f}s idle")
            return device_id

    # ------------------------------------------------------------------
    # Read-only views and operator actions
    # ------------------------------------------------------------------

    def status(self) -> AuthorityStatus:
        with self._lock:
            return AuthorityStatus(
                paired=self._session.is_active,
                active_device_id=self._session.device_id,
                authorized_count=len(self._store),
                pairing_code=self._code.value,
                code_expired=self._code.is_expired(self._clock(), self.code_ttl),
            )

    def active_session(self) -> ActiveSession:
        """Copy of the current session record."""
        with self._lock:
            return ActiveSession(
                device_id=self._session.device_id,
                source_address=self._session.source_address,
                last_seen=self._session.last_seen,
            )

    def current_code(self) -> PairingCode:
        with self._lock:
            return PairingCode(value=self._code.value, issued_at=self._code.issued_at)

    def regenerate_code(self) -> PairingCode:
        """Rotate the pairing code on operator request.

        Refused while a session is active; the current code is returned
        unchanged in that case.
        """
        with self._lock:
            if not self._session.is_active:
                self._rotate_code(self._clock())
            return PairingCode(value=self._code.value, issued_at=self._code.issued_at)

    def list_devices(self) -> list[tuple[str, AuthorizedDevice]]:
        with self._lock:
            return self._store.list()

    @property
    def save_failures(self) -> int:
        return self._store.save_failures

    def _rotate_code(self, now: float) -> None:
        self._code = PairingCode(value=self._code_generator(), issued_at=now)
        logger.info(f"New pairing code issued: {self._code.value}")
