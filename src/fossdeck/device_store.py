"""Persist the allow-list of paired companion devices.

The store is a single JSON file holding every authorized device:

    {"devices": {"<device_id>": {"name": ..., "token_hash": ...,
                                 "added_at": ..., "last_seen": ...}}}

Tokens are never written to disk, only their SHA-256 hex digest. The whole
file is rewritten on every mutation through a temp file and ``os.replace``,
so a crash mid-write leaves the previous version intact.
"""

import hashlib
import hmac
import json
import logging
import os
import secrets
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from fossdeck.errors import StorageError

logger = logging.getLogger(__name__)

__all__ = [
    "AuthorizedDevice",
    "DeviceStore",
    "StorageError",
    "default_store_path",
    "generate_token",
    "hash_token",
]

STORE_FILENAME = "authorized.json"
TOKEN_BYTES = 32


def now_unix() -> int:
    """Current wall-clock time in whole seconds."""
    return int(time.time())


def hash_token(token: str) -> str:
    """One-way hash of a credential token (hex SHA-256)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token() -> str:
    """Generate a high-entropy credential token (64 hex chars)."""
    return secrets.token_hex(TOKEN_BYTES)


def default_store_path() -> Path:
    """Per-application data directory location of the store file."""
    if sys.platform == "win32" and os.environ.get("APPDATA"):
        base = Path(os.environ["APPDATA"]) / "FOSS-Deck"
    else:
        data_home = os.environ.get("XDG_DATA_HOME")
        root = Path(data_home) if data_home else Path.home() / ".local" / "share"
        base = root / "fossdeck"
    return base / STORE_FILENAME


@dataclass
class AuthorizedDevice:
    """A companion device allowed to authenticate.

    Attributes:
        display_name: Human-readable name supplied at pairing, if any.
        credential_hash: Hex SHA-256 of the token issued at pairing.
        added_at: Unix time the device was (re-)paired.
        last_seen: Unix time of the last authenticated interaction.
    """

    display_name: Optional[str]
    credential_hash: str
    added_at: int
    last_seen: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.display_name,
            "token_hash": self.credential_hash,
            "added_at": self.added_at,
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AuthorizedDevice":
        """Create from dictionary."""
        token_hash = d["token_hash"]
        if not isinstance(token_hash, str):
            raise TypeError("token_hash must be a string")
        return cls(
            display_name=d.get("name"),
            credential_hash=token_hash,
            added_at=int(d.get("added_at", 0)),
            last_seen=int(d.get("last_seen", 0)),
        )


class DeviceStore:
    """JSON file-backed mapping of device id to AuthorizedDevice.

    Mutating methods persist immediately. If the write fails the error is
    logged and the in-memory change is kept; it reaches disk with the next
    successful save.
    """

    def __init__(self, path: Path | None = None):
        """Initialize device store.

        Args:
            path: Path to JSON file. Defaults to the platform data directory.
        """
        self.path = Path(path).expanduser() if path else default_store_path()
        self._devices: dict[str, AuthorizedDevice] = {}
        self.save_failures = 0

    def load(self) -> None:
        """Load devices from file, replacing the in-memory mapping.

        A missing or unreadable file leaves the store empty.
        """
        self._devices = {}

        if not self.path.exists():
            logger.debug(f"No device store at {self.path}")
            return

        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Device store is corrupt, starting empty: {e}")
            return
        except OSError as e:
            logger.warning(f"Failed to read device store, starting empty: {e}")
            return

        devices = data.get("devices") if isinstance(data, dict) else None
        if not isinstance(devices, dict):
            logger.warning("Device store has no devices mapping, starting empty")
            return

        for device_id, item in devices.items():
            try:
                self._devices[device_id] = AuthorizedDevice.from_dict(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed device entry {device_id[:8]}: {e}")

        logger.debug(f"Loaded {len(self._devices)} authorized devices")

    def save(self) -> None:
        """Write the whole store atomically.

        Raises:
            StorageError: If the file could not be written.
        """
        data = {
            "devices": {
                device_id: device.to_dict()
                for device_id, device in self._devices.items()
            }
        }
        content = json.dumps(data, indent=2)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=".authorized-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to save device store: {e}") from e

    def _persist(self) -> None:
        """Save, logging instead of raising on failure."""
        try:
            self.save()
        except StorageError as e:
            self.save_failures += 1
            logger.error(f"{e} (consecutive failures: {self.save_failures})")
        else:
            self.save_failures = 0

    def upsert(
        self,
        device_id: str,
        name: Optional[str],
        credential_hash: str,
    ) -> AuthorizedDevice:
        """Add a device or replace its credential.

        Re-pairing an existing device overwrites its entry.
        """
        now = now_unix()
        device = AuthorizedDevice(
            display_name=name,
            credential_hash=credential_hash,
            added_at=now,
            last_seen=now,
        )
        self._devices[device_id] = device
        self._persist()
        return device

    def remove(self, device_id: str) -> bool:
        """Remove a device.

        Returns:
            True if device was removed, False if not found.
        """
        if device_id not in self._devices:
            return False
        del self._devices[device_id]
        self._persist()
        return True

    def touch(self, device_id: str) -> None:
        """Record an authenticated interaction for a device."""
        device = self._devices.get(device_id)
        if device is None:
            return
        device.last_seen = now_unix()
        self._persist()

    def is_authorized(self, device_id: str, presented_token: str) -> bool:
        """Check a presented token against the stored hash."""
        device = self._devices.get(device_id)
        if device is None:
            return False
        return hmac.compare_digest(device.credential_hash, hash_token(presented_token))

    def get(self, device_id: str) -> Optional[AuthorizedDevice]:
        """Get device by ID."""
        return self._devices.get(device_id)

    def list(self) -> list[tuple[str, AuthorizedDevice]]:
        """All devices, most recently seen first."""
        return sorted(
            self._devices.items(),
            key=lambda item: item[1].last_seen,
            reverse=True,
        )

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices
