"""Short-lived pairing code.

The code is a six-digit number derived from the wall clock. It is a
convenience secret for pairing on a trusted LAN, not a cryptographic one:
the TTL, per-source rate limiting and the one-time token issued on success
are what actually protect the host.
"""

import time
from dataclasses import dataclass
from typing import Callable

CODE_DIGITS = 6


def generate_pairing_code(now: Callable[[], float] = time.time) -> str:
    """Six-digit code from the current unix time (seconds mod 10^6)."""
    return f"{int(now()) % 10**CODE_DIGITS:0{CODE_DIGITS}d}"


@dataclass
class PairingCode:
    """The pairing code currently offered by the host.

    Attributes:
        value: The digits a companion must present.
        issued_at: Monotonic timestamp when the code was generated.
    """

    value: str
    issued_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.issued_at > ttl

    def matches(self, presented: str) -> bool:
        return self.value == presented
