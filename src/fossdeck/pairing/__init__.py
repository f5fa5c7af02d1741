"""Pairing module for fossdeck.

Provides the code-based pairing protocol:
- Pairing code generation and expiry
- Pairing authority (pairing, authentication, active session)
"""

from .authority import (
    ActiveSession,
    Authenticated,
    AuthorityStatus,
    AuthOutcome,
    AuthRejected,
    Paired,
    PairingAuthority,
    PairingOutcome,
    PairingRejected,
    RateLimited,
)
from .code import PairingCode, generate_pairing_code

__all__ = [
    "ActiveSession",
    "Authenticated",
    "AuthorityStatus",
    "AuthOutcome",
    "AuthRejected",
    "Paired",
    "PairingAuthority",
    "PairingCode",
    "PairingOutcome",
    "PairingRejected",
    "RateLimited",
    "generate_pairing_code",
]
