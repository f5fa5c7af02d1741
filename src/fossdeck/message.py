"""JSON message protocol between companion and host.

Every frame is one JSON object. Inbound objects name their command in
``"cmd"``; outbound objects name their kind in ``"type"``.

This module provides:
- parse_inbound: classify a raw frame as pair / auth / command
- builders for every outbound message the session layer sends
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from fossdeck.errors import ProtocolError
from fossdeck.pairing import AuthorityStatus

__all__ = [
    "AuthRequest",
    "CommandRequest",
    "InboundMessage",
    "PairRequest",
    "ProtocolError",
    "parse_inbound",
]

# Reasons sent in error replies
INVALID_CODE = "invalid_code"
EXPIRED = "expired"
NO_REMOTE_IP = "no_remote_ip"
INVALID_TOKEN = "invalid_token"
NOT_AUTHENTICATED = "not_authenticated"
BAD_REQUEST = "bad_request"
COMMAND_FAILED = "command_failed"


@dataclass(frozen=True)
class PairRequest:
    code: str
    device_id: str
    device_name: Optional[str] = None


@dataclass(frozen=True)
class AuthRequest:
    device_id: str
    token: str


@dataclass(frozen=True)
class CommandRequest:
    """Any other command; its semantics belong to the executor."""

    command: str
    params: dict[str, Any] = field(default_factory=dict)


InboundMessage = Union[PairRequest, AuthRequest, CommandRequest]


def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"Field '{key}' must be a non-empty string")
    return value


def parse_inbound(text: str) -> InboundMessage:
    """Parse one inbound frame.

    Raises:
        ProtocolError: If the frame is not a JSON object with a valid
            ``cmd`` and the fields that command requires.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    command = _require_str(data, "cmd")

    if command == "pair":
        device_name = data.get("device_name")
        if device_name is not None and not isinstance(device_name, str):
            raise ProtocolError("Field 'device_name' must be a string")
        return PairRequest(
            code=_require_str(data, "code"),
            device_id=_require_str(data, "device_id"),
            device_name=device_name,
        )

    if command == "auth":
        return AuthRequest(
            device_id=_require_str(data, "device_id"),
            token=_require_str(data, "token"),
        )

    params = {k: v for k, v in data.items() if k != "cmd"}
    return CommandRequest(command=command, params=params)


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


def hello(status: AuthorityStatus, announce_code: bool = True) -> dict[str, Any]:
    """Capability announcement sent once when a connection opens."""
    return {
        "type": "hello",
        "paired": status.paired,
        "active_device_id": status.active_device_id,
        "authorized_count": status.authorized_count,
        "pairing_code": status.pairing_code if announce_code else None,
        "code_expired": status.code_expired,
    }


def pairing_ok(token: str) -> dict[str, Any]:
    return {"type": "pairing_ok", "token": token}


def pairing_error(reason: str) -> dict[str, Any]:
    return {"type": "pairing_error", "reason": reason}


def auth_ok() -> dict[str, Any]:
    return {"type": "auth_ok"}


def auth_error(reason: str) -> dict[str, Any]:
    return {"type": "auth_error", "reason": reason}


def rate_limited(reason: str, retry_after: int) -> dict[str, Any]:
    return {"type": "rate_limited", "reason": reason, "retry_after_secs": retry_after}


def error(reason: str) -> dict[str, Any]:
    return {"type": "error", "reason": reason}


def shutdown(message: str) -> dict[str, Any]:
    return {"type": "shutdown", "message": message}
