"""Command execution boundary.

The session layer only decides *whether* a command may run; what it does is
up to the executor. ``CommandRegistry`` routes command tags to registered
handlers. ``VolumeCommands`` provides the built-in audio command set on
top of an ``AudioBackend``; ``ActionCommands`` covers media keys and host
actions through ``MediaBackend`` and ``SystemBackend``.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

from fossdeck.errors import ExecutionError, ProtocolError

logger = logging.getLogger(__name__)

Result = dict[str, Any]

# Handler: async or sync function taking the command params
Handler = Union[
    Callable[[dict[str, Any]], Awaitable[Result]],
    Callable[[dict[str, Any]], Result],
]

DEFAULT_VOLUME_STEP = 0.05


class CommandExecutor(Protocol):
    """Protocol for anything that can run an authenticated command."""

    async def execute(self, command: str, params: dict[str, Any]) -> Result:
        """Run a command and return its structured reply.

        Raises:
            ExecutionError: If the command failed or is unknown.
            ProtocolError: If the parameters are malformed.
        """
        ...


class CommandRegistry:
    """Route commands to registered handlers by tag."""

    def __init__(self, handler_timeout: float = 10.0):
        """Initialize registry.

        Args:
            handler_timeout: Maximum time for a handler to complete (seconds).
        """
        self._handlers: dict[str, Handler] = {}
        self._handler_timeout = handler_timeout

    def register(self, command: str, handler: Handler) -> None:
        self._handlers[command] = handler
        logger.debug(f"Registered handler for: {command}")

    def has_handler(self, command: str) -> bool:
        return command in self._handlers

    def get_registered_commands(self) -> list[str]:
        return list(self._handlers.keys())

    async def execute(self, command: str, params: dict[str, Any]) -> Result:
        handler = self._handlers.get(command)
        if handler is None:
            raise ExecutionError(f"Unknown command: {command}")

        try:
            if inspect.iscoroutinefunction(handler):
                return await asyncio.wait_for(
                    handler(params), timeout=self._handler_timeout
                )
            return handler(params)
        except (ExecutionError, ProtocolError):
            raise
        except asyncio.TimeoutError as e:
            raise ExecutionError(
                f"Handler timeout for {command} ({self._handler_timeout}s)"
            ) from e
        except Exception as e:
            raise ExecutionError(f"Handler error for {command}: {e}") from e


# ---------------------------------------------------------------------------
# Audio commands
# ---------------------------------------------------------------------------


class AudioBackend(Protocol):
    """Protocol for the host's audio mixer."""

    def get_volume_and_mute(self) -> tuple[float, bool]:
        ...

    def set_volume(self, level: float) -> None:
        ...

    def set_mute(self, muted: bool) -> None:
        ...

    def get_mic_mute(self) -> bool:
        ...

    def set_mic_mute(self, muted: bool) -> None:
        ...


class SoftwareAudioBackend:
    """In-memory mixer used when no OS audio integration is installed."""

    def __init__(self, volume: float = 0.5, muted: bool = False, mic_muted: bool = False):
        self._volume = volume
        self._muted = muted
        self._mic_muted = mic_muted

    def get_volume_and_mute(self) -> tuple[float, bool]:
        return self._volume, self._muted

    def set_volume(self, level: float) -> None:
        self._volume = level

    def set_mute(self, muted: bool) -> None:
        self._muted = muted

    def get_mic_mute(self) -> bool:
        return self._mic_muted

    def set_mic_mute(self, muted: bool) -> None:
        self._mic_muted = muted


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _number(params: dict[str, Any], key: str, default: float | None = None) -> float:
    value = params.get(key)
    if value is None:
        value = default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Field '{key}' must be a number")
    return float(value)


class VolumeCommands:
    """Volume, mute and microphone commands."""

    def __init__(self, backend: AudioBackend):
        self._backend = backend

    def register(self, registry: CommandRegistry) -> None:
        registry.register("get_status", self.get_status)
        registry.register("set_volume", self.set_volume)
        registry.register("volume_up", self.volume_up)
        registry.register("volume_down", self.volume_down)
        registry.register("toggle_mute", self.toggle_mute)
        registry.register("mute", self.mute)
        registry.register("unmute", self.unmute)
        registry.register("toggle_mic_mute", self.toggle_mic_mute)

    def _ok(self, action: str) -> Result:
        volume, muted = self._backend.get_volume_and_mute()
        return {"type": "ok", "action": action, "volume": volume, "muted": muted}

    def get_status(self, params: dict[str, Any]) -> Result:
        volume, muted = self._backend.get_volume_and_mute()
        return {
            "type": "status",
            "volume": volume,
            "muted": muted,
            "mic_muted": self._backend.get_mic_mute(),
        }

    def set_volume(self, params: dict[str, Any]) -> Result:
        self._backend.set_volume(_clamp(_number(params, "level")))
        return self._ok("set_volume")

    def volume_up(self, params: dict[str, Any]) -> Result:
        delta = _clamp(_number(params, "delta", DEFAULT_VOLUME_STEP))
        volume, _ = self._backend.get_volume_and_mute()
        self._backend.set_volume(_clamp(volume + delta))
        return self._ok("volume_up")

    def volume_down(self, params: dict[str, Any]) -> Result:
        delta = _clamp(_number(params, "delta", DEFAULT_VOLUME_STEP))
        volume, _ = self._backend.get_volume_and_mute()
        self._backend.set_volume(_clamp(volume - delta))
        return self._ok("volume_down")

    def toggle_mute(self, params: dict[str, Any]) -> Result:
        _, muted = self._backend.get_volume_and_mute()
        self._backend.set_mute(not muted)
        return self._ok("toggle_mute")

    def mute(self, params: dict[str, Any]) -> Result:
        self._backend.set_mute(True)
        return self._ok("mute")

    def unmute(self, params: dict[str, Any]) -> Result:
        self._backend.set_mute(False)
        return self._ok("unmute")

    def toggle_mic_mute(self, params: dict[str, Any]) -> Result:
        self._backend.set_mic_mute(not self._backend.get_mic_mute())
        result = self._ok("toggle_mic_mute")
        result["mic_muted"] = self._backend.get_mic_mute()
        return result


# ---------------------------------------------------------------------------
# Media and system commands
# ---------------------------------------------------------------------------


class MediaBackend(Protocol):
    """Protocol for media transport keys."""

    def next_track(self) -> None:
        ...

    def previous_track(self) -> None:
        ...

    def toggle_play_pause(self) -> None:
        ...


class SystemBackend(Protocol):
    """Protocol for host actions."""

    def take_screenshot(self) -> None:
        ...

    def open_calculator(self) -> None:
        ...


class LoggingMediaBackend:
    """Media backend that only records the key press.

    Used when no OS media integration is installed.
    """

    def next_track(self) -> None:
        logger.info("Media: next track")

    def previous_track(self) -> None:
        logger.info("Media: previous track")

    def toggle_play_pause(self) -> None:
        logger.info("Media: play/pause")


class LoggingSystemBackend:
    """System backend that only records the requested action."""

    def take_screenshot(self) -> None:
        logger.info("System: screenshot requested")

    def open_calculator(self) -> None:
        logger.info("System: calculator requested")


class ActionCommands:
    """Fire-and-forget media and system commands.

    Each replies ``{"type": "ok", "action": <command>}`` once the backend
    call returns.
    """

    def __init__(self, media: MediaBackend, system: SystemBackend):
        self._actions: dict[str, Callable[[], None]] = {
            "next_track": media.next_track,
            "previous_track": media.previous_track,
            "toggle_play_pause": media.toggle_play_pause,
            "take_screenshot": system.take_screenshot,
            "open_calculator": system.open_calculator,
        }

    def register(self, registry: CommandRegistry) -> None:
        for command, action in self._actions.items():
            registry.register(command, self._handler(command, action))

    @staticmethod
    def _handler(command: str, action: Callable[[], None]) -> Callable[[dict[str, Any]], Result]:
        def handle(params: dict[str, Any]) -> Result:
            action()
            return {"type": "ok", "action": command}

        return handle


def create_default_executor(handler_timeout: float = 10.0) -> CommandRegistry:
    """Registry with the built-in command set on the software backends."""
    registry = CommandRegistry(handler_timeout=handler_timeout)
    VolumeCommands(SoftwareAudioBackend()).register(registry)
    ActionCommands(LoggingMediaBackend(), LoggingSystemBackend()).register(registry)
    return registry
