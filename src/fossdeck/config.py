"""Configuration management for the fossdeck daemon."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


@dataclass
class PairingConfig:
    """Pairing code and session lifetime configuration."""

    code_ttl: float = 300.0  # seconds a pairing code stays valid
    idle_timeout: float = 10.0  # active session dropped after this much silence
    watchdog_interval: float = 5.0  # how often the idle watchdog runs
    announce_code: bool = True  # include the pairing code in hello


@dataclass
class RateLimitConfig:
    """Per-source brute-force protection."""

    max_attempts: int = 5
    window: float = 30.0  # seconds
    lockout: float = 30.0  # seconds


@dataclass
class DiscoveryConfig:
    """UDP LAN discovery responder configuration."""

    enabled: bool = True
    port: int = 45321


@dataclass
class CommandsConfig:
    """Command executor configuration."""

    handler_timeout: float = 10.0  # seconds


@dataclass
class Config:
    """Daemon configuration."""

    port: int = 3030
    bind_address: str = "0.0.0.0"
    log_level: str = "INFO"
    log_file: str | None = None
    store_path: str | None = None  # None uses the platform data directory
    pairing: PairingConfig = field(default_factory=PairingConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "fossdeck" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return None
    return data if isinstance(data, dict) else None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if data is None:
        return Config()

    pairing_data = data.get("pairing", {})
    pairing_config = PairingConfig(
        code_ttl=pairing_data.get("code_ttl", PairingConfig.code_ttl),
        idle_timeout=pairing_data.get("idle_timeout", PairingConfig.idle_timeout),
        watchdog_interval=pairing_data.get(
            "watchdog_interval", PairingConfig.watchdog_interval
        ),
        announce_code=pairing_data.get("announce_code", PairingConfig.announce_code),
    )

    rate_limit_data = data.get("rate_limit", {})
    rate_limit_config = RateLimitConfig(
        max_attempts=rate_limit_data.get("max_attempts", RateLimitConfig.max_attempts),
        window=rate_limit_data.get("window", RateLimitConfig.window),
        lockout=rate_limit_data.get("lockout", RateLimitConfig.lockout),
    )

    discovery_data = data.get("discovery", {})
    discovery_config = DiscoveryConfig(
        enabled=discovery_data.get("enabled", DiscoveryConfig.enabled),
        port=discovery_data.get("port", DiscoveryConfig.port),
    )

    commands_data = data.get("commands", {})
    commands_config = CommandsConfig(
        handler_timeout=commands_data.get(
            "handler_timeout", CommandsConfig.handler_timeout
        ),
    )

    return Config(
        port=data.get("port", Config.port),
        bind_address=data.get("bind_address", Config.bind_address),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        store_path=data.get("store_path", Config.store_path),
        pairing=pairing_config,
        rate_limit=rate_limit_config,
        discovery=discovery_config,
        commands=commands_config,
    )
