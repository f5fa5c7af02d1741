"""Logging configuration for the fossdeck daemon.

Every module logs through ``logging.getLogger(__name__)``, so all records
end up under the ``fossdeck`` logger configured here.
"""

import logging
from pathlib import Path

from fossdeck.config import Config

LOGGER_NAME = "fossdeck"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"  # 2025-01-27 10:30:45 [INFO] ...
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured: logging.Logger | None = None


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(config: Config) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    handlers.append(logging.StreamHandler())
    return handlers


def setup_logging(config: Config) -> logging.Logger:
    """Configure the ``fossdeck`` logger once per process.

    Later calls return the already configured logger unchanged.
    """
    global _configured

    if _configured is not None:
        return _configured

    level = _parse_level(config.log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    for handler in _build_handlers(config):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False

    # Connections are logged by the server itself; per-request access lines are noise
    if level > logging.DEBUG:
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    _configured = logger
    return logger


def reset_logging() -> None:
    """Undo setup_logging. Used for testing."""
    global _configured
    if _configured is not None:
        _configured.handlers.clear()
        _configured.propagate = True
        _configured = None
