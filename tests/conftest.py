"""Pytest configuration and shared fixtures."""

import asyncio

import pytest
import pytest_asyncio

from fossdeck.device_store import DeviceStore
from fossdeck.pairing import PairingAuthority
from fossdeck.rate_limit import RateLimiter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from fossdeck.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest_asyncio.fixture(autouse=True, loop_scope="function")
async def cleanup_aiohttp_sessions():
    """Let aiohttp connectors finish closing before the loop goes away."""
    yield
    await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """Empty device store in a temp directory."""
    store = DeviceStore(tmp_path / "authorized.json")
    store.load()
    return store


@pytest.fixture
def authority(store, clock):
    """Authority with a fixed pairing code and a fake clock."""
    return PairingAuthority(
        store=store,
        rate_limiter=RateLimiter(clock=clock),
        clock=clock,
        code_generator=lambda: "123456",
    )
