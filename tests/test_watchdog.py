"""Tests for IdleWatchdog - reclaiming idle sessions."""

import asyncio
from unittest.mock import Mock

import pytest

from fossdeck.watchdog import IdleWatchdog


class TestCheck:
    """Tests for a single watchdog pass."""

    def test_check_expires_idle_session(self, authority, clock):
        authority.attempt_pairing("123456", "phone-1", None, "10.0.0.1")
        clock.advance(11)

        watchdog = IdleWatchdog(authority)

        assert watchdog.check() == "phone-1"
        assert not authority.active_session().is_active

    def test_check_leaves_fresh_session(self, authority, clock):
        authority.attempt_pairing("123456", "phone-1", None, "10.0.0.1")
        clock.advance(5)

        assert IdleWatchdog(authority).check() is None
        assert authority.is_session_owner("phone-1")


class TestLoop:
    """Tests for the background loop."""

    @pytest.mark.asyncio
    async def test_start_stop(self, authority):
        watchdog = IdleWatchdog(authority, interval=0.01)

        await watchdog.start()
        assert watchdog.is_running
        await watchdog.stop()
        assert not watchdog.is_running

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, authority):
        watchdog = IdleWatchdog(authority, interval=0.01)
        await watchdog.start()
        task = watchdog._task
        await watchdog.start()
        assert watchdog._task is task
        await watchdog.stop()

    @pytest.mark.asyncio
    async def test_loop_reclaims_session(self, authority, clock):
        authority.attempt_pairing("123456", "phone-1", None, "10.0.0.1")
        clock.advance(11)

        watchdog = IdleWatchdog(authority, interval=0.01)
        await watchdog.start()
        await asyncio.sleep(0.05)
        await watchdog.stop()

        assert not authority.active_session().is_active

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self):
        """An exception in one pass does not stop later passes."""
        calls = []

        def expire():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return None

        authority = Mock()
        authority.idle_timeout = 10
        authority.expire_idle_if_needed.side_effect = expire

        watchdog = IdleWatchdog(authority, interval=0.01)
        await watchdog.start()
        await asyncio.sleep(0.05)
        await watchdog.stop()

        assert authority.expire_idle_if_needed.call_count >= 2
