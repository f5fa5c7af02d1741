"""Tests for CLI module."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from fossdeck import __version__
from fossdeck.cli import main
from fossdeck.device_store import DeviceStore, hash_token


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "authorized.json"


@pytest.fixture
def config_file(tmp_path, store_path):
    path = tmp_path / "config.yaml"
    path.write_text(f"port: 3999\nstore_path: {store_path}\n")
    return path


def invoke(runner, config_file, *args, **kwargs):
    return runner.invoke(main, ["--config", str(config_file), *args], **kwargs)


def offline():
    """Patch the local API as if no daemon were running."""
    return patch("fossdeck.cli._api_request", new=AsyncMock(return_value=None))


def api(*responses):
    return patch("fossdeck.cli._api_request", new=AsyncMock(side_effect=list(responses)))


class TestCLIHelp:
    """Test CLI help output."""

    def test_cli_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "FOSS-Deck" in result.output
        assert "daemon" in result.output
        assert "devices" in result.output
        assert "pair" in result.output

    def test_daemon_help(self, runner):
        result = runner.invoke(main, ["daemon", "--help"])

        assert result.exit_code == 0
        assert "start" in result.output
        assert "status" in result.output

    def test_version(self, runner, config_file):
        result = invoke(runner, config_file, "version")
        assert result.exit_code == 0
        assert __version__ in result.output


class TestDaemonCommands:
    """Test daemon subcommands."""

    def test_start_reports_startup_error(self, runner, config_file):
        from fossdeck.daemon import StartupError

        with patch("fossdeck.daemon.Daemon") as mock_daemon_class:
            mock_daemon = MagicMock()
            mock_daemon.start = AsyncMock(side_effect=StartupError("port busy"))
            mock_daemon_class.return_value = mock_daemon

            result = invoke(runner, config_file, "daemon", "start")

        assert result.exit_code == 1
        assert "port busy" in result.output

    def test_start_runs_until_stopped(self, runner, config_file):
        with patch("fossdeck.daemon.Daemon") as mock_daemon_class:
            mock_daemon = MagicMock()
            mock_daemon.start = AsyncMock()
            mock_daemon.run_forever = AsyncMock()
            mock_daemon.port = 3999
            mock_daemon.authority.current_code.return_value.value = "123456"
            mock_daemon_class.return_value = mock_daemon

            result = invoke(runner, config_file, "daemon", "start")

        assert result.exit_code == 0
        assert "Daemon started on port 3999" in result.output
        assert "123456" in result.output
        mock_daemon.run_forever.assert_awaited_once()

    def test_status_not_running(self, runner, config_file):
        with offline():
            result = invoke(runner, config_file, "daemon", "status")

        assert result.exit_code == 0
        assert "not running" in result.output

    def test_status_running(self, runner, config_file):
        status = {
            "version": __version__,
            "paired": True,
            "active_device_id": "phone-1",
            "authorized_count": 2,
            "pairing_code": "123456",
            "code_expired": False,
            "connections": 1,
            "save_failures": 0,
        }
        with api((200, status)) as mock_api:
            result = invoke(runner, config_file, "daemon", "status")

        assert result.exit_code == 0
        assert "running" in result.output
        assert "phone-1" in result.output
        assert "Authorized devices: 2" in result.output
        mock_api.assert_awaited_once()
        assert mock_api.await_args.args[1:] == ("GET", "/api/status")


class TestPairCommand:
    """Test the pair command."""

    def test_shows_code(self, runner, config_file):
        with api((200, {"pairing_code": "654321", "code_expired": False})):
            result = invoke(runner, config_file, "pair")

        assert result.exit_code == 0
        assert "654321" in result.output

    def test_new_code(self, runner, config_file):
        with api((200, {"pairing_code": "111111", "rotated": True})) as mock_api:
            result = invoke(runner, config_file, "pair", "--new")

        assert result.exit_code == 0
        assert "111111" in result.output
        assert mock_api.await_args.args[1:] == ("POST", "/api/pairing-code")

    def test_new_code_refused(self, runner, config_file):
        with api((200, {"pairing_code": "111111", "rotated": False})):
            result = invoke(runner, config_file, "pair", "--new")

        assert "keeping the current code" in result.output

    def test_daemon_not_running(self, runner, config_file):
        with offline():
            result = invoke(runner, config_file, "pair")

        assert result.exit_code == 1
        assert "Cannot connect" in result.output


class TestDevicesList:
    """Test devices list."""

    def test_empty(self, runner, config_file):
        with offline():
            result = invoke(runner, config_file, "devices", "list")

        assert result.exit_code == 0
        assert "No paired devices." in result.output

    def test_reads_store_when_offline(self, runner, config_file, store_path):
        store = DeviceStore(store_path)
        store.upsert("0e49b502-aaaa-bbbb", "Pixel", hash_token("t"))

        with offline():
            result = invoke(runner, config_file, "devices", "list")

        assert result.exit_code == 0
        assert "0e49b502" in result.output
        assert "0e49b502-aaaa-bbbb" not in result.output
        assert "Pixel" in result.output

    def test_full_ids(self, runner, config_file, store_path):
        store = DeviceStore(store_path)
        store.upsert("0e49b502-aaaa-bbbb", "Pixel", hash_token("t"))

        with offline():
            result = invoke(runner, config_file, "devices", "list", "--full")

        assert "0e49b502-aaaa-bbbb" in result.output

    def test_marks_active_device(self, runner, config_file):
        devices = {"devices": [{
            "device_id": "phone-1-long-id",
            "name": "Phone",
            "added_at": 1_700_000_000,
            "last_seen": 1_700_000_000,
            "active": True,
        }]}
        with api((200, devices)):
            result = invoke(runner, config_file, "devices", "list")

        assert "(active)" in result.output


class TestDevicesRemove:
    """Test devices remove."""

    @pytest.fixture
    def populated(self, store_path):
        store = DeviceStore(store_path)
        store.upsert("0e49b502-1111", "Pixel", hash_token("a"))
        store.upsert("0e49c999-2222", "Tablet", hash_token("b"))
        store.upsert("7f00aa00-3333", "Laptop", hash_token("c"))
        return store

    def reload(self, store_path):
        store = DeviceStore(store_path)
        store.load()
        return store

    def test_remove_by_prefix_offline(self, runner, config_file, store_path, populated):
        with offline():
            result = invoke(runner, config_file, "devices", "remove", "7f00", "--force")

        assert result.exit_code == 0
        assert "Device removed." in result.output
        assert "7f00aa00-3333" not in self.reload(store_path)
        assert len(self.reload(store_path)) == 2

    def test_ambiguous_prefix(self, runner, config_file, store_path, populated):
        with offline():
            result = invoke(runner, config_file, "devices", "remove", "0e49", "--force")

        assert result.exit_code == 1
        assert "Ambiguous" in result.output
        assert len(self.reload(store_path)) == 3

    def test_unknown_device(self, runner, config_file, populated):
        with offline():
            result = invoke(runner, config_file, "devices", "remove", "ffff", "--force")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_confirmation_declined(self, runner, config_file, store_path, populated):
        with offline():
            result = invoke(runner, config_file, "devices", "remove", "7f00", input="n\n")

        assert "Aborted." in result.output
        assert len(self.reload(store_path)) == 3

    def test_remove_all(self, runner, config_file, store_path, populated):
        with offline():
            result = invoke(runner, config_file, "devices", "remove", "--all", input="y\n")

        assert "Removed 3 devices." in result.output
        assert len(self.reload(store_path)) == 0

    def test_requires_target(self, runner, config_file):
        with offline():
            result = invoke(runner, config_file, "devices", "remove")

        assert result.exit_code == 1
        assert "Specify a device ID" in result.output

    def test_revokes_through_daemon(self, runner, config_file):
        devices = {"devices": [{
            "device_id": "phone-1-long-id",
            "name": "Phone",
            "added_at": 1,
            "last_seen": 1,
            "active": True,
        }]}
        with api((200, devices), (200, {"status": "revoked"})) as mock_api:
            result = invoke(runner, config_file, "devices", "remove", "phone-1", "--force")

        assert result.exit_code == 0
        assert mock_api.await_args.args[1:] == ("DELETE", "/api/devices/phone-1-long-id")

    def test_device_id_is_url_quoted(self, runner, config_file):
        devices = {"devices": [{
            "device_id": "phone/1?x#y",
            "name": "Phone",
            "added_at": 1,
            "last_seen": 1,
            "active": False,
        }]}
        with api((200, devices), (200, {"status": "revoked"})) as mock_api:
            result = invoke(runner, config_file, "devices", "remove", "phone/1?x#y", "--force")

        assert result.exit_code == 0
        assert mock_api.await_args.args[1:] == ("DELETE", "/api/devices/phone%2F1%3Fx%23y")

    def test_failed_revocation_is_reported(self, runner, config_file):
        devices = {"devices": [{
            "device_id": "phone/1",
            "name": "Phone",
            "added_at": 1,
            "last_seen": 1,
            "active": True,
        }]}
        with api((200, devices), (404, {"error": "Device not found"})):
            result = invoke(runner, config_file, "devices", "remove", "phone/1", "--force")

        assert result.exit_code == 1
        assert "Failed to remove device 'phone/1'" in result.output
        assert "Device removed." not in result.output

    def test_daemon_gone_during_revocation(self, runner, config_file):
        devices = {"devices": [{
            "device_id": "phone-1",
            "name": "Phone",
            "added_at": 1,
            "last_seen": 1,
            "active": False,
        }]}
        with api((200, devices), None):
            result = invoke(runner, config_file, "devices", "remove", "phone-1", "--force")

        assert result.exit_code == 1
        assert "Removed 0 of 1 devices." in result.output
