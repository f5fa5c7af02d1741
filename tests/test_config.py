"""Tests for configuration loading."""

from pathlib import Path

from fossdeck.config import Config, get_config_path, load_config


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_values(self):
        config = Config()
        assert config.port == 3030
        assert config.bind_address == "0.0.0.0"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.store_path is None

    def test_pairing_defaults(self):
        config = Config()
        assert config.pairing.code_ttl == 300
        assert config.pairing.idle_timeout == 10
        assert config.pairing.watchdog_interval == 5
        assert config.pairing.announce_code is True

    def test_rate_limit_defaults(self):
        config = Config()
        assert config.rate_limit.max_attempts == 5
        assert config.rate_limit.window == 30
        assert config.rate_limit.lockout == 30

    def test_discovery_defaults(self):
        config = Config()
        assert config.discovery.enabled is True
        assert config.discovery.port == 45321


class TestConfigPath:
    """Test config path resolution."""

    def test_default_path(self):
        assert get_config_path() == Path.home() / ".config" / "fossdeck" / "config.yaml"

    def test_custom_path(self):
        assert get_config_path(Path("/tmp/x.yaml")) == Path("/tmp/x.yaml")


class TestLoadConfig:
    """Test loading configuration through the injectable reader."""

    def test_missing_file_uses_defaults(self):
        config = load_config(file_reader=lambda path: None)
        assert config == Config()

    def test_reader_receives_path(self):
        seen = []
        load_config(Path("/etc/fossdeck.yaml"), file_reader=lambda p: seen.append(p))
        assert seen == [Path("/etc/fossdeck.yaml")]

    def test_top_level_values(self):
        config = load_config(file_reader=lambda path: {
            "port": 4000,
            "bind_address": "127.0.0.1",
            "log_level": "DEBUG",
            "store_path": "/var/lib/fossdeck/authorized.json",
        })
        assert config.port == 4000
        assert config.bind_address == "127.0.0.1"
        assert config.log_level == "DEBUG"
        assert config.store_path == "/var/lib/fossdeck/authorized.json"

    def test_nested_values_with_partial_defaults(self):
        config = load_config(file_reader=lambda path: {
            "pairing": {"idle_timeout": 20, "announce_code": False},
            "rate_limit": {"lockout": 120},
            "discovery": {"enabled": False},
            "commands": {"handler_timeout": 2.5},
        })
        assert config.pairing.idle_timeout == 20
        assert config.pairing.announce_code is False
        assert config.pairing.code_ttl == 300
        assert config.rate_limit.lockout == 120
        assert config.rate_limit.max_attempts == 5
        assert config.discovery.enabled is False
        assert config.discovery.port == 45321
        assert config.commands.handler_timeout == 2.5


class TestYamlFile:
    """Test the default YAML file reader."""

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("port: 5050\npairing:\n  code_ttl: 60\n")
        config = load_config(path)
        assert config.port == 5050
        assert config.pairing.code_ttl == 60

    def test_missing_file(self, tmp_path):
        assert load_config(tmp_path / "nope.yaml") == Config()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("   \n")
        assert load_config(path) == Config()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("port: [unclosed\n")
        assert load_config(path) == Config()

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        assert load_config(path) == Config()
