"""
Tests for configuration loading and command line overrides
"""

from pathlib import Path

import pytest

from treeserve.config import ConfigManager, ConfigError, CONFIG_ENV_VAR
from treeserve.main import build_parser


class TestConfigManager:

    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        config = ConfigManager().load_config()
        assert config.server.port == 8080
        assert config.server.tls.enabled is True
        assert config.server.root == Path(".").absolute()
        assert config.auth.enabled is False
        assert config.auth.session_seconds == 24 * 3600
        assert config.auth.remember_seconds == 30 * 24 * 3600

    def test_load_yaml(self, tmp_path):
        config_file = tmp_path / "treeserve.yaml"
        config_file.write_text(
            "server:\n"
            "  port: 9000\n"
            f"  root: {tmp_path / 'files'}\n"
            "  tls:\n"
            "    enabled: false\n"
            "auth:\n"
            "  username: admin\n"
            "  password: secret\n"
            "  session_hours: 1\n"
            "logging:\n"
            "  json: true\n"
            "ui:\n"
            "  title: My Files\n"
        )
        config = ConfigManager(str(config_file)).load_config()
        assert config.server.port == 9000
        assert config.server.root == tmp_path / "files"
        assert config.server.tls.enabled is False
        assert config.auth.enabled is True
        assert config.auth.session_seconds == 3600
        assert config.logging.json is True
        assert config.ui.title == "My Files"

    def test_env_var(self, tmp_path, monkeypatch):
        config_file = tmp_path / "env.yaml"
        config_file.write_text("server:\n  port: 7000\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))
        assert ConfigManager().load_config().server.port == 7000

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigManager(str(tmp_path / "nope.yaml")).load_config()

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("server: [unclosed\n")
        with pytest.raises(ConfigError):
            ConfigManager(str(config_file)).load_config()

    def test_non_mapping_root(self, tmp_path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            ConfigManager(str(config_file)).load_config()

    def test_overrides(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        manager = ConfigManager()
        manager.load_config()
        config = manager.apply_overrides(
            port=9443,
            root=str(tmp_path),
            tls=False,
            username="admin",
            password="pw",
            addr=None,
        )
        assert config.server.port == 9443
        assert config.server.root == tmp_path
        assert config.server.tls.enabled is False
        assert config.server.addr == "0.0.0.0"
        assert config.auth.enabled is True
        assert config.auth.password_bcrypt is False


class TestCommandLine:

    def test_defaults_leave_config_alone(self):
        args = build_parser().parse_args([])
        assert args.port is None
        assert args.dir is None
        assert args.tls is None

    def test_flags(self):
        args = build_parser().parse_args([
            "--port", "8443", "--dir", "/srv/files", "--no-tls",
            "--username", "u", "--password", "p",
        ])
        assert args.port == 8443
        assert args.dir == "/srv/files"
        assert args.tls is False
        assert (args.username, args.password) == ("u", "p")

    def test_tls_files(self):
        args = build_parser().parse_args(["--tls", "--cert", "c.pem", "--key", "k.pem"])
        assert args.tls is True
        assert (args.cert, args.key) == ("c.pem", "k.pem")
