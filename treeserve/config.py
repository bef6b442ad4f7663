"""
Configuration loading and management for treeserve
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from .models import (
    Config, ServerConfig, TlsConfig, AuthConfig, LoggingConfig, UiConfig
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TREESERVE_CONFIG"


class ConfigError(Exception):
    """Raised when the configuration file cannot be used"""
    pass


class ConfigManager:
    """Loads the YAML configuration and applies command line overrides"""

    def __init__(self, config_path: Optional[str] = None):
        if config_path is None:
            config_path = os.getenv(CONFIG_ENV_VAR, "")
        self.config_path = Path(config_path).resolve() if config_path else None
        self.config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file, or defaults when none is given"""
        if self.config_path is None:
            logger.debug("No configuration file given, using defaults")
            self.config = Config()
            return self.config

        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read configuration: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")

        self.config = self._parse_config(data)
        logger.info(f"Configuration loaded from {self.config_path}")
        return self.config

    def _parse_config(self, data: Dict[str, Any]) -> Config:
        """Parse configuration data into Config object"""

        server_data = data.get('server', {}) or {}
        tls_data = server_data.get('tls', {}) or {}
        server = ServerConfig(
            addr=server_data.get('addr', '0.0.0.0'),
            port=int(server_data.get('port', 8080)),
            root=Path(server_data.get('root', '.')),
            tls=TlsConfig(
                enabled=bool(tls_data.get('enabled', True)),
                certfile=tls_data.get('certfile', '') or '',
                keyfile=tls_data.get('keyfile', '') or ''
            )
        )

        auth_data = data.get('auth', {}) or {}
        auth = AuthConfig(
            username=auth_data.get('username', '') or '',
            password=str(auth_data.get('password', '') or ''),
            password_bcrypt=bool(auth_data.get('password_bcrypt', False)),
            session_hours=float(auth_data.get('session_hours', 24)),
            remember_days=float(auth_data.get('remember_days', 30))
        )

        logging_data = data.get('logging', {}) or {}
        logging_config = LoggingConfig(
            json=logging_data.get('json', False),
            file=logging_data.get('file', ''),
            level=logging_data.get('level', 'INFO'),
            max_size_mb=logging_data.get('max_size_mb', 100),
            backup_count=logging_data.get('backup_count', 5)
        )

        ui_data = data.get('ui', {}) or {}
        ui = UiConfig(
            title=ui_data.get('title', 'treeserve'),
            maxUploadSize=ui_data.get('maxUploadSize')
        )

        return Config(
            server=server,
            auth=auth,
            logging=logging_config,
            ui=ui
        )

    def apply_overrides(self, **overrides: Any) -> Config:
        """Apply command line values on top of the loaded configuration.

        Keys left as ``None`` keep the file (or default) value.
        """
        config = self.get_config()
        server = config.server

        if overrides.get('addr') is not None:
            server.addr = overrides['addr']
        if overrides.get('port') is not None:
            server.port = overrides['port']
        if overrides.get('root') is not None:
            server.root = Path(overrides['root']).expanduser().absolute()
        if overrides.get('tls') is not None:
            server.tls.enabled = overrides['tls']
        if overrides.get('certfile') is not None:
            server.tls.certfile = overrides['certfile']
        if overrides.get('keyfile') is not None:
            server.tls.keyfile = overrides['keyfile']
        if overrides.get('username') is not None:
            config.auth.username = overrides['username']
        if overrides.get('password') is not None:
            config.auth.password = overrides['password']
            config.auth.password_bcrypt = False

        return config

    def get_config(self) -> Config:
        """Get current configuration"""
        if self.config is None:
            self.config = self.load_config()
        return self.config


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file"""
    return ConfigManager(config_path).load_config()
