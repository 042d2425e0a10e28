"""
Configuration module for lanserve.
Loads configuration from a YAML file with fallback to default values.
"""

import copy
import logging
import os
from dataclasses import dataclass
from typing import Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LANSERVE_CONFIG"
DEFAULT_CONFIG_PATH = "lanserve.yaml"

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

# Default configuration values (fallback if YAML file doesn't exist)
DEFAULT_CONFIG = {
    "network": {
        "bind_address": "0.0.0.0",
        "port": 8080,
    },
    "files": {
        "directory": ".",
    },
    "tls": {
        "enabled": False,
    },
    "auth": {
        "username": None,
        "password": None,
    },
    "logging": {
        "level": "info",
    },
    "dry_run": False,
}


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """Load configuration from YAML file with fallback to defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                # Deep merge yaml config into default config
                _deep_merge(config, yaml_config)
            elif yaml_config is not None:
                logger.warning("Ignoring %s: top level must be a mapping", config_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config from %s: %s", config_path, e)
            logger.warning("Using default configuration")
    else:
        logger.debug("Config file %s not found, using defaults", config_path)

    return config


def _deep_merge(base: dict, update: dict):
    """Deep merge update dict into base dict."""
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


@dataclass(frozen=True)
class ServeConfig:
    """Everything the server needs, resolved once at startup."""

    # Network settings
    bind_address: str = "0.0.0.0"
    port: int = 8080

    # Served files
    directory: str = "."

    # TLS with a temporary self-signed certificate
    https: bool = False

    # Basic auth, both or neither
    username: Optional[str] = None
    password: Optional[str] = None

    log_level: str = "info"
    dry_run: bool = False

    def __post_init__(self):
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 <= self.port <= 65535:
            raise ConfigError(f"port must be an integer between 0 and 65535, got {self.port!r}")
        if not os.path.isdir(self.directory):
            raise ConfigError(f"directory {self.directory!r} does not exist or is not a directory")
        if (self.username is None) != (self.password is None):
            raise ConfigError("auth needs both a username and a password")
        if self.username is not None and ":" in self.username:
            raise ConfigError("auth username must not contain ':'")
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigError(f"log level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")

    @classmethod
    def from_dict(cls, data: dict) -> "ServeConfig":
        """Build a config from the nested structure returned by load_config()."""
        merged = copy.deepcopy(DEFAULT_CONFIG)
        _deep_merge(merged, data)
        try:
            auth = merged["auth"] or {}
            return cls(
                bind_address=str(merged["network"]["bind_address"]),
                port=merged["network"]["port"],
                directory=str(merged["files"]["directory"]),
                https=bool(merged["tls"]["enabled"]),
                username=_optional_str(auth.get("username")),
                password=_optional_str(auth.get("password")),
                log_level=str(merged["logging"]["level"]),
                dry_run=bool(merged["dry_run"]),
            )
        except (KeyError, TypeError) as e:
            raise ConfigError(f"malformed configuration: {e}") from e

    @property
    def auth_enabled(self) -> bool:
        return self.username is not None

    @property
    def scheme(self) -> str:
        return "https" if self.https else "http"


def _optional_str(value) -> Optional[str]:
    return None if value is None else str(value)


def config_path_from_env() -> str:
    return os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
