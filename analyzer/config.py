"""Configuration manager — YAML file merged over defaults, then env overrides."""

import copy
import logging
import os

import yaml

logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


class Config:
    """Configuration manager that loads from YAML and merges with defaults."""

    DEFAULTS = {
        "server": {
            "host": "0.0.0.0",
            "port": 3000,
            "debug": False,
        },
        "storage": {
            "max_logs": 5000,
            "save_path": "./data/logs.json",
        },
        "proxy": {
            "timeout_seconds": 30.0,
            "preview_limit": 20000,
        },
        "monitor": {
            "endpoint": "/client-log",
            "preview_limit": 20000,
            "ws_preview_limit": 2000,
        },
        "redaction": {
            "extra_header_keys": [],
            "extra_body_keys": [],
        },
        "realtime": {
            "accept_observer_logs": False,
            "max_pending_events": 256,
        },
        "schema": {
            "path": None,
        },
    }

    # env var -> (section, key, converter)
    ENV_OVERRIDES = {
        "HOST": ("server", "host", str),
        "PORT": ("server", "port", int),
        "MAX_LOGS": ("storage", "max_logs", int),
        "LOG_SAVE_PATH": ("storage", "save_path", str),
        "PROXY_TIMEOUT": ("proxy", "timeout_seconds", float),
        "ACCEPT_OBSERVER_LOGS": ("realtime", "accept_observer_logs", _parse_bool),
    }

    def __init__(self, config_path=None):
        self._config = copy.deepcopy(self.DEFAULTS)

        if config_path is not None:
            try:
                with open(config_path, "r") as f:
                    user_config = yaml.safe_load(f)

                if user_config and isinstance(user_config, dict):
                    self._config = self._deep_merge(self._config, user_config)
                    logger.info("Loaded config from %s", config_path)
            except FileNotFoundError:
                logger.warning("Config file %s not found, using defaults", config_path)
            except yaml.YAMLError:
                logger.warning("Invalid YAML in %s, using defaults", config_path)

    @staticmethod
    def _deep_merge(base, override):
        """Recursively merge override dict into base dict."""
        result = copy.deepcopy(base)
        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = Config._deep_merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)
        return result

    def apply_env_overrides(self, environ=None):
        """Apply the ENV_OVERRIDES that are set in ``environ``."""
        environ = os.environ if environ is None else environ
        for var, (section, key, convert) in self.ENV_OVERRIDES.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                self._config[section][key] = convert(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", var, raw)
        return self

    def get(self, key, default=None):
        """Get a top-level config key."""
        return self._config.get(key, default)

    def __getitem__(self, key):
        return self._config[key]

    def __contains__(self, key):
        return key in self._config


def load_config(config_path=None, environ=None) -> Config:
    """Build a Config from ``CONFIG_PATH`` (or the given path) plus env vars."""
    environ = os.environ if environ is None else environ
    if config_path is None:
        config_path = environ.get("CONFIG_PATH")
    return Config(config_path).apply_env_overrides(environ)
