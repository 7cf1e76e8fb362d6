import os
import copy
import yaml
from dataclasses import dataclass
from typing import Dict, Any, Optional

from core.errors import ConfigError
from utils.logger import get_logger

REPO_URL = "https://github.com/kondukto-io/kdt"

DEFAULT_CONFIG_PATH = os.path.join(os.path.expanduser("~"), ".kdt.yaml")

ENV_PREFIX = "KONDUKTO_"

DEFAULT_CONFIG = {
    "host": "",
    "token": "",
    "insecure": False,
    "verbose": False,
    "timeout": None,  # seconds, None waits as long as the server does
    "polling": {
        "scan_interval": 10,  # seconds
        "release_interval": 5,  # seconds
    },
}


@dataclass(frozen=True)
class ClientConfig:
    """Resolved connection settings handed to the transport."""

    host: str
    token: str
    insecure: bool = False
    timeout: Optional[float] = None

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "ClientConfig":
        host = (config.get("host") or "").strip()
        token = (config.get("token") or "").strip()
        if not host or not token:
            raise ConfigError(
                "Host and token configuration is required. Provide them via a config file, "
                "environment variables or command line arguments. For more information on "
                f"configuration, see README on GitHub repository. {REPO_URL}"
            )
        if not host.startswith(("http://", "https://")):
            raise ConfigError(f"host must be an http(s) URL, got [{host}]")

        timeout = config.get("timeout")
        return cls(
            host=host.rstrip("/"),
            token=token,
            insecure=_as_bool(config.get("insecure", False)),
            timeout=float(timeout) if timeout else None,
        )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from file, falling back to defaults."""
    logger = get_logger()
    merged_config = copy.deepcopy(DEFAULT_CONFIG)

    explicit = config_path is not None
    config_path = config_path or DEFAULT_CONFIG_PATH

    if not os.path.exists(config_path):
        if explicit:
            raise ConfigError(f"config file {config_path} not found")
        logger.debug(f"Configuration file {config_path} not found, using defaults")
        return merged_config

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to read configuration file {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"configuration file {config_path} must contain a mapping")

    logger.debug(f"Loaded configuration from {config_path}")
    _deep_merge(merged_config, config)
    return merged_config


def apply_env(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Override config keys with KONDUKTO_* environment variables."""
    environ = os.environ if environ is None else environ
    for key in ("host", "token", "insecure", "verbose", "timeout"):
        value = environ.get(ENV_PREFIX + key.upper())
        if value is None or value == "":
            continue
        config[key] = _as_bool(value) if key in ("insecure", "verbose") else value
    return config


def apply_overrides(config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Apply command line values, skipping the ones that were not given."""
    for key, value in overrides.items():
        if value is None or value is False or value == "":
            continue
        config[key] = value
    return config


def resolve_config(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None,
                   environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Defaults < config file < environment < command line."""
    config = load_config(config_path)
    apply_env(config, environ)
    apply_overrides(config, overrides or {})
    return config


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "t", "true", "yes", "on")


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, updating target with values from source."""
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target
