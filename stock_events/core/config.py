"""Configuration module for loading project settings and environment variables."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from stock_events.core.errors import ConfigError

# Load environment variables from .env file
load_dotenv()

DEFAULT_CONFIG_PATH = os.getenv("STOCK_EVENTS_CONFIG", "config.yaml")


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from the specified YAML file.

    Args:
        config_path (str | Path): Path to the configuration file. Defaults to "config.yaml".

    Returns:
        Dict[str, Any]: A dictionary containing the configuration settings.
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with open(config_file, "r", encoding="utf-8") as file:
        try:
            config_data = yaml.safe_load(file)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Configuration file {config_path} is not valid YAML: {exc}") from exc

    if not config_data or not isinstance(config_data, dict):
        raise ConfigError(f"Configuration file {config_path} is empty or invalid.")

    return config_data


def section(config: Dict[str, Any], *path: str) -> Dict[str, Any]:
    """Return a nested mapping from ``config`` (``{}`` for any missing level).

    ``section(config, "detection", "daily")`` is ``config["detection"]["daily"]``
    when both keys exist.
    """
    node: Any = config
    for key in path:
        if not isinstance(node, dict):
            return {}
        node = node.get(key) or {}
    if not isinstance(node, dict):
        raise ConfigError(f"Config section {'.'.join(path)} must be a mapping, got {type(node).__name__}")
    return node


def api_key(env_var: str) -> Optional[str]:
    """Return an API key from the environment, ignoring ``.env.example`` placeholders."""
    value = (os.getenv(env_var) or "").strip()
    if not value or value.startswith("your_"):
        return None
    return value
