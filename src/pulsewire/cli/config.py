"""Configuration utilities for the pulsewire CLI.

This module provides shared configuration functions used across CLI commands.
Precedence is command-line option, then environment, then config file.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pulsewire.core.config import ServerConfig

SERVER_URL_ENV = "PULSEWIRE_SERVER_URL"
TOKEN_ENV = "PULSEWIRE_TOKEN"


def get_config_dir() -> Path:
    """Get the configuration directory for pulsewire.

    Returns:
        Path to ~/.pulsewire or equivalent.
    """
    return Path.home() / ".pulsewire"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def resolve_server_config(
    server_url: str | None = None,
    token: str | None = None,
) -> ServerConfig | None:
    """Build the server config from options, environment and config file.

    Args:
        server_url: Value of --server-url, if given.
        token: Value of --token, if given.

    Returns:
        The server config, or None if no server URL is configured anywhere.
    """
    config = load_config()
    url = server_url or os.environ.get(SERVER_URL_ENV) or config.get("server_url")
    if not url:
        return None
    return ServerConfig(
        server_url=url,
        token=token or os.environ.get(TOKEN_ENV) or config.get("token"),
    )
