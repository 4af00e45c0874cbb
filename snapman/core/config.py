"""
Central configuration for snapman.

Defaults are compiled in and can be overridden from a user config file.

Lookup order:
    1. $XDG_CONFIG_HOME/snapman.conf (or ~/.config/snapman.conf)
    2. Built-in defaults below

snapman.conf format (optional, one setting per line):
    socket_path=/run/snapd.socket
    default_channel=latest/stable
    poll_interval=0.1
    timeout=30
    # Comments start with #
"""

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Config file name
CONFIG_FILE_NAME = "snapman.conf"

# Daemon REST socket
DEFAULT_SOCKET_PATH = Path("/run/snapd.socket")
# Channel picked when the installed one is unknown to the catalog
DEFAULT_CHANNEL = "latest/stable"
# Seconds between two polls of a change
DEFAULT_POLL_INTERVAL = 0.1
# Socket timeout for a single daemon request, in seconds
DEFAULT_TIMEOUT = 30.0

# Cache for parsed config (avoid repeated filesystem reads)
_cached_config: Optional[dict] = None


def get_config_path() -> Path:
    """Get the user config file path."""
    base = os.environ.get('XDG_CONFIG_HOME')
    if base:
        return Path(base) / CONFIG_FILE_NAME
    return Path.home() / ".config" / CONFIG_FILE_NAME


def _read_config_file(config_path: Path) -> dict:
    """Read a key=value config file.

    Returns:
        Dict with config values, empty if the file doesn't exist
    """
    if not config_path.exists():
        return {}

    config = {}
    try:
        with open(config_path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    config[key.strip()] = value.strip()
    except OSError as e:
        logger.warning(f"Cannot read {config_path}: {e}")
        return {}

    return config


def _load() -> dict:
    global _cached_config
    if _cached_config is None:
        _cached_config = _read_config_file(get_config_path())
    return _cached_config


def _get_float(key: str, default: float) -> float:
    raw = _load().get(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {key}={raw!r} in config")
        return default


def reset_config_cache():
    """Forget the cached config so the next accessor re-reads the file."""
    global _cached_config
    _cached_config = None


def get_socket_path() -> Path:
    """Get the daemon socket path."""
    raw = _load().get('socket_path')
    return Path(raw).expanduser() if raw else DEFAULT_SOCKET_PATH


def get_default_channel() -> str:
    """Get the channel preferred when no installed channel applies."""
    return _load().get('default_channel') or DEFAULT_CHANNEL


def get_poll_interval() -> float:
    """Get the change polling interval in seconds."""
    return _get_float('poll_interval', DEFAULT_POLL_INTERVAL)


def get_timeout() -> float:
    """Get the per-request socket timeout in seconds."""
    return _get_float('timeout', DEFAULT_TIMEOUT)
