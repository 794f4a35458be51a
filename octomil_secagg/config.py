"""Local configuration: environment variables and ``~/.octomil/config.json``."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.octomil.com/api/v1"


def _config_path() -> Path:
    return Path.home() / ".octomil" / "config.json"


def load_config() -> dict[str, Any]:
    """Load the local config, or ``{}`` when it is missing or unreadable."""
    path = _config_path()
    if path.exists():
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable config at %s", path)
            return {}
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Persist config to ``~/.octomil/config.json``."""
    path = _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2) + "\n")
    # May hold an API key
    path.chmod(0o600)


def get_api_base() -> str:
    """``OCTOMIL_API_BASE``, then the config file, then the public default."""
    env = os.environ.get("OCTOMIL_API_BASE", "")
    if env:
        return env
    return load_config().get("api_base") or DEFAULT_API_BASE


def get_api_key() -> str:
    """``OCTOMIL_API_KEY``, then the config file; empty when neither is set."""
    env = os.environ.get("OCTOMIL_API_KEY", "")
    if env:
        return env
    return load_config().get("api_key", "")
