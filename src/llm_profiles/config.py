"""
Configuration

Loads ``config/profiles.yaml``. A missing or unreadable file falls back to
built-in defaults; sections present in the file override the defaults key
by key.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .security.credentials import ENCRYPTION_KEY_ENV

logger = logging.getLogger("llm-profiles")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "profiles.yaml"

DEFAULTS: Dict[str, Any] = {
    "vault": {
        "path": "./data/profile-vault.json",
    },
    "credentials": {
        "encryption_key": None,
    },
    "prompt": {
        "timeout_ms": 10000,
    },
    "providers": {
        "remote_types": ["azure", "custom"],
        "consent_required_types": ["azure", "custom"],
        "local_hosts": ["localhost", "127.0.0.1", "::1"],
        "azure_host_suffixes": [".openai.azure.com"],
    },
    "discovery": {
        "hostname": "localhost",
        "ports": [8080, 8000, 11434],
        "timeout_ms": 2000,
        "cache_duration_ms": 300000,
        "health_path": "/health",
    },
    "audit": {
        "enabled": True,
        "directory": "./logs/audit",
        "signing_key": None,
    },
    "web": {
        "host": "127.0.0.1",
        "port": 5050,
    },
    "logging": {
        "level": "INFO",
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML, merged over the defaults."""
    config = copy.deepcopy(DEFAULTS)
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError("top level must be a mapping")
        logger.info(f"Loaded configuration from {path}")
    except Exception as e:
        logger.warning(f"Could not load config: {e}. Using defaults.")
        loaded = {}

    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values

    env_key = os.getenv(ENCRYPTION_KEY_ENV)
    if env_key:
        config["credentials"]["encryption_key"] = env_key

    return config
