"""
Configuration loader for the Story IP Monitor.

Provides centralized configuration management with .env overrides.
Every tunable (RPC endpoints, poll periods, volume windows, thresholds)
lives in a JSON file under config/ so deployments differ only by data.

Usage:
    from config.loader import get_config

    config = get_config()
    chain_config = config.get_chain_config()
    windows = config.get_detection_config().get("volume_windows", [])
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent

# Story mainnet
DEFAULT_CHAIN_ID = 1514


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the Story IP Monitor.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All accessor methods are cached via @lru_cache for performance.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=8)
    def get_chain_config(self, chain_id: int = DEFAULT_CHAIN_ID) -> Dict[str, Any]:
        """Load chain-specific config (Story mainnet = 1514)."""
        return _load_json(self._config_dir / "chains" / f"{chain_id}.json")

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load timing intervals and timeouts."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_detection_config(self) -> Dict[str, Any]:
        """Load whale detection policy (volume windows, thresholds, mcap ceiling)."""
        config = _load_json(self._config_dir / "detection.json")
        mode = os.getenv("DETECTION_MODE")
        if mode:
            config = {**config, "mode": mode}
        return config

    # ------------------------------------------------------------------
    # ABI loader
    # ------------------------------------------------------------------

    @lru_cache(maxsize=8)
    def get_abi(self, abi_name: str) -> list:
        """Load ABI from config/abis/<abi_name>.json."""
        data = _load_json(self._config_dir / "abis" / f"{abi_name}.json")
        # ABI files are either raw arrays or {"abi": [...]}
        if isinstance(data, list):
            return data
        return data.get("abi", [])

    # ------------------------------------------------------------------
    # Derived settings with env overrides
    # ------------------------------------------------------------------

    def get_rpc_endpoints(self, chain_id: int = DEFAULT_CHAIN_ID) -> List[Dict[str, Any]]:
        """
        RPC endpoints sorted by priority (lowest first).

        STORY_RPC_URLS (comma-separated) replaces the configured list;
        its order defines the priority.
        """
        override = os.getenv("STORY_RPC_URLS", "")
        if override.strip():
            urls = [u.strip() for u in override.split(",") if u.strip()]
            return [{"url": url, "priority": i} for i, url in enumerate(urls)]

        endpoints = self.get_chain_config(chain_id).get("rpc", {}).get("endpoints", [])
        return sorted(endpoints, key=lambda e: e.get("priority", 0))

    def get_database_path(self) -> str:
        """SQLite database path (MONITOR_DB_PATH overrides app.json)."""
        configured = self.get_app_config().get("database", {}).get("path", "data/monitor.db")
        path = get_env_var("MONITOR_DB_PATH", configured, str)
        if not os.path.isabs(path):
            path = str(self._project_root / path)
        return path

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
