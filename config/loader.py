"""
Configuration loader for the medical records chain indexer.

Provides centralized configuration management with .env overrides.

Usage:
    from config.loader import get_config, get_env_var

    config = get_config()
    chain_config = config.get_chain_config(80002)
    abi = config.get_abi("medical_records")
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from shared.constants import (
    DEFAULT_CHAIN_ID,
    DEFAULT_DISPATCH_QUEUE_SIZE,
    DEFAULT_DISPATCH_WORKERS,
    DEFAULT_RECONNECT_DELAY_SECONDS,
)

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


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
    if value is None or value == "":
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the indexer.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All accessor methods are cached via @lru_cache.
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

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=8)
    def get_chain_config(self, chain_id: Optional[int] = None) -> Dict[str, Any]:
        """Load chain-specific config (defaults to the app's configured chain)."""
        if chain_id is None:
            chain_id = self.get_chain_id()
        return _load_json(self._config_dir / "chains" / f"{chain_id}.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load reconnect backoff and dispatch pool settings."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_store_config(self) -> Dict[str, Any]:
        """Load projection store settings."""
        return _load_json(self._config_dir / "store.json")

    # ------------------------------------------------------------------
    # ABI loader
    # ------------------------------------------------------------------

    @lru_cache(maxsize=8)
    def get_abi(self, abi_name: str) -> list:
        """Load ABI from config/abis/<abi_name>.json."""
        data = _load_json(self._config_dir / "abis" / f"{abi_name}.json")
        # ABI files are either raw arrays or {"abi": [...]} (hardhat artifacts)
        if isinstance(data, list):
            return data
        return data.get("abi", [])

    # ------------------------------------------------------------------
    # Resolved settings (JSON defaults, environment wins)
    # ------------------------------------------------------------------

    def get_chain_id(self) -> int:
        default = self.get_app_config().get("chain_id", DEFAULT_CHAIN_ID)
        return get_env_var("CHAIN_ID", default, int)

    def get_http_url(self) -> str:
        rpc = self.get_chain_config().get("rpc", {})
        return get_env_var("PROVIDER_URL", rpc.get("http_url", ""), str)

    def get_ws_url(self) -> str:
        rpc = self.get_chain_config().get("rpc", {})
        return get_env_var("WSS_URL", rpc.get("ws_url", ""), str)

    def get_contract_address(self) -> str:
        contracts = self.get_chain_config().get("contracts", {})
        return get_env_var("CONTRACT_ADDRESS", contracts.get("medical_records", ""), str)

    def get_store_path(self) -> str:
        path = get_env_var("STORE_PATH", self.get_store_config().get("path", "data/projection.db"), str)
        if path == ":memory:" or os.path.isabs(path):
            return path
        return str(self._project_root / path)

    def get_reconnect_delay(self) -> float:
        subscription = self.get_timing_config().get("subscription", {})
        default = subscription.get("reconnect_delay_seconds", DEFAULT_RECONNECT_DELAY_SECONDS)
        return get_env_var("RECONNECT_DELAY_SECONDS", default, float)

    def get_dispatch_settings(self) -> Dict[str, int]:
        dispatch = self.get_timing_config().get("dispatch", {})
        return {
            "queue_size": get_env_var(
                "DISPATCH_QUEUE_SIZE", dispatch.get("queue_size", DEFAULT_DISPATCH_QUEUE_SIZE), int
            ),
            "worker_count": get_env_var(
                "DISPATCH_WORKERS", dispatch.get("worker_count", DEFAULT_DISPATCH_WORKERS), int
            ),
        }

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
