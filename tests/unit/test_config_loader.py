"""
Unit tests for config/loader.py and config/validate.py.

Tests cover:
- JSON config file loading
- Environment variable overrides with type coercion
- Missing file graceful fallback (empty dict)
- Singleton pattern for ConfigLoader
- Resolved settings (endpoints, contract, store path, timing)
- Config validation (validate_all_configs)
- ABI loading
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from config.loader import ConfigLoader, _load_json, get_config, get_env_var
from config.validate import (
    ConfigValidationError,
    validate_abi,
    validate_all_configs,
    validate_chain_config,
    validate_timing_config,
)

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

_ENV_VARS = (
    "PROVIDER_URL",
    "WSS_URL",
    "CONTRACT_ADDRESS",
    "STORE_PATH",
    "CHAIN_ID",
    "RECONNECT_DELAY_SECONDS",
    "DISPATCH_WORKERS",
    "DISPATCH_QUEUE_SIZE",
)


@pytest.fixture(autouse=True)
def reset_singleton(monkeypatch):
    """Reset the ConfigLoader singleton and indexer env vars between tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    ConfigLoader._instance = None
    yield
    ConfigLoader._instance = None


# ===========================================================================
# Helpers
# ===========================================================================


class TestLoadJson:
    def test_missing_file_returns_empty(self, tmp_path):
        assert _load_json(tmp_path / "nope.json") == {}

    def test_invalid_json_returns_empty(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        assert _load_json(bad) == {}

    def test_valid_json(self, tmp_path):
        good = tmp_path / "good.json"
        good.write_text(json.dumps({"a": 1}))
        assert _load_json(good) == {"a": 1}


class TestGetEnvVar:
    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("INDEXER_TEST_VAR", raising=False)
        assert get_env_var("INDEXER_TEST_VAR", 5, int) == 5

    def test_default_when_empty(self, monkeypatch):
        monkeypatch.setenv("INDEXER_TEST_VAR", "")
        assert get_env_var("INDEXER_TEST_VAR", "x", str) == "x"

    def test_type_coercion(self, monkeypatch):
        monkeypatch.setenv("INDEXER_TEST_VAR", "2.5")
        assert get_env_var("INDEXER_TEST_VAR", 0.0, float) == 2.5

    def test_bool_coercion(self, monkeypatch):
        monkeypatch.setenv("INDEXER_TEST_VAR", "yes")
        assert get_env_var("INDEXER_TEST_VAR", False, bool) is True

    def test_bad_value_falls_back(self, monkeypatch):
        monkeypatch.setenv("INDEXER_TEST_VAR", "four")
        assert get_env_var("INDEXER_TEST_VAR", 4, int) == 4


# ===========================================================================
# ConfigLoader tests
# ===========================================================================


class TestConfigLoaderSingleton:
    def test_get_instance_returns_same_object(self):
        assert ConfigLoader.get_instance() is ConfigLoader.get_instance()

    def test_get_config_returns_singleton(self):
        assert get_config() is ConfigLoader.get_instance()


class TestConfigFiles:
    def test_app_config(self):
        cfg = get_config().get_app_config()
        assert cfg["chain_id"] == 80002
        assert "log_dir" in cfg["logging"]

    def test_chain_config_defaults_to_app_chain(self):
        cfg = get_config().get_chain_config()
        assert cfg["chain_id"] == 80002
        assert cfg["rpc"]["ws_url"].startswith("wss://")

    def test_unknown_chain_returns_empty(self):
        assert get_config().get_chain_config(1) == {}

    def test_abi_contains_events_and_users_view(self):
        abi = get_config().get_abi("medical_records")
        names = {entry["name"] for entry in abi}
        assert "AccessGranted" in names
        assert "users" in names

    def test_abi_hardhat_artifact_format(self, tmp_path):
        (tmp_path / "abis").mkdir()
        (tmp_path / "abis" / "artifact.json").write_text(json.dumps({"abi": [{"type": "event"}]}))
        loader = ConfigLoader()
        loader._config_dir = tmp_path
        assert loader.get_abi("artifact") == [{"type": "event"}]

    def test_clear_cache(self):
        loader = get_config()
        first = loader.get_app_config()
        loader.clear_cache()
        assert loader.get_app_config() is not first


class TestResolvedSettings:
    def test_env_overrides_endpoints(self, monkeypatch):
        monkeypatch.setenv("PROVIDER_URL", "https://rpc.example")
        monkeypatch.setenv("WSS_URL", "wss://ws.example")
        monkeypatch.setenv("CONTRACT_ADDRESS", CONTRACT)
        loader = get_config()
        assert loader.get_http_url() == "https://rpc.example"
        assert loader.get_ws_url() == "wss://ws.example"
        assert loader.get_contract_address() == CONTRACT

    def test_json_endpoints_when_env_unset(self):
        loader = get_config()
        assert loader.get_http_url() == loader.get_chain_config()["rpc"]["http_url"]

    def test_reconnect_delay_default_and_override(self, monkeypatch):
        assert get_config().get_reconnect_delay() == 5
        monkeypatch.setenv("RECONNECT_DELAY_SECONDS", "0.5")
        assert get_config().get_reconnect_delay() == 0.5

    def test_dispatch_settings(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_WORKERS", "8")
        settings = get_config().get_dispatch_settings()
        assert settings == {"queue_size": 1000, "worker_count": 8}

    def test_store_path_relative_resolves_to_project_root(self):
        path = Path(get_config().get_store_path())
        assert path.is_absolute()
        assert path.name == "projection.db"

    def test_store_path_memory_and_absolute(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORE_PATH", ":memory:")
        assert get_config().get_store_path() == ":memory:"
        absolute = str(tmp_path / "x.db")
        monkeypatch.setenv("STORE_PATH", absolute)
        assert get_config().get_store_path() == absolute


# ===========================================================================
# Validation tests
# ===========================================================================


class TestValidators:
    def test_chain_config_missing_keys(self):
        errors = validate_chain_config({"chain_id": 80002, "rpc": {"http_url": "x"}})
        assert "rpc.ws_url" in errors
        assert "contracts.medical_records" in errors

    def test_timing_config_rejects_zero_workers(self):
        errors = validate_timing_config(
            {
                "subscription": {"reconnect_delay_seconds": 5},
                "dispatch": {"queue_size": 10, "worker_count": 0},
            }
        )
        assert errors == ["dispatch.worker_count: must be >= 1"]

    def test_abi_missing_event(self):
        abi = get_config().get_abi("medical_records")
        trimmed = [e for e in abi if e.get("name") != "AccessRevoked"]
        assert validate_abi(trimmed) == ["event AccessRevoked"]

    def test_shipped_abi_is_complete(self):
        assert validate_abi(get_config().get_abi("medical_records")) == []


class TestValidateAllConfigs:
    def test_missing_contract_address_is_fatal(self, monkeypatch):
        monkeypatch.setenv("CONTRACT_ADDRESS", "")
        with pytest.raises(ConfigValidationError, match="CONTRACT_ADDRESS"):
            validate_all_configs()

    def test_invalid_contract_address(self, monkeypatch):
        monkeypatch.setenv("CONTRACT_ADDRESS", "0x1234")
        with pytest.raises(ConfigValidationError, match="not a valid address"):
            validate_all_configs()

    def test_passes_with_contract_address(self, monkeypatch):
        monkeypatch.setenv("CONTRACT_ADDRESS", CONTRACT)
        validate_all_configs()

    def test_malformed_endpoint_is_not_a_validation_error(self, monkeypatch):
        monkeypatch.setenv("CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv("WSS_URL", "not-a-url")
        validate_all_configs()

    @pytest.mark.parametrize(
        "var, message",
        [
            ("DISPATCH_WORKERS", "DISPATCH_WORKERS must be >= 1"),
            ("DISPATCH_QUEUE_SIZE", "DISPATCH_QUEUE_SIZE must be >= 1"),
        ],
    )
    def test_zero_dispatch_override_is_fatal(self, monkeypatch, var, message):
        monkeypatch.setenv("CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv(var, "0")
        with pytest.raises(ConfigValidationError, match=message):
            validate_all_configs()

    def test_negative_reconnect_delay_override_is_fatal(self, monkeypatch):
        monkeypatch.setenv("CONTRACT_ADDRESS", CONTRACT)
        monkeypatch.setenv("RECONNECT_DELAY_SECONDS", "-1")
        with pytest.raises(ConfigValidationError, match="RECONNECT_DELAY_SECONDS"):
            validate_all_configs()
