"""
Configuration schema validation for the medical records chain indexer.

Validates that all required config files exist and contain required keys,
and that the resolved endpoints and contract address are present.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from web3 import Web3

from config.loader import get_config


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def validate_app_config(config: dict[str, Any]) -> list[str]:
    """Validate app.json has required fields."""
    return _check_keys(config, ["chain_id", "logging.log_dir"], "app.json")


def validate_chain_config(config: dict[str, Any]) -> list[str]:
    """Validate chains/<id>.json has required fields."""
    return _check_keys(
        config,
        [
            "chain_id",
            "rpc.http_url",
            "rpc.ws_url",
            "contracts.medical_records",
        ],
        "chains/<id>.json",
    )


def validate_timing_config(config: dict[str, Any]) -> list[str]:
    """Validate timing.json has required fields and sane values."""
    errors = _check_keys(
        config,
        [
            "subscription.reconnect_delay_seconds",
            "dispatch.queue_size",
            "dispatch.worker_count",
        ],
        "timing.json",
    )
    if not errors:
        if config["dispatch"]["worker_count"] < 1:
            errors.append("dispatch.worker_count: must be >= 1")
        if config["dispatch"]["queue_size"] < 1:
            errors.append("dispatch.queue_size: must be >= 1")
        if config["subscription"]["reconnect_delay_seconds"] < 0:
            errors.append("subscription.reconnect_delay_seconds: must be >= 0")
    return errors


def validate_abi(abi: list) -> list[str]:
    """Validate the contract ABI declares the indexed events and the users() view."""
    from chain.events import EventKind

    names = {(entry.get("type"), entry.get("name")) for entry in abi}
    errors = [
        f"event {kind.value}" for kind in EventKind if ("event", kind.value) not in names
    ]
    if ("function", "users") not in names:
        errors.append("function users")
    return errors


def validate_resolved_settings() -> list[str]:
    """Validate endpoint, contract and dispatch values after environment overrides are applied."""
    loader = get_config()
    errors = []
    if not loader.get_http_url():
        errors.append("PROVIDER_URL / rpc.http_url is empty")
    if not loader.get_ws_url():
        errors.append("WSS_URL / rpc.ws_url is empty")
    address = loader.get_contract_address()
    if not address:
        errors.append("CONTRACT_ADDRESS / contracts.medical_records is empty")
    elif not Web3.is_address(address):
        errors.append(f"CONTRACT_ADDRESS is not a valid address: {address}")
    dispatch = loader.get_dispatch_settings()
    if dispatch["worker_count"] < 1:
        errors.append(f"DISPATCH_WORKERS must be >= 1: {dispatch['worker_count']}")
    if dispatch["queue_size"] < 1:
        errors.append(f"DISPATCH_QUEUE_SIZE must be >= 1: {dispatch['queue_size']}")
    if loader.get_reconnect_delay() < 0:
        errors.append(f"RECONNECT_DELAY_SECONDS must be >= 0: {loader.get_reconnect_delay()}")
    return errors


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "app.json": (loader.get_app_config, validate_app_config),
        "chains/<id>.json": (loader.get_chain_config, validate_chain_config),
        "timing.json": (loader.get_timing_config, validate_timing_config),
        "abis/medical_records.json": (lambda: loader.get_abi("medical_records"), validate_abi),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    resolved_errors = validate_resolved_settings()
    if resolved_errors:
        all_errors["environment"] = resolved_errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - missing: {error}")
        raise ConfigValidationError("\n".join(lines))
