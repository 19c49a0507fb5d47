"""
Configuration schema validation for the Story IP Monitor.

Validates that all required config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

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


def validate_chain_config(config: dict[str, Any]) -> list[str]:
    """Validate chains/1514.json has required fields."""
    errors = _check_keys(
        config,
        [
            "chain_id",
            "rpc.endpoints",
            "explorer_url",
            "asset_registries",
            "creation_events",
        ],
        "chains/1514.json",
    )
    if not errors:
        endpoints = config["rpc"]["endpoints"]
        if not isinstance(endpoints, list) or len(endpoints) == 0:
            errors.append("rpc.endpoints: must be a non-empty list")
        for event in config.get("creation_events", []):
            for key in ("signature", "indexed", "data", "roles"):
                if key not in event:
                    errors.append(f"creation_events[{event.get('name', '?')}].{key}")
    return errors


def validate_timing_config(config: dict[str, Any]) -> list[str]:
    """Validate timing.json has required fields."""
    return _check_keys(
        config,
        [
            "polling.interval_seconds",
            "polling.registry_refresh_seconds",
            "rpc.connect_timeout_seconds",
            "rpc.call_timeout_seconds",
            "metadata.call_timeout_seconds",
            "alerts.pacing_seconds",
        ],
        "timing.json",
    )


def validate_detection_config(config: dict[str, Any]) -> list[str]:
    """Validate detection.json has required fields and sane windows."""
    errors = _check_keys(
        config,
        [
            "mode",
            "default_whale_threshold",
            "freshness.window_hours",
            "freshness.threshold_multiplier",
            "volume_windows",
            "market_cap.ceiling_usd",
        ],
        "detection.json",
    )
    if errors:
        return errors

    if config["mode"] not in ("windowed", "single"):
        errors.append("mode: must be 'windowed' or 'single'")

    for window in config["volume_windows"]:
        label = window.get("label", "?")
        if window.get("duration_seconds", 0) <= 0:
            errors.append(f"volume_windows[{label}].duration_seconds: must be positive")
        try:
            if Decimal(str(window.get("threshold", "0"))) <= 0:
                errors.append(f"volume_windows[{label}].threshold: must be positive")
        except InvalidOperation:
            errors.append(f"volume_windows[{label}].threshold: not a number")
    return errors


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "chains/1514.json": (loader.get_chain_config, validate_chain_config),
        "timing.json": (loader.get_timing_config, validate_timing_config),
        "detection.json": (loader.get_detection_config, validate_detection_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - missing: {error}")
        raise ConfigValidationError("\n".join(lines))
