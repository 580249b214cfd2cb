"""
Configuration schema validation for the YieldBasis Pool Cap Monitor.

Validates that all required JSON config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

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


def validate_app_config(config: dict[str, Any]) -> list[str]:
    """Validate app.json has required fields."""
    return _check_keys(
        config,
        [
            "logging.log_dir",
            "logging.module_folders",
        ],
        "app.json",
    )


def validate_timing_config(config: dict[str, Any]) -> list[str]:
    """Validate timing.json has required fields."""
    errors = _check_keys(
        config,
        [
            "supervisor.retry_delay_seconds",
            "websocket.ping_interval_seconds",
            "websocket.ping_timeout_seconds",
            "websocket.subscription_response_timeout_seconds",
            "websocket.message_receive_timeout_seconds",
            "telegram.request_timeout_seconds",
        ],
        "timing.json",
    )
    if not errors:
        delay = config["supervisor"]["retry_delay_seconds"]
        if not isinstance(delay, (int, float)) or delay < 0:
            errors.append("supervisor.retry_delay_seconds: must be a non-negative number")
    return errors


def validate_telegram_config(config: dict[str, Any]) -> list[str]:
    """Validate telegram.json has required fields."""
    return _check_keys(
        config,
        [
            "api_base_url",
            "parse_mode",
            "disable_web_page_preview",
            "explorer_tx_url",
        ],
        "telegram.json",
    )


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "app.json": (loader.get_app_config, validate_app_config),
        "timing.json": (loader.get_timing_config, validate_timing_config),
        "telegram.json": (loader.get_telegram_config, validate_telegram_config),
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
