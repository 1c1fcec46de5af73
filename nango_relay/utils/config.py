"""Configuration utility for the Nango relay.

This module provides centralized configuration management with:
- Environment variables as the only source
- Type-safe access to configuration values
"""

import os
from typing import Any

DEFAULT_NANGO_HOST = "https://api.nango.dev"


def parse_config_value(value: str) -> str | bool | int | float:
    if value.lower() == "true":
        return True
    elif value.lower() == "false":
        return False
    else:
        # Try to parse as a number
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                # Return as string
                return value


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a configuration value from environment variables.

    Args:
        key: Configuration key name (e.g., "NANGO_HOST")
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    env_value = os.environ.get(key)
    if env_value is not None:
        return parse_config_value(env_value)

    return default


def get_config_value_str(key: str) -> str | None:
    """
    Get a configuration value from environment variables. But sometimes you just want a string.
    """
    return os.environ.get(key)


def require_config_value(key: str) -> str:
    value = os.environ.get(key)
    if value is None:
        raise ValueError(f"Environment variable {key} is required")
    return value


def get_relay_environment() -> str:
    """Get relay environment from env var."""
    return get_config_value("RELAY_ENVIRONMENT", "local")


def get_nango_secret_key() -> str:
    """Get the Nango secret key used to authenticate against the Nango API.

    Raises:
        ValueError: If NANGO_SECRET_KEY is not configured
    """
    return require_config_value("NANGO_SECRET_KEY")


def get_nango_host() -> str:
    """Get the Nango API base URL."""
    # Read as a raw string so that hosts are never coerced into numbers
    return get_config_value_str("NANGO_HOST") or DEFAULT_NANGO_HOST


def get_nango_webhook_secret() -> str | None:
    """Get the shared secret for webhook signatures.

    Returns:
        The secret, or None when webhooks should be accepted unsigned
    """
    secret = get_config_value_str("NANGO_WEBHOOK_SECRET")
    return secret or None


def get_nango_providers() -> list[str] | None:
    """Get the integration keys exposed through the integrations listing.

    NANGO_PROVIDERS is a comma-separated list. Unset means every integration is exposed.
    """
    raw = get_config_value_str("NANGO_PROVIDERS")
    if not raw:
        return None
    providers = [p.strip() for p in raw.split(",") if p.strip()]
    return providers or None


def get_webhook_failure_policy() -> str:
    """Get the failure policy name for store errors during webhook reconciliation."""
    return (get_config_value_str("WEBHOOK_FAILURE_POLICY") or "swallow").strip().lower()


def get_relay_port() -> int:
    return int(get_config_value("RELAY_PORT", 8001))
