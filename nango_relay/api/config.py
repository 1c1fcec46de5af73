"""Runtime configuration for the relay's HTTP surface."""

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from nango_relay.utils.config import (
    DEFAULT_NANGO_HOST,
    get_nango_host,
    get_nango_providers,
    get_nango_secret_key,
    get_nango_webhook_secret,
    get_webhook_failure_policy,
)
from nango_relay.utils.error_handling import FailurePolicy

DEFAULT_ROUTE_PREFIX = "/api/nango"

# Called with the incoming request, or None for webhook deliveries (which have no
# authenticated caller). May return the store directly or an awaitable of it.
StoreFactory = Callable[[Request | None], Any]


@dataclass
class RelayConfig:
    nango_secret_key: str
    nango_host: str = DEFAULT_NANGO_HOST
    webhook_secret: str | None = None
    providers: list[str] | None = None
    failure_policy: FailurePolicy = FailurePolicy.SWALLOW
    connection_store_factory: StoreFactory | None = None
    secrets_store_factory: StoreFactory | None = None
    route_prefix: str = DEFAULT_ROUTE_PREFIX

    @classmethod
    def from_env(cls, **overrides: Any) -> "RelayConfig":
        """Build a config from environment variables. Keyword arguments take precedence.

        Raises:
            ValueError: If NANGO_SECRET_KEY is missing or WEBHOOK_FAILURE_POLICY is unknown
        """
        values: dict[str, Any] = {
            "nango_secret_key": overrides.pop("nango_secret_key", None) or get_nango_secret_key(),
            "nango_host": get_nango_host(),
            "webhook_secret": get_nango_webhook_secret(),
            "providers": get_nango_providers(),
            "failure_policy": FailurePolicy.parse(get_webhook_failure_policy()),
        }
        values.update(overrides)
        return cls(**values)


async def resolve_store(factory: StoreFactory | None, request: Request | None) -> Any | None:
    """Call a store factory, awaiting its result when it is asynchronous."""
    if factory is None:
        return None
    store = factory(request)
    if inspect.isawaitable(store):
        store = await store
    return store
