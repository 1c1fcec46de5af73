"""Nango relay FastAPI service."""

import datetime
from contextlib import asynccontextmanager

import newrelic.agent
from fastapi import FastAPI

from nango_relay.api.config import RelayConfig
from nango_relay.api.routes import router as relay_router
from nango_relay.clients.nango import NangoClient
from nango_relay.utils.config import get_config_value_str, get_relay_environment, get_relay_port
from nango_relay.utils.logging import get_logger, get_uvicorn_log_config

logger = get_logger(__name__)


def create_app(config: RelayConfig | None = None) -> FastAPI:
    """Build the relay application. Without a config, one is read from the environment."""
    config = config or RelayConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the Nango client on startup and close it on shutdown."""
        logger.info("🚀 Starting Nango relay...")

        nango_client = NangoClient(secret_key=config.nango_secret_key, host=config.nango_host)
        app.state.nango_client = nango_client

        logger.info(
            "✅ Nango relay startup complete",
            nango_host=config.nango_host,
            failure_policy=config.failure_policy.value,
            connection_store=config.connection_store_factory is not None,
            secrets_store=config.secrets_store_factory is not None,
        )

        yield

        logger.info("🛑 Shutting down Nango relay...")
        await nango_client.close()

    if not config.webhook_secret:
        logger.warning(
            "⚠️ NANGO_WEBHOOK_SECRET is not set. Webhook signatures will NOT be verified!"
        )

    app = FastAPI(
        title="Nango Relay",
        description="Nango webhook reconciliation and connection management",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.relay_config = config

    @app.get("/health/live")
    async def liveness_check():
        """Liveness probe endpoint - checks if the application is alive."""
        return {"status": "alive", "timestamp": datetime.datetime.now().isoformat()}

    app.include_router(relay_router, prefix=config.route_prefix)
    return app


def main() -> None:
    """Run the relay service."""
    import uvicorn

    newrelic_config = get_config_value_str("NEW_RELIC_CONFIG_FILE")
    if newrelic_config:
        newrelic.agent.initialize(newrelic_config, environment=get_relay_environment())

    uvicorn.run(
        "nango_relay.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=get_relay_port(),
        log_config=get_uvicorn_log_config(),
    )


if __name__ == "__main__":
    main()
