"""Route definitions for the Nango relay."""

import json
from typing import Any

import newrelic.agent
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from nango_relay.api.config import RelayConfig, resolve_store
from nango_relay.clients.nango import (
    ConnectSessionEndUser,
    ConnectSessionOrganization,
    ConnectSessionRequest,
    NangoClient,
)
from nango_relay.connections.models import ConnectionStatus
from nango_relay.utils.logging import LogContext, get_logger
from nango_relay.webhooks.errors import WebhookRejectedError
from nango_relay.webhooks.handler import handle_webhook
from nango_relay.webhooks.reconciler import WebhookReconciler
from nango_relay.webhooks.verification import NANGO_SIGNATURE_HEADER

logger = get_logger(__name__)

router = APIRouter()

METADATA_FILTER_PREFIX = "metadata."


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _internal_error(event: str, e: Exception) -> JSONResponse:
    logger.exception(event, error=str(e), error_type=type(e).__name__)
    newrelic.agent.record_exception()
    return _error(str(e) or "Internal server error", 500)


def _get_config(request: Request) -> RelayConfig:
    return request.app.state.relay_config


def _get_nango(request: Request) -> NangoClient:
    return request.app.state.nango_client


async def _read_json_body(request: Request) -> Any:
    """Return the parsed JSON body, or None when the body is empty or not JSON."""
    try:
        return await request.json()
    except ValueError:
        return None


def _parse_metadata_filters(request: Request) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        if not key.startswith(METADATA_FILTER_PREFIX):
            continue
        metadata_key = key.removeprefix(METADATA_FILTER_PREFIX)
        try:
            metadata[metadata_key] = json.loads(value)
        except ValueError:
            metadata[metadata_key] = value
    return metadata


@router.post("/webhooks")
async def nango_webhook(request: Request):
    """Receive a Nango webhook and reconcile it against the configured stores."""
    config = _get_config(request)
    body = await request.body()
    signature = request.headers.get(NANGO_SIGNATURE_HEADER)

    async def build_reconciler() -> WebhookReconciler:
        # Webhooks have no authenticated caller, so factories get no request
        return WebhookReconciler(
            connection_store=await resolve_store(config.connection_store_factory, None),
            secrets_store=await resolve_store(config.secrets_store_factory, None),
            nango=_get_nango(request),
            failure_policy=config.failure_policy,
        )

    try:
        result = await handle_webhook(body, signature, build_reconciler, config.webhook_secret)
    except WebhookRejectedError as e:
        return _error(str(e), 400)
    except Exception as e:
        return _internal_error("webhook_processing_failed", e)

    return result.to_payload()


@router.get("/connections")
async def list_connections(request: Request):
    """List connections from the connection store, filtered by `metadata.<key>` params."""
    config = _get_config(request)
    try:
        store = await resolve_store(config.connection_store_factory, request)
        if store is None:
            return _error("Connection store not configured", 501)

        metadata = _parse_metadata_filters(request)
        connections = await store.get_connections({"metadata": metadata} if metadata else None)
        return [connection.model_dump(mode="json") for connection in connections]
    except Exception as e:
        return _internal_error("list_connections_failed", e)


@router.get("/integrations")
async def list_integrations(request: Request):
    config = _get_config(request)
    try:
        integrations = await _get_nango(request).list_integrations()
        if config.providers:
            allowed = set(config.providers)
            integrations = [i for i in integrations if i.id in allowed]
        return [integration.model_dump() for integration in integrations]
    except Exception as e:
        return _internal_error("list_integrations_failed", e)


@router.post("/auth/session")
async def create_auth_session(request: Request):
    """Create a Nango Connect session for the given end user."""
    data = await _read_json_body(request)
    if not isinstance(data, dict):
        data = {}

    end_user = data.get("end_user")
    if not isinstance(end_user, dict) or not end_user.get("id"):
        return _error("end_user.id is required", 400)

    organization = data.get("organization")
    session_request = ConnectSessionRequest(
        end_user=ConnectSessionEndUser(
            id=str(end_user["id"]),
            email=end_user.get("email"),
            display_name=end_user.get("display_name"),
        ),
        organization=(
            ConnectSessionOrganization(
                id=str(organization["id"]), display_name=organization.get("display_name")
            )
            if isinstance(organization, dict) and organization.get("id")
            else None
        ),
        allowed_integrations=data.get("allowed_integrations"),
    )

    try:
        session = await _get_nango(request).create_session(session_request)
    except Exception as e:
        return _internal_error("create_auth_session_failed", e)

    return session.model_dump(by_alias=True)


@router.put("/connections/{connection_id}")
async def update_connection(connection_id: str, request: Request):
    data = await _read_json_body(request)
    raw_status = data.get("status") if isinstance(data, dict) else None
    try:
        status = ConnectionStatus(raw_status)
    except ValueError:
        return _error("Invalid update", 400)

    config = _get_config(request)
    try:
        store = await resolve_store(config.connection_store_factory, request)
        if store is None:
            return _error("Connection store not configured", 501)

        connection = await store.update_connection_status(connection_id, status)
        logger.info(
            "connection_status_updated_via_api",
            connection_id=connection_id,
            status=status.value,
        )
        return connection.model_dump(mode="json")
    except Exception as e:
        return _internal_error("update_connection_failed", e)


@router.delete("/connections/{connection_id}")
async def delete_connection(connection_id: str, request: Request):
    """Delete a connection at Nango (when a provider config key is given) and locally."""
    data = await _read_json_body(request)
    provider_config_key = data.get("providerConfigKey") if isinstance(data, dict) else None
    config = _get_config(request)

    with LogContext(connection_id=connection_id, provider_config_key=provider_config_key):
        try:
            if provider_config_key:
                deleted = await _get_nango(request).delete_connection(
                    connection_id, provider_config_key
                )
                if not deleted:
                    logger.warning("nango_connection_delete_failed_continuing_locally")

            connection_store = await resolve_store(config.connection_store_factory, request)
            if connection_store is not None:
                await connection_store.delete_connection(connection_id)

            secrets_store = await resolve_store(config.secrets_store_factory, request)
            if secrets_store is not None:
                await secrets_store.delete_secret(connection_id)
        except Exception as e:
            return _internal_error("delete_connection_failed", e)

        logger.info("connection_deleted_via_api")
        return {"success": True}


@router.post("/connections/{connection_id}/sync")
async def trigger_connection_sync(connection_id: str, request: Request):
    data = await _read_json_body(request)
    if not isinstance(data, dict) or not data.get("providerConfigKey"):
        return _error("providerConfigKey is required", 400)

    result = await _get_nango(request).trigger_sync(
        connection_id, data["providerConfigKey"], data.get("syncName")
    )
    if result is None:
        return _error("Failed to trigger sync", 502)
    return {"success": True, "result": result}
