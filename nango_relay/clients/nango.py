"""Async Nango API client.

Covers the few endpoints the relay needs: Connect sessions, integrations,
connection lookup/deletion and sync triggers. Apart from create_session,
every public method degrades to a sentinel (None, False or an empty list)
and logs instead of raising, so webhook reconciliation can call it freely.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from nango_relay.connections.models import Integration
from nango_relay.utils.config import DEFAULT_NANGO_HOST
from nango_relay.utils.logging import get_logger

logger = get_logger(__name__)


DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_RETRIES = 3
MAX_RETRY_DELAY_SECONDS = 30
RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}
DEFAULT_SYNC_NAME = "default"


class NangoAPIError(Exception):
    """Raised when a Nango API request fails."""

    def __init__(
        self, message: str, *, status_code: int | None = None, response_body: Any | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ConnectSessionEndUser(BaseModel):
    id: str
    email: str | None = None
    display_name: str | None = None


class ConnectSessionOrganization(BaseModel):
    id: str
    display_name: str | None = None


class ConnectSessionRequest(BaseModel):
    """Body for creating a Nango Connect session."""

    end_user: ConnectSessionEndUser
    organization: ConnectSessionOrganization | None = None
    allowed_integrations: list[str] | None = None


class ConnectSession(BaseModel):
    """A short-lived token the frontend hands to Nango's Connect UI."""

    session_token: str = Field(serialization_alias="sessionToken")
    expires_at: str = Field(serialization_alias="expiresAt")


class NangoClient:
    """Thin async wrapper around the Nango REST API."""

    def __init__(
        self,
        *,
        secret_key: str,
        host: str = DEFAULT_NANGO_HOST,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("Nango secret key is required and cannot be empty")

        self._host = host.rstrip("/")
        self._max_retries = max(1, max_retries)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self._host,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Accept": "application/json",
                "User-Agent": "nango-relay/1.0",
            },
            timeout=timeout_seconds,
        )

    @property
    def host(self) -> str:
        return self._host

    async def __aenter__(self) -> NangoClient:
        return self

    async def __aexit__(self, _exc_type, _exc, _tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API wrappers
    # ------------------------------------------------------------------
    async def create_session(self, session: ConnectSessionRequest) -> ConnectSession:
        """Create a Connect session for the given end user.

        Raises:
            NangoAPIError: If Nango rejects the request or returns an unexpected body
        """
        data = await self._request(
            "POST", "/connect/sessions", json=session.model_dump(exclude_none=True)
        )
        payload = data.get("data") or {}
        token = payload.get("token")
        if not token:
            raise NangoAPIError("Nango did not return a session token", response_body=data)
        return ConnectSession(session_token=token, expires_at=str(payload.get("expires_at", "")))

    async def list_integrations(self) -> list[Integration]:
        """List the integrations configured in Nango. Returns [] on failure."""
        try:
            data = await self._request("GET", "/integrations")
        except Exception as e:
            logger.error(
                "nango_list_integrations_failed",
                error=str(e),
                status_code=getattr(e, "status_code", None),
            )
            return []

        configs = data.get("data", data.get("configs")) or []
        integrations = []
        for config in configs:
            unique_key = config.get("unique_key")
            if not unique_key:
                continue
            integrations.append(
                Integration(
                    id=unique_key,
                    provider=config.get("provider", ""),
                    display_name=config.get("display_name"),
                    logo_url=config.get("logo"),
                )
            )
        return integrations

    async def get_connection(
        self, connection_id: str, provider_config_key: str
    ) -> dict[str, Any] | None:
        """Fetch a connection, including its credentials. Returns None on any failure."""
        try:
            return await self._request(
                "GET",
                f"/connection/{quote(connection_id, safe='')}",
                params={"provider_config_key": provider_config_key},
            )
        except Exception as e:
            logger.error(
                "nango_get_connection_failed",
                connection_id=connection_id,
                provider_config_key=provider_config_key,
                error=str(e),
                status_code=getattr(e, "status_code", None),
            )
            return None

    async def delete_connection(
        self, connection_id: str, provider_config_key: str | None = None
    ) -> bool:
        """Delete a connection in Nango. Returns False on failure.

        Nango requires the provider config key; without it nothing is sent and the
        call reports success.
        """
        if not provider_config_key:
            logger.info(
                "nango_delete_connection_skipped",
                connection_id=connection_id,
                reason="no provider_config_key",
            )
            return True

        try:
            await self._request(
                "DELETE",
                f"/connection/{quote(connection_id, safe='')}",
                params={"provider_config_key": provider_config_key},
            )
            return True
        except Exception as e:
            logger.error(
                "nango_delete_connection_failed",
                connection_id=connection_id,
                provider_config_key=provider_config_key,
                error=str(e),
                status_code=getattr(e, "status_code", None),
            )
            return False

    async def trigger_sync(
        self, connection_id: str, provider_config_key: str, sync_name: str | None = None
    ) -> dict[str, Any] | None:
        """Trigger a sync for a connection. Returns None on failure."""
        try:
            return await self._request(
                "POST",
                "/sync/trigger",
                json={
                    "provider_config_key": provider_config_key,
                    "syncs": [sync_name or DEFAULT_SYNC_NAME],
                    "connection_id": connection_id,
                },
            )
        except Exception as e:
            logger.error(
                "nango_trigger_sync_failed",
                connection_id=connection_id,
                provider_config_key=provider_config_key,
                sync_name=sync_name or DEFAULT_SYNC_NAME,
                error=str(e),
                status_code=getattr(e, "status_code", None),
            )
            return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client.request(method, path, params=params, json=json)
            except httpx.RequestError as exc:
                last_error = exc
                logger.warning(
                    "Nango request transport failure",
                    method=method,
                    path=path,
                    attempt=attempt,
                    error=str(exc),
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._sleep_time_from_response(None, attempt))
                continue

            if response.is_success:
                return self._parse_json_response(response)

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self._max_retries:
                retry_after = self._sleep_time_from_response(response, attempt)
                logger.info(
                    "Nango request retrying",
                    method=method,
                    path=path,
                    status=response.status_code,
                    attempt=attempt,
                    retry_after_seconds=retry_after,
                )
                await asyncio.sleep(retry_after)
                continue

            raise NangoAPIError(
                f"Nango API request failed with status {response.status_code}",
                status_code=response.status_code,
                response_body=self._safe_get_content(response),
            )

        raise NangoAPIError(
            "Nango API request exhausted retries",
            response_body=str(last_error) if last_error else None,
        )

    def _parse_json_response(self, response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise NangoAPIError(
                "Failed to parse Nango JSON response",
                status_code=response.status_code,
                response_body=response.text,
            ) from exc
        if isinstance(data, dict):
            return data
        return {"data": data}

    def _sleep_time_from_response(self, response: httpx.Response | None, attempt: int) -> float:
        # Exponential backoff with jitter, honoring Retry-After when provided.
        if response is not None:
            retry_after_header = response.headers.get("Retry-After")
            if retry_after_header:
                try:
                    retry_after = float(retry_after_header)
                    if retry_after > 0:
                        return min(retry_after, MAX_RETRY_DELAY_SECONDS)
                except ValueError:
                    pass

        backoff = min(MAX_RETRY_DELAY_SECONDS, (2 ** (attempt - 1)))
        jitter = random.uniform(0, 0.25 * backoff)
        return max(1.0, backoff + jitter)

    def _safe_get_content(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text
