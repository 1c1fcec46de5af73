"""Reconciliation of Nango webhook events against the application's stores.

The reconciler is a stateless orchestrator. Each event is dispatched on its
type (and operation/success) to zero, one or two optional stores, with the
Nango client used to enrich new connections and fetch credentials:

    auth / creation      -> create the connection (or reactivate on redelivery),
                            cache normalized credentials
    auth / update        -> reactivate, refresh cached credentials
    auth / success=false -> mark ERROR if tracked
    connection.deleted   -> mark INACTIVE, drop cached credentials
    sync                 -> mark ACTIVE or ERROR

A missing store turns its step into a no-op. Store failures are contained
individually and handled according to the configured FailurePolicy once
every independent step has run.
"""

from typing import Any

from nango_relay.clients.nango import NangoClient
from nango_relay.connections.credentials import normalize_credentials, strip_sensitive_fields
from nango_relay.connections.models import ConnectionStatus
from nango_relay.connections.stores import (
    ConnectionStore,
    SecretsStore,
    SupportsConnectionUpdate,
)
from nango_relay.utils.error_handling import FailurePolicy, record_exception_and_collect
from nango_relay.utils.logging import LogContext, get_logger
from nango_relay.webhooks.errors import ReconciliationError
from nango_relay.webhooks.models import WebhookEvent, WebhookResponse

logger = get_logger(__name__)


class WebhookReconciler:
    """Applies webhook events to the optional connection and secrets stores."""

    def __init__(
        self,
        *,
        connection_store: ConnectionStore | None = None,
        secrets_store: SecretsStore | None = None,
        nango: NangoClient | None = None,
        failure_policy: FailurePolicy = FailurePolicy.SWALLOW,
    ) -> None:
        self.connection_store = connection_store
        self.secrets_store = secrets_store
        self.nango = nango
        self.failure_policy = failure_policy

    async def reconcile(self, event: WebhookEvent) -> WebhookResponse:
        """Dispatch one validated event.

        Returns:
            An acknowledgement, regardless of downstream failures under FailurePolicy.SWALLOW

        Raises:
            ReconciliationError: Under FailurePolicy.RAISE, if any store operation failed
        """
        failures: list[Exception] = []

        with LogContext(
            connection_id=event.connection_id,
            provider_config_key=event.provider_config_key,
            event_type=event.type,
            operation=event.operation,
        ):
            match event.type:
                case "auth":
                    await self._handle_auth(event, failures)
                case "sync":
                    await self._handle_sync(event, failures)
                case "connection.deleted":
                    await self._handle_connection_deleted(event, failures)

            if failures:
                if self.failure_policy is FailurePolicy.RAISE:
                    raise ReconciliationError(event.type, event.connection_id, failures)
                logger.warning(
                    "webhook_reconciled_with_failures",
                    failure_count=len(failures),
                    failure_policy=self.failure_policy.value,
                )

        return WebhookResponse(success=True, event_type=event.type, operation=event.operation)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    async def _handle_auth(self, event: WebhookEvent, failures: list[Exception]) -> None:
        if event.failed:
            logger.warning(
                "auth_failed",
                error_message=event.error.message if event.error else None,
                error_code=event.error.code if event.error else None,
            )
            await self._set_status_if_tracked(event, ConnectionStatus.ERROR, failures, "auth_failed")
            return

        match event.operation:
            case "creation" | None:
                await self._handle_auth_creation(event, failures)
            case "update":
                await self._handle_auth_update(event, failures)
            case "deletion":
                # Removal is reconciled from the connection.deleted event
                logger.info("auth_deletion_acknowledged")

    async def _handle_auth_creation(self, event: WebhookEvent, failures: list[Exception]) -> None:
        owner_id = event.end_user.end_user_id if event.end_user else None
        organization_id = event.end_user.organization_id if event.end_user else None

        if not owner_id:
            logger.warning("auth_creation_without_owner_skipped", provider=event.provider)
            return

        detail = None
        if self.nango is not None and (
            self.connection_store is not None or self.secrets_store is not None
        ):
            detail = await self._fetch_connection_detail(event, failures)

        if self.connection_store is not None:
            metadata = self._build_connection_metadata(event, detail)
            await self._create_or_reactivate(event, owner_id, organization_id, metadata, failures)

        if self.secrets_store is not None and self.nango is not None:
            await self._cache_credentials(event, owner_id, organization_id, detail, failures)

    async def _handle_auth_update(self, event: WebhookEvent, failures: list[Exception]) -> None:
        await self._set_status_if_tracked(
            event, ConnectionStatus.ACTIVE, failures, "reauthorization"
        )

        if self.secrets_store is None or self.nango is None:
            return

        with record_exception_and_collect(
            logger, "credential_refresh_failed", failures, phase="credential_refresh"
        ):
            existing = await self.secrets_store.get_secret(event.connection_id)
            if existing is None:
                logger.info("credential_refresh_skipped", reason="no cached credentials")
                return

            detail = await self.nango.get_connection(
                event.connection_id, event.provider_config_key
            )
            raw_credentials = (detail or {}).get("credentials")
            if not isinstance(raw_credentials, dict):
                logger.warning("credential_refresh_skipped", reason="credentials unavailable")
                return

            credentials = normalize_credentials(raw_credentials)
            await self.secrets_store.update_secret(
                event.connection_id, credentials.model_dump(exclude_none=True)
            )
            logger.info("credentials_refreshed", credential_type=credentials.type.value)

    async def _handle_connection_deleted(
        self, event: WebhookEvent, failures: list[Exception]
    ) -> None:
        await self._set_status_if_tracked(
            event, ConnectionStatus.INACTIVE, failures, "connection_deleted"
        )

        if self.secrets_store is not None:
            with record_exception_and_collect(
                logger, "credential_delete_failed", failures, phase="connection_deleted"
            ):
                deleted = await self.secrets_store.delete_secret(event.connection_id)
                logger.info("cached_credentials_deleted", deleted=deleted)

    async def _handle_sync(self, event: WebhookEvent, failures: list[Exception]) -> None:
        if event.failed:
            logger.warning(
                "sync_failed",
                sync_job_id=event.sync_job_id,
                error_message=event.error.message if event.error else None,
            )
            status = ConnectionStatus.ERROR
        else:
            status = ConnectionStatus.ACTIVE

        await self._set_status_if_tracked(event, status, failures, "sync")

    # ------------------------------------------------------------------
    # Store steps
    # ------------------------------------------------------------------
    async def _set_status_if_tracked(
        self,
        event: WebhookEvent,
        status: ConnectionStatus,
        failures: list[Exception],
        phase: str,
    ) -> None:
        """Update a connection's status, skipping connections the store does not track."""
        if self.connection_store is None:
            return

        with record_exception_and_collect(
            logger, "connection_status_update_failed", failures, phase=phase, status=status.value
        ):
            existing = await self.connection_store.get_connection(event.connection_id)
            if existing is None:
                logger.info("connection_not_tracked_status_skipped", phase=phase, status=status.value)
                return

            await self.connection_store.update_connection_status(event.connection_id, status)
            logger.info(
                "connection_status_updated",
                phase=phase,
                previous_status=existing.status,
                status=status.value,
            )

    async def _create_or_reactivate(
        self,
        event: WebhookEvent,
        owner_id: str,
        organization_id: str | None,
        metadata: dict[str, Any],
        failures: list[Exception],
    ) -> None:
        store = self.connection_store
        assert store is not None

        try:
            existing = await store.get_connection(event.connection_id)
        except Exception as e:
            # The create below still detects duplicates through the store's unique constraint
            logger.warning(
                "connection_lookup_failed", phase="idempotency_check", error=str(e)
            )
            existing = None

        if existing is not None:
            logger.info("connection_already_tracked", phase="duplicate_delivery")
            with record_exception_and_collect(
                logger, "connection_reactivation_failed", failures, phase="duplicate_delivery"
            ):
                await store.update_connection_status(event.connection_id, ConnectionStatus.ACTIVE)
                if metadata and isinstance(store, SupportsConnectionUpdate):
                    await store.update_connection(
                        event.connection_id, metadata={**existing.metadata, **metadata}
                    )
            return

        try:
            await store.create_connection(
                event.provider_config_key,
                event.connection_id,
                owner_id,
                organization_id,
                metadata,
            )
            logger.info(
                "connection_created", owner_id=owner_id, organization_id=organization_id
            )
            return
        except Exception as e:
            logger.warning(
                "connection_create_failed",
                phase="create",
                error=str(e),
                error_type=type(e).__name__,
            )

        # Most likely a concurrent delivery created it first
        with record_exception_and_collect(
            logger, "connection_create_fallback_failed", failures, phase="create_fallback"
        ):
            await store.update_connection_status(event.connection_id, ConnectionStatus.ACTIVE)
            logger.info("connection_reactivated_after_create_failure", phase="create_fallback")

    async def _cache_credentials(
        self,
        event: WebhookEvent,
        owner_id: str,
        organization_id: str | None,
        detail: dict[str, Any] | None,
        failures: list[Exception],
    ) -> None:
        assert self.secrets_store is not None

        raw_credentials = (detail or {}).get("credentials")
        if not isinstance(raw_credentials, dict):
            logger.warning("credential_cache_skipped", reason="credentials unavailable")
            return

        with record_exception_and_collect(
            logger, "credential_cache_failed", failures, phase="credential_cache"
        ):
            credentials = normalize_credentials(raw_credentials)
            await self.secrets_store.store_secret(
                event.connection_id,
                event.provider_config_key,
                credentials,
                owner_id,
                organization_id,
            )
            logger.info("credentials_cached", credential_type=credentials.type.value)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _fetch_connection_detail(
        self, event: WebhookEvent, failures: list[Exception]
    ) -> dict[str, Any] | None:
        assert self.nango is not None

        detail = None
        with record_exception_and_collect(
            logger, "connection_enrichment_failed", failures, phase="enrichment"
        ):
            detail = await self.nango.get_connection(
                event.connection_id, event.provider_config_key
            )
        if detail is None:
            logger.warning("connection_detail_unavailable", phase="enrichment")
        return detail

    def _build_connection_metadata(
        self, event: WebhookEvent, detail: dict[str, Any] | None
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {}
        if event.environment:
            metadata["environment"] = event.environment

        if detail:
            connection_config = detail.get("connection_config")
            if isinstance(connection_config, dict) and connection_config:
                metadata["connection_config"] = connection_config

            credentials = detail.get("credentials")
            raw = credentials.get("raw") if isinstance(credentials, dict) else None
            if isinstance(raw, dict):
                oauth_response = strip_sensitive_fields(raw)
                if oauth_response:
                    metadata["oauth_response"] = oauth_response

        return metadata
