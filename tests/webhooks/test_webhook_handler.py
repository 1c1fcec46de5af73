"""Tests for webhook intake: signature check, schema validation, then reconciliation."""

from unittest.mock import AsyncMock, Mock

import pytest
from mock_utils import WEBHOOK_SECRET, encode_event, make_event, sign

from nango_relay.webhooks.errors import InvalidSignatureError, SchemaValidationError
from nango_relay.webhooks.handler import accept_webhook, handle_webhook
from nango_relay.webhooks.reconciler import WebhookReconciler


@pytest.fixture
def connection_store_mock():
    """Create a mock connection store that tracks nothing yet."""
    store = Mock()
    store.get_connection = AsyncMock(return_value=None)
    store.create_connection = AsyncMock()
    store.update_connection_status = AsyncMock()
    return store


@pytest.fixture
def reconciler(connection_store_mock):
    return WebhookReconciler(connection_store=connection_store_mock)


class TestHandleWebhook:
    @pytest.mark.asyncio
    async def test_signed_creation_event_creates_connection(
        self, reconciler, connection_store_mock
    ):
        body = encode_event(make_event())

        result = await handle_webhook(body, sign(body), reconciler, WEBHOOK_SECRET)

        assert result.to_payload() == {
            "success": True,
            "eventType": "auth",
            "operation": "creation",
        }
        connection_store_mock.create_connection.assert_awaited_once_with(
            "slack-prod", "conn-123", "user-123", "org-456", {"environment": "production"}
        )

    @pytest.mark.asyncio
    async def test_invalid_signature_rejected_before_store_access(
        self, reconciler, connection_store_mock
    ):
        body = encode_event(make_event())

        with pytest.raises(InvalidSignatureError):
            await handle_webhook(body, "0" * 64, reconciler, WEBHOOK_SECRET)

        assert connection_store_mock.mock_calls == []

    @pytest.mark.asyncio
    async def test_missing_signature_rejected_when_secret_configured(
        self, reconciler, connection_store_mock
    ):
        body = encode_event(make_event())

        with pytest.raises(InvalidSignatureError):
            await handle_webhook(body, None, reconciler, WEBHOOK_SECRET)

        assert connection_store_mock.mock_calls == []

    @pytest.mark.asyncio
    async def test_unsigned_webhook_accepted_without_secret(self, reconciler):
        body = encode_event(make_event(type="sync", operation=None))

        result = await handle_webhook(body, None, reconciler, None)

        assert result.success
        assert result.event_type == "sync"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            b'{"invalidField":"test"}',
            encode_event(make_event(type="invalid.type")),
        ],
    )
    async def test_schema_rejected_before_store_access(
        self, body, reconciler, connection_store_mock
    ):
        with pytest.raises(SchemaValidationError):
            await handle_webhook(body, sign(body), reconciler, WEBHOOK_SECRET)

        assert connection_store_mock.mock_calls == []

    @pytest.mark.asyncio
    async def test_reconciler_factory_called_after_acceptance(
        self, reconciler, connection_store_mock
    ):
        factory = AsyncMock(return_value=reconciler)
        body = encode_event(make_event())

        result = await handle_webhook(body, sign(body), factory, WEBHOOK_SECRET)

        assert result.success
        factory.assert_awaited_once_with()
        connection_store_mock.create_connection.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reconciler_factory_not_called_for_rejected_delivery(self):
        factory = AsyncMock()
        body = encode_event(make_event())

        with pytest.raises(InvalidSignatureError):
            await handle_webhook(body, "0" * 64, factory, WEBHOOK_SECRET)

        factory.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_signature_checked_before_schema(self, reconciler):
        with pytest.raises(InvalidSignatureError):
            await handle_webhook(b'{"invalidField":"test"}', "0" * 64, reconciler, WEBHOOK_SECRET)


class TestAcceptWebhook:
    def test_returns_parsed_event(self):
        body = encode_event(make_event())

        event = accept_webhook(body, sign(body), WEBHOOK_SECRET)

        assert event.connection_id == "conn-123"
        assert event.provider_config_key == "slack-prod"

    def test_str_body_verified_as_utf8(self):
        body = encode_event(make_event(provider="slack-ñ"))

        event = accept_webhook(body.decode("utf-8"), sign(body), WEBHOOK_SECRET)

        assert event.provider == "slack-ñ"
