"""Shared fixtures for relay tests."""

from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
from mock_utils import InMemoryConnectionStore, InMemorySecretsStore

from nango_relay.clients.nango import NangoClient


@pytest.fixture
def connection_store() -> InMemoryConnectionStore:
    return InMemoryConnectionStore()


@pytest.fixture
def secrets_store() -> InMemorySecretsStore:
    return InMemorySecretsStore()


@pytest.fixture
def oauth2_connection_detail() -> dict[str, Any]:
    """Nango's GET /connection/{id} body for an OAuth2 connection."""
    return {
        "connection_id": "conn-123",
        "provider_config_key": "slack-prod",
        "connection_config": {"team_id": "T123"},
        "credentials": {
            "type": "OAUTH2",
            "access_token": "xoxb-access",
            "refresh_token": "xoxb-refresh",
            "expires_at": "2026-01-01T00:00:00+00:00",
            "raw": {
                "access_token": "xoxb-access",
                "scope": "channels:read",
                "team": {"id": "T123", "name": "Acme"},
            },
        },
    }


@pytest.fixture
def mock_nango(oauth2_connection_detail):
    """Create a mock Nango client that returns an OAuth2 connection."""
    nango = Mock(spec=NangoClient)
    nango.get_connection = AsyncMock(return_value=oauth2_connection_detail)
    nango.list_integrations = AsyncMock(return_value=[])
    nango.create_session = AsyncMock()
    nango.delete_connection = AsyncMock(return_value=True)
    nango.trigger_sync = AsyncMock(return_value={"success": True})
    return nango


