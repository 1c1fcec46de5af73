"""Tests for optional store capability detection."""

from mock_utils import InMemoryConnectionStore, InMemorySecretsStore, UpdatableConnectionStore

from nango_relay.connections.stores import SupportsConnectionUpdate, SupportsRefreshCheck


class _RefreshAwareSecretsStore(InMemorySecretsStore):
    async def needs_refresh(self, connection_id: str) -> bool:
        return False


def test_connection_update_capability():
    assert isinstance(UpdatableConnectionStore(), SupportsConnectionUpdate)
    assert not isinstance(InMemoryConnectionStore(), SupportsConnectionUpdate)


def test_refresh_check_capability():
    assert isinstance(_RefreshAwareSecretsStore(), SupportsRefreshCheck)
    assert not isinstance(InMemorySecretsStore(), SupportsRefreshCheck)
