"""Store protocols the relay reconciles against.

The relay never persists anything itself. Applications plug in their own
storage by implementing these protocols; every store is optional, and code
that uses one checks for its presence explicitly.

Implementations of ConnectionStore should enforce uniqueness of
`connection_id` (e.g. a unique index) and raise from `create_connection` on
violation. The webhook reconciler treats a failed create as a concurrent
duplicate and falls back to a status update.
"""

from typing import Any, Protocol, runtime_checkable

from nango_relay.connections.models import (
    Connection,
    ConnectionSecret,
    ConnectionStatus,
    Credentials,
)


class ConnectionStore(Protocol):
    """Protocol for the application's connection records."""

    async def get_connections(self, filters: dict[str, Any] | None = None) -> list[Connection]:
        """List connections visible to the current caller.

        Args:
            filters: Optional filters. `metadata` maps to a dict of metadata values to match,
                other keys match connection fields (e.g. owner_id, provider).
        """
        ...

    async def get_connection(self, connection_id: str) -> Connection | None: ...

    async def create_connection(
        self,
        provider: str,
        connection_id: str,
        owner_id: str,
        organization_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Connection: ...

    async def update_connection_status(
        self, connection_id: str, status: ConnectionStatus
    ) -> Connection:
        """Update the status of an existing connection.

        Raises:
            Exception: If the connection does not exist
        """
        ...

    async def delete_connection(self, connection_id: str) -> bool:
        """Delete a connection record. Returns False if it was not found."""
        ...


@runtime_checkable
class SupportsConnectionUpdate(Protocol):
    """Optional ConnectionStore capability: replacing a connection's metadata."""

    async def update_connection(
        self, connection_id: str, *, metadata: dict[str, Any]
    ) -> Connection: ...


class SecretsStore(Protocol):
    """Protocol for locally cached connection credentials.

    Implementations must encrypt credentials at rest and never log them.
    """

    async def store_secret(
        self,
        connection_id: str,
        provider: str,
        credentials: Credentials,
        owner_id: str,
        organization_id: str | None = None,
    ) -> ConnectionSecret: ...

    async def get_secret(self, connection_id: str) -> ConnectionSecret | None: ...

    async def update_secret(
        self, connection_id: str, credentials: dict[str, Any]
    ) -> ConnectionSecret:
        """Merge partial credential fields into the stored secret.

        Raises:
            Exception: If no secret exists for the connection
        """
        ...

    async def delete_secret(self, connection_id: str) -> bool: ...


@runtime_checkable
class SupportsRefreshCheck(Protocol):
    """Optional SecretsStore capability: reporting credentials close to expiry."""

    async def needs_refresh(self, connection_id: str) -> bool: ...
