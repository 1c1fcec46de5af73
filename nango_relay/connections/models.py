"""Pydantic models for tracked connections, their credentials and integrations."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ConnectionStatus(str, Enum):
    """Valid connection statuses."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"


class Connection(BaseModel):
    """A tracked link between an owner and one authorized external-service account.

    `provider` holds the Nango provider config key (e.g. "slack-prod"), and
    `connection_id` is Nango's connection identifier, unique per store.
    """

    id: str
    owner_id: str
    organization_id: str | None = None
    provider: str
    connection_id: str
    status: ConnectionStatus
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str


class CredentialType(str, Enum):
    """Canonical credential types."""

    OAUTH2 = "OAUTH2"
    OAUTH1 = "OAUTH1"
    API_KEY = "API_KEY"
    BASIC = "BASIC"
    CUSTOM = "CUSTOM"


class Credentials(BaseModel):
    """Canonical credentials. Only the fields relevant to `type` are populated."""

    type: CredentialType
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: str | None = None  # ISO-8601
    api_key: str | None = None
    username: str | None = None
    password: str | None = None
    raw: dict[str, Any] | None = None


class ConnectionSecret(BaseModel):
    """Credentials cached locally for a connection, with ownership information."""

    connection_id: str
    provider: str
    owner_id: str
    organization_id: str | None = None
    credentials: Credentials
    metadata: dict[str, Any] | None = None
    created_at: str
    updated_at: str
    last_refreshed_at: str | None = None


class Integration(BaseModel):
    """An integration configured in Nango."""

    id: str  # the integration's unique key, e.g. "slack-prod"
    provider: str
    display_name: str | None = None
    logo_url: str | None = None
