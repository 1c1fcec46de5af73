"""Normalization of Nango credential payloads into canonical Credentials.

Nango returns a different credential shape per auth mode. Dispatch is on the
payload's `type` discriminator; anything unrecognized is kept verbatim as
CUSTOM so that new auth modes pass through untouched.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from nango_relay.connections.models import Credentials, CredentialType
from nango_relay.utils.logging import get_logger

logger = get_logger(__name__)

# Token material never copied into connection metadata
SENSITIVE_CREDENTIAL_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "token",
        "oauth_token",
        "oauth_token_secret",
        "apiKey",
        "api_key",
        "password",
        "client_secret",
    }
)


def format_expires_at(value: Any) -> str | None:
    """Render an expiry as an ISO-8601 string. Strings are passed through unchanged."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _extras(raw: Mapping[str, Any]) -> dict[str, Any] | None:
    extras = raw.get("raw")
    if isinstance(extras, Mapping):
        return dict(extras)
    return None


def normalize_credentials(raw: Mapping[str, Any]) -> Credentials:
    """Convert a raw Nango credentials object into canonical Credentials.

    | raw type  | canonical | mapped fields                                   |
    |-----------|-----------|-------------------------------------------------|
    | OAUTH2    | OAUTH2    | access_token, refresh_token, expires_at         |
    | OAUTH2_CC | OAUTH2    | access_token <- token, expires_at               |
    | OAUTH1    | OAUTH1    | access_token <- oauth_token, both tokens in raw |
    | API_KEY   | API_KEY   | api_key                                         |
    | BASIC     | BASIC     | username, password                              |
    | other     | CUSTOM    | whole payload in raw                            |

    Scalar field values are rendered as strings. A payload whose fields still
    do not fit its declared type is kept verbatim as CUSTOM.
    """
    try:
        return _normalize(raw)
    except ValidationError as e:
        logger.warning(
            "credentials_kept_as_custom",
            credential_type=raw.get("type"),
            error_count=e.error_count(),
        )
        return Credentials(type=CredentialType.CUSTOM, raw=dict(raw))


def _text(value: Any) -> Any:
    if isinstance(value, bool | int | float):
        return str(value)
    return value


def _normalize(raw: Mapping[str, Any]) -> Credentials:
    match raw.get("type"):
        case "OAUTH2":
            return Credentials(
                type=CredentialType.OAUTH2,
                access_token=_text(raw.get("access_token")),
                refresh_token=_text(raw.get("refresh_token")),
                expires_at=format_expires_at(raw.get("expires_at")),
                raw=_extras(raw),
            )
        case "OAUTH2_CC":
            return Credentials(
                type=CredentialType.OAUTH2,
                access_token=_text(raw.get("token")),
                expires_at=format_expires_at(raw.get("expires_at")),
                raw=_extras(raw),
            )
        case "OAUTH1":
            return Credentials(
                type=CredentialType.OAUTH1,
                access_token=_text(raw.get("oauth_token")),
                raw={
                    **(_extras(raw) or {}),
                    "oauth_token": raw.get("oauth_token"),
                    "oauth_token_secret": raw.get("oauth_token_secret"),
                },
            )
        case "API_KEY":
            return Credentials(
                type=CredentialType.API_KEY,
                api_key=_text(raw.get("apiKey", raw.get("api_key"))),
            )
        case "BASIC":
            return Credentials(
                type=CredentialType.BASIC,
                username=_text(raw.get("username")),
                password=_text(raw.get("password")),
            )
        case _:
            return Credentials(type=CredentialType.CUSTOM, raw=dict(raw))


def strip_sensitive_fields(values: Mapping[str, Any]) -> dict[str, Any]:
    """Drop token material from a raw OAuth response before it is stored as metadata."""
    return {k: v for k, v in values.items() if k not in SENSITIVE_CREDENTIAL_KEYS}
