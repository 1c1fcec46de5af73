"""Pydantic models for Nango webhook events and webhook responses."""

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from nango_relay.webhooks.errors import SchemaValidationError

WebhookEventType = Literal["auth", "sync", "connection.deleted"]
WebhookOperation = Literal["creation", "deletion", "update"]


class WebhookEndUser(BaseModel):
    """The Nango end user a connection was created for."""

    end_user_id: str | None = Field(default=None, alias="endUserId")
    organization_id: str | None = Field(default=None, alias="organizationId")

    model_config = {"populate_by_name": True}


class WebhookEventError(BaseModel):
    """Error details Nango attaches to failed auth and sync events."""

    message: str
    code: str | None = None
    type: str | None = None
    description: str | None = None


class WebhookEvent(BaseModel):
    """A validated Nango webhook notification.

    Unknown fields are ignored so that additions on Nango's side do not break parsing.
    """

    type: WebhookEventType
    operation: WebhookOperation | None = None
    success: bool | None = None
    connection_id: str = Field(alias="connectionId")
    provider_config_key: str = Field(alias="providerConfigKey")
    provider: str
    environment: str | None = None
    sync_job_id: str | None = Field(default=None, alias="syncJobId")
    end_user: WebhookEndUser | None = Field(default=None, alias="endUser")
    error: WebhookEventError | None = None
    data: Any = None
    created_at: str | None = Field(default=None, alias="createdAt")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def failed(self) -> bool:
        """True only when Nango explicitly reports failure."""
        return self.success is False


class WebhookResponse(BaseModel):
    """Acknowledgement returned for every authenticated, schema-valid webhook."""

    success: bool
    event_type: str = Field(serialization_alias="eventType")
    operation: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_webhook_event(body: bytes | str) -> WebhookEvent:
    """Parse and validate a raw webhook body.

    Raises:
        SchemaValidationError: If the body is not JSON or does not match the event shape
    """
    try:
        return WebhookEvent.model_validate_json(body)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "body" for err in e.errors()})
        raise SchemaValidationError(
            f"Invalid webhook payload ({e.error_count()} error(s) at: {', '.join(fields)})"
        ) from e
