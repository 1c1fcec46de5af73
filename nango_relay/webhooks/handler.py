"""Webhook intake: authenticate, validate, then reconcile.

Authentication and validation happen before any store is touched, so a
rejected delivery never has side effects.
"""

from collections.abc import Awaitable, Callable

from nango_relay.utils.logging import LogContext, get_logger
from nango_relay.webhooks.errors import InvalidSignatureError, SchemaValidationError
from nango_relay.webhooks.models import WebhookEvent, WebhookResponse, parse_webhook_event
from nango_relay.webhooks.reconciler import WebhookReconciler
from nango_relay.webhooks.verification import verify_nango_signature

logger = get_logger(__name__)

ReconcilerFactory = Callable[[], Awaitable[WebhookReconciler]]


def accept_webhook(
    body: bytes | str, signature: str | None, webhook_secret: str | None
) -> WebhookEvent:
    """Verify the signature over the raw body and parse it into an event.

    Raises:
        InvalidSignatureError: If the signature is missing or wrong while a secret is configured
        SchemaValidationError: If the body is not a valid webhook event
    """
    raw_body = body.encode("utf-8") if isinstance(body, str) else body

    try:
        verify_nango_signature(raw_body, signature, webhook_secret)
    except InvalidSignatureError as e:
        logger.warning(
            "webhook_signature_rejected",
            reason=str(e),
            signature_present=bool(signature),
            payload_size=len(raw_body),
        )
        raise

    try:
        event = parse_webhook_event(raw_body)
    except SchemaValidationError as e:
        logger.warning("webhook_schema_rejected", reason=str(e), payload_size=len(raw_body))
        raise

    logger.info(
        "webhook_received",
        event_type=event.type,
        operation=event.operation,
        success=event.success,
        connection_id=event.connection_id,
        provider_config_key=event.provider_config_key,
        verified=bool(webhook_secret),
    )
    return event


async def handle_webhook(
    body: bytes | str,
    signature: str | None,
    reconciler: WebhookReconciler | ReconcilerFactory,
    webhook_secret: str | None,
) -> WebhookResponse:
    """Process one webhook delivery end to end.

    Args:
        reconciler: A reconciler, or an async factory for one. A factory is only
            called once the delivery has been accepted.

    Raises:
        WebhookRejectedError: If the delivery fails authentication or validation
        ReconciliationError: If a store operation failed under FailurePolicy.RAISE
    """
    event = accept_webhook(body, signature, webhook_secret)

    with LogContext(connection_id=event.connection_id, provider_config_key=event.provider_config_key):
        if not isinstance(reconciler, WebhookReconciler):
            reconciler = await reconciler()
        response = await reconciler.reconcile(event)
        logger.info("webhook_processed", event_type=event.type, operation=event.operation)

    return response
