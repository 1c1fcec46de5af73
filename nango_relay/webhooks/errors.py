"""Exceptions raised while accepting and reconciling Nango webhooks."""


class WebhookRejectedError(Exception):
    """A webhook was refused before reconciliation. Maps to HTTP 400 and is never retried."""


class InvalidSignatureError(WebhookRejectedError):
    """The webhook signature is missing or does not match the configured secret."""


class SchemaValidationError(WebhookRejectedError):
    """The webhook body is not valid JSON or does not match the known event shape."""


class ReconciliationError(Exception):
    """Store or gateway failures collected while reconciling one event.

    Only raised under FailurePolicy.RAISE, after every independent operation
    for the event has been attempted.
    """

    def __init__(self, event_type: str, connection_id: str, failures: list[Exception]):
        self.event_type = event_type
        self.connection_id = connection_id
        self.failures = failures
        summary = "; ".join(f"{type(f).__name__}: {f}" for f in failures)
        super().__init__(
            f"{len(failures)} store operation(s) failed for {event_type} event on "
            f"connection {connection_id}: {summary}"
        )
