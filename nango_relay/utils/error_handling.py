"""Error handling utilities for consistent exception recording around downstream stores."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from enum import Enum
from typing import Any

import newrelic.agent
import structlog

# Support both standard Logger and structlog BoundLogger
LoggerType = logging.Logger | structlog.BoundLogger


class FailurePolicy(str, Enum):
    """What happens to store and gateway failures contained during reconciliation."""

    SWALLOW = "swallow"
    RAISE = "raise"

    @classmethod
    def parse(cls, value: "str | FailurePolicy") -> "FailurePolicy":
        if isinstance(value, FailurePolicy):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown failure policy {value!r}, expected one of: "
                + ", ".join(p.value for p in cls)
            )


@contextmanager
def record_exception_and_collect(
    logger: LoggerType, event: str, failures: list[Exception], **log_fields: Any
) -> Generator[None]:
    """Context manager that logs, records and collects a failure, then continues execution.

    The caller decides what to do with the collected failures once every independent
    operation has been attempted.

    Args:
        logger: Logger instance to use for error logging
        event: Log event name describing the failed operation
        failures: List the exception is appended to (modified in-place)
        **log_fields: Extra structured context such as connection_id and phase

    Example:
        failures: list[Exception] = []
        with record_exception_and_collect(logger, "secret_delete_failed", failures, connection_id=cid):
            await secrets_store.delete_secret(cid)
    """
    try:
        yield
    except Exception as e:
        logger.error(event, error=str(e), error_type=type(e).__name__, **log_fields)
        newrelic.agent.record_exception()
        failures.append(e)
