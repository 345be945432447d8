"""Structured logging utilities with correlation ID support.

Provides:
- Correlation ID context management for request tracing
- Structured logging formatter for consistent log output
- Helper functions for refund and dispute logging

Usage:
    from refund_engine.utils.logging import get_logger, set_correlation_id

    # In middleware/request handler:
    set_correlation_id(request.headers.get("X-Correlation-ID"))

    # In service code:
    logger = get_logger(__name__)
    logger.info("Refund advanced", extra={"refund_id": "REF-123"})
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Any

# Context variable for correlation ID - thread-safe and async-safe
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation ID for the current request context.

    Args:
        correlation_id: Optional existing correlation ID. If None, generates new one.

    Returns:
        The correlation ID that was set
    """
    cid = correlation_id or generate_correlation_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID context."""
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that adds correlation_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter that prefixes every line with the correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id() or "no-correlation-id"

        base = super().format(record)
        return f"[{record.correlation_id}] {base}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with correlation ID support.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())

    return logger


def configure_logging(level: int = logging.INFO) -> None:
    """Install the structured formatter on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    handler.addFilter(CorrelationIdFilter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def log_refund_operation(
    logger: logging.Logger,
    operation: str,
    *,
    refund_id: str | None = None,
    cancellation_request_id: str | None = None,
    amount: int | None = None,
    status: str | None = None,
    actor_id: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a cancellation or refund operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g., "approve_request", "advance_refund")
        refund_id: Refund ID if available
        cancellation_request_id: Cancellation request ID if available
        amount: Amount if relevant
        status: Resulting status
        actor_id: User who issued the command
        error: Error message if operation failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"operation": operation}

    if refund_id:
        context["refund_id"] = refund_id
    if cancellation_request_id:
        context["cancellation_request_id"] = cancellation_request_id
    if amount is not None:
        context["amount"] = amount
    if status:
        context["status"] = status
    if actor_id:
        context["actor_id"] = actor_id
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Refund operation: {operation}"]
    for key, value in context.items():
        if key != "operation":
            msg_parts.append(f"{key}={value}")

    message = " | ".join(msg_parts)

    if error:
        logger.error(message, extra=context)
    else:
        logger.info(message, extra=context)


def log_dispute_event(
    logger: logging.Logger,
    event: str,
    dispute_id: str,
    *,
    status: str | None = None,
    actor_id: str | None = None,
    result: str | None = None,
    error: str | None = None,
    **extra: Any,
) -> None:
    """Log a dispute workflow event with structured context.

    Args:
        logger: Logger instance
        event: Event name (e.g., "opened", "resolved")
        dispute_id: Dispute ID
        status: Resulting dispute status
        actor_id: User who issued the command
        result: Processing result (success, duplicate, error)
        error: Error message if processing failed
        **extra: Additional context fields
    """
    context: dict[str, Any] = {"dispute_event": event, "dispute_id": dispute_id}

    if status:
        context["status"] = status
    if actor_id:
        context["actor_id"] = actor_id
    if result:
        context["result"] = result
    if error:
        context["error"] = error

    context.update(extra)

    msg_parts = [f"Dispute event: {event} ({dispute_id})"]
    if status:
        msg_parts.append(f"status={status}")
    if result:
        msg_parts.append(f"result={result}")
    if error:
        msg_parts.append(f"error={error}")

    message = " | ".join(msg_parts)

    if result == "error":
        logger.error(message, extra=context)
    elif result == "duplicate":
        logger.warning(message, extra=context)
    else:
        logger.info(message, extra=context)
