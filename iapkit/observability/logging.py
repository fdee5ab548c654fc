"""
Structured Logging with Structlog.

Provides JSON-formatted logs with per-transaction context.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from iapkit.config import Settings, settings


def _app_context(config: Settings) -> Processor:
    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        """Add library-level context to all log entries."""
        event_dict["service"] = config.service_name
        event_dict["version"] = config.version
        event_dict["environment"] = event_dict.get("environment", config.environment.value)
        return event_dict

    return add_app_context


def setup_logging(config: Settings | None = None) -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing with the following structure:
    {
        "event": "receipt_verification_completed",
        "level": "info",
        "timestamp": "2025-01-08T12:00:00.123456Z",
        "logger": "iapkit.services.reconciliation",
        "service": "iapkit",
        "version": "0.1.0",
        "environment": "sandbox",
        "transaction_id": "1000000123",
        ...additional context
    }
    """
    config = config or settings

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.log_level.upper()),
    )

    # Processors for structlog
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _app_context(config),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    # Add exception info
    if config.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    # Choose renderer based on format
    if config.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("receipt_refresh_started", transaction_id=transaction_id)
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


# Context manager for adding transaction context
class log_context:
    """
    Context manager for adding structured logging context.

    Usage:
        with log_context(transaction_id="1000000123", product_id="coins_100"):
            logger.info("verifying_receipt")
            # All logs within this context include transaction_id and product_id
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        """Enter context - bind context variables."""
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context - clear context variables."""
        structlog.contextvars.unbind_contextvars(*self.context.keys())
