"""
Observability module - Logging and Metrics.
"""

from iapkit.observability.logging import get_logger, log_context, setup_logging
from iapkit.observability.metrics import metrics

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
]
