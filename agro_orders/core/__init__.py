"""Health probes and structured logging for the orders service."""

from .health import ServiceHealth, HealthStatus
from .logging_config import (
    RequestLoggingMiddleware,
    get_logger,
    set_request_context,
    setup_logging,
)

__all__ = [
    "HealthStatus",
    "RequestLoggingMiddleware",
    "ServiceHealth",
    "get_logger",
    "set_request_context",
    "setup_logging",
]
