"""Utility functions and helpers.

This module provides various utilities for migration-repair:
- async_helpers: Exceptions, retry and rate limiting
- logging: Structured logging configuration
- metrics: Run metrics collection
"""

from migration_repair.utils.async_helpers import (
    GeneratorError,
    GeneratorTimeoutError,
    RateLimiter,
    RateLimitError,
    RepairError,
    create_retry,
)
from migration_repair.utils.logging import (
    LogEventNames,
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from migration_repair.utils.metrics import (
    Counter,
    Histogram,
    MetricsRegistry,
    Timer,
    get_metrics,
)

__all__ = [
    # Errors
    "GeneratorError",
    "GeneratorTimeoutError",
    "RateLimitError",
    "RepairError",
    # Async
    "RateLimiter",
    "create_retry",
    # Logging
    "LogEventNames",
    "LogFormat",
    "LogLevel",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Metrics
    "Counter",
    "Histogram",
    "MetricsRegistry",
    "Timer",
    "get_metrics",
]
