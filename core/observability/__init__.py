"""
Observability Module for COA assignment services

Provides:
- Structured logging with correlation IDs (organization, configuration, rule)
- JSON and human-readable formatters
- Operation start/complete/error helpers
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
    log_operation_start,
    log_operation_complete,
    log_operation_error,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
    "log_operation_start",
    "log_operation_complete",
    "log_operation_error",
]
