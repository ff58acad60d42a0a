"""
Observability Module for the consolidation engine

Provides structured logging with correlation IDs (business line, period,
consolidated document, Temporal workflow).
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    get_correlation_context,
    with_correlation,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "get_correlation_context",
    "with_correlation",
]
