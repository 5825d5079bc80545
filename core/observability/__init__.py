"""
Observability Module for the ITC reconciliation engine

Provides structured logging with correlation IDs (upload, period, entry).
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
