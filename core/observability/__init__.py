"""
Observability for the sync engine.

Provides structured logging with correlation IDs (run, transaction, stage,
Temporal workflow) in JSON or human-readable form.
"""

from core.observability.logging import (
    CorrelationContext,
    configure_logging,
    get_correlation_context,
    get_logger,
    with_correlation,
)

__all__ = [
    "CorrelationContext",
    "configure_logging",
    "get_correlation_context",
    "get_logger",
    "with_correlation",
]
