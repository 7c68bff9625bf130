"""
Observability Module for the Dilovod export bridge

Provides structured logging with correlation IDs (order, channel, stage, batch).
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
    mask_token,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
    "mask_token",
]
