"""Dilovod Connector Package.

Implements the ERPConnector interface for the Dilovod accounting API.
"""

from connectors.dilovod.dilovod_connector import DilovodConnector
from connectors.dilovod.dilovod_client import (
    DilovodApiClient,
    DilovodApiConfig,
    DilovodApiError,
    DilovodAuthenticationError,
    DilovodConnectionError,
    DilovodRateLimitError,
    DilovodValidationError,
    RetryConfig,
)
from connectors.dilovod.dilovod_token_cache import PayloadCache

__all__ = [
    # Connector
    "DilovodConnector",
    # Client
    "DilovodApiClient",
    "DilovodApiConfig",
    "RetryConfig",
    # Errors
    "DilovodApiError",
    "DilovodAuthenticationError",
    "DilovodConnectionError",
    "DilovodRateLimitError",
    "DilovodValidationError",
    # Tokens
    "PayloadCache",
]
