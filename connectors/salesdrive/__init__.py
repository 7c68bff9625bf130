"""SalesDrive Storefront Package.

Read-only access to storefront orders and catalogs.
"""

from connectors.salesdrive.salesdrive_client import (
    SalesDriveApiClient,
    SalesDriveApiConfig,
    SalesDriveApiError,
    SalesDriveRateLimitError,
)
from connectors.salesdrive.salesdrive_models import (
    ORDER_STATUSES,
    PAYMENT_METHODS,
    SALES_CHANNELS,
    SHIPPING_METHODS,
    OrderPage,
    PaymentMethodRef,
    SalesChannelRef,
    ShippingMethodRef,
    StatusRef,
)

__all__ = [
    # Client
    "SalesDriveApiClient",
    "SalesDriveApiConfig",
    "SalesDriveApiError",
    "SalesDriveRateLimitError",
    # Models
    "OrderPage",
    "PaymentMethodRef",
    "SalesChannelRef",
    "ShippingMethodRef",
    "StatusRef",
    # Catalogs
    "ORDER_STATUSES",
    "PAYMENT_METHODS",
    "SALES_CHANNELS",
    "SHIPPING_METHODS",
]
