"""Orders - local copies of storefront orders and their ERP export state."""

from orders.models import OrderExportState, OrderItem, StorefrontOrder
from orders.db import (
    init_orders_db,
    upsert_order,
    get_order,
    get_orders,
    list_orders,
    apply_export_state,
    record_export,
    record_shipment,
)

__all__ = [
    # Models
    "OrderExportState",
    "OrderItem",
    "StorefrontOrder",
    # Database
    "init_orders_db",
    "upsert_order",
    "get_order",
    "get_orders",
    "list_orders",
    "apply_export_state",
    "record_export",
    "record_shipment",
]
