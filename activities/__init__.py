"""Activity definitions module."""

from activities.export import (
    validate_order_activity,
    export_order_activity,
    ship_order_activity,
    reconcile_orders_activity,
    OrderStageInput,
    ValidateOrderOutput,
    ExportOrderOutput,
    ShipOrderOutput,
    ReconcileOrdersInput,
    ReconcileOrdersOutput,
    ExportRuntime,
    build_runtime,
    configure_runtime,
)

__all__ = [
    # Export activities
    "validate_order_activity",
    "export_order_activity",
    "ship_order_activity",
    "reconcile_orders_activity",
    "OrderStageInput",
    "ValidateOrderOutput",
    "ExportOrderOutput",
    "ShipOrderOutput",
    "ReconcileOrdersInput",
    "ReconcileOrdersOutput",
    # Runtime
    "ExportRuntime",
    "build_runtime",
    "configure_runtime",
]
