"""Workflow definitions module."""

from workflows.order_export_workflow import (
    OrderExportWorkflow,
    OrderExportInput,
    OrderExportOutput,
    BulkOrderExportWorkflow,
    BulkOrderExportInput,
    BulkOrderExportOutput,
)

__all__ = [
    "OrderExportWorkflow",
    "OrderExportInput",
    "OrderExportOutput",
    "BulkOrderExportWorkflow",
    "BulkOrderExportInput",
    "BulkOrderExportOutput",
]
