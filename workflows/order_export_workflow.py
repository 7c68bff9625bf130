"""
Order Export Workflows

OrderExportWorkflow runs one order through
VALIDATE → EXPORT → SHIPMENT and stops at the first failed stage.
Each stage hands its idempotency token to the next one. A critical
configuration error or a Dilovod rejection is never retried.

BulkOrderExportWorkflow runs OrderExportWorkflow as a child workflow for
each order, one after another, and collects a per-order report. A failed
order never stops the batch. In reconcile mode it makes a single batched
reconciliation call instead.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError, ApplicationError, ChildWorkflowError

# Import activities
with workflow.unsafe.imports_passed_through():
    from activities.export import (
        validate_order_activity,
        export_order_activity,
        ship_order_activity,
        reconcile_orders_activity,
        OrderStageInput,
        ReconcileOrdersInput,
    )
    from export_engine.models import ExportStage, ExportState


TASK_QUEUE_EXPORT = "dilovod-export"

# Failures that need someone to change settings or data before a rerun
CRITICAL_ERRORS = ["CriticalConfigurationError", "OrderNotFoundError"]

# Dilovod rejections repeat on an immediate retry; the order is rerun later instead
NON_RETRYABLE_ERRORS = CRITICAL_ERRORS + ["RecoverableValidationError", "ShipmentError"]


# =============================================================================
# Workflow Input/Output
# =============================================================================

@dataclass
class OrderExportInput:
    """Input for the single-order workflow"""
    order_id: int
    ship: bool = True


@dataclass
class OrderExportOutput:
    """Output from the single-order workflow"""
    order_id: int
    order_number: Optional[str] = None
    state: str = ExportState.PENDING.value
    export_success: bool = False
    shipment_success: bool = False
    exported: bool = False
    dilovod_doc_id: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class BulkOrderExportInput:
    """Input for the bulk workflow; kind is exportAndShip or reconcile"""
    order_ids: List[int]
    kind: str = "exportAndShip"
    ship: bool = True


@dataclass
class BulkOrderExportOutput:
    kind: str
    items: List[Dict[str, Any]] = field(default_factory=list)
    exported: int = 0
    shipped: int = 0
    failed: int = 0
    reconciliation: Optional[Dict[str, Any]] = None


def _failure(stage: ExportStage, error: Exception) -> Dict[str, Any]:
    """Describe an activity failure by the engine error class that caused it."""
    cause = error.cause if isinstance(error, (ActivityError, ChildWorkflowError)) else error
    if isinstance(cause, ApplicationError):
        return {
            "stage": stage.value,
            "type": cause.type,
            "message": cause.message,
            "recoverable": cause.type not in CRITICAL_ERRORS,
        }
    return {"stage": stage.value, "type": type(cause).__name__, "message": str(cause), "recoverable": True}


# =============================================================================
# Single Order Workflow
# =============================================================================

@workflow.defn
class OrderExportWorkflow:
    """
    Per-order export workflow.

    1. VALIDATE - resolve the mapping, dry-run in Dilovod
    2. EXPORT   - create the sale order (no-op if it already exists)
    3. SHIPMENT - create the shipment document (optional)
    """

    def __init__(self):
        self.state = ExportState.PENDING

    @workflow.query
    def current_state(self) -> str:
        return self.state.value

    @workflow.run
    async def run(self, input: OrderExportInput) -> OrderExportOutput:
        workflow.logger.info(f"Starting order export workflow for order {input.order_id}")
        result = OrderExportOutput(order_id=input.order_id)

        # Dilovod calls: retried on network errors, never on configuration gaps or rejections
        activity_options = {
            "start_to_close_timeout": timedelta(minutes=2),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=2),
                maximum_interval=timedelta(minutes=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        }

        # =================================================================
        # Stage: VALIDATE
        # =================================================================
        self.state = ExportState.VALIDATING
        try:
            validation = await workflow.execute_activity(
                validate_order_activity, OrderStageInput(order_id=input.order_id), **activity_options
            )
        except ActivityError as e:
            return self._fail(result, ExportState.VALIDATION_FAILED, _failure(ExportStage.VALIDATE, e))

        self.state = ExportState.VALIDATED
        result.order_number = validation.order_number
        result.warnings.extend(validation.warnings)

        # =================================================================
        # Stage: EXPORT
        # =================================================================
        try:
            export = await workflow.execute_activity(
                export_order_activity,
                OrderStageInput(order_id=input.order_id, token=validation.token),
                **activity_options,
            )
        except ActivityError as e:
            return self._fail(result, ExportState.EXPORT_FAILED, _failure(ExportStage.EXPORT, e))

        self.state = ExportState.EXPORTED
        result.export_success = True
        result.exported = export.exported
        result.dilovod_doc_id = export.dilovod_doc_id
        result.warnings.extend(export.warnings)

        # =================================================================
        # Stage: SHIPMENT
        # =================================================================
        if not input.ship or not export.dilovod_doc_id:
            return self._finish(result, ExportState.SHIPMENT_SKIPPED)

        try:
            shipment = await workflow.execute_activity(
                ship_order_activity,
                OrderStageInput(order_id=input.order_id, token=export.token),
                **activity_options,
            )
        except ActivityError as e:
            return self._fail(result, ExportState.SHIPMENT_FAILED, _failure(ExportStage.SHIPMENT, e))

        result.shipment_success = shipment.created
        return self._finish(result, ExportState.SHIPPED)

    def _finish(self, result: OrderExportOutput, state: ExportState) -> OrderExportOutput:
        self.state = state
        result.state = state.value
        workflow.logger.info(f"Order {result.order_number or result.order_id} finished: {state.value}")
        return result

    def _fail(self, result: OrderExportOutput, state: ExportState, error: Dict[str, Any]) -> OrderExportOutput:
        workflow.logger.error(f"Order {result.order_number or result.order_id} {state.value}: {error['message']}")
        result.errors.append(error)
        return self._finish(result, state)


# =============================================================================
# Bulk Workflow
# =============================================================================

@workflow.defn
class BulkOrderExportWorkflow:
    """Runs orders strictly one after another; one failure never aborts the batch."""

    def __init__(self):
        self.processed = 0
        self.total = 0

    @workflow.query
    def progress(self) -> Dict[str, int]:
        return {"processed": self.processed, "total": self.total}

    @workflow.run
    async def run(self, input: BulkOrderExportInput) -> BulkOrderExportOutput:
        output = BulkOrderExportOutput(kind=input.kind)
        self.total = len(input.order_ids)

        if input.kind == "reconcile":
            summary = await workflow.execute_activity(
                reconcile_orders_activity,
                ReconcileOrdersInput(order_ids=input.order_ids),
                start_to_close_timeout=timedelta(minutes=5),
                retry_policy=RetryPolicy(maximum_attempts=3, initial_interval=timedelta(seconds=2)),
            )
            output.reconciliation = {
                "checked": summary.checked,
                "found": summary.found,
                "updated_fields": summary.updated_fields,
                "data": summary.results,
            }
            self.processed = self.total
            return output

        parent_id = workflow.info().workflow_id
        for order_id in input.order_ids:
            try:
                child = await workflow.execute_child_workflow(
                    OrderExportWorkflow.run,
                    OrderExportInput(order_id=order_id, ship=input.ship),
                    id=f"{parent_id}-order-{order_id}",
                )
                item = {
                    "order_id": order_id,
                    "order_number": child.order_number,
                    "export_success": child.export_success,
                    "shipment_success": child.shipment_success,
                    "state": child.state,
                    "errors": child.errors,
                }
            except ChildWorkflowError as e:
                item = {
                    "order_id": order_id,
                    "order_number": None,
                    "export_success": False,
                    "shipment_success": False,
                    "state": ExportState.EXPORT_FAILED.value,
                    "errors": [_failure(ExportStage.EXPORT, e)],
                }

            output.items.append(item)
            self.processed += 1

        output.exported = sum(1 for item in output.items if item["export_success"])
        output.shipped = sum(1 for item in output.items if item["shipment_success"])
        output.failed = sum(1 for item in output.items if item["errors"])
        workflow.logger.info(
            f"Bulk export finished: {output.exported} exported, {output.shipped} shipped, {output.failed} failed"
        )
        return output
