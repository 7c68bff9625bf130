"""
Export Activities for the Dilovod Order Pipeline

Temporal activities wrapping the Export Orchestrator and the
Reconciliation Checker:
- validate_order_activity: resolve the mapping and dry-run the sale order
- export_order_activity: create (or find) the sale order
- ship_order_activity: create the shipment document
- reconcile_orders_activity: backfill export state from the ERP

Idempotency tokens travel in the activity inputs and outputs: validate hands
its contact token to export, export hands its sale token to shipment. The
payload behind a token lives in the worker that issued it; on another
worker the token misses and the stage re-resolves the contact.
Engine errors propagate so that Temporal sees their class name as the
failure type (CriticalConfigurationError is configured non-retryable).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from temporalio import activity

from core.config import load_config
from core.observability import with_correlation
from export_engine.models import TokenKind, issue_token
from export_engine.runtime import ExportRuntime, build_runtime
from orders.db import get_order
from orders.models import StorefrontOrder


# =============================================================================
# Runtime
# =============================================================================

class OrderNotFoundError(Exception):
    """The order id does not exist locally."""
    pass


_runtime: Optional[ExportRuntime] = None


def configure_runtime(runtime: Optional[ExportRuntime]) -> None:
    """Install the runtime the activities use (worker startup, tests)."""
    global _runtime
    _runtime = runtime


def get_runtime() -> ExportRuntime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(load_config())
    return _runtime


def _load_order(runtime: ExportRuntime, order_id: int) -> StorefrontOrder:
    order = get_order(order_id, db_path=runtime.db_path)
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def _activity_correlation():
    info = activity.info()
    return with_correlation(
        workflow_id=info.workflow_id,
        workflow_run_id=info.workflow_run_id,
        activity_name=info.activity_type,
    )


# =============================================================================
# Activity Input/Output Models
# =============================================================================

@dataclass
class OrderStageInput:
    """Input for the per-order stage activities"""
    order_id: int
    token: Optional[str] = None


@dataclass
class ValidateOrderOutput:
    """Output from validate_order_activity"""
    order_id: int
    order_number: str
    payment_form_id: Optional[str] = None
    cash_account_id: Optional[str] = None
    firm_id: Optional[str] = None
    token: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class ExportOrderOutput:
    """Output from export_order_activity"""
    order_id: int
    order_number: str
    exported: bool
    dilovod_doc_id: Optional[str] = None
    token: Optional[str] = None
    message: str = ""
    warnings: List[str] = field(default_factory=list)


@dataclass
class ShipOrderOutput:
    """Output from ship_order_activity"""
    order_id: int
    order_number: str
    created: bool
    document_id: Optional[str] = None
    message: str = ""


@dataclass
class ReconcileOrdersInput:
    """Input for reconcile_orders_activity"""
    order_ids: List[int]


@dataclass
class ReconcileOrdersOutput:
    """Output from reconcile_orders_activity"""
    checked: int
    found: int
    updated_fields: int
    results: List[Dict[str, Any]] = field(default_factory=list)


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def validate_order_activity(input: OrderStageInput) -> ValidateOrderOutput:
    runtime = get_runtime()
    with _activity_correlation():
        order = _load_order(runtime, input.order_id)
        activity.logger.info(f"Validating order {order.order_number}")
        outcome = await runtime.orchestrator.validate(order)
        resolution = outcome.resolution
        return ValidateOrderOutput(
            order_id=input.order_id,
            order_number=resolution.composed_order_number,
            payment_form_id=resolution.payment_form_id,
            cash_account_id=resolution.cash_account_id,
            firm_id=resolution.firm_id,
            token=outcome.token.value if outcome.token else None,
            warnings=outcome.warnings,
        )


@activity.defn
async def export_order_activity(input: OrderStageInput) -> ExportOrderOutput:
    runtime = get_runtime()
    with _activity_correlation():
        order = _load_order(runtime, input.order_id)
        activity.logger.info(f"Exporting order {order.order_number}")
        resolution = await runtime.orchestrator.resolve(order)
        token = issue_token(input.token, TokenKind.CONTACT, order.id)
        outcome = await runtime.orchestrator.export(order, token=token, resolution=resolution)
        return ExportOrderOutput(
            order_id=input.order_id,
            order_number=resolution.composed_order_number,
            exported=outcome.exported,
            dilovod_doc_id=outcome.document_id,
            token=outcome.token.value if outcome.token else None,
            message=outcome.message,
            warnings=outcome.warnings,
        )


@activity.defn
async def ship_order_activity(input: OrderStageInput) -> ShipOrderOutput:
    runtime = get_runtime()
    with _activity_correlation():
        order = _load_order(runtime, input.order_id)
        activity.logger.info(f"Creating shipment for order {order.order_number}")
        outcome = await runtime.orchestrator.ship(order, token=issue_token(input.token, TokenKind.SALE, order.id))
        return ShipOrderOutput(
            order_id=input.order_id,
            order_number=order.order_number,
            created=outcome.created,
            document_id=outcome.document_id,
            message=outcome.message,
        )


@activity.defn
async def reconcile_orders_activity(input: ReconcileOrdersInput) -> ReconcileOrdersOutput:
    runtime = get_runtime()
    with _activity_correlation():
        activity.logger.info(f"Reconciling {len(input.order_ids)} orders")
        summary = await runtime.checker.check_order_ids(input.order_ids)
        return ReconcileOrdersOutput(
            checked=summary.checked,
            found=summary.found,
            updated_fields=summary.updated_fields,
            results=[result.to_dict() for result in summary.results],
        )
