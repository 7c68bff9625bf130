"""Order export endpoints.

Single-order stages (validate, export, shipment), full runs, bulk runs,
reconciliation checks and storefront sync. Engine errors are not caught
here; the app-level handler turns them into structured error bodies.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.dependencies import AppServices, get_runtime, get_services, get_storefront
from channel_mapping.models import ResolutionFailure
from connectors.salesdrive.salesdrive_client import SalesDriveApiClient, SalesDriveApiError
from export_engine.bulk import BulkOperationKind
from export_engine.models import TokenKind, issue_token
from export_engine.runtime import ExportRuntime
from orders.db import get_order, list_orders
from orders.models import StorefrontOrder
from orders.sync import sync_orders_from_storefront


router = APIRouter()


# =============================================================================
# Request / Response Models
# =============================================================================

class StageRequest(BaseModel):
    """Token returned by the previous stage, if the caller kept it."""
    token: Optional[str] = Field(None, description="Idempotency token from the previous stage")


class RunRequest(BaseModel):
    ship: bool = Field(True, description="Create the shipment after a successful export")


class CheckRequest(BaseModel):
    order_ids: List[int] = Field(..., description="Local order ids to reconcile")


class BulkRequest(BaseModel):
    order_ids: List[int]
    kind: BulkOperationKind = BulkOperationKind.EXPORT_AND_SHIP
    ship: bool = True
    batch_id: Optional[str] = None


class SyncRequest(BaseModel):
    date_from: date
    date_to: date


class OrderSummary(BaseModel):
    id: int
    order_number: str
    channel_id: str
    payment_method: Optional[int] = None
    shipping_method: Optional[str] = None
    status: Optional[str] = None
    customer_name: Optional[str] = None
    order_date: Optional[datetime] = None
    dilovod_doc_id: Optional[str] = None
    dilovod_export_date: Optional[datetime] = None
    dilovod_sale_export_date: Optional[datetime] = None
    dilovod_cash_in_date: Optional[datetime] = None


class ValidateResponse(BaseModel):
    success: bool = True
    order_number: str
    warnings: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExportResponse(BaseModel):
    success: bool = True
    exported: bool
    message: str = ""
    dilovod_id: Optional[str] = None
    dilovod_export_date: Optional[datetime] = None
    warnings: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ShipmentResponse(BaseModel):
    success: bool = True
    created: bool
    document_id: Optional[str] = None
    message: str = ""


class SyncResponse(BaseModel):
    fetched: int
    saved: int
    order_ids: List[int]
    errors: List[str]


# =============================================================================
# Helpers
# =============================================================================

def _summary(order: StorefrontOrder) -> OrderSummary:
    state = order.export_state
    return OrderSummary(
        id=order.id,
        order_number=order.order_number,
        channel_id=order.channel_id,
        payment_method=order.payment_method,
        shipping_method=order.shipping_method,
        status=order.status,
        customer_name=order.customer_name,
        order_date=order.order_date,
        dilovod_doc_id=state.dilovod_doc_id,
        dilovod_export_date=state.dilovod_export_date,
        dilovod_sale_export_date=state.dilovod_sale_export_date,
        dilovod_cash_in_date=state.dilovod_cash_in_date,
    )


def _require_order(services: AppServices, order_id: int) -> StorefrontOrder:
    order = get_order(order_id, db_path=services.db_path)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
    return order


# =============================================================================
# Reads
# =============================================================================

@router.get("", response_model=List[OrderSummary])
async def get_orders(
    channel_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    services: AppServices = Depends(get_services),
) -> List[OrderSummary]:
    return [_summary(o) for o in list_orders(channel_id=channel_id, limit=limit, db_path=services.db_path)]


@router.get("/{order_id}")
async def get_order_detail(order_id: int, services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    return _require_order(services, order_id).model_dump(mode="json")


@router.get("/{order_id}/preview")
async def preview_order(
    order_id: int,
    services: AppServices = Depends(get_services),
    runtime: ExportRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Show what the order resolves to without talking to the ERP write API."""
    order = _require_order(services, order_id)
    result = await runtime.orchestrator.preview(order)
    if isinstance(result, ResolutionFailure):
        return {"resolved": False, "failure": result.model_dump(mode="json"), "message": result.message}
    return {
        "resolved": True,
        "resolution": result.model_dump(mode="json", exclude={"warnings"}),
        "warnings": [w.message for w in result.warnings],
    }


# =============================================================================
# Stages
# =============================================================================

@router.post("/{order_id}/validate", response_model=ValidateResponse)
async def validate_order(
    order_id: int,
    services: AppServices = Depends(get_services),
    runtime: ExportRuntime = Depends(get_runtime),
) -> ValidateResponse:
    order = _require_order(services, order_id)
    outcome = await runtime.orchestrator.validate(order)
    metadata = {"token": outcome.token.value} if outcome.token else {}
    return ValidateResponse(
        order_number=outcome.resolution.composed_order_number,
        warnings=outcome.warnings,
        metadata=metadata,
    )


@router.post("/{order_id}/export", response_model=ExportResponse)
async def export_order(
    order_id: int,
    request: Optional[StageRequest] = None,
    services: AppServices = Depends(get_services),
    runtime: ExportRuntime = Depends(get_runtime),
) -> ExportResponse:
    order = _require_order(services, order_id)
    token = issue_token(request.token if request else None, TokenKind.CONTACT, order.id)
    outcome = await runtime.orchestrator.export(order, token=token)
    metadata = {"sale_token": outcome.token.value} if outcome.token else {}
    return ExportResponse(
        exported=outcome.exported,
        message=outcome.message,
        dilovod_id=outcome.document_id,
        dilovod_export_date=outcome.export_date,
        warnings=outcome.warnings,
        metadata=metadata,
    )


@router.post("/{order_id}/shipment", response_model=ShipmentResponse)
async def ship_order(
    order_id: int,
    request: Optional[StageRequest] = None,
    services: AppServices = Depends(get_services),
    runtime: ExportRuntime = Depends(get_runtime),
) -> ShipmentResponse:
    order = _require_order(services, order_id)
    token = issue_token(request.token if request else None, TokenKind.SALE, order.id)
    outcome = await runtime.orchestrator.ship(order, token=token)
    return ShipmentResponse(created=outcome.created, document_id=outcome.document_id, message=outcome.message)


@router.post("/{order_id}/run")
async def run_order(
    order_id: int,
    request: Optional[RunRequest] = None,
    services: AppServices = Depends(get_services),
    runtime: ExportRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Validate, export and ship in one call. Stage failures are in the report."""
    order = _require_order(services, order_id)
    report = await runtime.orchestrator.run(order, ship=request.ship if request else True)
    return report.to_dict()


# =============================================================================
# Batches
# =============================================================================

@router.post("/check")
async def check_orders(
    request: CheckRequest,
    runtime: ExportRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    summary = await runtime.checker.check_order_ids(request.order_ids)
    return summary.to_dict()


@router.post("/check-incomplete")
async def check_incomplete_orders(
    limit: int = Query(100, ge=1, le=1000),
    runtime: ExportRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Reconcile local orders whose export state is still incomplete, newest first."""
    summary = await runtime.checker.check_incomplete(limit=limit)
    return summary.to_dict()


@router.post("/bulk")
async def bulk_orders(
    request: BulkRequest,
    runtime: ExportRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    report = await runtime.coordinator.run(
        request.order_ids,
        request.kind,
        ship=request.ship,
        batch_id=request.batch_id,
    )
    return report.to_dict()


@router.post("/sync", response_model=SyncResponse)
async def sync_orders(
    request: SyncRequest,
    services: AppServices = Depends(get_services),
    storefront: SalesDriveApiClient = Depends(get_storefront),
) -> SyncResponse:
    """Pull orders for a date range from SalesDrive."""
    if request.date_from > request.date_to:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to")
    try:
        result = await sync_orders_from_storefront(
            storefront, request.date_from, request.date_to, db_path=services.db_path
        )
    except SalesDriveApiError as e:
        raise HTTPException(status_code=502, detail=f"SalesDrive request failed: {e}")
    return SyncResponse(
        fetched=result.fetched,
        saved=result.saved,
        order_ids=result.order_ids,
        errors=result.errors,
    )
