"""Mapping Store endpoints.

Channel payment mappings, delivery mappings and store-wide defaults.
Every edit goes through the channel_mapping.store reducers, so the
uniqueness and channel cleanup rules hold no matter which endpoint is used.
"""

from typing import Any, Dict, FrozenSet, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.dependencies import AppServices, get_runtime, get_services
from channel_mapping import store
from channel_mapping.classify import cash_form_ids
from channel_mapping.db import load_settings, save_settings
from channel_mapping.models import MappingSettings
from channel_mapping.validator import MappingValidator
from connectors.erp_base import ERPConnectorError
from core.observability import get_logger
from export_engine.runtime import ExportRuntime


router = APIRouter()

logger = get_logger(__name__)


# =============================================================================
# Request / Response Models
# =============================================================================

class _CamelModel(BaseModel):
    class Config:
        populate_by_name = True


class ChannelUpdateRequest(_CamelModel):
    """Fields left out are not changed."""
    prefix_order: Optional[str] = Field(None, alias="prefixOrder")
    suffix_order: Optional[str] = Field(None, alias="sufixOrder")
    dilovod_trade_channel_id: Optional[str] = Field(None, alias="dilovodTradeChannelId")


class PaymentMappingRequest(_CamelModel):
    """Fields left out are not changed (on PATCH)."""
    sales_drive_payment_method: Optional[int] = Field(None, alias="salesDrivePaymentMethod")
    payment_form: Optional[str] = Field(None, alias="paymentForm")
    cash_account: Optional[str] = Field(None, alias="cashAccount")


class DeliveryMappingRequest(_CamelModel):
    sales_drive_shipping_methods: Optional[List[str]] = Field(None, alias="salesDriveShippingMethods")
    dilovod_delivery_method_id: Optional[str] = Field(None, alias="dilovodDeliveryMethodId")


class DefaultsRequest(_CamelModel):
    default_firm_id: Optional[str] = Field(None, alias="defaultFirmId")
    storage_id: Optional[str] = Field(None, alias="storageId")


class UsedValuesResponse(BaseModel):
    """Values other mappings of the channel already claim."""
    channel_id: str
    payment_forms: List[str]
    cash_accounts: List[str]
    sales_drive_payment_methods: List[int]
    duplicate_payment_methods: Dict[int, List[str]]


class StaleReportResponse(BaseModel):
    stale: List[Dict[str, Any]]
    duplicate_shipping_methods: Dict[str, List[int]]


# =============================================================================
# Helpers
# =============================================================================

def _provided(request: BaseModel) -> Dict[str, Any]:
    """Only the fields the client actually sent."""
    return {name: getattr(request, name) for name in request.model_fields_set}


def _store_error(error: store.MappingStoreError) -> HTTPException:
    if isinstance(error, store.DuplicatePaymentMethodError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=404, detail=str(error))


async def _cash_forms(services: AppServices) -> FrozenSet[str]:
    """Ids of cash payment forms; empty when directories are unavailable."""
    if services.runtime is None:
        return frozenset()
    try:
        directories = await services.runtime.directory_cache.get()
    except ERPConnectorError as e:
        logger.warning(f"Payment forms unavailable, cash accounts kept as sent: {e}")
        return frozenset()
    return cash_form_ids(directories.payment_forms)


def _save(services: AppServices, settings: MappingSettings) -> Dict[str, Any]:
    save_settings(settings, db_path=services.db_path)
    return settings.to_storage()


# =============================================================================
# Whole store
# =============================================================================

@router.get("")
async def get_settings(services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    """The Mapping Store in its persisted (camelCase) shape."""
    return load_settings(services.db_path).to_storage()


@router.put("/defaults")
async def update_defaults(
    request: DefaultsRequest,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    settings = store.set_defaults(load_settings(services.db_path), **_provided(request))
    return _save(services, settings)


# =============================================================================
# Channels
# =============================================================================

@router.post("/channels/{channel_id}", status_code=201)
async def add_channel(channel_id: str, services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    """Add a channel with one empty payment mapping."""
    settings = store.add_channel(load_settings(services.db_path), channel_id)
    return _save(services, settings)


@router.patch("/channels/{channel_id}")
async def update_channel(
    channel_id: str,
    request: ChannelUpdateRequest,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        settings = store.update_channel(load_settings(services.db_path), channel_id, **_provided(request))
    except store.MappingStoreError as e:
        raise _store_error(e)
    return _save(services, settings)


@router.delete("/channels/{channel_id}")
async def remove_channel(channel_id: str, services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    try:
        settings = store.remove_channel(load_settings(services.db_path), channel_id)
    except store.MappingStoreError as e:
        raise _store_error(e)
    return _save(services, settings)


@router.get("/channels/{channel_id}/used", response_model=UsedValuesResponse)
async def used_values(
    channel_id: str,
    exclude: Optional[str] = Query(None, description="Mapping being edited"),
    services: AppServices = Depends(get_services),
) -> UsedValuesResponse:
    validator = MappingValidator(load_settings(services.db_path))
    return UsedValuesResponse(
        channel_id=channel_id,
        payment_forms=sorted(validator.used_payment_forms(channel_id, exclude)),
        cash_accounts=sorted(validator.used_cash_accounts(channel_id, exclude)),
        sales_drive_payment_methods=sorted(validator.used_sales_drive_payment_methods(channel_id, exclude)),
        duplicate_payment_methods=validator.duplicate_payment_methods(channel_id),
    )


# =============================================================================
# Payment mappings
# =============================================================================

@router.post("/channels/{channel_id}/mappings", status_code=201)
async def add_payment_mapping(
    channel_id: str,
    request: PaymentMappingRequest,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        settings = store.add_payment_mapping(
            load_settings(services.db_path),
            channel_id,
            sales_drive_payment_method=request.sales_drive_payment_method,
            payment_form=request.payment_form,
            cash_account=request.cash_account,
            cash_form_ids=await _cash_forms(services),
        )
    except store.MappingStoreError as e:
        raise _store_error(e)
    return _save(services, settings)


@router.patch("/channels/{channel_id}/mappings/{mapping_id}")
async def update_payment_mapping(
    channel_id: str,
    mapping_id: str,
    request: PaymentMappingRequest,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        settings = store.update_payment_mapping(
            load_settings(services.db_path),
            channel_id,
            mapping_id,
            cash_form_ids=await _cash_forms(services),
            **_provided(request),
        )
    except store.MappingStoreError as e:
        raise _store_error(e)
    return _save(services, settings)


@router.delete("/channels/{channel_id}/mappings/{mapping_id}")
async def remove_payment_mapping(
    channel_id: str,
    mapping_id: str,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    """Removing the last mapping of a channel removes the channel."""
    try:
        settings = store.remove_payment_mapping(load_settings(services.db_path), channel_id, mapping_id)
    except store.MappingStoreError as e:
        raise _store_error(e)
    return _save(services, settings)


# =============================================================================
# Delivery mappings
# =============================================================================

@router.post("/delivery-mappings", status_code=201)
async def add_delivery_mapping(
    request: DeliveryMappingRequest,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    settings = store.add_delivery_mapping(
        load_settings(services.db_path),
        request.sales_drive_shipping_methods or [],
        request.dilovod_delivery_method_id,
    )
    return _save(services, settings)


@router.put("/delivery-mappings/{index}")
async def update_delivery_mapping(
    index: int,
    request: DeliveryMappingRequest,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    provided = _provided(request)
    update = {}
    if "sales_drive_shipping_methods" in provided:
        update["shipping_methods"] = provided["sales_drive_shipping_methods"] or []
    if "dilovod_delivery_method_id" in provided:
        update["dilovod_delivery_method_id"] = provided["dilovod_delivery_method_id"]
    try:
        settings = store.update_delivery_mapping(load_settings(services.db_path), index, **update)
    except store.MappingStoreError as e:
        raise _store_error(e)
    return _save(services, settings)


@router.delete("/delivery-mappings/{index}")
async def remove_delivery_mapping(index: int, services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    try:
        settings = store.remove_delivery_mapping(load_settings(services.db_path), index)
    except store.MappingStoreError as e:
        raise _store_error(e)
    return _save(services, settings)


# =============================================================================
# Stale references
# =============================================================================

@router.get("/stale", response_model=StaleReportResponse)
async def stale_report(
    refresh: bool = False,
    services: AppServices = Depends(get_services),
    runtime: ExportRuntime = Depends(get_runtime),
) -> StaleReportResponse:
    """Stored ERP ids missing from the current directories (never cleared)."""
    try:
        directories = await runtime.directory_cache.get(force_refresh=refresh)
    except ERPConnectorError as e:
        raise HTTPException(status_code=502, detail=f"Could not read Dilovod directories: {e.raw_message}")

    validator = MappingValidator(load_settings(services.db_path))
    return StaleReportResponse(
        stale=[
            {**warning.model_dump(mode="json"), "message": warning.message}
            for warning in validator.stale_report(directories)
        ],
        duplicate_shipping_methods=validator.duplicate_shipping_methods(),
    )
