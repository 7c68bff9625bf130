"""Channel Mapping Data Models.

This module defines the Pydantic models for the Mapping Store:
- PaymentMapping: storefront payment method -> ERP payment form / cash account
- ChannelMapping: per-sales-channel configuration (prefix/suffix, trade channel, mappings)
- DeliveryMapping: storefront shipping method names -> ERP delivery method
- MappingSettings: the whole persisted store

And the resolver outputs:
- MappingResolution: the ERP identifiers an order resolves to
- ResolutionFailure: typed failure (no channel / no payment mapping / stale reference)
- StaleReferenceWarning: non-blocking notice that a stored id is missing from a directory

All store models are immutable. They are changed only through the
reducer functions in channel_mapping.store. Field aliases keep the
persisted camelCase shape.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# =============================================================================
# Mapping Store
# =============================================================================

class PaymentMapping(BaseModel):
    """One (channel, storefront payment method) pairing.

    Attributes:
        id: Stable client-side id (mapping_<timestamp>_<random>)
        channel_id: Owning channel; always equals the containing ChannelMapping key
        sales_drive_payment_method: Storefront numeric payment-method id
        payment_form: ERP payment-form id
        cash_account: ERP cash-account id (ignored for cash-type payment forms)
    """
    id: str = Field(..., description="Stable mapping id used for edits")
    channel_id: str = Field(..., alias="channelId")
    sales_drive_payment_method: Optional[int] = Field(default=None, alias="salesDrivePaymentMethod")
    payment_form: Optional[str] = Field(default=None, alias="paymentForm")
    cash_account: Optional[str] = Field(default=None, alias="cashAccount")

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("payment_form", "cash_account", "sales_drive_payment_method", mode="before")
    @classmethod
    def _empty_as_none(cls, value):
        return _blank_to_none(value)


class ChannelMapping(BaseModel):
    """Mapping configuration for one storefront sales channel."""
    channel_id: str = Field(..., alias="channelId")
    prefix_order: str = Field(default="", alias="prefixOrder")
    suffix_order: str = Field(default="", alias="sufixOrder")
    dilovod_trade_channel_id: Optional[str] = Field(
        default=None,
        alias="dilovodTradeChannelId",
        description="ERP trade channel override; None means the ERP decides",
    )
    mappings: Tuple[PaymentMapping, ...] = Field(default_factory=tuple)

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("prefix_order", "suffix_order", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or ""

    @field_validator("dilovod_trade_channel_id", mode="before")
    @classmethod
    def _empty_as_none(cls, value):
        return _blank_to_none(value)

    def find_mapping(self, mapping_id: str) -> Optional[PaymentMapping]:
        for mapping in self.mappings:
            if mapping.id == mapping_id:
                return mapping
        return None


class DeliveryMapping(BaseModel):
    """Many storefront shipping-method names -> one ERP delivery method."""
    sales_drive_shipping_methods: Tuple[str, ...] = Field(
        default_factory=tuple, alias="salesDriveShippingMethods"
    )
    dilovod_delivery_method_id: Optional[str] = Field(default=None, alias="dilovodDeliveryMethodId")

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("dilovod_delivery_method_id", mode="before")
    @classmethod
    def _empty_as_none(cls, value):
        return _blank_to_none(value)


class MappingSettings(BaseModel):
    """The whole Mapping Store as persisted."""
    channel_payment_mapping: Dict[str, ChannelMapping] = Field(
        default_factory=dict, alias="channelPaymentMapping"
    )
    delivery_mappings: Tuple[DeliveryMapping, ...] = Field(
        default_factory=tuple, alias="deliveryMappings"
    )
    default_firm_id: Optional[str] = Field(default=None, alias="defaultFirmId")
    storage_id: Optional[str] = Field(default=None, alias="storageId")

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("default_firm_id", "storage_id", mode="before")
    @classmethod
    def _empty_as_none(cls, value):
        return _blank_to_none(value)

    def get_channel(self, channel_id: str) -> Optional[ChannelMapping]:
        return self.channel_payment_mapping.get(str(channel_id))

    def to_storage(self) -> dict:
        """Serialize to the persisted camelCase shape."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Resolver outputs
# =============================================================================

class StaleReferenceKind(str, Enum):
    """Which directory a stored reference points into."""
    PAYMENT_FORM = "payment_form"
    CASH_ACCOUNT = "cash_account"
    TRADE_CHANNEL = "trade_channel"
    DELIVERY_METHOD = "delivery_method"


class StaleReferenceWarning(BaseModel):
    """A stored ERP id that is missing from the current directory.

    Never blocks orchestration; the id is still sent as-is.
    """
    kind: StaleReferenceKind
    reference_id: str
    channel_id: Optional[str] = None
    mapping_id: Optional[str] = None

    class Config:
        frozen = True

    @property
    def message(self) -> str:
        where = f" (channel {self.channel_id})" if self.channel_id else ""
        return f"{self.kind.value} '{self.reference_id}' no longer exists in the ERP directory{where}"


class StaleReferences(BaseModel):
    """Per-mapping staleness flags."""
    payment_form_stale: bool = False
    cash_account_stale: bool = False
    trade_channel_stale: bool = False
    delivery_method_stale: bool = False

    @property
    def any_stale(self) -> bool:
        return (
            self.payment_form_stale
            or self.cash_account_stale
            or self.trade_channel_stale
            or self.delivery_method_stale
        )


class ResolutionFailureKind(str, Enum):
    """Why an order could not be resolved."""
    NO_CHANNEL_MAPPING = "no_channel_mapping"
    NO_PAYMENT_MAPPING = "no_payment_mapping"
    STALE_REFERENCE = "stale_reference"


class ResolutionFailure(BaseModel):
    """Typed resolver failure."""
    kind: ResolutionFailureKind
    channel_id: str
    message: str
    sales_drive_payment_method: Optional[int] = None
    stale_kind: Optional[StaleReferenceKind] = None

    class Config:
        frozen = True

    @property
    def is_configuration_gap(self) -> bool:
        """True when the channel or payment mapping is simply not configured."""
        return self.kind in (
            ResolutionFailureKind.NO_CHANNEL_MAPPING,
            ResolutionFailureKind.NO_PAYMENT_MAPPING,
        )


class MappingResolution(BaseModel):
    """ERP identifiers an order resolves to.

    A None value means "let the ERP decide" (trade channel, firm) or
    "not applicable" (cash account for cash payments).
    """
    channel_id: str
    composed_order_number: str
    mapping_id: str
    payment_form_id: Optional[str] = None
    cash_account_id: Optional[str] = None
    trade_channel_id: Optional[str] = None
    firm_id: Optional[str] = None
    delivery_method_id: Optional[str] = None
    storage_id: Optional[str] = None
    is_cash_payment: bool = False
    warnings: List[StaleReferenceWarning] = Field(default_factory=list)

    class Config:
        frozen = True

    @property
    def firm_is_auto(self) -> bool:
        return self.firm_id is None
