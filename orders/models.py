"""Order Data Models.

- OrderItem: one line of a storefront order
- OrderExportState: ERP bookkeeping persisted alongside the order
- StorefrontOrder: a storefront order as stored locally
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OrderItem(BaseModel):
    """A storefront order line."""
    sku: Optional[str] = None
    product_name: Optional[str] = None
    quantity: float = Field(default=1, ge=0)
    price: float = Field(default=0)

    @property
    def amount(self) -> float:
        return round(self.quantity * self.price, 2)


class OrderExportState(BaseModel):
    """ERP document evidence for one order.

    The three dates are independent: a shipment may exist without a
    cash-in and none is ever inferred from another.
    """
    dilovod_doc_id: Optional[str] = Field(default=None, description="Sale-order document id")
    dilovod_export_date: Optional[datetime] = None
    dilovod_sale_export_date: Optional[datetime] = None
    dilovod_cash_in_date: Optional[datetime] = None
    dilovod_cash_in_checked_at: Optional[datetime] = Field(default=None, description="Last cash-in lookup with no result")

    @property
    def is_exported(self) -> bool:
        return bool(self.dilovod_doc_id)

    @property
    def is_shipped(self) -> bool:
        return self.dilovod_sale_export_date is not None


class StorefrontOrder(BaseModel):
    """A storefront (SalesDrive) order with its local export state.

    Attributes:
        id: Local record id
        external_id: Storefront order id
        order_number: Storefront order number, before prefix/suffix
        channel_id: Storefront sales channel ("sajt")
        status_id: Storefront numeric status (1 new, 2 confirmed, 3 ready to ship, ...)
        payment_method: Storefront numeric payment-method id
        shipping_method: Storefront shipping-method name
    """
    id: Optional[int] = None
    external_id: Optional[str] = None
    order_number: str
    channel_id: str
    payment_method: Optional[int] = None
    shipping_method: Optional[str] = None
    status: Optional[str] = None
    status_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    delivery_address: Optional[str] = None
    order_date: Optional[datetime] = None
    items: List[OrderItem] = Field(default_factory=list)
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    export_state: OrderExportState = Field(default_factory=OrderExportState)

    @property
    def comment(self) -> str:
        return str(self.raw_data.get("comment") or "")

    def resolve_delivery_address(self) -> str:
        """Best available delivery address.

        Order of preference: raw shipping_address, first ord_delivery_data
        entry (city and address), then the stored delivery_address.
        """
        shipping_address = self.raw_data.get("shipping_address")
        if shipping_address:
            return str(shipping_address)

        delivery_data = self.raw_data.get("ord_delivery_data")
        if isinstance(delivery_data, list):
            delivery_data = delivery_data[0] if delivery_data else None
        if isinstance(delivery_data, dict):
            parts = [delivery_data.get("cityName") or "", delivery_data.get("address") or ""]
            joined = ", ".join(part for part in parts if part)
            if joined:
                return joined

        return self.delivery_address or ""
