"""SalesDrive data models.

Storefront-side references used by the settings UI when building mappings.
They are separate from the ERP refs in connectors/erp_base.py.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Storefront References
# =============================================================================

class PaymentMethodRef(BaseModel):
    """Storefront payment method; id is what orders carry in payment_method."""
    id: int
    name: str

    class Config:
        frozen = True


class ShippingMethodRef(BaseModel):
    """Storefront shipping method; delivery mappings key on the name."""
    name: str
    id: Optional[int] = None

    class Config:
        frozen = True


class StatusRef(BaseModel):
    id: int
    name: str

    class Config:
        frozen = True


class SalesChannelRef(BaseModel):
    """Storefront sales channel ("sajt" on an order)."""
    id: str
    name: str

    class Config:
        frozen = True


class OrderPage(BaseModel):
    """One page of /api/order/list/."""
    orders: List[Dict] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    limit: int = 0

    @property
    def total_pages(self) -> int:
        if not self.limit:
            return 1
        return max(1, -(-self.total_count // self.limit))


# =============================================================================
# Storefront catalogs
# =============================================================================

PAYMENT_METHODS: Dict[int, str] = {
    12: "Післяплата",
    13: "LiqPay",
    14: "Plata by Mono",
    15: "Готівка",
    21: "Card",
    23: "Apple Pay",
    25: "Наложений платіж",
    27: "Пром-оплата",
    29: "Google Pay",
    30: "Credit",
}

SHIPPING_METHODS: Dict[int, str] = {
    9: "Нова Пошта",
    10: "Самовивоз",
    16: "Укрпошта",
    17: "Meest",
    20: "Нова Пошта (адресна)",
}

ORDER_STATUSES: Dict[int, str] = {
    1: "Новий",
    2: "Підтверджено",
    3: "На відправку",
    4: "Відправлено",
    5: "Продаж",
    6: "Відмова",
    7: "Повернення",
    8: "Видалений",
}

SALES_CHANNELS: Dict[str, str] = {
    "22": "Rozetka (Сергій)",
    "24": "prom (old)",
    "28": "prom",
    "31": "інше (менеджер)",
    "38": "дрібні магазини",
    "39": "Rozetka (Марія)",
}
