"""Storefront order sync.

Pulls orders from SalesDrive and upserts them into the local orders table.
Export state is never touched by a sync; a re-synced order keeps whatever
the Export Orchestrator and the Reconciliation Checker recorded.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from connectors.salesdrive.salesdrive_client import SalesDriveApiClient
from connectors.salesdrive.salesdrive_models import ORDER_STATUSES, SHIPPING_METHODS
from core.config import DEFAULT_DB_PATH
from core.observability import get_logger
from orders.db import upsert_order
from orders.models import OrderItem, StorefrontOrder


logger = get_logger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync run."""
    fetched: int = 0
    saved: int = 0
    order_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _parse_order_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    text = str(value)
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _first(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return str(value[0]) if value else None
    return str(value) if value else None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def order_from_salesdrive(raw: Dict[str, Any]) -> StorefrontOrder:
    """Build a StorefrontOrder from a raw /api/order/list/ entry.

    The storefront order number is externalId when present, else the
    SalesDrive id. The sales channel comes from "sajt".
    """
    order_id = raw.get("id")
    external_id = str(order_id) if order_id is not None else None

    contact = raw.get("primaryContact") or {}
    customer_name = " ".join(
        part for part in (contact.get("lName"), contact.get("fName"), contact.get("mName")) if part
    ) or None

    shipping_method = raw.get("shipping_method")
    shipping_id = _as_int(shipping_method)
    if shipping_id is not None:
        shipping_name = SHIPPING_METHODS.get(shipping_id, str(shipping_method))
    else:
        shipping_name = str(shipping_method) if shipping_method else None

    status_id = _as_int(raw.get("statusId"))

    items = [
        OrderItem(
            sku=product.get("sku") or product.get("parameter") or None,
            product_name=product.get("text") or None,
            quantity=float(product.get("amount") or 0),
            price=float(product.get("price") or 0),
        )
        for product in raw.get("products") or []
        if isinstance(product, dict)
    ]

    return StorefrontOrder(
        external_id=external_id,
        order_number=str(raw.get("externalId") or order_id or ""),
        channel_id=str(raw.get("sajt") or ""),
        payment_method=_as_int(raw.get("payment_method")),
        shipping_method=shipping_name,
        status=ORDER_STATUSES.get(status_id) if status_id is not None else None,
        status_id=status_id,
        customer_name=customer_name,
        customer_phone=_first(contact.get("phone")),
        customer_email=_first(contact.get("email")),
        delivery_address=raw.get("shipping_address") or None,
        order_date=_parse_order_time(raw.get("orderTime")),
        items=items,
        raw_data=raw,
    )


async def sync_orders_from_storefront(
    client: SalesDriveApiClient,
    date_from: date,
    date_to: date,
    db_path: Path = DEFAULT_DB_PATH,
) -> SyncResult:
    """Fetch orders for the date range and upsert them locally.

    A malformed order is recorded in errors and skipped; the rest still sync.
    """
    raw_orders = await client.list_all_orders(date_from, date_to)
    result = SyncResult(fetched=len(raw_orders))

    for raw in raw_orders:
        try:
            order = order_from_salesdrive(raw)
        except ValueError as e:
            result.errors.append(f"Order {raw.get('id')}: {e}")
            continue
        if not order.order_number or not order.channel_id:
            result.errors.append(f"Order {raw.get('id')}: missing order number or sales channel")
            continue

        result.order_ids.append(upsert_order(order, db_path=db_path))
        result.saved += 1

    logger.info(
        "Storefront sync complete",
        extra_fields={"fetched": result.fetched, "saved": result.saved, "errors": len(result.errors)},
    )
    return result
