"""Dilovod document payloads.

Builds saveObject payloads for the sale order (documents.saleOrder) and the
shipment based on it (documents.sale). Pure functions; no I/O.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from connectors.erp_base import DocumentRequest
from orders.models import OrderItem


# =============================================================================
# Dilovod constants
# =============================================================================

CURRENCY_UAH = "1101200000001001"
UNIT_PIECE = "1103600000000001"
PERSON_TYPE_INDIVIDUAL = "1004000000000035"
STATE_COMPLETED = "1111500000000006"
BUSINESS_PROCESS = "1115000000000001"
DOC_MODE_SHIPMENT_TO_CUSTOMER = "1004000000000350"

SALE_ORDER = "documents.saleOrder"
SALE = "documents.sale"
CASH_IN = "documents.cashIn"

# Header fields documents.sale does not accept
FIELDS_REMOVED_FOR_SALE = (
    "tradeChanel",
    "paymentForm",
    "cashAccount",
    "remarkFromPerson",
    "deliveryRemark_forDel",
    "number",
)


def format_document_date(value: Optional[datetime]) -> str:
    """Dilovod document date: 'YYYY-MM-DD HH:MM:SS'."""
    return (value or datetime.utcnow()).strftime("%Y-%m-%d %H:%M:%S")


def build_goods_rows(
    items: List[OrderItem],
    goods_by_sku: Mapping[str, str],
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Build tpGoods rows for the items that have a Dilovod good.

    Returns:
        (rows, warnings) - items without SKU or without a matching good are
        skipped with a warning
    """
    rows: List[Dict[str, Any]] = []
    warnings: List[str] = []

    for item in items:
        label = item.product_name or item.sku or "unnamed item"
        if not item.sku:
            warnings.append(f"Item '{label}' has no SKU")
            continue
        good_id = goods_by_sku.get(item.sku)
        if not good_id:
            warnings.append(f"Item '{label}' (SKU {item.sku}) has no matching good in Dilovod")
            continue

        qty = item.quantity or 1
        amount = round(qty * item.price, 2)
        rows.append({
            "rowNum": len(rows) + 1,
            "good": good_id,
            "unit": UNIT_PIECE,
            "qty": qty,
            "baseQty": qty,
            "priceAmount": amount,
            "price": item.price,
            "amountCur": amount,
        })

    return rows, warnings


def _put_optional(header: Dict[str, Any], key: str, value: Optional[str]) -> None:
    if value:
        header[key] = value


def build_sale_order_header(request: DocumentRequest, person_id: str) -> Dict[str, Any]:
    """Header for documents.saleOrder.

    Firm, trade channel, cash account and delivery method are left out when
    unresolved so the ERP applies its own rules.
    """
    order = request.order
    header: Dict[str, Any] = {
        "id": SALE_ORDER,
        "storage": request.storage_id,
        "date": format_document_date(order.order_date),
        "person": person_id,
        "currency": CURRENCY_UAH,
        "posted": 1,
        "state": {"id": STATE_COMPLETED},
        "taxAccount": 1,
        "number": request.composed_order_number,
        "remarkFromPerson": order.comment,
        "business": BUSINESS_PROCESS,
        "deliveryRemark_forDel": order.resolve_delivery_address(),
    }
    _put_optional(header, "firm", request.firm_id)
    _put_optional(header, "tradeChanel", request.trade_channel_id)
    _put_optional(header, "paymentForm", request.payment_form_id)
    _put_optional(header, "cashAccount", request.cash_account_id)
    _put_optional(header, "deliveryMethod_forDel", request.delivery_method_id)
    return header


def build_sale_order_payload(
    request: DocumentRequest,
    person_id: str,
    goods_rows: List[Dict[str, Any]],
) -> Dict[str, Any]:
    return {
        "saveType": 0,
        "header": build_sale_order_header(request, person_id),
        "tableParts": {"tpGoods": goods_rows},
    }


def build_sale_payload(
    request: DocumentRequest,
    person_id: str,
    base_doc_id: str,
    goods_rows: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Shipment document based on an existing sale order."""
    header = {
        key: value
        for key, value in build_sale_order_header(request, person_id).items()
        if key not in FIELDS_REMOVED_FOR_SALE
    }
    header.update({
        "id": SALE,
        "docMode": DOC_MODE_SHIPMENT_TO_CUSTOMER,
        "baseDoc": base_doc_id,
        "contract": base_doc_id,
    })
    return {
        "saveType": 1,
        "header": header,
        "tableParts": {"tpGoods": goods_rows},
    }
