"""Reconciliation Checker.

Looks orders up in the ERP by composed order number and backfills the
local export state from what already exists there. Never creates ERP
documents and never clears local evidence.

Lookups are batched:
1. documents.saleOrder by number      -> dilovod_doc_id, dilovod_export_date
2. documents.sale by baseDoc          -> dilovod_sale_export_date
3. documents.cashIn by baseDoc        -> dilovod_cash_in_date

Exposes:
- ReconciliationChecker.check_orders(orders) -> ReconciliationSummary
- ReconciliationChecker.check_incomplete(limit): the same for local orders
  whose export state is still incomplete
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from channel_mapping.db import load_settings
from channel_mapping.models import MappingSettings
from channel_mapping.numbering import compose_order_number
from connectors.erp_base import ERPConnector, ERPConnectorError, ERPDocumentKind, ERPDocumentRef
from core.config import DEFAULT_DB_PATH
from core.observability import get_logger, with_correlation
from orders.db import apply_export_state, get_orders, list_incomplete_orders
from orders.models import StorefrontOrder


logger = get_logger(__name__)


# =============================================================================
# Results
# =============================================================================

class OrderReconciliation:
    """Reconciliation result for one order."""

    def __init__(
        self,
        order_id: Optional[int],
        order_number: str,
        found: bool = False,
        dilovod_doc_id: Optional[str] = None,
        updated_fields: Optional[Dict[str, object]] = None,
        errors: Optional[List[str]] = None,
    ):
        self.order_id = order_id
        self.order_number = order_number
        self.found = found
        self.dilovod_doc_id = dilovod_doc_id
        self.updated_fields = updated_fields or {}
        self.errors = errors or []

    @property
    def updated_count(self) -> int:
        return len(self.updated_fields)

    def to_dict(self) -> Dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "found": self.found,
            "dilovod_doc_id": self.dilovod_doc_id,
            "updated_count": self.updated_count,
            "updated_fields": sorted(self.updated_fields),
            "errors": self.errors,
        }


class ReconciliationSummary:
    """Results for a batch of orders."""

    def __init__(self, results: Optional[List[OrderReconciliation]] = None):
        self.results = results or []

    @property
    def checked(self) -> int:
        return len(self.results)

    @property
    def found(self) -> int:
        return sum(1 for r in self.results if r.found)

    @property
    def updated_orders(self) -> int:
        return sum(1 for r in self.results if r.updated_count)

    @property
    def updated_fields(self) -> int:
        return sum(r.updated_count for r in self.results)

    @property
    def errors(self) -> List[str]:
        return [f"{r.order_number}: {e}" for r in self.results for e in r.errors]

    def get(self, order_number: str) -> Optional[OrderReconciliation]:
        for result in self.results:
            if result.order_number == order_number:
                return result
        return None

    def to_dict(self) -> Dict:
        return {
            "checked": self.checked,
            "found": self.found,
            "updated_orders": self.updated_orders,
            "updated_fields": self.updated_fields,
            "data": [r.to_dict() for r in self.results],
        }


# =============================================================================
# Checker
# =============================================================================

def _first_by_base_doc(documents: List[ERPDocumentRef]) -> Dict[str, ERPDocumentRef]:
    """First document per baseDoc wins."""
    by_base: Dict[str, ERPDocumentRef] = {}
    for document in documents:
        if document.base_doc and document.base_doc not in by_base:
            by_base[document.base_doc] = document
    return by_base


class ReconciliationChecker:
    """Backfills OrderExportState from the ERP's documents.

    Usage:
        checker = ReconciliationChecker(connector, db_path=db_path)
        summary = await checker.check_order_ids([1, 2, 3])
        print(summary.updated_fields)
    """

    def __init__(
        self,
        connector: ERPConnector,
        db_path: Path = DEFAULT_DB_PATH,
        settings_loader: Optional[Callable[[], MappingSettings]] = None,
    ):
        self.connector = connector
        self.db_path = db_path
        self.settings_loader = settings_loader or (lambda: load_settings(db_path))

    async def check_order_ids(self, order_ids: List[int]) -> ReconciliationSummary:
        return await self.check_orders(get_orders(order_ids, db_path=self.db_path))

    async def check_incomplete(self, limit: int = 100) -> ReconciliationSummary:
        """Reconcile up to limit local orders with missing ERP evidence."""
        orders = list_incomplete_orders(limit=limit, db_path=self.db_path)
        logger.info(f"Found {len(orders)} orders with incomplete export state")
        return await self.check_orders(orders)

    async def check_order(self, order: StorefrontOrder) -> OrderReconciliation:
        summary = await self.check_orders([order])
        return summary.results[0]

    async def check_orders(self, orders: List[StorefrontOrder]) -> ReconciliationSummary:
        """Reconcile a batch of orders with one lookup per document kind."""
        if not orders:
            return ReconciliationSummary()

        settings = self.settings_loader()
        results = [
            OrderReconciliation(
                order_id=order.id,
                order_number=compose_order_number(order.order_number, settings.get_channel(order.channel_id)),
            )
            for order in orders
        ]

        with with_correlation(stage="reconcile"):
            sale_orders = await self._lookup_sale_orders(results)
            if sale_orders is None:
                return ReconciliationSummary(results)

            base_doc_ids = [doc.id for doc in sale_orders.values()]
            shipments = await self._lookup_by_base_doc(ERPDocumentKind.SALE, base_doc_ids, results) or {}
            cash_ins = await self._lookup_by_base_doc(ERPDocumentKind.CASH_IN, base_doc_ids, results)
            cash_in_checked = cash_ins is not None
            cash_ins = cash_ins or {}

            for order, result in zip(orders, results):
                sale_order = sale_orders.get(result.order_number)
                if sale_order is None:
                    continue
                result.found = True
                result.dilovod_doc_id = sale_order.id
                changes = self._changes(order, sale_order, shipments.get(sale_order.id), cash_ins.get(sale_order.id))
                writes = dict(changes)
                cash_in_missing = "dilovod_cash_in_date" not in changes and order.export_state.dilovod_cash_in_date is None
                if cash_in_checked and cash_in_missing:
                    writes["dilovod_cash_in_checked_at"] = datetime.utcnow()
                if order.id is not None:
                    apply_export_state(order.id, writes, db_path=self.db_path)
                result.updated_fields = changes

        summary = ReconciliationSummary(results)
        logger.info(
            "Reconciliation complete",
            extra_fields={
                "checked": summary.checked,
                "found": summary.found,
                "updated_fields": summary.updated_fields,
            },
        )
        return summary

    async def _lookup_sale_orders(
        self,
        results: List[OrderReconciliation],
    ) -> Optional[Dict[str, ERPDocumentRef]]:
        numbers = [r.order_number for r in results]
        try:
            documents = await self.connector.find_sale_orders(numbers)
        except ERPConnectorError as e:
            logger.error(f"Sale order lookup failed: {e}", extra_fields={"orders": len(numbers)})
            for result in results:
                result.errors.append(f"Sale order lookup failed: {e.raw_message}")
            return None

        by_number: Dict[str, ERPDocumentRef] = {}
        for document in documents:
            if document.number and document.number not in by_number:
                by_number[document.number] = document
        return by_number

    async def _lookup_by_base_doc(
        self,
        kind: ERPDocumentKind,
        base_doc_ids: List[str],
        results: List[OrderReconciliation],
    ) -> Optional[Dict[str, ERPDocumentRef]]:
        """First document per base doc, or None when the lookup failed."""
        if not base_doc_ids:
            return {}
        try:
            documents = await self.connector.find_documents_by_base_doc(kind, base_doc_ids)
        except ERPConnectorError as e:
            logger.error(f"{kind.value} lookup failed: {e}", extra_fields={"base_docs": len(base_doc_ids)})
            for result in results:
                result.errors.append(f"{kind.value} lookup failed: {e.raw_message}")
            return None
        return _first_by_base_doc(documents)

    @staticmethod
    def _changes(
        order: StorefrontOrder,
        sale_order: ERPDocumentRef,
        shipment: Optional[ERPDocumentRef],
        cash_in: Optional[ERPDocumentRef],
    ) -> Dict[str, object]:
        """Export state fields that differ from what the ERP shows."""
        state = order.export_state
        now = datetime.utcnow()
        changes: Dict[str, object] = {}

        if state.dilovod_doc_id != sale_order.id:
            changes["dilovod_doc_id"] = sale_order.id
        if state.dilovod_export_date is None:
            changes["dilovod_export_date"] = sale_order.date or now
        if shipment is not None and state.dilovod_sale_export_date is None:
            changes["dilovod_sale_export_date"] = shipment.date or now
        if cash_in is not None and state.dilovod_cash_in_date is None:
            changes["dilovod_cash_in_date"] = cash_in.date or now

        return changes
