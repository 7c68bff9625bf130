"""Bulk Operation Coordinator.

Runs an operation over a list of orders and reports per item.

- exportAndShip: each order runs validate -> export -> shipment through the
  Export Orchestrator, strictly one after another. A failed order is
  recorded and the batch moves on.
- reconcile: one batched Reconciliation Checker call for all orders.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.config import DEFAULT_DB_PATH
from core.observability import get_logger, with_correlation
from export_engine.errors import ExportEngineError
from export_engine.orchestrator import ExportOrchestrator
from orders.db import get_orders
from reconciliation.engine import ReconciliationChecker, ReconciliationSummary


logger = get_logger(__name__)


class BulkOperationKind(str, Enum):
    EXPORT_AND_SHIP = "exportAndShip"
    RECONCILE = "reconcile"


@dataclass
class BulkItemReport:
    """Outcome for one order of a bulk run."""
    order_id: int
    order_number: str
    export_success: bool = False
    shipment_success: bool = False
    state: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "export_success": self.export_success,
            "shipment_success": self.shipment_success,
            "state": self.state,
            "errors": self.errors,
        }


@dataclass
class BulkReport:
    batch_id: str
    kind: BulkOperationKind
    items: List[BulkItemReport] = field(default_factory=list)
    reconciliation: Optional[ReconciliationSummary] = None

    @property
    def exported(self) -> int:
        return sum(1 for item in self.items if item.export_success)

    @property
    def shipped(self) -> int:
        return sum(1 for item in self.items if item.shipment_success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.errors)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "batch_id": self.batch_id,
            "kind": self.kind.value,
            "items": [item.to_dict() for item in self.items],
            "exported": self.exported,
            "shipped": self.shipped,
            "failed": self.failed,
        }
        if self.reconciliation is not None:
            data["reconciliation"] = self.reconciliation.to_dict()
        return data


class BulkOperationCoordinator:
    """Drives the orchestrator or the checker over many orders.

    Usage:
        coordinator = BulkOperationCoordinator(orchestrator, checker, db_path=db_path)
        report = await coordinator.run([1, 2, 3], BulkOperationKind.EXPORT_AND_SHIP)
    """

    def __init__(
        self,
        orchestrator: ExportOrchestrator,
        checker: ReconciliationChecker,
        db_path: Path = DEFAULT_DB_PATH,
    ):
        self.orchestrator = orchestrator
        self.checker = checker
        self.db_path = db_path

    async def run(
        self,
        order_ids: List[int],
        kind: BulkOperationKind,
        ship: bool = True,
        batch_id: Optional[str] = None,
    ) -> BulkReport:
        batch_id = batch_id or f"bulk-{uuid.uuid4().hex[:12]}"
        with with_correlation(batch_id=batch_id):
            if BulkOperationKind(kind) == BulkOperationKind.RECONCILE:
                return await self.reconcile(order_ids, batch_id)
            return await self.export_and_ship(order_ids, ship=ship, batch_id=batch_id)

    async def export_and_ship(
        self,
        order_ids: List[int],
        ship: bool = True,
        batch_id: Optional[str] = None,
    ) -> BulkReport:
        report = BulkReport(batch_id=batch_id or f"bulk-{uuid.uuid4().hex[:12]}", kind=BulkOperationKind.EXPORT_AND_SHIP)
        orders = {order.id: order for order in get_orders(order_ids, db_path=self.db_path)}

        logger.info(f"Bulk export started for {len(order_ids)} orders")

        for order_id in order_ids:
            order = orders.get(order_id)
            if order is None:
                report.items.append(BulkItemReport(
                    order_id=order_id,
                    order_number=str(order_id),
                    errors=[{"type": "not_found", "message": f"Order {order_id} not found"}],
                ))
                continue

            item = BulkItemReport(order_id=order_id, order_number=order.order_number)
            report.items.append(item)
            try:
                run = await self.orchestrator.run(order, ship=ship)
            except ExportEngineError as e:
                item.errors.append(e.to_dict())
                continue
            except Exception as e:
                logger.exception(f"Order {order.order_number} failed unexpectedly: {e}")
                item.errors.append({"type": "unexpected_error", "message": str(e), "recoverable": True})
                continue

            item.order_number = run.order_number
            item.export_success = run.export_success
            item.shipment_success = run.shipment_success
            item.state = run.state.value
            item.errors.extend(run.errors)

        logger.info(
            "Bulk export finished",
            extra_fields={"exported": report.exported, "shipped": report.shipped, "failed": report.failed},
        )
        return report

    async def reconcile(self, order_ids: List[int], batch_id: Optional[str] = None) -> BulkReport:
        summary = await self.checker.check_order_ids(order_ids)
        return BulkReport(
            batch_id=batch_id or f"bulk-{uuid.uuid4().hex[:12]}",
            kind=BulkOperationKind.RECONCILE,
            reconciliation=summary,
        )
