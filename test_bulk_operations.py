"""
Bulk Operation Tests

- exportAndShip runs orders one after another; one failure never stops the batch
- Per-order reports carry export/shipment success and errors
- reconcile is a single checker call
"""

import asyncio
import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from channel_mapping.db import init_settings_db, save_settings
from channel_mapping.models import ChannelMapping, MappingSettings, PaymentMapping
from connectors.directory_cache import DirectoryCache
from connectors.erp_base import (
    ERPDirectories,
    ERPRejectionError,
    ExportResponse,
    PaymentFormRef,
    ShipmentResponse,
    ValidationResponse,
)
from export_engine import (
    BulkOperationCoordinator,
    BulkOperationKind,
    ExportOrchestrator,
    OrderRunReport,
)
from orders.db import init_orders_db, upsert_order
from orders.models import StorefrontOrder
from reconciliation.engine import OrderReconciliation, ReconciliationSummary


@pytest.fixture
def temp_db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    init_settings_db(db_path)
    init_orders_db(db_path)

    channel = ChannelMapping(
        channel_id="22",
        mappings=(PaymentMapping(id="m1", channel_id="22", sales_drive_payment_method=5, payment_form="pf-card"),),
    )
    save_settings(MappingSettings(channel_payment_mapping={"22": channel}), db_path=db_path)

    yield db_path
    try:
        os.unlink(db_path)
    except PermissionError:
        pass


def _add_order(db_path, number, channel_id="22"):
    return upsert_order(
        StorefrontOrder(external_id=f"sd-{number}", order_number=number, channel_id=channel_id, payment_method=5),
        db_path=db_path,
    )


def _connector():
    connector = MagicMock()
    connector.get_directories = AsyncMock(return_value=ERPDirectories(
        payment_forms=[PaymentFormRef(id="pf-card", name="Картка")],
    ))
    connector.validate_order = AsyncMock(return_value=ValidationResponse(success=True, token="C"))
    connector.export_order = AsyncMock(return_value=ExportResponse(
        success=True, exported=True, document_id="D1", sale_token="T1",
    ))
    connector.create_shipment = AsyncMock(return_value=ShipmentResponse(success=True, created=True))
    return connector


def _coordinator(connector, db_path, checker=None):
    orchestrator = ExportOrchestrator(connector, DirectoryCache(connector), db_path=db_path)
    return BulkOperationCoordinator(orchestrator, checker or MagicMock(), db_path=db_path)


class TestExportAndShip:

    def test_good_order_and_critical_order(self, temp_db):
        """Order 1 exports and ships with its sale token; order 2 fails validation."""
        connector = _connector()
        first = _add_order(temp_db, "100")
        second = _add_order(temp_db, "200", channel_id="99")

        report = asyncio.run(_coordinator(connector, temp_db).run(
            [first, second], BulkOperationKind.EXPORT_AND_SHIP,
        ))

        order1, order2 = report.items
        assert order1.export_success is True
        assert order1.shipment_success is True
        assert order1.errors == []
        assert order2.export_success is False
        assert order2.shipment_success is False
        assert order2.errors[0]["type"] == "critical_validation_error"

        assert connector.create_shipment.call_count == 1
        assert connector.create_shipment.call_args.kwargs["sale_token"] == "T1"
        assert connector.create_shipment.call_args.args[1] == "D1"

    def test_failed_export_does_not_stop_later_orders(self, temp_db):
        connector = _connector()

        async def export(request, contact_token=None):
            if request.composed_order_number == "2":
                raise ERPRejectionError("rejected", raw_message="Невідомий товар")
            return ExportResponse(success=True, exported=True, document_id=f"D{request.composed_order_number}")

        connector.export_order.side_effect = export
        ids = [_add_order(temp_db, number) for number in ("1", "2", "3")]

        report = asyncio.run(_coordinator(connector, temp_db).export_and_ship(ids))

        assert [item.export_success for item in report.items] == [True, False, True]
        assert report.items[1].errors[0]["type"] == "export_error"
        assert report.items[2].state == "SHIPPED"
        assert connector.export_order.call_count == 3
        assert report.exported == 2
        assert report.failed == 1

    def test_ship_false_reports_no_shipments(self, temp_db):
        connector = _connector()
        order_id = _add_order(temp_db, "1")

        report = asyncio.run(_coordinator(connector, temp_db).export_and_ship([order_id], ship=False))

        assert report.shipped == 0
        assert report.items[0].state == "SHIPMENT_SKIPPED"
        connector.create_shipment.assert_not_called()

    def test_missing_order_is_reported(self, temp_db):
        connector = _connector()
        order_id = _add_order(temp_db, "1")

        report = asyncio.run(_coordinator(connector, temp_db).export_and_ship([999, order_id]))

        assert report.items[0].errors[0]["type"] == "not_found"
        assert report.items[1].export_success is True

    def test_unexpected_error_is_isolated(self, temp_db):
        first = _add_order(temp_db, "1")
        second = _add_order(temp_db, "2")
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(side_effect=[
            RuntimeError("boom"),
            OrderRunReport(order_id=second, order_number="2"),
        ])
        coordinator = BulkOperationCoordinator(orchestrator, MagicMock(), db_path=temp_db)

        report = asyncio.run(coordinator.export_and_ship([first, second]))

        assert report.items[0].errors[0]["type"] == "unexpected_error"
        assert report.items[1].errors == []
        assert orchestrator.run.call_count == 2

    def test_report_dict(self, temp_db):
        connector = _connector()
        order_id = _add_order(temp_db, "1")

        report = asyncio.run(_coordinator(connector, temp_db).run(
            [order_id], BulkOperationKind.EXPORT_AND_SHIP, batch_id="bulk-test",
        ))
        data = report.to_dict()

        assert data["batch_id"] == "bulk-test"
        assert data["kind"] == "exportAndShip"
        assert data["exported"] == 1
        assert data["items"][0]["order_number"] == "1"


class TestReconcile:

    def test_reconcile_is_one_batched_call(self, temp_db):
        checker = MagicMock()
        summary = ReconciliationSummary([OrderReconciliation(order_id=1, order_number="RZ-1", found=True)])
        checker.check_order_ids = AsyncMock(return_value=summary)
        coordinator = _coordinator(_connector(), temp_db, checker=checker)

        report = asyncio.run(coordinator.run([1, 2, 3], "reconcile"))

        checker.check_order_ids.assert_awaited_once_with([1, 2, 3])
        assert report.kind == BulkOperationKind.RECONCILE
        assert report.reconciliation is summary
        assert report.to_dict()["reconciliation"]["checked"] == 1
