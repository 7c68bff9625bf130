"""
API Route Tests

Settings (Mapping Store) CRUD, single-order stages with token hand-off,
structured engine errors, bulk/check endpoints and health probes.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from api.dependencies import AppServices
from api.server import create_app
from channel_mapping.db import init_settings_db, load_settings, save_settings
from channel_mapping.models import ChannelMapping, MappingSettings, PaymentMapping
from connectors.erp_base import (
    ERPConnectionError,
    ERPConnectionStatus,
    ERPDirectories,
    ExportResponse,
    PaymentFormRef,
    ShipmentResponse,
    ValidationResponse,
)
from export_engine.runtime import assemble_runtime
from orders.db import get_order, init_orders_db, upsert_order
from orders.models import StorefrontOrder


@pytest.fixture
def temp_db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    init_settings_db(db_path)
    init_orders_db(db_path)
    yield db_path
    try:
        os.unlink(db_path)
    except PermissionError:
        pass


@pytest.fixture
def connector():
    connector = MagicMock()
    connector.connection_status = ERPConnectionStatus.CONNECTED
    connector.get_directories = AsyncMock(return_value=ERPDirectories(
        payment_forms=[
            PaymentFormRef(id="pf-cash", name="Оплата готівкою"),
            PaymentFormRef(id="pf-card", name="Безготівковий розрахунок"),
        ],
    ))
    connector.validate_order = AsyncMock(return_value=ValidationResponse(success=True, token="contact-tok"))
    connector.export_order = AsyncMock(return_value=ExportResponse(
        success=True, exported=True, document_id="D1", sale_token="sale-tok",
    ))
    connector.create_shipment = AsyncMock(return_value=ShipmentResponse(success=True, created=True, document_id="S1"))
    return connector


@pytest.fixture
def client(temp_db, connector):
    services = AppServices(db_path=temp_db, runtime=assemble_runtime(connector, temp_db))
    return TestClient(create_app(services=services))


@pytest.fixture
def settings_only_client(temp_db):
    return TestClient(create_app(services=AppServices(db_path=temp_db)))


def _seed_channel(db_path, prefix="RZ-"):
    channel = ChannelMapping(
        channel_id="22",
        prefix_order=prefix,
        mappings=(PaymentMapping(id="m1", channel_id="22", sales_drive_payment_method=5, payment_form="pf-card"),),
    )
    save_settings(MappingSettings(channel_payment_mapping={"22": channel}), db_path=db_path)


def _add_order(db_path, number="9386", channel_id="22", status_id=None):
    return upsert_order(
        StorefrontOrder(
            external_id=f"sd-{number}",
            order_number=number,
            channel_id=channel_id,
            payment_method=5,
            status_id=status_id,
        ),
        db_path=db_path,
    )


class TestSettingsRoutes:

    def test_add_channel_creates_empty_mapping(self, settings_only_client):
        response = settings_only_client.post("/settings/channels/22")

        assert response.status_code == 201
        mappings = response.json()["channelPaymentMapping"]["22"]["mappings"]
        assert len(mappings) == 1
        assert mappings[0]["id"].startswith("mapping_")
        assert mappings[0]["salesDrivePaymentMethod"] is None

    def test_channel_patch_is_partial(self, settings_only_client, temp_db):
        _seed_channel(temp_db, prefix="RZ-")

        response = settings_only_client.patch("/settings/channels/22", json={"sufixOrder": "-R"})

        channel = response.json()["channelPaymentMapping"]["22"]
        assert channel["prefixOrder"] == "RZ-"
        assert channel["sufixOrder"] == "-R"
        assert load_settings(temp_db).get_channel("22").suffix_order == "-R"

    def test_unknown_channel_is_404(self, settings_only_client):
        assert settings_only_client.patch("/settings/channels/99", json={"prefixOrder": "X"}).status_code == 404
        assert settings_only_client.delete("/settings/channels/99").status_code == 404

    def test_duplicate_payment_method_is_409(self, settings_only_client, temp_db):
        _seed_channel(temp_db)

        response = settings_only_client.post(
            "/settings/channels/22/mappings", json={"salesDrivePaymentMethod": 5},
        )

        assert response.status_code == 409
        assert len(load_settings(temp_db).get_channel("22").mappings) == 1

    def test_add_and_patch_payment_mapping(self, settings_only_client, temp_db):
        _seed_channel(temp_db)

        added = settings_only_client.post(
            "/settings/channels/22/mappings", json={"salesDrivePaymentMethod": 14, "paymentForm": "pf-card"},
        ).json()
        new_id = added["channelPaymentMapping"]["22"]["mappings"][1]["id"]
        patched = settings_only_client.patch(
            f"/settings/channels/22/mappings/{new_id}", json={"cashAccount": "acc-1"},
        ).json()

        mapping = patched["channelPaymentMapping"]["22"]["mappings"][1]
        assert mapping["salesDrivePaymentMethod"] == 14
        assert mapping["paymentForm"] == "pf-card"
        assert mapping["cashAccount"] == "acc-1"

    def test_cash_form_clears_cash_account(self, client, temp_db):
        _seed_channel(temp_db)

        response = client.patch(
            "/settings/channels/22/mappings/m1", json={"paymentForm": "pf-cash", "cashAccount": "acc-1"},
        )

        mapping = response.json()["channelPaymentMapping"]["22"]["mappings"][0]
        assert mapping["paymentForm"] == "pf-cash"
        assert mapping["cashAccount"] is None

    def test_removing_last_mapping_removes_channel(self, settings_only_client, temp_db):
        _seed_channel(temp_db)

        response = settings_only_client.delete("/settings/channels/22/mappings/m1")

        assert response.status_code == 200
        assert "22" not in response.json()["channelPaymentMapping"]
        assert settings_only_client.delete("/settings/channels/22/mappings/m1").status_code == 404

    def test_used_values(self, settings_only_client, temp_db):
        _seed_channel(temp_db)

        data = settings_only_client.get("/settings/channels/22/used").json()
        excluded = settings_only_client.get("/settings/channels/22/used", params={"exclude": "m1"}).json()

        assert data["sales_drive_payment_methods"] == [5]
        assert data["payment_forms"] == ["pf-card"]
        assert excluded["sales_drive_payment_methods"] == []

    def test_delivery_mapping_lifecycle(self, settings_only_client):
        created = settings_only_client.post("/settings/delivery-mappings", json={
            "salesDriveShippingMethods": ["Нова Пошта"], "dilovodDeliveryMethodId": "dm-np",
        })
        assert created.status_code == 201

        updated = settings_only_client.put("/settings/delivery-mappings/0", json={
            "salesDriveShippingMethods": ["Нова Пошта", "Нова Пошта (адресна)"],
        }).json()
        delivery = updated["deliveryMappings"][0]
        assert delivery["salesDriveShippingMethods"] == ["Нова Пошта", "Нова Пошта (адресна)"]
        assert delivery["dilovodDeliveryMethodId"] == "dm-np"

        assert settings_only_client.delete("/settings/delivery-mappings/0").json()["deliveryMappings"] == []
        assert settings_only_client.delete("/settings/delivery-mappings/0").status_code == 404

    def test_defaults(self, settings_only_client):
        settings_only_client.put("/settings/defaults", json={"defaultFirmId": "firm-1", "storageId": "st-1"})
        data = settings_only_client.put("/settings/defaults", json={"storageId": ""}).json()

        assert data["defaultFirmId"] == "firm-1"
        assert data["storageId"] is None

    def test_stale_report_needs_runtime(self, settings_only_client, client, temp_db):
        _seed_channel(temp_db)

        assert settings_only_client.get("/settings/stale").status_code == 503

        data = client.get("/settings/stale").json()
        assert data["stale"] == []

    def test_stale_report_directory_failure_is_502(self, client, connector, temp_db):
        connector.get_directories.side_effect = ERPConnectionError("timeout", raw_message="Read timed out")

        response = client.get("/settings/stale", params={"refresh": True})

        assert response.status_code == 502
        assert "Read timed out" in response.json()["detail"]


class TestOrderStageRoutes:

    def test_validate_returns_token(self, client, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)

        data = client.post(f"/orders/{order_id}/validate").json()

        assert data["order_number"] == "RZ-9386"
        assert data["metadata"] == {"token": "contact-tok"}

    def test_export_uses_supplied_token(self, client, connector, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)

        data = client.post(f"/orders/{order_id}/export", json={"token": "contact-tok"}).json()

        assert data["exported"] is True
        assert data["dilovod_id"] == "D1"
        assert data["metadata"] == {"sale_token": "sale-tok"}
        assert connector.export_order.call_args.kwargs["contact_token"] == "contact-tok"
        assert get_order(order_id, db_path=temp_db).export_state.dilovod_doc_id == "D1"

    def test_export_without_body(self, client, connector, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)

        assert client.post(f"/orders/{order_id}/export").status_code == 200
        assert connector.export_order.call_args.kwargs["contact_token"] is None

    def test_shipment_after_export(self, client, connector, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)
        client.post(f"/orders/{order_id}/export")

        data = client.post(f"/orders/{order_id}/shipment", json={"token": "sale-tok"}).json()

        assert data["created"] is True
        assert data["document_id"] == "S1"
        assert connector.create_shipment.call_args.args[1] == "D1"
        assert connector.create_shipment.call_args.kwargs["sale_token"] == "sale-tok"

    def test_shipment_before_export_is_rejected(self, client, connector, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)

        response = client.post(f"/orders/{order_id}/shipment")

        assert response.status_code == 400
        assert response.json()["type"] == "shipment_error"
        connector.create_shipment.assert_not_called()

    def test_critical_error_body(self, client, connector, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db, channel_id="99")

        response = client.post(f"/orders/{order_id}/validate")

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["type"] == "critical_validation_error"
        assert body["channel_id"] == "99"
        assert body["details"]
        assert body["action_required"]
        connector.validate_order.assert_not_called()

    def test_network_error_is_502(self, client, connector, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)
        connector.export_order.side_effect = ERPConnectionError("timeout", raw_message="Read timed out")

        response = client.post(f"/orders/{order_id}/export")

        assert response.status_code == 502
        assert response.json()["raw_message"] == "Read timed out"

    def test_full_run_report(self, client, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)

        data = client.post(f"/orders/{order_id}/run", json={"ship": False}).json()

        assert data["state"] == "SHIPMENT_SKIPPED"
        assert data["order_number"] == "RZ-9386"

    def test_unknown_order_is_404(self, client):
        assert client.post("/orders/404/validate").status_code == 404
        assert client.get("/orders/404").status_code == 404

    def test_no_runtime_is_503(self, settings_only_client, temp_db):
        order_id = _add_order(temp_db)

        assert settings_only_client.post(f"/orders/{order_id}/validate").status_code == 503
        assert settings_only_client.get(f"/orders/{order_id}").status_code == 200

    def test_preview(self, client, temp_db):
        _seed_channel(temp_db)
        good = _add_order(temp_db)
        bad = _add_order(temp_db, number="1", channel_id="99")

        resolved = client.get(f"/orders/{good}/preview").json()
        failed = client.get(f"/orders/{bad}/preview").json()

        assert resolved["resolved"] is True
        assert resolved["resolution"]["composed_order_number"] == "RZ-9386"
        assert failed["resolved"] is False
        assert failed["failure"]["channel_id"] == "99"

    def test_list_orders(self, client, temp_db):
        _add_order(temp_db, number="1")
        _add_order(temp_db, number="2", channel_id="28")

        data = client.get("/orders", params={"channel_id": "28"}).json()

        assert [o["order_number"] for o in data] == ["2"]


class TestBatchRoutes:

    def test_bulk_export_and_ship(self, client, connector, temp_db):
        _seed_channel(temp_db)
        good = _add_order(temp_db)
        bad = _add_order(temp_db, number="1", channel_id="99")

        data = client.post("/orders/bulk", json={"order_ids": [good, bad], "kind": "exportAndShip"}).json()

        assert data["exported"] == 1
        assert data["failed"] == 1
        assert data["items"][1]["errors"][0]["type"] == "critical_validation_error"
        assert connector.create_shipment.call_count == 1

    def test_check(self, client, connector, temp_db):
        _seed_channel(temp_db)
        order_id = _add_order(temp_db)
        connector.find_sale_orders = AsyncMock(return_value=[])

        data = client.post("/orders/check", json={"order_ids": [order_id]}).json()

        connector.find_sale_orders.assert_awaited_once_with(["RZ-9386"])
        assert data["checked"] == 1
        assert data["found"] == 0

    def test_check_incomplete(self, client, connector, temp_db):
        _seed_channel(temp_db)
        _add_order(temp_db, "9386", status_id=3)
        _add_order(temp_db, "9387", status_id=1)
        connector.find_sale_orders = AsyncMock(return_value=[])

        data = client.post("/orders/check-incomplete", params={"limit": 50}).json()

        connector.find_sale_orders.assert_awaited_once_with(["RZ-9386"])
        assert data["checked"] == 1

    def test_check_incomplete_limit_is_bounded(self, client):
        assert client.post("/orders/check-incomplete", params={"limit": 0}).status_code == 422

    def test_sync_needs_storefront(self, client):
        response = client.post("/orders/sync", json={"date_from": "2025-03-01", "date_to": "2025-03-31"})

        assert response.status_code == 503


class TestHealthRoutes:

    def test_health_with_runtime(self, client):
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["services"]["dilovod"] == "CONNECTED"
        assert data["services"]["salesdrive"] == "not_configured"
        assert data["services"]["storage"] == "up"

    def test_ready_and_live(self, client, settings_only_client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert settings_only_client.get("/ready").status_code == 503
        assert settings_only_client.get("/live").json() == {"status": "alive"}
